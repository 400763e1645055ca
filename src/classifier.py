"""Threshold-based stress classification.

Rules (matching the ESP32 firmware LEDs):
    heart rate <= 0        -> No Data
    heart rate < 80        -> Normal
    80 <= heart rate <= 120 -> Mild Stress
    heart rate > 120       -> High Stress

SpO2 is reported but does not influence the category.
"""

import asyncio
import logging
import random

from src.models import ClassificationResult, StressLevel

logger = logging.getLogger(__name__)

NORMAL_LIMIT = 80  # first bpm counted as mild stress
HIGH_STRESS_LIMIT = 120  # last bpm counted as mild stress

# Simulated computation time so the "analyzing" state is visible
DEFAULT_ANALYSIS_DELAY = 0.6

NO_DATA_REASON = "Arduino/ESP32 not connected or sensor data invalid."

SUGGESTIONS: dict[StressLevel, tuple[str, ...]] = {
    StressLevel.NORMAL: (
        "Maintain calm breathing and continue your routine.",
        "Your vitals are stable. Keep up the good work.",
        "Relaxed state detected. Perfect for focused tasks.",
    ),
    StressLevel.MILD_STRESS: (
        "Take slow deep breaths for 30 seconds.",
        "Consider a quick stretching break to release tension.",
        "Drink some water and lower your shoulders.",
        "Try a 4-7-8 breathing exercise.",
    ),
    StressLevel.HIGH_STRESS: (
        "Pause your activity immediately and rest.",
        "Deep slow breathing is recommended to lower heart rate.",
        "Take a short walk or step away from the current task.",
        "Focus on exhaling longer than you inhale.",
    ),
    StressLevel.NO_DATA: (
        "Reconnect the device and try again.",
        "Check the wiring and power supply of the ESP32.",
        "Ensure the sensor is properly placed on the finger.",
    ),
}


def pick_suggestion(level: StressLevel, rng: random.Random | None = None) -> str:
    """Draw a suggestion for ``level`` uniformly at random.

    Levels without their own pool use the Normal pool.
    """
    options = SUGGESTIONS.get(level) or SUGGESTIONS[StressLevel.NORMAL]
    return (rng or random).choice(options)


def stress_level_for(heart_rate: int) -> StressLevel:
    """Map a heart rate to its stress category."""
    if heart_rate <= 0:
        return StressLevel.NO_DATA
    if heart_rate < NORMAL_LIMIT:
        return StressLevel.NORMAL
    if heart_rate <= HIGH_STRESS_LIMIT:
        return StressLevel.MILD_STRESS
    return StressLevel.HIGH_STRESS


def classify(heart_rate: int, spo2: int, rng: random.Random | None = None) -> ClassificationResult:
    """Classify the latest reading.

    Category and reason are deterministic; the suggestion is random.

    Args:
        heart_rate: Latest heart rate in bpm (0 = no reading)
        spo2: SpO2 calibration value (reported only)
        rng: Optional random generator for the suggestion draw

    Returns:
        Classification result
    """
    level = stress_level_for(heart_rate)

    if level is StressLevel.NO_DATA:
        reason = NO_DATA_REASON
    elif level is StressLevel.NORMAL:
        reason = f"Heart rate ({heart_rate} BPM) is within the normal resting range."
    elif level is StressLevel.MILD_STRESS:
        reason = f"Heart rate is moderately elevated ({heart_rate} BPM)."
    else:
        reason = f"Heart rate is significantly high ({heart_rate} BPM) indicating stress."

    result = ClassificationResult(
        stress_level=level,
        reason=reason,
        suggestion=pick_suggestion(level, rng),
    )
    logger.debug(f"Classified {heart_rate} bpm (SpO2 {spo2}%) as {level.value}")
    return result


async def analyze(
    heart_rate: int,
    spo2: int,
    delay: float = DEFAULT_ANALYSIS_DELAY,
    rng: random.Random | None = None,
) -> ClassificationResult:
    """Classify after a short fixed delay.

    Args:
        heart_rate: Latest heart rate in bpm
        spo2: SpO2 calibration value
        delay: Seconds to wait before classifying
        rng: Optional random generator for the suggestion draw

    Returns:
        Classification result
    """
    if delay > 0:
        await asyncio.sleep(delay)
    return classify(heart_rate, spo2, rng)
