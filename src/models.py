"""Data models for NeuroCalm Monitor."""

from dataclasses import dataclass
from enum import Enum


class StressLevel(str, Enum):
    """Stress category produced by the classifier."""

    NORMAL = "Normal"
    MILD_STRESS = "Mild Stress"
    HIGH_STRESS = "High Stress"
    UNKNOWN = "Unknown"
    NO_DATA = "No Data"


class ConnectionState(str, Enum):
    """Lifecycle state of the device connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TransportKind(str, Enum):
    """Supported transports (mutually exclusive)."""

    LOCAL_LINK = "serial"
    NETWORK_SOCKET = "websocket"

    @classmethod
    def from_name(cls, name: str) -> "TransportKind":
        """Resolve a transport from its config/CLI name.

        Accepts the enum value ("serial", "websocket") as well as the
        member name ("local_link", "network_socket") and a couple of aliases.

        Raises:
            ValueError: If the name is unknown
        """
        key = (name or "").strip().lower()
        aliases = {"usb": cls.LOCAL_LINK, "wifi": cls.NETWORK_SOCKET, "ws": cls.NETWORK_SOCKET}
        if key in aliases:
            return aliases[key]
        for kind in cls:
            if key in (kind.value, kind.name.lower()):
                return kind
        available = ", ".join(k.value for k in cls)
        raise ValueError(f"Unknown transport: {name}. Available: {available}")


@dataclass(frozen=True)
class Reading:
    """Heart rate extracted from one telemetry line."""

    heart_rate: int  # bpm, always >= 0


@dataclass(frozen=True)
class HistoryPoint:
    """One sample of the rolling chart history."""

    time: str  # "mm:ss" label
    heart_rate: int
    spo2: int

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "time": self.time,
            "heart_rate": self.heart_rate,
            "spo2": self.spo2,
        }


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of a stress analysis."""

    stress_level: StressLevel
    reason: str
    suggestion: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "stress_level": self.stress_level.value,
            "reason": self.reason,
            "suggestion": self.suggestion,
        }

    def __str__(self) -> str:
        """Human-readable representation."""
        return f"{self.stress_level.value}: {self.reason} Suggestion: {self.suggestion}"
