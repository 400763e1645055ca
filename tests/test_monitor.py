"""Tests for src/monitor.py - StressMonitor live state."""

import asyncio

import pytest
from conftest import settle

from src.models import ConnectionState, HistoryPoint, StressLevel
from src.monitor import (
    ANALYSIS,
    ANALYZING,
    CONNECTION,
    HEART_RATE,
    HISTORY,
    NOT_CONNECTED_RESULT,
    SPO2,
    StateUpdate,
    StressMonitor,
    validate_spo2,
)
from src.telemetry.connection import ConnectionManager

# ============== FIXTURES ==============


@pytest.fixture
def monitor(manager, clock) -> StressMonitor:
    """Monitor over fake transports with no analysis delay."""
    return StressMonitor(manager, history_length=10, analysis_delay=0, clock=clock)


@pytest.fixture
def updates(monitor) -> list[StateUpdate]:
    """Every state update emitted by the monitor."""
    received: list[StateUpdate] = []
    monitor.subscribe(received.append)
    return received


# ============== TEST CLASSES ==============


class TestInitialState:
    """Tests for the state before any connection."""

    def test_defaults(self, monitor):
        """Test initial values."""
        assert monitor.heart_rate == 0
        assert monitor.spo2 == 98
        assert monitor.is_connected is False
        assert monitor.connection_state is ConnectionState.DISCONNECTED
        assert monitor.analysis is None
        assert monitor.is_analyzing is False

    def test_history_baseline(self, monitor):
        """Test chart history starts as a full zero baseline."""
        points = monitor.history_points
        assert len(points) == 10
        assert all(p.heart_rate == 0 for p in points)

    def test_default_connection_manager(self):
        """Test a connection manager is created when none is given."""
        assert isinstance(StressMonitor().connection, ConnectionManager)


class TestSpo2Calibration:
    """Tests for the SpO2 calibration value."""

    @pytest.mark.parametrize("value", [80, 90, 100])
    def test_valid_values(self, monitor, value):
        """Test values in 80-100 are accepted."""
        monitor.set_spo2(value)
        assert monitor.spo2 == value

    @pytest.mark.parametrize("value", [79, 101, 0, -1])
    def test_out_of_range(self, monitor, value):
        """Test values outside 80-100 are rejected and not applied."""
        with pytest.raises(ValueError):
            monitor.set_spo2(value)
        assert monitor.spo2 == 98

    def test_invalid_initial_value(self, manager):
        """Test constructor validates SpO2 too."""
        with pytest.raises(ValueError):
            StressMonitor(manager, spo2=50)

    def test_emits_update(self, monitor, updates):
        """Test a change is published once."""
        monitor.set_spo2(95)
        monitor.set_spo2(95)
        assert updates == [StateUpdate(SPO2, 95)]

    @pytest.mark.parametrize("value", [98.7, 97.0, "98", True, None])
    def test_non_integer_rejected(self, monitor, value):
        """Test non-integer values are rejected, never truncated."""
        with pytest.raises(ValueError):
            monitor.set_spo2(value)
        assert monitor.spo2 == 98

    def test_validate_spo2_returns_value(self):
        """Test a valid value is returned unchanged."""
        assert validate_spo2(97) == 97

    def test_history_uses_current_calibration(self, monitor, recorder):
        """Test new history points carry the SpO2 in effect."""

        async def scenario():
            await monitor.connect("serial")
            recorder.last.push("Heart rate: 70\n")
            await settle()
            monitor.set_spo2(92)
            recorder.last.push("Heart rate: 71\n")
            await settle()

        asyncio.run(scenario())

        assert [p.spo2 for p in monitor.history_points[-2:]] == [98, 92]


class TestReadings:
    """Tests for telemetry flowing into the monitor."""

    def test_split_chunks_end_to_end(self, monitor, recorder, updates):
        """Test chunked stream yields exactly the two readings in order."""

        async def scenario():
            await monitor.connect("serial")
            for chunk in ["Heart ra", "te: 88.00\nHeart rate: 95", ".00\n"]:
                recorder.last.push(chunk)
            await settle()

        asyncio.run(scenario())

        history_updates = [u.value for u in updates if u.kind == HISTORY]
        assert [p.heart_rate for p in history_updates] == [88, 95]
        assert [p.heart_rate for p in monitor.history_points[-2:]] == [88, 95]
        assert monitor.history_points[-3].heart_rate == 0
        assert monitor.heart_rate == 95

    def test_noise_lines_are_ignored(self, monitor, recorder):
        """Test non-matching lines change nothing."""

        async def scenario():
            await monitor.connect("serial")
            recorder.last.push("Beat!\n\nHeart rate: abc\nSensor init OK\n")
            await settle()

        asyncio.run(scenario())

        assert monitor.heart_rate == 0
        assert all(p.heart_rate == 0 for p in monitor.history_points)

    def test_websocket_messages(self, monitor, recorder):
        """Test WebSocket messages are parsed as lines."""

        async def scenario():
            await monitor.connect("websocket", "192.168.4.1")
            recorder.last.push("Heart rate: 101.50")
            await settle()

        asyncio.run(scenario())

        assert monitor.heart_rate == 102

    def test_history_capacity_respected(self, monitor, recorder):
        """Test many readings keep the history bounded."""

        async def scenario():
            await monitor.connect("serial")
            recorder.last.push("".join(f"Heart rate: {hr}\n" for hr in range(60, 80)))
            await settle()

        asyncio.run(scenario())

        points = monitor.history_points
        assert len(points) == 10
        assert [p.heart_rate for p in points] == list(range(70, 80))

    def test_update_order(self, monitor, recorder, updates):
        """Test heart rate is published before its history point."""

        async def scenario():
            await monitor.connect("serial")
            recorder.last.push("Heart rate: 75\n")
            await settle()

        asyncio.run(scenario())

        kinds = [u.kind for u in updates]
        assert kinds == [CONNECTION, CONNECTION, HEART_RATE, HISTORY]
        assert updates[-1].value == HistoryPoint(time=updates[-1].value.time, heart_rate=75, spo2=98)


class TestConnectionHandling:
    """Tests for connect/disconnect through the monitor."""

    def test_disconnect_resets_heart_rate(self, monitor, recorder):
        """Test disconnect clears the current reading."""

        async def scenario():
            await monitor.connect("serial")
            recorder.last.push("Heart rate: 110\n")
            await settle()
            assert monitor.heart_rate == 110
            await monitor.disconnect()

        asyncio.run(scenario())

        assert monitor.heart_rate == 0
        assert monitor.is_connected is False

    def test_disconnect_when_disconnected(self, monitor):
        """Test disconnect is safe without a connection."""
        asyncio.run(monitor.disconnect())
        assert monitor.connection_state is ConnectionState.DISCONNECTED

    def test_connect_error_is_notified(self, monitor):
        """Test connect failures go to the notice channel, not the caller."""
        notices: list[str] = []
        monitor.on_notice(notices.append)

        connected = asyncio.run(monitor.connect("websocket", ""))

        assert connected is False
        assert notices == ["Please enter the ESP32 IP address"]

    def test_open_failure_is_notified(self, recorder):
        """Test open failures are reported."""
        recorder.options["open_error"] = ConnectionRefusedError("refused")
        monitor = StressMonitor(ConnectionManager(transport_factory=recorder))
        notices: list[str] = []
        monitor.on_notice(notices.append)

        connected = asyncio.run(monitor.connect("websocket", "10.0.0.9"))

        assert connected is False
        assert len(notices) == 1
        assert "refused" in notices[0]

    def test_cancelled_connect_is_silent(self, recorder):
        """Test a connect aborted by disconnect produces no notice."""
        recorder.options["hold_open"] = True
        monitor = StressMonitor(ConnectionManager(transport_factory=recorder))
        notices: list[str] = []
        monitor.on_notice(notices.append)

        async def scenario():
            attempt = asyncio.create_task(monitor.connect("serial"))
            await settle()
            await monitor.disconnect()
            return await attempt

        assert asyncio.run(scenario()) is False
        assert notices == []

    def test_runtime_failure_is_notified(self, monitor, recorder):
        """Test a dropped stream is reported and resets the reading."""
        notices: list[str] = []
        monitor.on_notice(notices.append)

        async def scenario():
            await monitor.connect("serial")
            recorder.last.push("Heart rate: 90\n")
            recorder.last.push(OSError("device reports readiness to read but returned no data"))
            await settle()

        asyncio.run(scenario())

        assert monitor.is_connected is False
        assert monitor.heart_rate == 0
        assert len(notices) == 1
        assert "returned no data" in notices[0]

    def test_failure_right_after_open_is_notified(self, recorder):
        """Test a device error queued during open is reported, not silenced."""
        recorder.options["hold_open"] = True
        monitor = StressMonitor(ConnectionManager(transport_factory=recorder))
        notices: list[str] = []
        monitor.on_notice(notices.append)

        async def scenario():
            attempt = asyncio.create_task(monitor.connect("serial"))
            await settle()
            recorder.last.push(OSError("device unplugged"))
            recorder.last.gate.set()
            connected = await attempt
            await settle()
            return connected

        assert asyncio.run(scenario()) is True
        assert monitor.is_connected is False
        assert len(notices) == 1
        assert "device unplugged" in notices[0]

    def test_busy_connect_is_notified(self, monitor):
        """Test connecting twice reports the rejection."""
        notices: list[str] = []
        monitor.on_notice(notices.append)

        async def scenario():
            assert await monitor.connect("serial") is True
            return await monitor.connect("serial")

        assert asyncio.run(scenario()) is False
        assert notices == ["Cannot connect while connected"]
        assert monitor.is_connected is True


class TestAnalyze:
    """Tests for on-demand analysis."""

    def test_not_connected(self, monitor):
        """Test analysis without a connection yields No Data."""
        result = asyncio.run(monitor.analyze())

        assert result == NOT_CONNECTED_RESULT
        assert monitor.analysis == NOT_CONNECTED_RESULT

    def test_mild_stress(self, monitor, recorder):
        """Test analysis of a connected reading."""

        async def scenario():
            await monitor.connect("serial")
            recorder.last.push("Heart rate: 95.00\n")
            await settle()
            return await monitor.analyze()

        result = asyncio.run(scenario())

        assert result.stress_level is StressLevel.MILD_STRESS
        assert "95 BPM" in result.reason
        assert monitor.analysis is result

    def test_connected_without_reading(self, monitor):
        """Test a silent device yields No Data."""

        async def scenario():
            await monitor.connect("serial")
            return await monitor.analyze()

        assert asyncio.run(scenario()).stress_level is StressLevel.NO_DATA

    def test_after_disconnect(self, monitor, recorder):
        """Test reading reset by disconnect leads to No Data."""

        async def scenario():
            await monitor.connect("serial")
            recorder.last.push("Heart rate: 130\n")
            await settle()
            await monitor.disconnect()
            return await monitor.analyze()

        assert asyncio.run(scenario()).stress_level is StressLevel.NO_DATA

    def test_result_replaced_wholesale(self, monitor, recorder):
        """Test each analysis replaces the previous result."""

        async def scenario():
            await monitor.connect("serial")
            recorder.last.push("Heart rate: 70\n")
            await settle()
            first = await monitor.analyze()
            recorder.last.push("Heart rate: 130\n")
            await settle()
            second = await monitor.analyze()
            return first, second

        first, second = asyncio.run(scenario())

        assert first.stress_level is StressLevel.NORMAL
        assert second.stress_level is StressLevel.HIGH_STRESS
        assert monitor.analysis is second

    def test_analyzing_flag(self, recorder):
        """Test the flag is set during the delay and cleared after."""
        monitor = StressMonitor(ConnectionManager(transport_factory=recorder), analysis_delay=0.05)
        flags: list[bool] = []
        monitor.subscribe(lambda u: flags.append(u.value) if u.kind == ANALYZING else None)

        async def scenario():
            await monitor.connect("serial")
            recorder.last.push("Heart rate: 85\n")
            await settle()
            task = asyncio.create_task(monitor.analyze())
            await asyncio.sleep(0.01)
            during = monitor.is_analyzing
            await task
            return during

        assert asyncio.run(scenario()) is True
        assert monitor.is_analyzing is False
        assert flags == [True, False]

    def test_concurrent_analyze_rejected(self, recorder):
        """Test a second analyze during the delay is rejected."""
        monitor = StressMonitor(ConnectionManager(transport_factory=recorder), analysis_delay=0.05)

        async def scenario():
            await monitor.connect("serial")
            recorder.last.push("Heart rate: 85\n")
            await settle()
            first = asyncio.create_task(monitor.analyze())
            await asyncio.sleep(0.01)
            second = await monitor.analyze()
            return await first, second

        first, second = asyncio.run(scenario())

        assert first.stress_level is StressLevel.MILD_STRESS
        assert second is None

    def test_analysis_update_emitted(self, monitor, updates):
        """Test subscribers receive the new result."""
        asyncio.run(monitor.analyze())
        assert StateUpdate(ANALYSIS, NOT_CONNECTED_RESULT) in updates


class TestSubscriptions:
    """Tests for subscribe/unsubscribe."""

    def test_unsubscribe(self, monitor):
        """Test unsubscribed callbacks stop receiving updates."""
        received: list[StateUpdate] = []
        unsubscribe = monitor.subscribe(received.append)

        monitor.set_spo2(90)
        unsubscribe()
        monitor.set_spo2(91)

        assert received == [StateUpdate(SPO2, 90)]

    def test_failing_subscriber_does_not_break_others(self, monitor):
        """Test one broken subscriber does not block the rest."""
        received: list[StateUpdate] = []

        def broken(_update):
            raise RuntimeError("boom")

        monitor.subscribe(broken)
        monitor.subscribe(received.append)

        monitor.set_spo2(90)

        assert received == [StateUpdate(SPO2, 90)]
