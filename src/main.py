#!/usr/bin/env python3
"""Main entry point for NeuroCalm Monitor.

This module provides a headless monitor that:
1. Connects to the NeuroCalm ESP32 over USB serial or Wi-Fi (WebSocket)
2. Logs every heart rate reading
3. Periodically classifies the latest reading into a stress level
4. Optionally mirrors readings and analyses to an MQTT broker

Usage:
    # Monitor over USB serial (first detected port)
    python -m src.main monitor

    # Monitor over Wi-Fi
    python -m src.main monitor --transport websocket --endpoint 192.168.4.1

    # List serial ports
    python -m src.main ports
"""

from __future__ import annotations

import argparse
import asyncio
import copy
import logging
import signal
import sys
from pathlib import Path

import yaml

from src.monitor import HISTORY, StateUpdate, StressMonitor
from src.mqtt_publisher import MQTTPublisher
from src.telemetry.connection import ConnectionManager
from src.telemetry.transports import list_serial_ports

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CONFIG = {
    "connection": {
        "transport": "serial",
        "endpoint": None,
        "serial_port": None,
        "baud_rate": 115200,
        "open_timeout": 10.0,
    },
    "framing": {
        "max_line_length": 4096,
    },
    "monitor": {
        "history_length": 30,
        "spo2": 98,
        "analysis_delay": 0.6,
        "analysis_interval": 10,
    },
    "mqtt": {
        "enabled": False,
        "host": "localhost",
        "port": 1883,
        "username": None,
        "password": None,
        "base_topic": "neurocalm",
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    },
}


class NeuroCalmApp:
    """Headless orchestrator: device connection, analysis loop, MQTT mirror."""

    def __init__(self, config: dict):
        """Initialize the app with configuration.

        Args:
            config: Configuration dictionary
        """
        self.config = config
        self._running = False

        conn_config = config.get("connection", {})
        monitor_config = config.get("monitor", {})

        self.connection = ConnectionManager(
            serial_port=conn_config.get("serial_port"),
            baud_rate=conn_config.get("baud_rate", 115200),
            open_timeout=conn_config.get("open_timeout", 10.0),
            max_line_length=config.get("framing", {}).get("max_line_length", 4096),
        )
        self.monitor = StressMonitor(
            self.connection,
            history_length=monitor_config.get("history_length", 30),
            spo2=monitor_config.get("spo2", 98),
            analysis_delay=monitor_config.get("analysis_delay", 0.6),
        )
        self.monitor.subscribe(self._log_update)
        self.monitor.on_notice(lambda message: logger.error(f"Notice: {message}"))

        self.mqtt: MQTTPublisher | None = None

    def _log_update(self, update: StateUpdate) -> None:
        if update.kind == HISTORY:
            point = update.value
            logger.info(f"[{point.time}] Heart rate: {point.heart_rate} bpm, SpO2: {point.spo2}%")

    def _init_mqtt(self) -> bool:
        """Initialize MQTT publisher.

        Returns:
            True if connection successful
        """
        mqtt_config = self.config.get("mqtt", {})
        if not mqtt_config.get("enabled", False):
            logger.info("MQTT publishing disabled in config")
            return False

        self.mqtt = MQTTPublisher(
            host=mqtt_config.get("host", "localhost"),
            port=mqtt_config.get("port", 1883),
            username=mqtt_config.get("username"),
            password=mqtt_config.get("password"),
            base_topic=mqtt_config.get("base_topic", "neurocalm"),
        )

        if self.mqtt.connect():
            self.mqtt.publish_status("online", "Monitor started")
            self.monitor.subscribe(self.mqtt.handle_update)
            return True
        else:
            logger.error("Failed to connect to MQTT broker")
            return False

    async def run(
        self,
        transport: str,
        endpoint: str | None = None,
        interval_seconds: float = 10,
    ) -> int:
        """Connect and monitor until stopped or the device drops.

        Args:
            transport: Transport name ("serial" or "websocket")
            endpoint: Device address for the WebSocket transport
            interval_seconds: Seconds between analyses

        Returns:
            Exit code
        """
        if not await self.monitor.connect(transport, endpoint):
            return 1

        self._running = True

        def handle_signal(_signum, _frame):
            logger.info("Shutdown signal received")
            self._running = False

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

        logger.info(f"Monitoring, analysis every {interval_seconds}s (Ctrl+C to stop)")
        elapsed = 0.0
        try:
            while self._running and self.monitor.is_connected:
                await asyncio.sleep(1)
                elapsed += 1
                if elapsed >= interval_seconds:
                    elapsed = 0.0
                    await self.monitor.analyze()
        finally:
            await self.monitor.disconnect()

        logger.info("Monitor stopped")
        return 0

    def cleanup(self) -> None:
        """Clean up resources."""
        if self.mqtt:
            self.mqtt.publish_status("offline", "Monitor stopped")
            self.mqtt.disconnect()


def load_config(config_path: str | None = None) -> dict:
    """Load configuration from file or use defaults.

    Args:
        config_path: Path to YAML config file

    Returns:
        Configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            user_config = yaml.safe_load(f)
            if user_config and isinstance(user_config, dict):
                # Deep merge user config into defaults
                for section, values in user_config.items():
                    section_config = config.get(section)
                    if (
                        section_config is not None
                        and isinstance(section_config, dict)
                        and isinstance(values, dict)
                    ):
                        section_config.update(values)
                    else:
                        config[section] = values

    return config


def setup_logging(config: dict) -> None:
    """Setup logging based on configuration.

    Args:
        config: Configuration dictionary
    """
    log_config = config.get("logging", {})
    level = getattr(logging, log_config.get("level", "INFO").upper())
    format_str = log_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    log_file = log_config.get("file")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=format_str, handlers=handlers)


async def cmd_monitor(args: argparse.Namespace, config: dict) -> int:
    """Handle monitor command.

    Args:
        args: Parsed command line arguments
        config: Configuration dictionary

    Returns:
        Exit code
    """
    conn_config = config["connection"]
    if args.port:
        conn_config["serial_port"] = args.port

    app = NeuroCalmApp(config)

    try:
        app._init_mqtt()

        transport = args.transport or conn_config.get("transport", "serial")
        endpoint = args.endpoint or conn_config.get("endpoint")
        interval = args.interval or config.get("monitor", {}).get("analysis_interval", 10)

        return await app.run(transport, endpoint, interval_seconds=interval)

    finally:
        app.cleanup()


def cmd_ports(_args: argparse.Namespace, _config: dict) -> int:
    """Handle ports command.

    Returns:
        Exit code
    """
    ports = list_serial_ports()

    if not ports:
        print("No serial ports found.")
        print("\nTroubleshooting tips:")
        print("  1. Plug the ESP32 in with a data-capable USB cable")
        print("  2. Install the CP210x USB to UART Bridge driver")
        print("  3. On Linux, add your user to the 'dialout' group")
        return 1

    print(f"Found {len(ports)} serial port(s):\n")
    for port in ports:
        print(f"  {port}")
    print()
    return 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="NeuroCalm heart rate and stress monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config/config.yaml",
        help="Path to config file (default: config/config.yaml)",
    )
    parser.add_argument(
        "--debug",
        "-d",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    monitor_parser = subparsers.add_parser("monitor", help="Connect and monitor the device")
    monitor_parser.add_argument(
        "--transport",
        "-t",
        choices=["serial", "websocket"],
        help="Transport to use (overrides config)",
    )
    monitor_parser.add_argument(
        "--endpoint",
        "-e",
        type=str,
        help="ESP32 IP address or ws:// URL for the websocket transport",
    )
    monitor_parser.add_argument(
        "--port",
        "-p",
        type=str,
        help="Serial port (default: first detected)",
    )
    monitor_parser.add_argument(
        "--interval",
        "-i",
        type=float,
        help="Seconds between stress analyses (overrides config)",
    )

    subparsers.add_parser("ports", help="List serial ports")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = load_config(args.config)

    if args.debug:
        config["logging"]["level"] = "DEBUG"
    setup_logging(config)

    try:
        if args.command == "monitor":
            exit_code = asyncio.run(cmd_monitor(args, config))
        elif args.command == "ports":
            exit_code = cmd_ports(args, config)
        else:
            parser.print_help()
            exit_code = 1

        sys.exit(exit_code)

    except KeyboardInterrupt:
        print("\nCancelled.")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
