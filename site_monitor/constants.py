"""Constants used across the site-monitor package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "site-monitor"
APP_VERSION = "1.0"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_LOG_PATH = Path.home() / ".local" / "state" / APP_NAME / f"{APP_NAME}.log"

DEFAULT_BROKER_HOST = "localhost"
DEFAULT_BROKER_PORT = 8883

DEFAULT_METHOD_NAME = "ControlRelay"
DEFAULT_ACTUATOR_NAME = "HVAC"

DEFAULT_TRANSMIT_INTERVAL_MS = 1000
DEFAULT_REFRESH_SECONDS = 2.0
DEFAULT_DWELL_SECONDS = 5.0

DEFAULT_I2C_BUS = 1
DEFAULT_SENSOR_ADDRESS = 0x76
DEFAULT_DISPLAY_ADDRESS = 0x27
DEFAULT_DISPLAY_LINES = 4
DEFAULT_DISPLAY_LINE_LENGTH = 20
