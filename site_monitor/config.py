"""Configuration loader for site-monitor."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants

BACKENDS = ("simulated", "hardware")


class ConfigurationError(ValueError):
    """Raised when the configuration cannot drive the agent."""


@dataclass(slots=True)
class CloudConfig:
    broker_host: str = constants.DEFAULT_BROKER_HOST
    broker_port: int = constants.DEFAULT_BROKER_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    client_id: Optional[str] = None
    device_id: str = ""
    method_name: str = constants.DEFAULT_METHOD_NAME


@dataclass(slots=True)
class DeviceConfig:
    backend: str = "simulated"
    actuator_name: str = constants.DEFAULT_ACTUATOR_NAME
    actuator_pin: int = 17
    indicator_pin: int = 27
    i2c_bus: int = constants.DEFAULT_I2C_BUS
    sensor_address: int = constants.DEFAULT_SENSOR_ADDRESS


@dataclass(slots=True)
class DisplayConfig:
    line_count: int = constants.DEFAULT_DISPLAY_LINES
    line_length: int = constants.DEFAULT_DISPLAY_LINE_LENGTH
    i2c_address: int = constants.DEFAULT_DISPLAY_ADDRESS
    refresh_seconds: float = constants.DEFAULT_REFRESH_SECONDS
    dwell_seconds: float = constants.DEFAULT_DWELL_SECONDS


@dataclass(slots=True)
class TelemetryConfig:
    interval_ms: int = constants.DEFAULT_TRANSMIT_INTERVAL_MS


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = constants.DEFAULT_LOG_PATH
    log_network: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class MonitorConfig:
    cloud: CloudConfig
    device: DeviceConfig
    display: DisplayConfig
    telemetry: TelemetryConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path

    @property
    def client_id(self) -> str:
        return self.cloud.client_id or f"{constants.APP_NAME}-{self.cloud.device_id}"


def _parse_int(value: str) -> int:
    # Accepts hex I2C addresses such as 0x27.
    return int(value.strip(), 0)


def load_config(path: Optional[Path] = None) -> MonitorConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "cloud": {
                "broker_host": constants.DEFAULT_BROKER_HOST,
                "broker_port": str(constants.DEFAULT_BROKER_PORT),
                "use_tls": "true",
                "device_id": "",
                "method_name": constants.DEFAULT_METHOD_NAME,
            },
            "device": {
                "backend": "simulated",
                "actuator_name": constants.DEFAULT_ACTUATOR_NAME,
                "actuator_pin": "17",
                "indicator_pin": "27",
                "i2c_bus": str(constants.DEFAULT_I2C_BUS),
                "sensor_address": hex(constants.DEFAULT_SENSOR_ADDRESS),
            },
            "display": {
                "line_count": str(constants.DEFAULT_DISPLAY_LINES),
                "line_length": str(constants.DEFAULT_DISPLAY_LINE_LENGTH),
                "i2c_address": hex(constants.DEFAULT_DISPLAY_ADDRESS),
                "refresh_seconds": str(constants.DEFAULT_REFRESH_SECONDS),
                "dwell_seconds": str(constants.DEFAULT_DWELL_SECONDS),
            },
            "telemetry": {
                "interval_ms": str(constants.DEFAULT_TRANSMIT_INTERVAL_MS),
            },
            "logging": {
                "level": "INFO",
                "path": str(constants.DEFAULT_LOG_PATH),
                "log_network": "false",
            },
            "health": {
                "enabled": "false",
                "host": "127.0.0.1",
                "port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    try:
        return _build_config(parser, config_path)
    except ValueError as exc:
        if isinstance(exc, ConfigurationError):
            raise
        raise ConfigurationError(f"Invalid value in {config_path}: {exc}") from exc


def _build_config(parser: ConfigParser, config_path: Path) -> MonitorConfig:
    broker_host_value = parser.get("cloud", "broker_host")
    broker_port_value = parser.getint(
        "cloud", "broker_port", fallback=constants.DEFAULT_BROKER_PORT
    )

    if ":" in broker_host_value:
        host_part, port_part = broker_host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            broker_host_value = host_part
            broker_port_value = parsed_port
            parser.set("cloud", "broker_host", host_part)
            parser.set("cloud", "broker_port", str(parsed_port))

    cloud = CloudConfig(
        broker_host=broker_host_value,
        broker_port=broker_port_value,
        username=parser.get("cloud", "username", fallback=None) or None,
        password=parser.get("cloud", "password", fallback=None) or None,
        use_tls=parser.getboolean("cloud", "use_tls", fallback=True),
        client_id=parser.get("cloud", "client_id", fallback=None) or None,
        device_id=parser.get("cloud", "device_id", fallback="").strip(),
        method_name=parser.get(
            "cloud", "method_name", fallback=constants.DEFAULT_METHOD_NAME
        ).strip(),
    )

    device = DeviceConfig(
        backend=parser.get("device", "backend").strip().lower(),
        actuator_name=parser.get("device", "actuator_name").strip(),
        actuator_pin=parser.getint("device", "actuator_pin"),
        indicator_pin=parser.getint("device", "indicator_pin"),
        i2c_bus=parser.getint("device", "i2c_bus"),
        sensor_address=_parse_int(parser.get("device", "sensor_address")),
    )

    display = DisplayConfig(
        line_count=parser.getint("display", "line_count"),
        line_length=parser.getint("display", "line_length"),
        i2c_address=_parse_int(parser.get("display", "i2c_address")),
        refresh_seconds=parser.getfloat("display", "refresh_seconds"),
        dwell_seconds=parser.getfloat("display", "dwell_seconds"),
    )

    telemetry = TelemetryConfig(
        interval_ms=parser.getint("telemetry", "interval_ms"),
    )

    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(
            parser.get("logging", "path", fallback=str(constants.DEFAULT_LOG_PATH))
        ).expanduser(),
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    return MonitorConfig(
        cloud=cloud,
        device=device,
        display=display,
        telemetry=telemetry,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )


def validate_config(config: MonitorConfig) -> None:
    """Reject settings the agent cannot start with."""

    problems: list[str] = []

    if not config.cloud.device_id:
        problems.append("[cloud] device_id is required")
    if not config.cloud.method_name:
        problems.append("[cloud] method_name must not be empty")

    device = config.device
    if device.backend not in BACKENDS:
        problems.append(
            f"[device] backend must be one of {', '.join(BACKENDS)} (got {device.backend!r})"
        )
    if device.actuator_pin < 0 or device.indicator_pin < 0:
        problems.append("[device] pins must be non-negative")
    if device.actuator_pin == device.indicator_pin:
        problems.append("[device] actuator_pin and indicator_pin must differ")
    if not device.actuator_name:
        problems.append("[device] actuator_name must not be empty")

    display = config.display
    if display.line_count <= 0 or display.line_length <= 0:
        problems.append("[display] line_count and line_length must be positive")
    if display.refresh_seconds <= 0:
        problems.append("[display] refresh_seconds must be positive")
    if display.dwell_seconds < 0:
        problems.append("[display] dwell_seconds must not be negative")

    if config.telemetry.interval_ms <= 0:
        problems.append("[telemetry] interval_ms must be positive")

    if problems:
        raise ConfigurationError("; ".join(problems))
