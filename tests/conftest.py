import asyncio
from typing import List, Optional

import pytest

from site_monitor.actuator import ActuatorController
from site_monitor.adapters import MQTTConnectionError, SimulatedDisplay, SimulatedPin
from site_monitor.display import DisplayPort


class FixedSensor:
    """Sensor returning a constant reading; optionally fails on demand."""

    def __init__(self, temperature: float = 71.25, pressure: float = 101.325) -> None:
        self.temperature = temperature
        self.pressure = pressure
        self.reads = 0
        self.fail_with: Optional[Exception] = None
        self.closed = False

    def read(self):
        self.reads += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self.temperature, self.pressure

    def close(self) -> None:
        self.closed = True


class RecordingSink:
    """Telemetry sink that keeps every published payload and when it arrived."""

    def __init__(self) -> None:
        self.payloads: List[bytes] = []
        self.stamps: List[float] = []
        self.fail_with: Optional[Exception] = None
        self.delay = 0.0

    async def publish(self, payload: bytes) -> None:
        self.stamps.append(asyncio.get_running_loop().time())
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.payloads.append(payload)


class ScriptedConsole:
    """Console fed from a list of input lines; None simulates EOF."""

    def __init__(self, lines=()) -> None:
        self._lines = list(lines)
        self.output: List[str] = []
        self.prompts: List[str] = []
        self.closed = False

    def feed(self, *lines) -> None:
        self._lines.extend(lines)

    async def readline(self, prompt: str = ""):
        self.prompts.append(prompt)
        await asyncio.sleep(0)
        if not self._lines:
            return None
        return self._lines.pop(0)

    def write(self, text: str = "", *, end: str = "\n") -> None:
        self.output.append(text)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def sensor() -> FixedSensor:
    return FixedSensor()


@pytest.fixture
def relay() -> SimulatedPin:
    return SimulatedPin(17)


@pytest.fixture
def indicator() -> SimulatedPin:
    return SimulatedPin(27)


@pytest.fixture
def lcd() -> SimulatedDisplay:
    return SimulatedDisplay(4, 20)


@pytest.fixture
def display_port(lcd: SimulatedDisplay) -> DisplayPort:
    return DisplayPort(lcd)


@pytest.fixture
def actuator(relay, indicator, display_port) -> ActuatorController:
    return ActuatorController(relay, indicator, display_port, name="HVAC", dwell=0.0)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def console() -> ScriptedConsole:
    return ScriptedConsole()


class FakeMQTT:
    """In-memory stand-in for ``MQTTClient``."""

    def __init__(self) -> None:
        self.fail_connect = False
        self.connected = False
        self.handler = None
        self.published = []
        self.subscriptions = []
        self.disconnect_handlers = []

    async def connect(self, timeout: float = 30.0) -> None:
        if self.fail_connect:
            raise MQTTConnectionError("Timed out connecting to MQTT broker")
        self.connected = True

    async def disconnect(self, timeout: float = 5.0) -> None:
        self.connected = False

    def publish(self, topic, payload, qos=1, retain=False):
        if not self.connected:
            raise MQTTConnectionError("MQTT client not connected")
        self.published.append((topic, payload, qos))

    def subscribe(self, topic, qos=1):
        self.subscriptions.append((topic, qos))

    def set_message_handler(self, handler):
        self.handler = handler

    def register_disconnect_handler(self, handler):
        self.disconnect_handlers.append(handler)

    def drop(self, rc: int = 7) -> None:
        self.connected = False
        for handler in self.disconnect_handlers:
            handler(rc)

    def is_connected(self) -> bool:
        return self.connected


@pytest.fixture
def mqtt() -> FakeMQTT:
    return FakeMQTT()
