"""Main application entry-point for site-monitor."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass
from typing import Optional

from . import constants
from .actuator import ActuatorController
from .adapters import (
    Bmp280Sensor,
    GpioPin,
    HardwareError,
    LcdDisplay,
    SimulatedDisplay,
    SimulatedPin,
    SimulatedSensor,
)
from .commands import RemoteCommandHandler
from .config import MonitorConfig, load_config, validate_config
from .core import Display, OutputPin, Sensor
from .dispatcher import CommandDispatcher, Console, StdioConsole
from .display import DisplayPort, DisplayRefresher
from .health import HealthReporter, HealthServer
from .logging import configure_logging
from .telemetry import TelemetryPublisher, TransmitCycle
from .transport import CloudTransport

LOGGER = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class NodeHardware:
    sensor: Sensor
    relay: OutputPin
    indicator: OutputPin
    display: Display

    def close(self) -> None:
        for name, closer in (
            ("relay", self.relay.close),
            ("indicator", self.indicator.close),
            ("display", self.display.close),
            ("sensor", self.sensor.close),
        ):
            try:
                closer()
            except Exception:
                LOGGER.exception("Failed to release %s", name)


def build_hardware(config: MonitorConfig) -> NodeHardware:
    """Construct the collaborators selected by ``[device] backend``."""

    device = config.device
    display = config.display

    if device.backend == "simulated":
        return NodeHardware(
            sensor=SimulatedSensor(),
            relay=SimulatedPin(device.actuator_pin),
            indicator=SimulatedPin(device.indicator_pin),
            display=SimulatedDisplay(display.line_count, display.line_length),
        )

    opened: list = []
    try:
        sensor = Bmp280Sensor(device.i2c_bus, device.sensor_address)
        opened.append(sensor)
        relay = GpioPin(device.actuator_pin)
        opened.append(relay)
        indicator = GpioPin(device.indicator_pin)
        opened.append(indicator)
        lcd = LcdDisplay(
            display.line_count,
            display.line_length,
            bus=device.i2c_bus,
            address=display.i2c_address,
        )
    except HardwareError:
        for component in reversed(opened):
            with contextlib.suppress(Exception):
                component.close()
        raise

    return NodeHardware(sensor=sensor, relay=relay, indicator=indicator, display=lcd)


class SiteMonitorApp:
    """Owns every shared resource of the node and wires the tasks around them.

    Constructed once at startup; the publisher, refresher, remote handler and
    local dispatcher all receive their collaborators from here.
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        *,
        hardware: Optional[NodeHardware] = None,
        transport: Optional[CloudTransport] = None,
        console: Optional[Console] = None,
    ) -> None:
        self._config = config or load_config()
        validate_config(self._config)

        device_id = self._config.cloud.device_id
        self.hardware = hardware or build_hardware(self._config)
        self.display_port = DisplayPort(self.hardware.display)
        self.actuator = ActuatorController(
            self.hardware.relay,
            self.hardware.indicator,
            self.display_port,
            name=self._config.device.actuator_name,
            dwell=self._config.display.dwell_seconds,
        )
        self.cycle = TransmitCycle(self._config.telemetry.interval_ms)
        self.transport = transport or CloudTransport(
            self._config.cloud, client_id=self._config.client_id
        )
        self.publisher = TelemetryPublisher(
            self.hardware.sensor,
            self.hardware.indicator,
            self.transport,
            self.cycle,
            device_id=device_id,
        )
        self.refresher = DisplayRefresher(
            self.display_port,
            self.hardware.sensor,
            interval=self._config.display.refresh_seconds,
        )
        self.remote_handler = RemoteCommandHandler(self.actuator)
        self.transport.register_method(self._config.cloud.method_name, self.remote_handler)

        self.console: Console = console or StdioConsole()
        self.dispatcher = CommandDispatcher(
            self.console,
            actuator=self.actuator,
            publisher=self.publisher,
            cycle=self.cycle,
            sensor=self.hardware.sensor,
            on_exit=self.shutdown,
        )

        self._health = HealthReporter(device_id)
        self._health_server: Optional[HealthServer] = None
        self._register_health_probes()

        self._exit_event: Optional[asyncio.Event] = None
        self._dispatcher_task: Optional[asyncio.Task[None]] = None
        self._shutdown_task: Optional[asyncio.Task[None]] = None

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def health(self) -> HealthReporter:
        return self._health

    @property
    def stopped(self) -> bool:
        return self._shutdown_task is not None and self._shutdown_task.done()

    async def run(self) -> None:
        """Serve until ``x`` is entered or a shutdown signal arrives."""

        loop = asyncio.get_running_loop()
        self._exit_event = asyncio.Event()
        installed = self._install_signal_handlers(loop)

        try:
            await self.startup()
            self._dispatcher_task = asyncio.create_task(
                self.dispatcher.run(), name="command-dispatcher"
            )
            self._dispatcher_task.add_done_callback(self._on_dispatcher_done)
            await self._exit_event.wait()
        finally:
            await self._stop_dispatcher()
            await self.shutdown()
            for sig in installed:
                loop.remove_signal_handler(sig)

    async def startup(self) -> None:
        self._print_banner()
        await self.display_port.set_power(True)
        self.refresher.start()

        if await self.transport.connect():
            self.console.write("Connected to the cloud telemetry service.")
        else:
            self.console.write(
                "Error connecting to the cloud; telemetry will not be delivered."
            )

        await self._start_health_server()

    def request_exit(self) -> None:
        """Signal handler entry: stop the dispatcher and shut down."""
        LOGGER.info("%s received shutdown signal", constants.APP_NAME)
        if self._exit_event is not None:
            self._exit_event.set()

    async def shutdown(self) -> None:
        """Run the shutdown sequence once; later callers wait for the same run."""
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._shutdown_task)

    async def _shutdown(self) -> None:
        LOGGER.info("Shutting down %s", constants.APP_NAME)

        await self.publisher.stop()
        await self.publisher.drain()
        await self.refresher.stop()

        # Outputs stay released only once no method invocation can reach them.
        await self.transport.stop_methods()
        self.actuator.release()
        await self.display_port.set_power(False)

        self.console.write("Closing cloud connection...")
        await self.transport.disconnect()
        if not self.transport.connected:
            self.console.write("Disconnected from the cloud.")

        await self._stop_health_server()
        self.hardware.close()

        close_console = getattr(self.console, "close", None)
        if close_console is not None:
            close_console()

        if self._exit_event is not None:
            self._exit_event.set()
        LOGGER.info("%s stopped", constants.APP_NAME)

    async def _stop_dispatcher(self) -> None:
        task = self._dispatcher_task
        if task is None:
            return
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._dispatcher_task = None

    def _on_dispatcher_done(self, task: asyncio.Task[None]) -> None:
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error(
                "Command dispatcher failed", exc_info=task.exception()
            )
        if self._exit_event is not None:
            self._exit_event.set()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list:
        installed = []
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_exit)
            except (NotImplementedError, RuntimeError):
                LOGGER.debug("Signal handler for %s unavailable", sig)
                continue
            installed.append(sig)
        return installed

    def _print_banner(self) -> None:
        device = self._config.device
        self.console.write(
            f"\t** {constants.APP_NAME} version {constants.APP_VERSION} **"
        )
        self.console.write(f"\t\t{device.actuator_name} using pin {device.actuator_pin}")
        self.console.write(f"\t\tIndicator using pin {device.indicator_pin}")

    def _register_health_probes(self) -> None:
        self._health.register_probe(
            "transport",
            lambda: (
                self.transport.connected,
                None if self.transport.connected else "disconnected",
            ),
        )
        self._health.register_probe(
            "display",
            lambda: (
                self.refresher.is_running() or self.stopped,
                "refreshing" if self.refresher.is_running() else "stopped",
            ),
        )
        self._health.register_probe(
            "publisher",
            lambda: (
                True,
                "transmitting" if self.publisher.is_transmitting() else "idle",
            ),
        )
        self._health.register_fact("actuatorOn", lambda: self.actuator.is_on)
        self._health.register_fact("intervalMs", lambda: self.cycle.interval_ms)
        self._health.register_fact("nextSequence", lambda: self.publisher.sequence)

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0:
            return

        server = HealthServer(self._health, health.host, health.port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            await self._health.update("health-endpoint", False, str(exc))
        else:
            self._health_server = server
            await self._health.update("health-endpoint", True, None)

    async def _stop_health_server(self) -> None:
        if self._health_server is None:
            return
        await self._health_server.stop()
        self._health_server = None

    @classmethod
    def start(cls, config: Optional[MonitorConfig] = None) -> None:
        config = config or load_config()
        configure_logging(
            config.logging.level,
            log_path=config.logging.path,
            log_network=config.logging.log_network,
        )
        instance = cls(config=config)
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("%s received shutdown signal", constants.APP_NAME)
