"""Local operator console: menu, single-character commands, shutdown."""

from __future__ import annotations

import asyncio
import logging
import os
import stat
import sys
from typing import Awaitable, Callable, Optional, Protocol, TextIO

from . import constants
from .actuator import ActuatorController
from .core import Sensor
from .display import format_number
from .telemetry import (
    IntervalValidationError,
    TelemetryPublisher,
    TransmitCycle,
    parse_interval,
)

LOGGER = logging.getLogger(__name__)


class Console(Protocol):
    async def readline(self, prompt: str = "") -> Optional[str]:
        """Return the next input line without its terminator, or None at EOF."""
        ...

    def write(self, text: str = "", *, end: str = "\n") -> None: ...


class StdioConsole:
    """Console over the process's stdin/stdout.

    Pipes and terminals are read through an asyncio pipe reader so a pending
    read can be cancelled on shutdown. Regular files (``start < commands.txt``)
    cannot be registered with the loop and are read on a worker thread.
    """

    def __init__(self, stdin: TextIO = sys.stdin, stdout: TextIO = sys.stdout) -> None:
        self._stdin = stdin
        self._stdout = stdout
        self._reader: Optional[asyncio.StreamReader] = None
        self._transport: Optional[asyncio.BaseTransport] = None
        self._threaded: Optional[bool] = None

    def _reads_on_thread(self) -> bool:
        if self._threaded is None:
            try:
                mode = os.fstat(self._stdin.fileno()).st_mode
            except (OSError, ValueError):
                # No descriptor behind the stream (e.g. io.StringIO).
                self._threaded = True
            else:
                self._threaded = stat.S_ISREG(mode)
        return self._threaded

    async def _ensure_reader(self) -> asyncio.StreamReader:
        if self._reader is None:
            loop = asyncio.get_running_loop()
            reader = asyncio.StreamReader()
            protocol = asyncio.StreamReaderProtocol(reader)
            self._transport, _ = await loop.connect_read_pipe(
                lambda: protocol, self._stdin
            )
            self._reader = reader
        return self._reader

    async def readline(self, prompt: str = "") -> Optional[str]:
        if prompt:
            self.write(prompt, end="")

        if self._reads_on_thread():
            text = await asyncio.to_thread(self._stdin.readline)
            if not text:
                return None
            if isinstance(text, bytes):
                text = text.decode("utf-8", errors="replace")
            return text.rstrip("\r\n")

        reader = await self._ensure_reader()
        line = await reader.readline()
        if not line:
            return None
        return line.decode("utf-8", errors="replace").rstrip("\r\n")

    def write(self, text: str = "", *, end: str = "\n") -> None:
        self._stdout.write(f"{text}{end}")
        self._stdout.flush()

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            self._reader = None


class CommandDispatcher:
    """Blocking read loop mapping single-character commands to actions."""

    def __init__(
        self,
        console: Console,
        *,
        actuator: ActuatorController,
        publisher: TelemetryPublisher,
        cycle: TransmitCycle,
        sensor: Sensor,
        on_exit: Callable[[], Awaitable[None]],
    ) -> None:
        self._console = console
        self._actuator = actuator
        self._publisher = publisher
        self._cycle = cycle
        self._sensor = sensor
        self._on_exit = on_exit

    async def run(self) -> None:
        exit_requested = False
        while not exit_requested:
            self.show_menu()
            line = await self._console.readline("Command:-> ")
            if line is None:
                LOGGER.info("Console input closed; exiting")
                line = "x"
            exit_requested = await self.execute(line)

    async def execute(self, command_text: str) -> bool:
        """Run one command; return True when the loop should terminate."""

        command = command_text.strip().lower()

        if command == "x":
            self._console.write(f"Exiting {constants.APP_NAME}...")
            await self._on_exit()
            return True

        if command == "h":
            await self._actuator.toggle()
        elif command == "t":
            if self._publisher.is_transmitting():
                await self._publisher.stop()
            else:
                self._publisher.start()
        elif command == "i":
            await self._update_interval()
        elif command == "s":
            self._print_status()
        else:
            self._console.write("Unknown command")
        return False

    def show_menu(self) -> None:
        actuator_action = "Off" if self._actuator.is_on else "On"
        transmit_action = (
            "Stop Transmitting" if self._publisher.is_transmitting() else "Transmit"
        )
        title = f"{constants.APP_NAME} v{constants.APP_VERSION} Menu"
        write = self._console.write
        write("-" * len(title))
        write(title)
        write("-" * len(title))
        write('"S": - display current temperature/pressure')
        write(f'"H": - turn {self._actuator.name} {actuator_action}')
        write(f'"T": - {transmit_action} telemetry to the cloud')
        write(
            f'"I": - Change telemetry transmit interval (currently {self._cycle.interval_ms}ms)'
        )
        write(f'"X": - Close {constants.APP_NAME}')

    async def _update_interval(self) -> None:
        async with self._cycle.hold() as config:
            raw = await self._console.readline("New polling rate (ms)? ")
            if raw is None:
                self._console.write("No polling rate entered")
                return
            try:
                config.update(parse_interval(raw))
            except IntervalValidationError as exc:
                self._console.write(str(exc))
                return
            self._console.write(f"Polling rate set to {config.interval_ms}ms")
        LOGGER.info("Transmit interval changed to %dms", self._cycle.interval_ms)

    def _print_status(self) -> None:
        try:
            temperature, pressure = self._sensor.read()
        except Exception as exc:
            LOGGER.exception("Sensor read failed")
            self._console.write(f"Sensor unavailable: {exc}")
            return

        write = self._console.write
        write("DEVICE STATUS")
        write("-------------")
        write(f"{self._actuator.name}: {'ON' if self._actuator.is_on else 'OFF'}")
        write(f"Temperature: {format_number(temperature, 1)}dF")
        write(f"Pressure: {format_number(pressure, 2)}kPa")
