"""Display access for the site node.

The physical display is a shared resource: the periodic refresher and every
actuator status message write to it. ``DisplayPort`` is the only way to reach
the device and admits one writer at a time, so a status message held on screen
for its dwell period is never overwritten half-way and two writers never
interleave on the device.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import AsyncIterator, Callable, List, Optional

from .core import Display, Sensor

LOGGER = logging.getLogger(__name__)


def layout_lines(text: str, line_count: int, line_length: int) -> List[str]:
    """Split ``text`` into at most ``line_count`` display lines.

    Each line holds up to ``line_length`` characters. An embedded newline ends
    the current line early and is consumed. Text that does not fit is dropped.
    """

    if line_count <= 0 or line_length <= 0:
        raise ValueError("line_count and line_length must be positive")

    lines: List[str] = []
    position = 0
    while len(lines) < line_count:
        chunk = text[position : position + line_length]
        head, newline, _ = chunk.partition("\n")
        if newline:
            lines.append(head)
            position += len(head) + 1
            continue

        lines.append(chunk)
        position += line_length
        if position >= len(text):
            break

    return lines


def format_number(value: float, digits: int) -> str:
    """Format with at most ``digits`` decimals, dropping trailing zeros."""
    text = f"{value:.{digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_reading(moment: datetime, temperature: float, pressure: float) -> str:
    return (
        f"{moment:%H:%M:%S}\n"
        f"T:{format_number(temperature, 1)}F\n"
        f"P:{format_number(pressure, 1)}kPa"
    )


class DisplayPort:
    """Exclusive-access wrapper around the physical display."""

    def __init__(self, display: Display) -> None:
        self._display = display
        self._lock = asyncio.Lock()

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @contextlib.asynccontextmanager
    async def exclusive(self) -> AsyncIterator[Display]:
        """Hold the display lock for the duration of the ``async with`` block."""
        async with self._lock:
            yield self._display

    async def show(self, text: str, *, dwell: float = 0.0) -> None:
        """Render ``text`` and keep it on screen for ``dwell`` seconds."""
        async with self.exclusive() as display:
            display.render(text)
            if dwell > 0:
                await asyncio.sleep(dwell)

    async def set_power(self, on: bool) -> None:
        async with self.exclusive() as display:
            if not on:
                display.clear()
            display.set_power(on)


class DisplayRefresher:
    """Periodically renders the current reading with a timestamp.

    The display lock is taken per cycle and released before the wait, which
    leaves room for status messages between refreshes.
    """

    def __init__(
        self,
        port: DisplayPort,
        sensor: Sensor,
        *,
        interval: float = 2.0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._port = port
        self._sensor = sensor
        if interval <= 0:
            raise ValueError(f"Refresh interval must be positive (got {interval!r})")
        self._interval = interval
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="display-refresher")

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return

        self._stop_event.set()
        try:
            await task
        finally:
            self._task = None

    async def refresh_once(self) -> None:
        async with self._port.exclusive() as display:
            temperature, pressure = self._sensor.read()
            display.render(format_reading(self._clock(), temperature, pressure))

    async def _run(self) -> None:
        LOGGER.debug("Display refresher started (interval=%.1fs)", self._interval)
        while not self._stop_event.is_set():
            try:
                await self.refresh_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Display refresh failed")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                continue
        LOGGER.debug("Display refresher stopped")
