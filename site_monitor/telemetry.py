"""Periodic telemetry publishing and the transmit interval it runs on."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, Set

from .core import OutputPin, Sensor

LOGGER = logging.getLogger(__name__)


class IntervalValidationError(ValueError):
    """Raised when a transmit interval update is rejected."""


class TelemetrySink(Protocol):
    async def publish(self, payload: bytes) -> None: ...


@dataclass(frozen=True, slots=True)
class TelemetrySample:
    device_id: str
    sequence: int
    temperature: float
    pressure: float

    def as_dict(self) -> dict[str, object]:
        return {
            "messageId": self.sequence,
            "deviceId": self.device_id,
            "temperature": self.temperature,
            "pressure": self.pressure,
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.as_dict()).encode("utf-8")


def parse_interval(raw: str) -> int:
    text = (raw or "").strip()
    try:
        value = int(text)
    except ValueError:
        raise IntervalValidationError(f"Unable to parse '{text}'") from None
    if value < 1:
        raise IntervalValidationError("Polling rate must be at least 1ms")
    return value


@dataclass(slots=True)
class TransmitConfig:
    interval_ms: int

    def __post_init__(self) -> None:
        self.update(self.interval_ms)

    def update(self, interval_ms: int) -> None:
        if (
            isinstance(interval_ms, bool)
            or not isinstance(interval_ms, int)
            or interval_ms < 1
        ):
            raise IntervalValidationError(
                f"Transmit interval must be a positive integer (got {interval_ms!r})"
            )
        self.interval_ms = interval_ms

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0


class TransmitCycle:
    """Transmit lock domain.

    Owns the transmit configuration together with its lock. The publisher holds
    the lock for its whole per-cycle sleep, so an interval change waits for the
    running sleep to finish and applies from the next cycle on.
    """

    def __init__(self, interval_ms: int) -> None:
        self._config = TransmitConfig(interval_ms)
        self._lock = asyncio.Lock()

    @property
    def interval_ms(self) -> int:
        return self._config.interval_ms

    @contextlib.asynccontextmanager
    async def hold(self) -> AsyncIterator[TransmitConfig]:
        async with self._lock:
            yield self._config

    async def update(self, interval_ms: int) -> None:
        async with self.hold() as config:
            config.update(interval_ms)


class TelemetryPublisher:
    """Periodic publish task: read, flash the indicator, publish, sleep.

    ``start`` spawns the loop, ``stop`` requests cancellation and waits for the
    loop to notice it at the top of its next iteration.
    """

    def __init__(
        self,
        sensor: Sensor,
        indicator: OutputPin,
        sink: TelemetrySink,
        cycle: TransmitCycle,
        *,
        device_id: str,
    ) -> None:
        self._sensor = sensor
        self._indicator = indicator
        self._sink = sink
        self._cycle = cycle
        self._device_id = device_id
        self._sequence = 0
        self._cancel = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None
        self._inflight: Set[asyncio.Task[None]] = set()

    @property
    def sequence(self) -> int:
        """Sequence number the next sample will carry."""
        return self._sequence

    @property
    def pending_sends(self) -> int:
        return len(self._inflight)

    def is_transmitting(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        if self.is_transmitting():
            return False
        self._task = asyncio.create_task(self._run(), name="telemetry-publisher")
        LOGGER.info(
            "Telemetry publishing started (interval=%dms)", self._cycle.interval_ms
        )
        return True

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return

        self._cancel.set()
        try:
            await task
        finally:
            self._task = None
        LOGGER.info("Telemetry publishing stopped")

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for detached sends still in flight."""
        if not self._inflight:
            return
        _, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
        if pending:
            LOGGER.warning("%d telemetry message(s) still unsent", len(pending))

    async def _run(self) -> None:
        try:
            while not self._cancel.is_set():
                await self._cycle_once()
        finally:
            self._indicator.write(False)
            self._cancel = asyncio.Event()

    async def _cycle_once(self) -> None:
        try:
            temperature, pressure = self._sensor.read()
        except Exception:
            LOGGER.exception("Sensor read failed; skipping telemetry cycle")
        else:
            self._indicator.write(True)
            sample = TelemetrySample(
                device_id=self._device_id,
                sequence=self._next_sequence(),
                temperature=temperature,
                pressure=pressure,
            )
            self._submit(sample)

        async with self._cycle.hold() as config:
            self._indicator.write(False)
            await asyncio.sleep(config.interval_seconds)

    def _next_sequence(self) -> int:
        sequence = self._sequence
        self._sequence += 1
        return sequence

    def _submit(self, sample: TelemetrySample) -> None:
        task = asyncio.create_task(self._send(sample), name=f"telemetry-{sample.sequence}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _send(self, sample: TelemetrySample) -> None:
        try:
            await self._sink.publish(sample.to_bytes())
        except Exception as exc:
            LOGGER.warning("Telemetry message %d not delivered: %s", sample.sequence, exc)
        else:
            LOGGER.debug("Telemetry message %d sent", sample.sequence)
