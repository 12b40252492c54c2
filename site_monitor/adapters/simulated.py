"""In-process stand-ins for the node's sensor, output pins and display.

Used when ``[device] backend = simulated`` and throughout the test-suite.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..display import layout_lines

LOGGER = logging.getLogger(__name__)


@dataclass
class SimulatedSensorConfig:
    temperature_f: float = 72.0
    pressure_kpa: float = 101.3
    temperature_step: float = 0.2
    pressure_step: float = 0.05
    temperature_range: Tuple[float, float] = (60.0, 90.0)
    pressure_range: Tuple[float, float] = (98.0, 104.0)


class SimulatedSensor:
    """Random walk around a baseline temperature and pressure."""

    def __init__(
        self, config: Optional[SimulatedSensorConfig] = None, *, seed: Optional[int] = None
    ) -> None:
        self.config = config or SimulatedSensorConfig()
        self._random = random.Random(seed)
        self._temperature = self.config.temperature_f
        self._pressure = self.config.pressure_kpa
        self.reads = 0

    def read(self) -> Tuple[float, float]:
        cfg = self.config
        self._temperature = _clamp(
            self._temperature + self._random.uniform(-1, 1) * cfg.temperature_step,
            *cfg.temperature_range,
        )
        self._pressure = _clamp(
            self._pressure + self._random.uniform(-1, 1) * cfg.pressure_step,
            *cfg.pressure_range,
        )
        self.reads += 1
        return self._temperature, self._pressure

    def close(self) -> None:
        pass


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SimulatedPin:
    """Output pin that records every level it is driven to."""

    def __init__(self, number: int) -> None:
        self.number = number
        self.level = False
        self.history: List[bool] = []
        self.closed = False

    def write(self, high: bool) -> None:
        if self.closed:
            raise RuntimeError(f"Pin {self.number} is closed")
        self.level = bool(high)
        self.history.append(self.level)

    def read(self) -> bool:
        return self.level

    def close(self) -> None:
        self.closed = True


class SimulatedDisplay:
    """Character display keeping every rendered frame in memory."""

    def __init__(self, line_count: int, line_length: int) -> None:
        self.line_count = line_count
        self.line_length = line_length
        self.lines: List[str] = []
        self.frames: List[Tuple[str, ...]] = []
        self.powered = False
        self.closed = False

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    def render(self, text: str) -> None:
        self.lines = layout_lines(text, self.line_count, self.line_length)
        self.frames.append(tuple(self.lines))
        LOGGER.debug("display <- %r", self.lines)

    def clear(self) -> None:
        self.lines = []

    def set_power(self, on: bool) -> None:
        self.powered = bool(on)

    def close(self) -> None:
        self.closed = True
