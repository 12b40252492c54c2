"""Protocol definitions for the hardware collaborators of a site node."""

from __future__ import annotations

from typing import Protocol, Tuple


class Sensor(Protocol):
    """Environmental sensor producing temperature/pressure readings."""

    def read(self) -> Tuple[float, float]:
        """Return ``(temperature_f, pressure_kpa)``."""
        ...

    def close(self) -> None: ...


class OutputPin(Protocol):
    """A single digital output line."""

    def write(self, high: bool) -> None: ...

    def read(self) -> bool:
        """Return the level the pin was last driven to."""
        ...

    def close(self) -> None: ...


class Display(Protocol):
    """Character display accepting a block of text.

    Implementations wrap ``text`` across their fixed number of fixed-width
    lines, splitting on embedded line breaks.
    """

    def render(self, text: str) -> None: ...

    def clear(self) -> None: ...

    def set_power(self, on: bool) -> None: ...

    def close(self) -> None: ...
