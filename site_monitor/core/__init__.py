"""Core primitives for site-monitor."""

from .protocols import Display, OutputPin, Sensor

__all__ = [
    "Display",
    "OutputPin",
    "Sensor",
]
