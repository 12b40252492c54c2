"""Relay actuation for the controlled output (e.g. an HVAC unit)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from . import constants
from .core import OutputPin
from .display import DisplayPort

LOGGER = logging.getLogger(__name__)


class ActuatorReleasedError(RuntimeError):
    """Raised when a state change arrives after the outputs were released."""


@dataclass(slots=True)
class ActuatorState:
    on: bool = False


class ActuatorController:
    """Owns the on/off state of the relay and its indicator output.

    Both pins always follow ``state.on``. Every state change is confirmed on the
    display and held there for ``dwell`` seconds while the display lock is held.
    """

    def __init__(
        self,
        relay: OutputPin,
        indicator: OutputPin,
        display: DisplayPort,
        *,
        name: str = constants.DEFAULT_ACTUATOR_NAME,
        dwell: float = constants.DEFAULT_DWELL_SECONDS,
    ) -> None:
        self._relay = relay
        self._indicator = indicator
        self._display = display
        self.name = name
        self.dwell = dwell
        self.state = ActuatorState()
        self._released = False

    @property
    def is_on(self) -> bool:
        return self.state.on

    def status_message(self, on: bool, *, remote: bool = False) -> str:
        origin = " Remote" if remote else ""
        return f"{self.name}{origin} {'On' if on else 'Off'}"

    @property
    def released(self) -> bool:
        return self._released

    async def set_state(self, on: bool, message: str) -> None:
        if self._released:
            raise ActuatorReleasedError(f"{self.name} outputs already released")

        self.state.on = on
        self._relay.write(on)
        self._indicator.write(on)

        async with self._display.exclusive() as display:
            LOGGER.info("%s", message)
            display.render(message)
            if self.dwell > 0:
                await asyncio.sleep(self.dwell)

    async def toggle(self) -> bool:
        target = not self.state.on
        await self.set_state(target, self.status_message(target))
        return target

    def release(self) -> None:
        """Drive both outputs low without touching the display.

        Later calls to ``set_state`` raise ``ActuatorReleasedError``.
        """
        self._released = True
        if self.state.on:
            LOGGER.info("Shutting down %s unit", self.name)
        self.state.on = False
        self._relay.write(False)
        self._indicator.write(False)
