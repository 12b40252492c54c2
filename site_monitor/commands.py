"""Remote command handling for cloud-invoked direct methods."""

from __future__ import annotations

import json
import logging
from typing import Any

from .actuator import ActuatorController, ActuatorReleasedError
from .transport import MethodRequest, MethodResponse

LOGGER = logging.getLogger(__name__)


class CommandDecodeError(ValueError):
    """Raised when a remote command payload cannot be decoded."""


def decode_onoff(raw_payload: bytes) -> bool:
    """Decode a ``{"onoff": bool}`` control payload."""

    try:
        decoded = raw_payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CommandDecodeError("Payload is not valid UTF-8") from exc

    try:
        data: Any = json.loads(decoded)
    except json.JSONDecodeError as exc:
        raise CommandDecodeError("Payload is not valid JSON") from exc

    if not isinstance(data, dict):
        raise CommandDecodeError("Payload must be a JSON object")

    if "onoff" not in data:
        raise CommandDecodeError("Missing onoff in payload")

    value = data["onoff"]
    if not isinstance(value, bool):
        raise CommandDecodeError("onoff must be a boolean")

    return value


class RemoteCommandHandler:
    """Drives the actuator from remote ``{"onoff": bool}`` invocations.

    Each invocation runs on its own task; concurrent invocations serialize on
    the display lock taken inside ``ActuatorController.set_state``.
    """

    def __init__(self, actuator: ActuatorController) -> None:
        self._actuator = actuator

    async def __call__(self, request: MethodRequest) -> MethodResponse:
        return await self.handle(request)

    async def handle(self, request: MethodRequest) -> MethodResponse:
        LOGGER.info(
            "Method %s (rid=%s): %s",
            request.name,
            request.request_id,
            request.payload.decode("utf-8", errors="replace"),
        )

        try:
            onoff = decode_onoff(request.payload)
        except CommandDecodeError as exc:
            LOGGER.warning("Rejected %s payload: %s", request.name, exc)
            return MethodResponse(400, {"error": str(exc)})

        message = self._actuator.status_message(onoff, remote=True)
        try:
            await self._actuator.set_state(onoff, message)
        except ActuatorReleasedError as exc:
            LOGGER.warning("Rejected %s: %s", request.name, exc)
            return MethodResponse(503, {"error": str(exc)})
        return MethodResponse(200, {"onoff": onoff})
