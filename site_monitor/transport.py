"""Cloud transport: device-to-cloud telemetry and inbound direct methods.

Topics follow the IoT hub MQTT layout::

    devices/{device_id}/messages/events/          telemetry (device -> cloud)
    $iothub/methods/POST/{method}/?$rid={rid}      method invocation (cloud -> device)
    $iothub/methods/res/{status}/?$rid={rid}       method response (device -> cloud)
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set, Tuple
from urllib.parse import parse_qs

from .adapters.mqtt import MQTTClient, MQTTConnectionError
from .config import CloudConfig

LOGGER = logging.getLogger(__name__)

METHOD_TOPIC_PREFIX = "$iothub/methods/POST/"
METHOD_SUBSCRIPTION = f"{METHOD_TOPIC_PREFIX}#"


@dataclass(frozen=True, slots=True)
class MethodRequest:
    name: str
    request_id: str
    payload: bytes


@dataclass(slots=True)
class MethodResponse:
    status: int
    payload: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def to_bytes(self) -> bytes:
        return json.dumps(self.payload if self.payload is not None else {}).encode(
            "utf-8"
        )


MethodHandler = Callable[[MethodRequest], Awaitable[MethodResponse]]


class MQTTTransportClient(Protocol):
    async def connect(self, timeout: float = 30.0) -> None: ...

    async def disconnect(self, timeout: float = 5.0) -> None: ...

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None: ...

    def subscribe(self, topic: str, qos: int = 1) -> None: ...

    def set_message_handler(self, handler): ...

    def register_disconnect_handler(self, handler: Callable[[int], None]) -> None: ...

    def is_connected(self) -> bool: ...


def telemetry_topic(device_id: str) -> str:
    return f"devices/{device_id}/messages/events/"


def method_response_topic(status: int, request_id: str) -> str:
    return f"$iothub/methods/res/{status}/?$rid={request_id}"


def parse_method_topic(topic: str) -> Optional[Tuple[str, str]]:
    """Return ``(method_name, request_id)`` for a method invocation topic."""

    if not topic.startswith(METHOD_TOPIC_PREFIX):
        return None

    remainder = topic[len(METHOD_TOPIC_PREFIX) :]
    name, _, query = remainder.partition("/")
    if not name:
        return None

    request_ids = parse_qs(query.lstrip("?")).get("$rid", [])
    if not request_ids or not request_ids[0]:
        return None

    return name, request_ids[0]


class CloudTransport:
    """Bridges the agent to the cloud over MQTT.

    Publishing is not retried here; a failed publish raises
    ``MQTTConnectionError`` to the caller.
    """

    def __init__(
        self,
        config: CloudConfig,
        *,
        client_id: str,
        mqtt_client: Optional[MQTTTransportClient] = None,
    ) -> None:
        self._config = config
        self._device_id = config.device_id
        self._mqtt: MQTTTransportClient = mqtt_client or MQTTClient(
            config, client_id=client_id
        )
        self._methods: Dict[str, MethodHandler] = {}
        self._connected = False
        self._accepting = True
        self._invocations: Set[asyncio.Future[None]] = set()
        self._mqtt.register_disconnect_handler(self._on_disconnected)

    @property
    def connected(self) -> bool:
        return self._connected and self._mqtt.is_connected()

    @property
    def topic(self) -> str:
        return telemetry_topic(self._device_id)

    def register_method(self, name: str, handler: MethodHandler) -> None:
        self._methods[name] = handler

    async def connect(self) -> bool:
        if self._connected:
            return True

        try:
            await self._mqtt.connect()
            self._mqtt.set_message_handler(self._handle_message)
            self._mqtt.subscribe(METHOD_SUBSCRIPTION, qos=0)
        except MQTTConnectionError as exc:
            LOGGER.error("Cloud connection failed: %s", exc)
            return False

        self._connected = True
        LOGGER.info(
            "Cloud transport ready (telemetry=%s, methods=%s)",
            self.topic,
            ", ".join(sorted(self._methods)) or "none",
        )
        return True

    @property
    def accepting_methods(self) -> bool:
        return self._accepting

    async def stop_methods(self) -> None:
        """Refuse further method invocations and wait for running ones to answer."""

        self._accepting = False
        self._mqtt.set_message_handler(None)
        if self._invocations:
            LOGGER.info("Waiting for %d method invocation(s)", len(self._invocations))
            await asyncio.gather(*self._invocations, return_exceptions=True)

    async def disconnect(self) -> None:
        if not self._connected:
            return

        self._mqtt.set_message_handler(None)
        try:
            await self._mqtt.disconnect()
        finally:
            self._connected = False

    def _on_disconnected(self, rc: int) -> None:
        if self._connected and rc != 0:
            LOGGER.warning("Cloud connection lost (rc=%s); telemetry will not be delivered", rc)

    async def publish(self, payload: bytes) -> None:
        if not self._connected:
            raise MQTTConnectionError("Cloud transport not connected")
        self._mqtt.publish(self.topic, payload, qos=1)

    async def _handle_message(self, topic: str, payload: bytes) -> None:
        parsed = parse_method_topic(topic)
        if parsed is None:
            LOGGER.debug("Ignoring message on unexpected topic %s", topic)
            return

        name, request_id = parsed
        request = MethodRequest(name=name, request_id=request_id, payload=payload)
        if not self._accepting:
            LOGGER.warning("Refusing method %s (rid=%s) during shutdown", name, request_id)
            self._respond(request, MethodResponse(503, {"error": "shutting down"}))
            return

        invocation = asyncio.ensure_future(self._serve(request))
        self._invocations.add(invocation)
        invocation.add_done_callback(self._invocations.discard)
        await invocation

    async def _serve(self, request: MethodRequest) -> None:
        response = await self.invoke(request)
        self._respond(request, response)

    async def invoke(self, request: MethodRequest) -> MethodResponse:
        handler = self._methods.get(request.name)
        if handler is None:
            LOGGER.warning("No handler registered for method %s", request.name)
            return MethodResponse(404, {"error": f"Unknown method: {request.name}"})

        try:
            return await handler(request)
        except Exception:
            LOGGER.exception("Method %s failed", request.name)
            return MethodResponse(500, {"error": "internal error"})

    def _respond(self, request: MethodRequest, response: MethodResponse) -> None:
        topic = method_response_topic(response.status, request.request_id)
        try:
            self._mqtt.publish(topic, response.to_bytes(), qos=0)
        except MQTTConnectionError as exc:
            LOGGER.warning(
                "Could not answer method %s (rid=%s): %s",
                request.name,
                request.request_id,
                exc,
            )
