"""paho-mqtt adapter for the IoT hub device endpoint.

paho runs its network loop on a background thread. Every callback it fires is
handed back to the asyncio loop that called ``connect`` before any agent state
is touched.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

import paho.mqtt.client as mqtt

from ..config import CloudConfig

LOGGER = logging.getLogger(__name__)

IOTHUB_API_VERSION = "2021-04-12"

MessageHandler = Callable[[str, bytes], Awaitable[None] | None]
DisconnectHandler = Callable[[int], None]


class MQTTConnectionError(RuntimeError):
    """Raised when the broker cannot be reached or rejects an operation."""


def _reason_value(reason_code: Any) -> int:
    # paho 2.x hands over ReasonCode objects, older paths plain ints.
    return int(getattr(reason_code, "value", reason_code))


def hub_username(config: CloudConfig) -> Optional[str]:
    """Username for the broker; IoT hubs expect ``{host}/{device}/?api-version=``."""

    if config.username:
        return config.username
    if config.password and config.device_id:
        return (
            f"{config.broker_host}/{config.device_id}/?api-version={IOTHUB_API_VERSION}"
        )
    return None


class MQTTClient:
    """One device session with the broker, usable from coroutines."""

    def __init__(
        self,
        config: CloudConfig,
        *,
        client_id: str,
        keepalive: int = 60,
    ) -> None:
        self.config = config
        self.client_id = client_id
        self.keepalive = keepalive

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connack: Optional[asyncio.Future[int]] = None
        self._closed: Optional[asyncio.Event] = None
        self._message_handler: Optional[MessageHandler] = None
        self._disconnect_handlers: List[DisconnectHandler] = []
        self._online = False

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=self.client_id)
        client.enable_logger(LOGGER)

        username = hub_username(self.config)
        if username:
            client.username_pw_set(username, self.config.password)
        if self.config.use_tls:
            client.tls_set()

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    async def connect(self, timeout: float = 30.0) -> None:
        """Open the session and wait for the broker's CONNACK."""

        loop = asyncio.get_running_loop()
        self._loop = loop
        self._connack = loop.create_future()
        self._closed = asyncio.Event()

        client = self._build_client()
        host, port = self.config.broker_host, self.config.broker_port
        LOGGER.info("Connecting to %s:%s as %s", host, port, self.client_id)

        try:
            client.connect_async(host, port, self.keepalive)
        except (OSError, ValueError) as exc:
            raise MQTTConnectionError(f"Cannot reach MQTT broker: {exc}") from exc

        self._client = client
        client.loop_start()

        try:
            rc = await asyncio.wait_for(self._connack, timeout=timeout)
        except asyncio.TimeoutError as exc:
            self._abandon()
            raise MQTTConnectionError(
                f"Timed out connecting to MQTT broker {host}:{port}"
            ) from exc

        if rc != 0:
            self._abandon()
            raise MQTTConnectionError(f"MQTT broker rejected connection (rc={rc})")

    def _abandon(self) -> None:
        if self._client is not None:
            self._client.loop_stop()
        self._client = None
        self._online = False

    async def disconnect(self, timeout: float = 5.0) -> None:
        """Close the session, waiting briefly for the broker to confirm."""

        client = self._client
        if client is None:
            return

        client.disconnect()
        try:
            assert self._closed is not None
            await asyncio.wait_for(self._closed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Broker did not confirm disconnect within %.1fs", timeout)
        finally:
            self._abandon()

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None:
        if self._client is None:
            raise MQTTConnectionError("MQTT client not connected")

        info = self._client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(
                f"Publish to {topic} failed: {mqtt.error_string(info.rc)}"
            )

    def subscribe(self, topic: str, qos: int = 1) -> None:
        if self._client is None:
            raise MQTTConnectionError("MQTT client not connected")

        rc, _ = self._client.subscribe(topic, qos=qos)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(
                f"Subscribe to {topic} failed: {mqtt.error_string(rc)}"
            )

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._message_handler = handler

    def register_disconnect_handler(self, handler: DisconnectHandler) -> None:
        self._disconnect_handlers.append(handler)

    def is_connected(self) -> bool:
        return self._online

    # paho thread -> event loop ---------------------------------------------
    def _to_loop(self, callback: Callable[..., None], *args: Any) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(callback, *args)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self._to_loop(self._connack_received, _reason_value(reason_code))

    def _connack_received(self, rc: int) -> None:
        self._online = rc == 0
        if self._online:
            LOGGER.info("Connected to MQTT broker")
        else:
            LOGGER.error("MQTT connection refused (rc=%s)", rc)
        if self._connack is not None and not self._connack.done():
            self._connack.set_result(rc)

    def _on_disconnect(
        self, client, userdata, flags, reason_code, properties=None
    ) -> None:
        self._online = False
        self._to_loop(self._session_closed, _reason_value(reason_code))

    def _session_closed(self, rc: int) -> None:
        LOGGER.info("Disconnected from MQTT broker (rc=%s)", rc)
        if self._closed is not None:
            self._closed.set()
        for handler in self._disconnect_handlers:
            handler(rc)

    def _on_message(self, client, userdata, message: mqtt.MQTTMessage) -> None:
        handler = self._message_handler
        loop = self._loop
        if handler is None or loop is None:
            return

        try:
            result = handler(message.topic, message.payload)
            if asyncio.iscoroutine(result):
                asyncio.run_coroutine_threadsafe(result, loop)
        except Exception:
            LOGGER.exception("Handler failed for message on %s", message.topic)
