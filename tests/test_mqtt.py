"""Tests for the MQTT adapter."""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from site_monitor.adapters import MQTTClient, MQTTConnectionError
from site_monitor.adapters.mqtt import IOTHUB_API_VERSION, hub_username
from site_monitor.config import CloudConfig

import paho.mqtt.client as mqtt


class FakeMqttClient:
    """Minimal fake paho-mqtt client speaking the VERSION2 callback API."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: dict,
        callback_api_version=None,
        *,
        client_id: str = "",
        rc_connect: int = 0,
        rc_disconnect: int = 0,
        publish_rc: int = mqtt.MQTT_ERR_SUCCESS,
        subscribe_rc: int = mqtt.MQTT_ERR_SUCCESS,
        **unused,
    ):
        self._loop = loop
        self._events = events
        self._rc_connect = rc_connect
        self._rc_disconnect = rc_disconnect
        self._publish_rc = publish_rc
        self._subscribe_rc = subscribe_rc

        events["callback_api_version"] = callback_api_version
        events["client_id"] = client_id

        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    # paho interface -------------------------------------------------
    def enable_logger(self, logger):
        self._events.setdefault("logger_enabled", True)

    def username_pw_set(self, username, password=None):
        self._events["auth"] = (username, password)

    def tls_set(self, *args, **kwargs):
        self._events["tls"] = True

    def connect_async(self, host, port, keepalive):
        self._events["connect_args"] = (host, port, keepalive)
        if self.on_connect:
            self._loop.call_soon(
                self.on_connect,
                self,
                None,
                None,
                self._rc_connect,
                None,
            )

    def loop_start(self):
        self._events["loop_start"] = self._events.get("loop_start", 0) + 1

    def loop_stop(self):
        self._events["loop_stop"] = self._events.get("loop_stop", 0) + 1

    def disconnect(self):
        self._events["disconnect_called"] = True
        if self.on_disconnect:
            self._loop.call_soon(
                self.on_disconnect,
                self,
                None,
                None,
                self._rc_disconnect,
                None,
            )

    def publish(self, topic, payload, qos=0, retain=False, properties=None):
        self._events.setdefault("published", []).append((topic, payload, qos, retain))
        return SimpleNamespace(rc=self._publish_rc)

    def subscribe(self, topic, qos=0):
        self._events.setdefault("subscribed", []).append((topic, qos))
        return self._subscribe_rc, 1


def _install(monkeypatch, events: dict, **options) -> None:
    loop = asyncio.get_running_loop()

    def factory(*args, **kwargs):
        return FakeMqttClient(loop, events, *args, **kwargs, **options)

    monkeypatch.setattr("site_monitor.adapters.mqtt.mqtt.Client", factory)


@pytest_asyncio.fixture
async def mqtt_client(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events)

    config = CloudConfig(
        broker_host="hub.example.net",
        broker_port=8883,
        username="hub.example.net/site-7",
        password="sas-token",
        device_id="site-7",
    )

    client = MQTTClient(config, client_id="site-7")
    await client.connect()

    yield client, events

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_configures_client(mqtt_client):
    client, events = mqtt_client

    assert events["callback_api_version"] == mqtt.CallbackAPIVersion.VERSION2
    assert events["client_id"] == "site-7"
    assert events["connect_args"] == ("hub.example.net", 8883, 60)
    assert events["auth"] == ("hub.example.net/site-7", "sas-token")
    assert events["tls"] is True
    assert events["loop_start"] == 1
    assert client.is_connected()


@pytest.mark.asyncio
async def test_publish_delegates_to_client(mqtt_client):
    client, events = mqtt_client

    client.publish("devices/site-7/messages/events/", b"payload", qos=1)

    assert events["published"] == [
        ("devices/site-7/messages/events/", b"payload", 1, False)
    ]


@pytest.mark.asyncio
async def test_subscribe_records_topics(mqtt_client):
    client, events = mqtt_client

    client.subscribe("$iothub/methods/POST/#", qos=0)

    assert events["subscribed"] == [("$iothub/methods/POST/#", 0)]


@pytest.mark.asyncio
async def test_connect_rejected_raises(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events, rc_connect=5)

    client = MQTTClient(CloudConfig(use_tls=False), client_id="site-7")

    with pytest.raises(MQTTConnectionError, match="rc=5"):
        await client.connect()

    assert "tls" not in events
    assert events["loop_stop"] == 1
    assert not client.is_connected()


@pytest.mark.asyncio
async def test_message_handler_dispatches_async(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events)

    client = MQTTClient(CloudConfig(), client_id="site-9")

    message_event = asyncio.Event()

    async def handler(topic: str, payload: bytes) -> None:
        events["handled"] = (topic, payload)
        message_event.set()

    client.set_message_handler(handler)
    await client.connect()

    message = SimpleNamespace(topic="$iothub/methods/POST/ControlRelay/?$rid=1", payload=b"{}")
    client._on_message(client._client, None, message)  # type: ignore[arg-type]

    await asyncio.wait_for(message_event.wait(), timeout=1.0)
    await client.disconnect()

    assert events["handled"] == ("$iothub/methods/POST/ControlRelay/?$rid=1", b"{}")


@pytest.mark.asyncio
async def test_publish_failure_raises(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events, publish_rc=mqtt.MQTT_ERR_NO_CONN)

    client = MQTTClient(CloudConfig(), client_id="site-7")
    await client.connect()

    with pytest.raises(MQTTConnectionError):
        client.publish("test", b"payload")

    await client.disconnect()


def test_publish_without_connection_raises():
    client = MQTTClient(CloudConfig(), client_id="site-7")

    with pytest.raises(MQTTConnectionError):
        client.publish("test", b"payload")


@pytest.mark.asyncio
async def test_disconnect_handler_invoked(monkeypatch):
    events: dict = {}
    _install(monkeypatch, events, rc_disconnect=1)

    client = MQTTClient(CloudConfig(), client_id="site-7")

    disconnect_event = asyncio.Event()

    def _handler(rc: int) -> None:
        events["disconnect_rc"] = rc
        disconnect_event.set()

    client.register_disconnect_handler(_handler)

    await client.connect()
    await client.disconnect()

    await asyncio.wait_for(disconnect_event.wait(), timeout=1.0)
    assert events["disconnect_rc"] == 1
    assert not client.is_connected()


def test_hub_username_derived_from_device():
    config = CloudConfig(broker_host="hub.example.net", device_id="site-7", password="sas")

    assert hub_username(config) == (
        f"hub.example.net/site-7/?api-version={IOTHUB_API_VERSION}"
    )
    assert hub_username(CloudConfig(username="explicit", password="sas")) == "explicit"
    assert hub_username(CloudConfig(device_id="site-7")) is None
