import asyncio
import json

import pytest

from site_monitor.actuator import ActuatorController
from site_monitor.commands import CommandDecodeError, RemoteCommandHandler, decode_onoff
from site_monitor.transport import MethodRequest


def _request(payload: bytes) -> MethodRequest:
    return MethodRequest(name="ControlRelay", request_id="7", payload=payload)


def test_decode_onoff_accepts_booleans() -> None:
    assert decode_onoff(b'{"onoff": true}') is True
    assert decode_onoff(b'{"onoff": false, "extra": 1}') is False


@pytest.mark.parametrize(
    "payload, message",
    [
        (b"\xff\xfe", "UTF-8"),
        (b"not json", "valid JSON"),
        (b"[true]", "JSON object"),
        (b'{"state": true}', "Missing onoff"),
        (b'{"onoff": "true"}', "boolean"),
        (b'{"onoff": 1}', "boolean"),
    ],
)
def test_decode_onoff_rejects_malformed(payload: bytes, message: str) -> None:
    with pytest.raises(CommandDecodeError, match=message):
        decode_onoff(payload)


@pytest.mark.asyncio
async def test_remote_on_drives_actuator(actuator, relay, indicator, lcd):
    handler = RemoteCommandHandler(actuator)

    response = await handler(_request(b'{"onoff": true}'))

    assert response.status == 200
    assert response.ok
    assert json.loads(response.to_bytes()) == {"onoff": True}
    assert actuator.is_on
    assert relay.level is True
    assert indicator.level is True
    assert lcd.lines == ["HVAC Remote On"]


@pytest.mark.asyncio
async def test_remote_off(actuator, relay, lcd):
    handler = RemoteCommandHandler(actuator)
    await actuator.set_state(True, "HVAC On")

    response = await handler(_request(b'{"onoff": false}'))

    assert response.status == 200
    assert not actuator.is_on
    assert relay.level is False
    assert lcd.lines == ["HVAC Remote Off"]


@pytest.mark.asyncio
async def test_malformed_payload_leaves_state_unchanged(actuator, relay, lcd):
    handler = RemoteCommandHandler(actuator)

    response = await handler(_request(b'{"onoff": "yes"}'))

    assert response.status == 400
    assert not response.ok
    assert "error" in json.loads(response.to_bytes())
    assert not actuator.is_on
    assert relay.history == []
    assert lcd.frames == []


@pytest.mark.asyncio
async def test_remote_command_waits_for_display_holder(relay, indicator, display_port, lcd):
    actuator = ActuatorController(relay, indicator, display_port, dwell=0.0)
    handler = RemoteCommandHandler(actuator)

    async with display_port.exclusive() as display:
        display.render("12:00:00")
        pending = asyncio.create_task(handler(_request(b'{"onoff": true}')))
        await asyncio.sleep(0.01)
        assert not pending.done()
        assert lcd.lines == ["12:00:00"]

    response = await pending
    assert response.status == 200
    assert lcd.lines == ["HVAC Remote On"]


@pytest.mark.asyncio
async def test_remote_command_after_release_gets_503(actuator, relay, lcd):
    handler = RemoteCommandHandler(actuator)
    actuator.release()

    response = await handler(_request(b'{"onoff": true}'))

    assert response.status == 503
    assert "released" in response.payload["error"]
    assert relay.level is False
    assert lcd.frames == []
