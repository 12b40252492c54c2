import asyncio
from datetime import datetime

import pytest

from site_monitor.display import DisplayRefresher, format_number, format_reading, layout_lines


def test_layout_wraps_long_text() -> None:
    assert layout_lines("abcdefghij", 4, 4) == ["abcd", "efgh", "ij"]


def test_layout_newline_ends_line_early() -> None:
    assert layout_lines("ab\ncdef\ng", 4, 4) == ["ab", "cdef", "", "g"]


def test_layout_drops_overflow() -> None:
    assert layout_lines("a" * 30, 2, 10) == ["a" * 10, "a" * 10]


def test_layout_status_message_fits_one_line() -> None:
    assert layout_lines("HVAC Remote On", 4, 20) == ["HVAC Remote On"]


def test_layout_rejects_non_positive_geometry() -> None:
    with pytest.raises(ValueError):
        layout_lines("text", 0, 20)
    with pytest.raises(ValueError):
        layout_lines("text", 4, 0)


def test_format_reading() -> None:
    moment = datetime(2024, 1, 2, 13, 5, 9)
    assert format_reading(moment, 71.26, 101.33) == "13:05:09\nT:71.3F\nP:101.3kPa"
    assert format_reading(moment, 72.0, 99.96) == "13:05:09\nT:72F\nP:100kPa"


def test_format_number_drops_trailing_zeros() -> None:
    assert format_number(71.24, 1) == "71.2"
    assert format_number(101.3, 2) == "101.3"
    assert format_number(100.0, 2) == "100"


@pytest.mark.asyncio
async def test_display_port_show_holds_lock_for_dwell(display_port, lcd):
    task = asyncio.create_task(display_port.show("hello", dwell=0.05))
    await asyncio.sleep(0.01)

    assert display_port.locked
    assert lcd.lines == ["hello"]

    await task
    assert not display_port.locked


@pytest.mark.asyncio
async def test_display_port_power_off_clears(display_port, lcd):
    await display_port.set_power(True)
    await display_port.show("hello")
    await display_port.set_power(False)

    assert lcd.powered is False
    assert lcd.lines == []


@pytest.mark.asyncio
async def test_refresher_renders_timestamped_reading(display_port, lcd, sensor):
    moment = datetime(2024, 1, 2, 8, 0, 0)
    refresher = DisplayRefresher(display_port, sensor, interval=0.01, clock=lambda: moment)

    await refresher.refresh_once()

    assert lcd.lines == ["08:00:00", "T:71.2F", "P:101.3kPa"]


@pytest.mark.asyncio
async def test_refresher_start_stop(display_port, lcd, sensor):
    refresher = DisplayRefresher(display_port, sensor, interval=0.01)

    refresher.start()
    refresher.start()
    await asyncio.sleep(0.05)
    assert refresher.is_running()

    await refresher.stop()

    assert not refresher.is_running()
    frames = len(lcd.frames)
    assert frames >= 2
    await asyncio.sleep(0.03)
    assert len(lcd.frames) == frames


@pytest.mark.asyncio
async def test_refresher_waits_for_status_message(display_port, lcd, sensor):
    refresher = DisplayRefresher(display_port, sensor, interval=0.01)

    async with display_port.exclusive() as display:
        display.render("HVAC On")
        refresher.start()
        await asyncio.sleep(0.05)
        assert lcd.frames == [("HVAC On",)]

    await asyncio.sleep(0.02)
    await refresher.stop()
    assert len(lcd.frames) > 1


@pytest.mark.asyncio
async def test_refresher_survives_sensor_failure(display_port, lcd, sensor):
    sensor.fail_with = OSError("i2c timeout")
    refresher = DisplayRefresher(display_port, sensor, interval=0.01)

    refresher.start()
    await asyncio.sleep(0.04)
    assert refresher.is_running()
    assert sensor.reads >= 2

    sensor.fail_with = None
    await asyncio.sleep(0.03)
    await refresher.stop()
    assert lcd.frames


@pytest.mark.parametrize("interval", [0, -1.0])
def test_refresher_rejects_non_positive_interval(display_port, sensor, interval):
    with pytest.raises(ValueError, match="must be positive"):
        DisplayRefresher(display_port, sensor, interval=interval)
