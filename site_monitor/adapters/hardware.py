"""Raspberry Pi hardware backends.

* ``Bmp280Sensor`` - Bosch BMP280 temperature/pressure sensor on I2C (smbus2)
* ``GpioPin`` - digital output through RPi.GPIO, BCM numbering
* ``LcdDisplay`` - HD44780 character LCD behind a PCF8574 I2C backpack (smbus2)

The hardware libraries are imported when a backend is constructed, so the
package stays importable on machines without them (install the ``hardware``
extra on the node).
"""

from __future__ import annotations

import importlib
import logging
import struct
import time
from typing import Any, Optional, Tuple

from ..display import layout_lines

LOGGER = logging.getLogger(__name__)


class HardwareError(RuntimeError):
    """Raised when a hardware backend cannot be initialised."""


def _require(module: str) -> Any:
    try:
        return importlib.import_module(module)
    except ImportError as exc:
        raise HardwareError(
            f"{module} is required for the hardware backend "
            "(pip install 'site-monitor[hardware]')"
        ) from exc


# ----------------------------------------------------------------------
# BMP280
# ----------------------------------------------------------------------
BMP280_CHIP_ID = 0x58
BMP280_REG_CHIP_ID = 0xD0
BMP280_REG_CALIBRATION = 0x88
BMP280_REG_CTRL_MEAS = 0xF4
BMP280_REG_CONFIG = 0xF5
BMP280_REG_DATA = 0xF7
BMP280_CTRL_NORMAL_X1 = 0x27  # temp x1, pressure x1, normal mode
BMP280_CONFIG_STANDBY_1S = 0xA0


def celsius_to_fahrenheit(celsius: float) -> float:
    return celsius * 9.0 / 5.0 + 32.0


class Bmp280Calibration:
    """Factory trim values and the datasheet floating-point compensation."""

    def __init__(self, raw: bytes) -> None:
        (
            self.t1,
            self.t2,
            self.t3,
            self.p1,
            self.p2,
            self.p3,
            self.p4,
            self.p5,
            self.p6,
            self.p7,
            self.p8,
            self.p9,
        ) = struct.unpack("<HhhHhhhhhhhh", raw)

    def compensate(self, adc_t: int, adc_p: int) -> Tuple[float, float]:
        """Return ``(celsius, pascal)`` for raw ADC readings."""

        var1 = (adc_t / 16384.0 - self.t1 / 1024.0) * self.t2
        var2 = ((adc_t / 131072.0 - self.t1 / 8192.0) ** 2) * self.t3
        t_fine = var1 + var2
        celsius = t_fine / 5120.0

        var1 = t_fine / 2.0 - 64000.0
        var2 = var1 * var1 * self.p6 / 32768.0
        var2 = var2 + var1 * self.p5 * 2.0
        var2 = var2 / 4.0 + self.p4 * 65536.0
        var1 = (self.p3 * var1 * var1 / 524288.0 + self.p2 * var1) / 524288.0
        var1 = (1.0 + var1 / 32768.0) * self.p1
        if var1 == 0:
            return celsius, 0.0

        pressure = 1048576.0 - adc_p
        pressure = (pressure - var2 / 4096.0) * 6250.0 / var1
        var1 = self.p9 * pressure * pressure / 2147483648.0
        var2 = pressure * self.p8 / 32768.0
        pressure = pressure + (var1 + var2 + self.p7) / 16.0
        return celsius, pressure


class Bmp280Sensor:
    def __init__(self, bus: int = 1, address: int = 0x76) -> None:
        smbus2 = _require("smbus2")
        self.address = address
        try:
            self._bus = smbus2.SMBus(bus)
            chip_id = self._bus.read_byte_data(address, BMP280_REG_CHIP_ID)
            if chip_id != BMP280_CHIP_ID:
                raise HardwareError(
                    f"BMP280 not found at 0x{address:02X} (chip id 0x{chip_id:02X})"
                )
            raw = bytes(self._bus.read_i2c_block_data(address, BMP280_REG_CALIBRATION, 24))
            self._calibration = Bmp280Calibration(raw)
            self._bus.write_byte_data(address, BMP280_REG_CTRL_MEAS, BMP280_CTRL_NORMAL_X1)
            self._bus.write_byte_data(address, BMP280_REG_CONFIG, BMP280_CONFIG_STANDBY_1S)
        except OSError as exc:
            raise HardwareError(f"BMP280 initialisation failed: {exc}") from exc
        LOGGER.info("BMP280 ready on bus %d at 0x%02X", bus, address)

    def read(self) -> Tuple[float, float]:
        data = self._bus.read_i2c_block_data(self.address, BMP280_REG_DATA, 6)
        adc_p = (data[0] << 12) | (data[1] << 4) | (data[2] >> 4)
        adc_t = (data[3] << 12) | (data[4] << 4) | (data[5] >> 4)
        celsius, pascal = self._calibration.compensate(adc_t, adc_p)
        return celsius_to_fahrenheit(celsius), pascal / 1000.0

    def close(self) -> None:
        self._bus.close()


# ----------------------------------------------------------------------
# GPIO
# ----------------------------------------------------------------------
class GpioPin:
    def __init__(self, number: int) -> None:
        self._gpio = _require("RPi.GPIO")
        self.number = number
        self.level = False
        try:
            self._gpio.setmode(self._gpio.BCM)
            self._gpio.setwarnings(False)
            self._gpio.setup(number, self._gpio.OUT, initial=self._gpio.LOW)
        except RuntimeError as exc:
            raise HardwareError(f"Cannot open GPIO {number}: {exc}") from exc

    def write(self, high: bool) -> None:
        self.level = bool(high)
        self._gpio.output(self.number, self._gpio.HIGH if high else self._gpio.LOW)

    def read(self) -> bool:
        return self.level

    def close(self) -> None:
        self._gpio.cleanup(self.number)


# ----------------------------------------------------------------------
# HD44780 over PCF8574
# ----------------------------------------------------------------------
LCD_RS = 0x01
LCD_ENABLE = 0x04
LCD_BACKLIGHT = 0x08

LCD_CLEAR = 0x01
LCD_ENTRY_LEFT = 0x06
LCD_DISPLAY_ON = 0x0C
LCD_DISPLAY_OFF = 0x08
LCD_FUNCTION_4BIT_2LINE = 0x28
LCD_SET_DDRAM = 0x80

LCD_ROW_OFFSETS = (0x00, 0x40, 0x14, 0x54)


class LcdDisplay:
    def __init__(
        self,
        line_count: int,
        line_length: int,
        *,
        bus: int = 1,
        address: int = 0x27,
    ) -> None:
        smbus2 = _require("smbus2")
        self.line_count = line_count
        self.line_length = line_length
        self.address = address
        self._backlight = LCD_BACKLIGHT
        self._bus: Optional[Any] = None
        try:
            self._bus = smbus2.SMBus(bus)
            self._initialise()
        except OSError as exc:
            raise HardwareError(f"LCD initialisation failed: {exc}") from exc
        LOGGER.info("LCD %dx%d ready on bus %d at 0x%02X", line_length, line_count, bus, address)

    def _initialise(self) -> None:
        time.sleep(0.05)
        for nibble in (0x30, 0x30, 0x30, 0x20):
            self._write_nibble(nibble, 0)
            time.sleep(0.005)
        self._command(LCD_FUNCTION_4BIT_2LINE)
        self._command(LCD_DISPLAY_ON)
        self._command(LCD_ENTRY_LEFT)
        self.clear()

    def _expander_write(self, value: int) -> None:
        assert self._bus is not None
        self._bus.write_byte(self.address, value | self._backlight)

    def _write_nibble(self, nibble: int, mode: int) -> None:
        value = (nibble & 0xF0) | mode
        self._expander_write(value | LCD_ENABLE)
        time.sleep(0.0005)
        self._expander_write(value & ~LCD_ENABLE)
        time.sleep(0.0001)

    def _send(self, value: int, mode: int) -> None:
        self._write_nibble(value & 0xF0, mode)
        self._write_nibble((value << 4) & 0xF0, mode)

    def _command(self, value: int) -> None:
        self._send(value, 0)

    def _set_cursor(self, column: int, row: int) -> None:
        offset = LCD_ROW_OFFSETS[row % len(LCD_ROW_OFFSETS)]
        self._command(LCD_SET_DDRAM | (offset + column))

    def render(self, text: str) -> None:
        self.clear()
        for row, line in enumerate(layout_lines(text, self.line_count, self.line_length)):
            self._set_cursor(0, row)
            for char in line:
                code = ord(char)
                self._send(code if code < 0x80 else ord("?"), LCD_RS)

    def clear(self) -> None:
        self._command(LCD_CLEAR)
        time.sleep(0.002)

    def set_power(self, on: bool) -> None:
        self._backlight = LCD_BACKLIGHT if on else 0
        self._command(LCD_DISPLAY_ON if on else LCD_DISPLAY_OFF)

    def close(self) -> None:
        if self._bus is not None:
            self._bus.close()
            self._bus = None
