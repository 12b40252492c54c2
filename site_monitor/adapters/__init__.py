"""Adapter modules for external integrations."""

from .hardware import Bmp280Sensor, GpioPin, HardwareError, LcdDisplay
from .mqtt import MQTTClient, MQTTConnectionError
from .simulated import SimulatedDisplay, SimulatedPin, SimulatedSensor

__all__ = [
    "Bmp280Sensor",
    "GpioPin",
    "HardwareError",
    "LcdDisplay",
    "MQTTClient",
    "MQTTConnectionError",
    "SimulatedDisplay",
    "SimulatedPin",
    "SimulatedSensor",
]
