"""
Control Plane - MQTT Commands (QoS 1)
"""
from .registry import CommandNotAvailableError, CommandParamsError, CommandRegistry
from .plane import MQTTControlPlane

__all__ = [
    "CommandNotAvailableError",
    "CommandParamsError",
    "CommandRegistry",
    "MQTTControlPlane",
]
