"""
Motion - fusión GPS + acelerómetro y veredicto de full stop
"""
from .models import (
    AccelerometerSample,
    GeoCoordinate,
    LocationFix,
    MotionPhase,
    Moving,
    Stopped,
    StopVerdict,
)
from .state import MotionState

__all__ = [
    "AccelerometerSample",
    "GeoCoordinate",
    "LocationFix",
    "MotionPhase",
    "Moving",
    "Stopped",
    "StopVerdict",
    "MotionState",
]
