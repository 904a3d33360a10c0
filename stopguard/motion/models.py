"""
Motion Models
=============

Samples de sensores y resultados derivados.
"""
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Optional, Union
import math

LocationAuthorization = Literal['authorized', 'denied', 'restricted', 'not_determined']


@dataclass(frozen=True)
class GeoCoordinate:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class LocationFix:
    """Fix de location: velocidad GPS (m/s), coordenada y estado de permiso."""
    speed: float
    coordinate: Optional[GeoCoordinate] = None
    authorization: LocationAuthorization = 'authorized'

    @property
    def is_authorized(self) -> bool:
        return self.authorization == 'authorized'

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'LocationFix':
        coordinate = None
        if data.get('latitude') is not None and data.get('longitude') is not None:
            coordinate = GeoCoordinate(
                latitude=float(data['latitude']),
                longitude=float(data['longitude']),
            )
        return cls(
            speed=float(data.get('speed', 0.0)),
            coordinate=coordinate,
            authorization=data.get('authorization', 'authorized'),
        )


@dataclass(frozen=True)
class AccelerometerSample:
    """Aceleración tri-axial en g."""
    x: float
    y: float
    z: float

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    @property
    def gravity_deviation(self) -> float:
        """|magnitude - 1g|"""
        return abs(self.magnitude - 1.0)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'AccelerometerSample':
        return cls(x=float(data['x']), y=float(data['y']), z=float(data['z']))


# ============================================================================
# Motion phase (tagged optional: "no stop timer" vs "stopped since t")
# ============================================================================

@dataclass(frozen=True)
class Moving:
    """En movimiento: no hay timer de stop."""


@dataclass(frozen=True)
class Stopped:
    """Detenido desde `since` (epoch seconds)."""
    since: float


MotionPhase = Union[Moving, Stopped]


@dataclass(frozen=True)
class StopVerdict:
    """
    Lectura one-shot del estado de stop.

    known=False cuando no hay datos de movimiento confiables (sin permiso
    de location o sin ningún fix todavía).
    """
    known: bool
    did_full_stop: bool
    stop_duration: Optional[float]

    @classmethod
    def unknown(cls) -> 'StopVerdict':
        return cls(known=False, did_full_stop=False, stop_duration=None)
