"""
Detection Models
================

Value objects del detector:
- BoundingBox: bbox normalizado (origen top-left + size)
- RawDetection: tupla cruda del detector (label, confidence, bbox)
- DetectedCandidate: observación que pasó el filtro, con timestamp de captura

Todos inmutables (frozen): se crean por frame y se descartan.
"""
from dataclasses import dataclass
from typing import Any, Dict, Mapping


@dataclass(frozen=True)
class BoundingBox:
    """
    Bounding box en coordenadas normalizadas [0, 1].

    (x, y) es la esquina top-left; width/height el tamaño.
    """
    x: float
    y: float
    width: float
    height: float

    @property
    def x_max(self) -> float:
        return self.x + self.width

    @property
    def y_max(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        """height / width (0.0 si width es 0)"""
        if self.width <= 0:
            return 0.0
        return self.height / self.width

    def to_dict(self) -> Dict[str, float]:
        return {
            'x': self.x,
            'y': self.y,
            'width': self.width,
            'height': self.height,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'BoundingBox':
        return cls(
            x=float(data['x']),
            y=float(data['y']),
            width=float(data['width']),
            height=float(data['height']),
        )


@dataclass(frozen=True)
class RawDetection:
    """Una observación cruda del detector para el frame actual."""
    label: str
    confidence: float
    bbox: BoundingBox

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'RawDetection':
        """
        Parsea payload del detector.

        Acepta bbox anidado ({'bbox': {...}}) o plano ({'x': ..., 'y': ...}).
        """
        if not isinstance(data, Mapping):
            raise TypeError(f"detection must be an object, got {type(data).__name__}")
        bbox_data = data.get('bbox', data)
        return cls(
            label=str(data.get('label', data.get('class', ''))),
            confidence=float(data.get('confidence', 0.0)),
            bbox=BoundingBox.from_dict(bbox_data),
        )


@dataclass(frozen=True)
class DetectedCandidate:
    """
    Candidato a stop sign que pasó el filtro geométrico.

    Efímero: se pliega en el estado del gate/deduper y se descarta.
    """
    bbox: BoundingBox
    confidence: float
    label: str
    timestamp: float
