"""
Geometric Candidate Filter
==========================

Bounded Context: qué observaciones crudas son stop signs plausibles.

La red no tiene noción de tamaño/forma plausible de un cartel en la ruta.
Este filtro descarta detecciones espurias (clutter lejano, regiones
parciales, cajas no cuadradas) antes de la lógica temporal.

Reglas:
1. Label normalizado (lowercase, '_' → ' ') contiene el sentinel
2. Área en (min_area, max_area)
3. Aspect ratio (h/w) en (min_aspect_ratio, max_aspect_ratio)
4. Gana la PRIMERA observación que cumple todo (una por frame)
"""
from dataclasses import dataclass
from typing import Iterable, Optional
import logging

from .models import BoundingBox, DetectedCandidate, RawDetection

logger = logging.getLogger(__name__)


def normalize_label(label: str) -> str:
    """Lowercase + underscores como espacios."""
    return label.lower().replace('_', ' ')


@dataclass(frozen=True)
class FilterResult:
    """Salida del filtro para un frame: candidato (o None) + flag present."""
    candidate: Optional[DetectedCandidate]

    @property
    def present(self) -> bool:
        return self.candidate is not None


class CandidateFilter:
    """
    Filtro de label + geometría sobre la salida del detector.

    Usage:
        candidate_filter = CandidateFilter(label_sentinel="stop")
        result = candidate_filter.select(detections, timestamp=now)
        if result.present:
            ...
    """

    def __init__(
        self,
        label_sentinel: str = "stop",
        min_area: float = 0.02,
        max_area: float = 0.80,
        min_aspect_ratio: float = 0.7,
        max_aspect_ratio: float = 1.4,
    ):
        self.label_sentinel = normalize_label(label_sentinel)
        self.min_area = min_area
        self.max_area = max_area
        self.min_aspect_ratio = min_aspect_ratio
        self.max_aspect_ratio = max_aspect_ratio

    def matches_label(self, label: str) -> bool:
        return self.label_sentinel in normalize_label(label)

    def is_plausible(self, bbox: BoundingBox) -> bool:
        """Área y aspect ratio dentro de los intervalos abiertos."""
        if not (self.min_area < bbox.area < self.max_area):
            return False
        return self.min_aspect_ratio < bbox.aspect_ratio < self.max_aspect_ratio

    def select(self, detections: Iterable[RawDetection], timestamp: float) -> FilterResult:
        """
        Selecciona el primer candidato válido del frame.

        Args:
            detections: Salida cruda del detector (orden del detector)
            timestamp: Timestamp de captura del frame

        Returns:
            FilterResult con el candidato o vacío
        """
        for detection in detections:
            if not self.matches_label(detection.label):
                continue

            if not self.is_plausible(detection.bbox):
                logger.debug(
                    "Candidate rejected by geometry",
                    extra={
                        "component": "candidate_filter",
                        "event": "geometry_rejected",
                        "label": detection.label,
                        "area": round(detection.bbox.area, 4),
                        "aspect_ratio": round(detection.bbox.aspect_ratio, 3),
                    }
                )
                continue

            return FilterResult(
                candidate=DetectedCandidate(
                    bbox=detection.bbox,
                    confidence=detection.confidence,
                    label=detection.label,
                    timestamp=timestamp,
                )
            )

        return FilterResult(candidate=None)
