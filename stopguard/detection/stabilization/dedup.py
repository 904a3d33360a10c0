"""
Deduper
=======

Decide si una detección estable es un cartel NUEVO (vale una alerta) o la
continuación del último anunciado.

Estrategia:
1. Confidence gating: < min_confidence → rechazar (memoria intacta)
2. Lazy expiry: si la memoria tiene más de forget_after segundos, se olvida
3. Sin memoria o label distinto → nuevo (se recuerda)
4. IoU > max_spatial_overlap_for_new → mismo cartel (memoria NO se pisa:
   la ventana de olvido queda anclada al primer avistamiento)
5. IoU bajo, mismo label → cartel distinto (se recuerda)

La memoria es un tipo explícito (NoMemory | Remembered) en vez de None.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Union
import logging
import time

from ..models import DetectedCandidate
from .matching import calculate_iou

logger = logging.getLogger(__name__)


# ============================================================================
# Dedup Memory (tagged optional)
# ============================================================================

@dataclass(frozen=True)
class NoMemory:
    """Nada anunciado (o memoria expirada)."""


@dataclass(frozen=True)
class Remembered:
    """Último objeto anunciado, guardado bajo el label de dedup."""
    candidate: DetectedCandidate
    label: str

    def is_expired(self, now: float, forget_after: float) -> bool:
        return now - self.candidate.timestamp > forget_after


DedupMemory = Union[NoMemory, Remembered]


class Deduper:
    """
    Memoria de un solo slot: "último objeto anunciado".

    Usage:
        deduper = Deduper(min_confidence=0.65, forget_after=8.0)
        if deduper.is_new_object(candidate, label="stop_sign"):
            announcer.say("Stop sign ahead")
    """

    def __init__(
        self,
        min_confidence: float = 0.65,
        max_spatial_overlap_for_new: float = 0.35,
        forget_after: float = 8.0,
        clock: Callable[[], float] = time.time,
    ):
        self.min_confidence = min_confidence
        self.max_spatial_overlap_for_new = max_spatial_overlap_for_new
        self.forget_after = forget_after
        self._clock = clock
        self._memory: DedupMemory = NoMemory()

    @property
    def memory(self) -> DedupMemory:
        return self._memory

    def is_new_object(
        self,
        candidate: DetectedCandidate,
        label: str,
        min_confidence: Optional[float] = None,
        max_spatial_overlap_for_new: Optional[float] = None,
        forget_after: Optional[float] = None,
        now: Optional[float] = None,
    ) -> bool:
        """
        Decide si el candidato es un cartel nuevo.

        Args:
            candidate: Candidato estable del frame actual
            label: Label canónico de dedup (ej: "stop_sign")
            min_confidence: Override del default configurado
            max_spatial_overlap_for_new: Override del default configurado
            forget_after: Override del default configurado
            now: Tiempo actual (default: clock inyectado)

        Returns:
            True si hay que anunciar
        """
        if min_confidence is None:
            min_confidence = self.min_confidence
        if max_spatial_overlap_for_new is None:
            max_spatial_overlap_for_new = self.max_spatial_overlap_for_new
        if forget_after is None:
            forget_after = self.forget_after
        if now is None:
            now = self._clock()

        if candidate.confidence < min_confidence:
            logger.debug(
                "Candidate below confidence floor",
                extra={
                    "component": "deduper",
                    "event": "low_confidence",
                    "confidence": candidate.confidence,
                    "min_confidence": min_confidence,
                }
            )
            return False

        memory = self._memory
        if isinstance(memory, Remembered) and memory.is_expired(now, forget_after):
            logger.debug(
                "Dedup memory expired",
                extra={"component": "deduper", "event": "memory_expired"}
            )
            memory = self._memory = NoMemory()

        if isinstance(memory, NoMemory) or memory.label != label:
            self._memory = Remembered(candidate=candidate, label=label)
            return True

        iou = calculate_iou(memory.candidate.bbox, candidate.bbox)
        if iou > max_spatial_overlap_for_new:
            # Mismo cartel todavía en cuadro: no se renueva el timestamp
            logger.debug(
                "Same sign still in view",
                extra={
                    "component": "deduper",
                    "event": "suppressed",
                    "iou": round(iou, 3),
                }
            )
            return False

        self._memory = Remembered(candidate=candidate, label=label)
        return True

    def reset(self) -> None:
        self._memory = NoMemory()
