"""
Stability Gate
==============

Debounce de N frames consecutivos con candidato presente.

Ejemplo (needed=3):

Frame 1: present → hits=1 → False
Frame 2: present → hits=2 → False
Frame 3: present → hits=3 → True  (estable)
Frame 4: absent  → hits=0 → False (reset)

Es un contador de racha consecutiva, no un promedio en ventana: el orden
de los frames importa.
"""
import logging

logger = logging.getLogger(__name__)


class StabilityGate:
    """Contador de hits consecutivos. Un update por frame, en orden de captura."""

    def __init__(self, needed: int = 4):
        """
        Args:
            needed: Frames consecutivos requeridos (>= 1)
        """
        if needed < 1:
            raise ValueError(f"needed must be >= 1, got {needed}")
        self.needed = needed
        self._hits = 0

    @property
    def hits(self) -> int:
        return self._hits

    def update(self, present: bool) -> bool:
        """
        Registra un frame.

        Returns:
            True si la racha actual de frames presentes es >= needed
        """
        if not present:
            self._hits = 0
            return False

        self._hits += 1
        return self._hits >= self.needed

    def reset(self) -> None:
        self._hits = 0

    def __repr__(self) -> str:
        return f"StabilityGate(hits={self._hits}, needed={self.needed})"
