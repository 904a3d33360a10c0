"""
Detection Stabilization - Temporal + spatial filtering antes de alertar

- gate.py: StabilityGate (N frames consecutivos)
- dedup.py: Deduper (confidence gating, IoU, forget window)
- matching.py: calculate_iou (reusable)
"""
from .matching import calculate_iou
from .gate import StabilityGate
from .dedup import Deduper, DedupMemory, NoMemory, Remembered

__all__ = [
    "StabilityGate",
    "Deduper",
    "DedupMemory",
    "NoMemory",
    "Remembered",
    "calculate_iou",
]
