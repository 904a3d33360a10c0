"""
Detection - de la salida cruda del detector a alertas y eventos de stop

- models.py: BoundingBox, RawDetection, DetectedCandidate
- filters.py: CandidateFilter (label + geometría)
- stabilization/: StabilityGate, Deduper, IoU
- pipeline.py: DetectionPipeline (orquestador por frame)
"""
from .models import BoundingBox, DetectedCandidate, RawDetection
from .filters import CandidateFilter, FilterResult, normalize_label
from .pipeline import (
    AlertRequested,
    DetectionPipeline,
    PipelineOutput,
    StopSignRecorded,
)

__all__ = [
    "BoundingBox",
    "DetectedCandidate",
    "RawDetection",
    "CandidateFilter",
    "FilterResult",
    "normalize_label",
    "AlertRequested",
    "DetectionPipeline",
    "PipelineOutput",
    "StopSignRecorded",
]
