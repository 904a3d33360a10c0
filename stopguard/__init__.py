"""
StopGuard - Stop Sign Assistance Engine
=======================================

Alertas de "stop sign ahead" estabilizadas y deduplicadas, más un registro
puntuado de si el conductor hizo full stop en cada cartel detectado.

Public API:
- StopGuardConfig: Configuración del sistema
- StopGuardController: Controlador principal (MQTT planes)
- PipelineBuilder: Construcción del engine
- DetectionPipeline: Orquestador por frame
- DriveManager: Lifecycle de drives

Usage:
    # Run engine
    python -m stopguard --config config/stopguard/config.yaml

    # Or programmatically
    from stopguard import StopGuardConfig, PipelineBuilder, DriveEventLoop

    loop = DriveEventLoop()
    loop.start()
    engine = PipelineBuilder(StopGuardConfig()).build(scheduler=loop)
"""

__version__ = "1.0.0"

from .config import StopGuardConfig
from .app import DriveEventLoop, PipelineBuilder, StopGuardController, main
from .detection import DetectionPipeline
from .drive import DriveManager

__all__ = [
    # Config
    "StopGuardConfig",
    # App
    "DriveEventLoop",
    "PipelineBuilder",
    "StopGuardController",
    "main",
    # Engine
    "DetectionPipeline",
    "DriveManager",
]
