"""
Application - wiring, event loop y lifecycle del engine
"""
from .loop import DriveEventLoop, InferenceRunner, Scheduler, TimerHandle
from .builder import Engine, PipelineBuilder
from .controller import StopGuardController, main

__all__ = [
    "DriveEventLoop",
    "InferenceRunner",
    "Scheduler",
    "TimerHandle",
    "Engine",
    "PipelineBuilder",
    "StopGuardController",
    "main",
]
