"""
Drive - sesiones, scoring y persistencia
"""
from .models import (
    DriveSession,
    DriveStatistics,
    DriveSummary,
    StopSignEvent,
    grade_for_score,
)
from .store import (
    DriveStore,
    DriveStoreError,
    DriveSync,
    InMemoryDriveStore,
    JsonFileDriveStore,
)
from .manager import DriveManager

__all__ = [
    "DriveSession",
    "DriveStatistics",
    "DriveSummary",
    "StopSignEvent",
    "grade_for_score",
    "DriveStore",
    "DriveStoreError",
    "DriveSync",
    "InMemoryDriveStore",
    "JsonFileDriveStore",
    "DriveManager",
]
