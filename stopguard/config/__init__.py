"""
Configuration Module
====================

Provides configuration loading with Pydantic validation.

Usage:
    from stopguard.config import StopGuardConfig
    config = StopGuardConfig.from_yaml("config/stopguard/config.yaml")
"""
from .schemas import (
    StopGuardConfig,
    DetectionSettings,
    StabilitySettings,
    DedupSettings,
    MotionSettings,
    AnnouncerSettings,
    DriveSettings,
    MQTTSettings,
    MQTTCredentials,
    LoggingSettings,
)

__all__ = [
    'StopGuardConfig',
    'DetectionSettings',
    'StabilitySettings',
    'DedupSettings',
    'MotionSettings',
    'AnnouncerSettings',
    'DriveSettings',
    'MQTTSettings',
    'MQTTCredentials',
    'LoggingSettings',
]
