"""
Alerts - canal de voz rate-limited
"""
from .announcer import Announcer, log_speech_backend

__all__ = ["Announcer", "log_speech_backend"]
