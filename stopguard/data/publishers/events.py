"""
Drive Event Publishers
======================

- StopEventPublisher: un StopSignEvent recién agregado al drive
- DriveSummaryPublisher: summary (score + grade) al terminar un drive

Ambos van por QoS 1: son registros, no notificaciones efímeras.
"""
from datetime import datetime
from typing import Any, Dict, TYPE_CHECKING

from ...drive.codec import event_to_document

if TYPE_CHECKING:
    from ...detection.pipeline import StopSignRecorded
    from ...drive.models import DriveSession


class StopEventPublisher:
    """Publisher de veredictos de stop."""

    def __init__(self):
        self._message_count = 0

    def format_message(self, recorded: 'StopSignRecorded') -> Dict[str, Any]:
        self._message_count += 1
        return {
            "message_id": self._message_count,
            "type": "stop_event",
            "drive_id": str(recorded.drive_id),
            "verdict": "full_stop" if recorded.event.did_full_stop else "rolling_stop",
            "event": event_to_document(recorded.event),
        }

    @property
    def message_count(self) -> int:
        return self._message_count


class DriveSummaryPublisher:
    """Publisher de summaries de drive."""

    def __init__(self):
        self._message_count = 0

    def format_message(self, drive: 'DriveSession') -> Dict[str, Any]:
        self._message_count += 1
        return {
            "message_id": self._message_count,
            "type": "drive_summary",
            "timestamp": datetime.now().isoformat(),
            "user_id": drive.user_id,
            "family_id": drive.family_id,
            "start_time": drive.start_time.isoformat(),
            "end_time": drive.end_time.isoformat() if drive.end_time else None,
            "summary": drive.summary.to_dict(),
        }

    @property
    def message_count(self) -> int:
        return self._message_count
