"""
Alert Publisher
===============

Formatea AlertRequested para el topic de alertas (QoS 0, fire-and-forget).

No conoce MQTT (eso es del DataPlane).
"""
from datetime import datetime, timezone
from typing import Any, Dict, TYPE_CHECKING

if TYPE_CHECKING:
    from ...detection.pipeline import AlertRequested


class AlertPublisher:
    """Publisher de alertas al usuario."""

    def __init__(self):
        self._message_count = 0

    def format_message(self, alert: 'AlertRequested') -> Dict[str, Any]:
        self._message_count += 1
        return {
            "message_id": self._message_count,
            "type": "alert",
            "text": alert.text,
            "spoken": alert.spoken,
            "timestamp": datetime.fromtimestamp(alert.timestamp, tz=timezone.utc).isoformat(),
            "drive_id": str(alert.drive_id) if alert.drive_id else None,
        }

    @property
    def message_count(self) -> int:
        return self._message_count
