"""
Drive Document Codec
====================

DriveSession <-> documento JSON-serializable (formato del store).

- Timestamps ISO-8601
- Location del evento aplanada en latitude/longitude (ausentes si no hay)
- stop_duration omitido si es None
"""
from datetime import datetime
from typing import Any, Dict, Mapping
import uuid

from ..motion.models import GeoCoordinate
from .models import DriveSession, StopSignEvent


def event_to_document(event: StopSignEvent) -> Dict[str, Any]:
    document: Dict[str, Any] = {
        "id": str(event.id),
        "timestamp": event.timestamp.isoformat(),
        "did_full_stop": event.did_full_stop,
        "confidence": event.confidence,
    }
    if event.stop_duration is not None:
        document["stop_duration"] = event.stop_duration
    if event.location is not None:
        document["latitude"] = event.location.latitude
        document["longitude"] = event.location.longitude
    return document


def event_from_document(document: Mapping[str, Any]) -> StopSignEvent:
    location = None
    if "latitude" in document and "longitude" in document:
        location = GeoCoordinate(
            latitude=float(document["latitude"]),
            longitude=float(document["longitude"]),
        )
    stop_duration = document.get("stop_duration")
    return StopSignEvent(
        id=uuid.UUID(document["id"]),
        timestamp=datetime.fromisoformat(document["timestamp"]),
        did_full_stop=bool(document["did_full_stop"]),
        stop_duration=float(stop_duration) if stop_duration is not None else None,
        confidence=float(document["confidence"]),
        location=location,
    )


def to_document(drive: DriveSession) -> Dict[str, Any]:
    return {
        "id": str(drive.id),
        "user_id": drive.user_id,
        "family_id": drive.family_id,
        "start_time": drive.start_time.isoformat(),
        "end_time": drive.end_time.isoformat() if drive.end_time else None,
        "is_active": drive.is_active,
        "events": [event_to_document(event) for event in drive.events],
    }


def from_document(document: Mapping[str, Any]) -> DriveSession:
    end_time = document.get("end_time")
    return DriveSession(
        id=uuid.UUID(document["id"]),
        user_id=document["user_id"],
        family_id=document.get("family_id"),
        start_time=datetime.fromisoformat(document["start_time"]),
        end_time=datetime.fromisoformat(end_time) if end_time else None,
        is_active=bool(document.get("is_active", end_time is None)),
        events=[event_from_document(e) for e in document.get("events", [])],
    )
