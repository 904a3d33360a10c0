"""
Drive Models
============

- StopSignEvent: veredicto inmutable para un cartel detectado
- DriveSession: drive con eventos append-only (orden = cronológico)
- DriveSummary: vista derivada (score + grade), nunca cacheada
- DriveStatistics: agregado sobre varios drives (historial)

Scoring:
    score = max(0, 100 - 5 * rolling_stops)
    A [90, 100] | B [80, 90) | C [70, 80) | D [60, 70) | F
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence
import uuid

from ..motion.models import GeoCoordinate

BASE_SCORE = 100
ROLLING_STOP_PENALTY = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StopSignEvent:
    """Un cartel detectado y si el conductor hizo full stop."""
    did_full_stop: bool
    stop_duration: Optional[float]
    confidence: float
    location: Optional[GeoCoordinate] = None
    timestamp: datetime = field(default_factory=utc_now)
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass(frozen=True)
class DriveSummary:
    """Vista derivada de un drive."""
    drive_id: uuid.UUID
    total_stop_signs: int
    full_stops: int
    rolling_stops: int
    average_stop_duration: float
    duration: float

    @property
    def score(self) -> int:
        return max(0, BASE_SCORE - ROLLING_STOP_PENALTY * self.rolling_stops)

    @property
    def grade(self) -> str:
        return grade_for_score(self.score)

    def to_dict(self) -> dict:
        return {
            "drive_id": str(self.drive_id),
            "total_stop_signs": self.total_stop_signs,
            "full_stops": self.full_stops,
            "rolling_stops": self.rolling_stops,
            "average_stop_duration": self.average_stop_duration,
            "duration": self.duration,
            "score": self.score,
            "grade": self.grade,
        }


def grade_for_score(score: int) -> str:
    """A sólo con intervalo cerrado arriba; el resto half-open."""
    if 90 <= score <= 100:
        return "A"
    if 80 <= score < 90:
        return "B"
    if 70 <= score < 80:
        return "C"
    if 60 <= score < 70:
        return "D"
    return "F"


@dataclass
class DriveSession:
    """
    Un drive de un usuario.

    Lifecycle:
    1. ACTIVE: recibe StopSignEvents (append-only)
    2. ENDED: end_time / is_active seteados una sola vez
    """
    user_id: str
    family_id: Optional[str] = None
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    is_active: bool = True
    events: List[StopSignEvent] = field(default_factory=list)
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def add_event(self, event: StopSignEvent) -> None:
        if not self.is_active:
            raise ValueError(f"Drive {self.id} already ended")
        self.events.append(event)

    def end(self, end_time: Optional[datetime] = None) -> None:
        if not self.is_active:
            raise ValueError(f"Drive {self.id} already ended")
        self.end_time = end_time or utc_now()
        self.is_active = False

    @property
    def duration(self) -> Optional[float]:
        """Segundos del drive (None mientras está activo)."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    @property
    def summary(self) -> DriveSummary:
        total = len(self.events)
        full = sum(1 for event in self.events if event.did_full_stop)
        durations = [e.stop_duration for e in self.events if e.stop_duration is not None]
        average = sum(durations) / len(durations) if durations else 0.0

        return DriveSummary(
            drive_id=self.id,
            total_stop_signs=total,
            full_stops=full,
            rolling_stops=total - full,
            average_stop_duration=average,
            duration=self.duration or 0.0,
        )


@dataclass(frozen=True)
class DriveStatistics:
    """Estadísticas agregadas de un historial de drives."""
    total_drives: int
    total_stop_signs: int
    full_stops: int
    rolling_stops: int
    average_score: int

    @property
    def full_stop_percentage(self) -> float:
        if self.total_stop_signs == 0:
            return 0.0
        return self.full_stops / self.total_stop_signs * 100

    @classmethod
    def from_drives(cls, drives: Sequence[DriveSession]) -> 'DriveStatistics':
        summaries = [drive.summary for drive in drives]
        total_stops = sum(s.total_stop_signs for s in summaries)
        full_stops = sum(s.full_stops for s in summaries)
        average_score = (
            sum(s.score for s in summaries) // len(summaries) if summaries else 0
        )
        return cls(
            total_drives=len(summaries),
            total_stop_signs=total_stops,
            full_stops=full_stops,
            rolling_stops=total_stops - full_stops,
            average_score=average_score,
        )

    def to_dict(self) -> dict:
        return {
            "total_drives": self.total_drives,
            "total_stop_signs": self.total_stop_signs,
            "full_stops": self.full_stops,
            "rolling_stops": self.rolling_stops,
            "average_score": self.average_score,
            "full_stop_percentage": round(self.full_stop_percentage, 1),
        }
