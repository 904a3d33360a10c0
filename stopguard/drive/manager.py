"""
Drive Manager
=============

Dueño del drive activo (uno a la vez) y del historial en memoria.

Responsabilidad:
- start_drive / end_drive con guards idempotentes (no-op loggeado)
- Append de StopSignEvents SÓLO al drive activo
- Persistencia delegada a DriveSync (nunca bloquea ni falla el pipeline)
- Consultas de historial (usuario, familia) y estadísticas

Política de eventos tardíos: un evento que llega para un drive que ya no
está activo se descarta (ver add_stop_sign_event(drive_id=...)).
"""
from collections import defaultdict
from threading import RLock
from typing import Callable, Dict, List, Optional
import logging
import uuid

from ..motion.models import GeoCoordinate
from .models import DriveSession, DriveStatistics, StopSignEvent, utc_now
from .store import DriveStore, DriveSync

logger = logging.getLogger(__name__)


class DriveManager:
    """
    Gestión del ciclo de vida de drives.

    Usage:
        manager = DriveManager(store=InMemoryDriveStore(), sync=DriveSync(store))
        drive = manager.start_drive("user-1")
        manager.add_stop_sign_event(did_full_stop=True, stop_duration=2.4, confidence=0.9)
        manager.end_drive()
        print(drive.summary.grade)
    """

    def __init__(
        self,
        store: DriveStore,
        sync: Optional[DriveSync] = None,
        now: Callable = utc_now,
    ):
        self.store = store
        self.sync = sync if sync is not None else DriveSync(store, background=False)
        self._now = now
        self._lock = RLock()
        self._current: Optional[DriveSession] = None
        self._history: List[DriveSession] = []

    # ------------------------------------------------------------------
    # Active drive
    # ------------------------------------------------------------------

    @property
    def current_drive(self) -> Optional[DriveSession]:
        with self._lock:
            return self._current

    @property
    def is_active(self) -> bool:
        return self.current_drive is not None

    def start_drive(self, user_id: str, family_id: Optional[str] = None) -> Optional[DriveSession]:
        """
        Inicia un drive.

        Returns:
            El drive nuevo, o None si ya había uno en curso (no-op)
        """
        with self._lock:
            if self._current is not None:
                logger.info(
                    "Drive already in progress, start ignored",
                    extra={
                        "component": "drive_manager",
                        "event": "start_ignored",
                        "drive_id": str(self._current.id),
                        "user_id": user_id,
                    }
                )
                return None

            drive = DriveSession(user_id=user_id, family_id=family_id, start_time=self._now())
            self._current = drive

        logger.info(
            "🚗 Drive iniciado",
            extra={
                "component": "drive_manager",
                "event": "drive_started",
                "drive_id": str(drive.id),
                "user_id": user_id,
                "family_id": family_id,
            }
        )
        self.sync.submit(drive)
        return drive

    def end_drive(self) -> Optional[DriveSession]:
        """
        Termina el drive activo.

        Returns:
            El drive terminado, o None si no había drive activo (no-op)
        """
        with self._lock:
            drive = self._current
            if drive is None:
                logger.info(
                    "No active drive to end",
                    extra={"component": "drive_manager", "event": "end_ignored"}
                )
                return None

            drive.end(self._now())
            self._current = None
            self._history.insert(0, drive)

        summary = drive.summary
        logger.info(
            "🏁 Drive terminado",
            extra={
                "component": "drive_manager",
                "event": "drive_ended",
                "drive_id": str(drive.id),
                "summary": summary.to_dict(),
            }
        )
        self.sync.submit(drive)
        return drive

    def add_stop_sign_event(
        self,
        did_full_stop: bool,
        stop_duration: Optional[float],
        confidence: float,
        location: Optional[GeoCoordinate] = None,
        drive_id: Optional[uuid.UUID] = None,
    ) -> Optional[StopSignEvent]:
        """
        Agrega un evento al drive activo.

        Args:
            drive_id: Si se indica, el evento sólo se acepta si ese drive sigue activo

        Returns:
            El evento creado, o None si se descartó
        """
        with self._lock:
            drive = self._current
            if drive is None or (drive_id is not None and drive.id != drive_id):
                logger.debug(
                    "Stop sign event dropped (drive not active)",
                    extra={
                        "component": "drive_manager",
                        "event": "event_dropped",
                        "drive_id": str(drive_id) if drive_id else None,
                    }
                )
                return None

            event = StopSignEvent(
                did_full_stop=did_full_stop,
                stop_duration=stop_duration,
                confidence=confidence,
                location=location,
                timestamp=self._now(),
            )
            drive.add_event(event)

        self.sync.submit(drive)
        return event

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def history(self) -> List[DriveSession]:
        """Drives terminados en esta sesión, más nuevo primero."""
        with self._lock:
            return list(self._history)

    def fetch_drives(self, user_id: str) -> List[DriveSession]:
        """Drives persistidos de un usuario (más nuevo primero)."""
        return self.store.list_for_user(user_id)

    def fetch_family_drives(self, family_id: str) -> Dict[str, List[DriveSession]]:
        """Drives de una familia agrupados por usuario."""
        drives_by_user: Dict[str, List[DriveSession]] = defaultdict(list)
        for drive in self.store.list_for_family(family_id):
            drives_by_user[drive.user_id].append(drive)
        return dict(drives_by_user)

    def delete_drive(self, drive_id: uuid.UUID) -> bool:
        """
        Borra un drive terminado del historial y del store.

        Returns:
            False si el drive es el activo (no se borra)
        """
        with self._lock:
            if self._current is not None and self._current.id == drive_id:
                logger.warning(
                    "⚠️ No se puede borrar el drive activo",
                    extra={"component": "drive_manager", "event": "delete_refused"}
                )
                return False
            self._history = [d for d in self._history if d.id != drive_id]

        self.store.delete(drive_id)
        logger.info(
            "Drive deleted",
            extra={"component": "drive_manager", "event": "drive_deleted", "drive_id": str(drive_id)}
        )
        return True

    def statistics(self, drives: Optional[List[DriveSession]] = None) -> DriveStatistics:
        if drives is None:
            drives = self.history
        return DriveStatistics.from_drives(drives)
