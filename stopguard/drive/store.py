"""
Drive Persistence
=================

Bounded Context: persistencia/sync de drives (colaborador externo).

- DriveStore: contrato (save / delete / get / list_for_user / list_for_family)
- InMemoryDriveStore: dict en memoria (tests, modo offline)
- JsonFileDriveStore: un documento JSON por drive en un directorio
- DriveSync: persiste snapshots fuera del camino real-time, con cola de
  reintentos (el estado en memoria es la fuente de verdad)
"""
from abc import ABC, abstractmethod
from pathlib import Path
from queue import Empty, Queue
from threading import Lock, Thread
from typing import Dict, List, Optional, Tuple
import copy
import json
import logging
import uuid

from ..logging import log_error_with_context
from .codec import from_document, to_document
from .models import DriveSession

logger = logging.getLogger(__name__)


class DriveStoreError(Exception):
    """Falla del backend de persistencia."""
    pass


# ============================================================================
# Store contract
# ============================================================================

class DriveStore(ABC):
    """
    Contrato del colaborador de persistencia.

    Los listados retornan drives ordenados por start_time descendente.
    """

    @abstractmethod
    def save(self, drive: DriveSession) -> None:
        pass

    @abstractmethod
    def delete(self, drive_id: uuid.UUID) -> None:
        pass

    @abstractmethod
    def get(self, drive_id: uuid.UUID) -> Optional[DriveSession]:
        pass

    @abstractmethod
    def all(self) -> List[DriveSession]:
        pass

    def list_for_user(self, user_id: str) -> List[DriveSession]:
        drives = [d for d in self.all() if d.user_id == user_id]
        return sorted(drives, key=lambda d: d.start_time, reverse=True)

    def list_for_family(self, family_id: str) -> List[DriveSession]:
        drives = [d for d in self.all() if d.family_id == family_id]
        return sorted(drives, key=lambda d: d.start_time, reverse=True)


class InMemoryDriveStore(DriveStore):
    """Store en memoria. Guarda documentos (no referencias vivas)."""

    def __init__(self):
        self._documents: Dict[str, dict] = {}
        self._lock = Lock()

    def save(self, drive: DriveSession) -> None:
        with self._lock:
            self._documents[str(drive.id)] = to_document(drive)

    def delete(self, drive_id: uuid.UUID) -> None:
        with self._lock:
            self._documents.pop(str(drive_id), None)

    def get(self, drive_id: uuid.UUID) -> Optional[DriveSession]:
        with self._lock:
            document = self._documents.get(str(drive_id))
        return from_document(document) if document else None

    def all(self) -> List[DriveSession]:
        with self._lock:
            documents = list(self._documents.values())
        return [from_document(d) for d in documents]


class JsonFileDriveStore(DriveStore):
    """
    Un archivo {drive_id}.json por drive.

    Escritura atómica (tmp + rename) para no dejar documentos truncados.
    """

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def _path(self, drive_id: uuid.UUID) -> Path:
        return self.data_dir / f"{drive_id}.json"

    def save(self, drive: DriveSession) -> None:
        path = self._path(drive.id)
        tmp_path = path.with_suffix('.json.tmp')
        try:
            with self._lock:
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    json.dump(to_document(drive), f, indent=2)
                tmp_path.replace(path)
        except OSError as e:
            raise DriveStoreError(f"Could not save drive {drive.id}: {e}") from e

    def delete(self, drive_id: uuid.UUID) -> None:
        try:
            with self._lock:
                self._path(drive_id).unlink(missing_ok=True)
        except OSError as e:
            raise DriveStoreError(f"Could not delete drive {drive_id}: {e}") from e

    def get(self, drive_id: uuid.UUID) -> Optional[DriveSession]:
        path = self._path(drive_id)
        if not path.exists():
            return None
        return self._load(path)

    def all(self) -> List[DriveSession]:
        drives = []
        for path in sorted(self.data_dir.glob('*.json')):
            drive = self._load(path)
            if drive is not None:
                drives.append(drive)
        return drives

    def _load(self, path: Path) -> Optional[DriveSession]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return from_document(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            logger.warning(
                f"⚠️ Documento de drive ilegible: {path.name}",
                extra={
                    "component": "drive_store",
                    "event": "document_unreadable",
                    "path": str(path),
                    "error_type": type(e).__name__,
                }
            )
            return None


# ============================================================================
# Sync (persistencia no bloqueante con reintentos)
# ============================================================================

class DriveSync:
    """
    Persiste snapshots de drives sin bloquear el pipeline.

    - submit(): encola un snapshot (deep copy) del drive con número de secuencia
    - Falla del store → el snapshot queda pendiente (el más nuevo por drive gana)
    - Pendientes se reintentan en el próximo submit o en flush()
    - Un snapshot viejo nunca pisa a uno más nuevo ya guardado

    Args:
        store: DriveStore destino
        background: True = worker thread; False = inline (tests)
    """

    def __init__(self, store: DriveStore, background: bool = True):
        self.store = store
        self.background = background
        self._lock = Lock()
        self._save_lock = Lock()
        self._seq = 0
        self._pending: Dict[uuid.UUID, Tuple[int, DriveSession]] = {}
        self._saved_seq: Dict[uuid.UUID, int] = {}
        self._queue: "Queue[Optional[Tuple[int, DriveSession]]]" = Queue()
        self._thread: Optional[Thread] = None
        self.saved_count = 0
        self.failed_count = 0

        if background:
            self._thread = Thread(target=self._worker, name="drive-sync", daemon=True)
            self._thread.start()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def submit(self, drive: DriveSession) -> None:
        with self._lock:
            self._seq += 1
            item = (self._seq, copy.deepcopy(drive))
        if self.background:
            self._queue.put(item)
        else:
            self._sync(*item)

    def flush(self) -> int:
        """
        Reintenta todos los pendientes (en el thread llamador).

        Returns:
            Cantidad de drives que siguen pendientes
        """
        self._retry_pending()
        return self.pending_count

    def close(self, timeout: float = 5.0) -> None:
        """Drena la cola del worker y lo detiene."""
        if self._thread is not None:
            self._queue.put(None)
            self._thread.join(timeout=timeout)
            self._thread = None

    def _worker(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=1.0)
            except Empty:
                continue
            if item is None:
                break
            self._sync(*item)

    def _sync(self, seq: int, snapshot: DriveSession) -> None:
        self._retry_pending(exclude=snapshot.id)
        self._save(seq, snapshot)

    def _retry_pending(self, exclude: Optional[uuid.UUID] = None) -> None:
        with self._lock:
            retry = [
                item for drive_id, item in self._pending.items() if drive_id != exclude
            ]
        for seq, snapshot in retry:
            self._save(seq, snapshot)

    def _is_stale(self, seq: int, drive_id: uuid.UUID) -> bool:
        return seq <= self._saved_seq.get(drive_id, 0)

    def _save(self, seq: int, snapshot: DriveSession) -> None:
        # Chequeo de staleness y escritura atómicos: flush() (thread de
        # control) y el worker pueden guardar el mismo drive a la vez
        with self._save_lock:
            with self._lock:
                if self._is_stale(seq, snapshot.id):
                    return

            try:
                self.store.save(snapshot)
            except Exception as e:
                self.failed_count += 1
                with self._lock:
                    pending = self._pending.get(snapshot.id)
                    if not self._is_stale(seq, snapshot.id) and (pending is None or pending[0] <= seq):
                        self._pending[snapshot.id] = (seq, snapshot)
                log_error_with_context(
                    logger,
                    message="⚠️ Error persistiendo drive, queda pendiente de sync",
                    exception=e,
                    component="drive_sync",
                    event="save_failed",
                    drive_id=str(snapshot.id),
                )
                return

            self.saved_count += 1
            with self._lock:
                self._saved_seq[snapshot.id] = max(seq, self._saved_seq.get(snapshot.id, 0))
                pending = self._pending.get(snapshot.id)
                if pending is not None and pending[0] <= seq:
                    del self._pending[snapshot.id]
