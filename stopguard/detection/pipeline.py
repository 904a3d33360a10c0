"""
Detection Pipeline
==================

Orquestador por frame: detector → filtro → gate → dedup → alerta →
verificación diferida del stop → evento en el drive.

Estados por frame:
    Idle → CandidatePresent(n) → Stabilized → {Suppressed | Announced}

Announced:
1. AlertRequested("Stop sign ahead") por el Announcer (rate-limited)
2. Si hay drive activo: MotionState.check_if_stopped_at_stop_sign()
3. Al disparar el timer:
   - drive ya no activo → descartado (debug)
   - veredicto unknown (sin location) → skip loggeado, sin evento
   - si no → StopSignEvent al drive + StopSignRecorded + feedback de voz

Outputs a sinks (callables). Un sink que falla se loggea y se ignora.

Thread-safety: NO es thread-safe. Todo (frames, errores de inferencia,
timers) entra por el DriveEventLoop.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
import itertools
import logging
import time
import uuid

from ..alerts.announcer import Announcer
from ..drive.manager import DriveManager
from ..drive.models import StopSignEvent
from ..logging import log_alert, log_error_with_context, log_stop_verdict
from ..motion.models import StopVerdict
from ..motion.state import MotionState
from .filters import CandidateFilter
from .models import DetectedCandidate, RawDetection
from .stabilization import Deduper, StabilityGate

logger = logging.getLogger(__name__)


# ============================================================================
# Pipeline outputs
# ============================================================================

@dataclass(frozen=True)
class AlertRequested:
    """Alerta para el usuario (spoken = el Announcer la locutó)."""
    text: str
    spoken: bool
    timestamp: float
    drive_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class StopSignRecorded:
    """Evento agregado al drive activo."""
    event: StopSignEvent
    drive_id: uuid.UUID


PipelineOutput = Union[AlertRequested, StopSignRecorded]
PipelineSink = Callable[[PipelineOutput], None]


# ============================================================================
# Pipeline
# ============================================================================

class DetectionPipeline:
    """
    Pipeline de stop signs para un engine.

    Usage:
        pipeline = DetectionPipeline(
            candidate_filter=CandidateFilter(),
            gate=StabilityGate(needed=4),
            deduper=Deduper(),
            motion=motion,
            announcer=announcer,
            drive_manager=manager,
        )
        pipeline.add_sink(print)
        pipeline.process_frame(detections, timestamp=capture_time)
    """

    def __init__(
        self,
        candidate_filter: CandidateFilter,
        gate: StabilityGate,
        deduper: Deduper,
        motion: MotionState,
        announcer: Announcer,
        drive_manager: DriveManager,
        dedup_label: str = "stop_sign",
        alert_text: str = "Stop sign ahead",
        full_stop_text: str = "Good stop",
        rolling_stop_text: str = "Rolling stop detected",
        sinks: Optional[List[PipelineSink]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.candidate_filter = candidate_filter
        self.gate = gate
        self.deduper = deduper
        self.motion = motion
        self.announcer = announcer
        self.drive_manager = drive_manager
        self.dedup_label = dedup_label
        self.alert_text = alert_text
        self.full_stop_text = full_stop_text
        self.rolling_stop_text = rolling_stop_text
        self._sinks: List[PipelineSink] = list(sinks or [])
        self._clock = clock

        self._pending: Dict[int, Any] = {}
        self._tokens = itertools.count(1)

        self.frames_processed = 0
        self.candidates_seen = 0
        self.stabilized_frames = 0
        self.alerts_announced = 0
        self.alerts_suppressed = 0
        self.inference_errors = 0
        self.verifications_scheduled = 0
        self.verifications_completed = 0
        self.verifications_skipped = 0
        self.verifications_dropped = 0

    # ------------------------------------------------------------------
    # Sinks
    # ------------------------------------------------------------------

    def add_sink(self, sink: PipelineSink) -> None:
        self._sinks.append(sink)

    def _emit(self, output: PipelineOutput) -> None:
        for sink in self._sinks:
            try:
                sink(output)
            except Exception as e:
                log_error_with_context(
                    logger,
                    message="⚠️ Sink falló, output descartado para ese sink",
                    exception=e,
                    component="detection_pipeline",
                    event="sink_failed",
                    sink=getattr(sink, '__name__', repr(sink)),
                    output_type=type(output).__name__,
                )

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def process_frame(
        self,
        detections: Iterable[RawDetection],
        timestamp: Optional[float] = None,
    ) -> bool:
        """
        Procesa la salida del detector para un frame.

        Args:
            detections: Detecciones crudas (orden del detector)
            timestamp: Timestamp de captura (default: clock inyectado)

        Returns:
            True si el frame produjo una alerta nueva
        """
        if timestamp is None:
            timestamp = self._clock()
        self.frames_processed += 1

        result = self.candidate_filter.select(detections, timestamp)
        if result.present:
            self.candidates_seen += 1

        if not self.gate.update(result.present):
            return False

        self.stabilized_frames += 1
        candidate = result.candidate
        if not self.deduper.is_new_object(candidate, label=self.dedup_label, now=timestamp):
            self.alerts_suppressed += 1
            return False

        self._announce(candidate, timestamp)
        return True

    def process_inference_error(self, exception: Exception) -> None:
        """Una inferencia fallida cuenta como frame sin cartel."""
        self.inference_errors += 1
        self.gate.update(False)
        log_error_with_context(
            logger,
            message="❌ Inferencia falló, frame tratado como negativo",
            exception=exception,
            component="detection_pipeline",
            event="inference_failed",
        )

    def _announce(self, candidate: DetectedCandidate, timestamp: float) -> None:
        self.alerts_announced += 1
        drive = self.drive_manager.current_drive
        drive_id = drive.id if drive is not None else None

        spoken = self.announcer.say(self.alert_text)
        log_alert(logger, self.alert_text, spoken, drive_id=str(drive_id) if drive_id else None)
        self._emit(AlertRequested(
            text=self.alert_text,
            spoken=spoken,
            timestamp=timestamp,
            drive_id=drive_id,
        ))

        if drive_id is None:
            logger.debug(
                "No active drive, stop verification not scheduled",
                extra={"component": "detection_pipeline", "event": "verification_not_scheduled"}
            )
            return

        self._schedule_verification(candidate, drive_id)

    # ------------------------------------------------------------------
    # Delayed verification
    # ------------------------------------------------------------------

    def _schedule_verification(self, candidate: DetectedCandidate, drive_id: uuid.UUID) -> None:
        token = next(self._tokens)

        def _on_verdict(verdict: StopVerdict) -> None:
            self._pending.pop(token, None)
            self._complete_verification(candidate, drive_id, verdict)

        self._pending[token] = self.motion.check_if_stopped_at_stop_sign(_on_verdict)
        self.verifications_scheduled += 1
        logger.debug(
            "Stop verification scheduled",
            extra={
                "component": "detection_pipeline",
                "event": "verification_scheduled",
                "drive_id": str(drive_id),
                "delay_s": self.motion.verification_delay,
            }
        )

    def _complete_verification(
        self,
        candidate: DetectedCandidate,
        drive_id: uuid.UUID,
        verdict: StopVerdict,
    ) -> None:
        drive = self.drive_manager.current_drive
        if drive is None or drive.id != drive_id:
            self.verifications_dropped += 1
            logger.debug(
                "Late verification dropped (drive no longer active)",
                extra={
                    "component": "detection_pipeline",
                    "event": "verification_dropped",
                    "drive_id": str(drive_id),
                }
            )
            return

        if not verdict.known:
            self.verifications_skipped += 1
            logger.info(
                "Stop verdict unavailable (no motion data), event skipped",
                extra={
                    "component": "detection_pipeline",
                    "event": "verification_skipped",
                    "drive_id": str(drive_id),
                    "motion": self.motion.snapshot(),
                }
            )
            return

        event = self.drive_manager.add_stop_sign_event(
            did_full_stop=verdict.did_full_stop,
            stop_duration=verdict.stop_duration,
            confidence=candidate.confidence,
            location=self.motion.current_location,
            drive_id=drive_id,
        )
        if event is None:
            self.verifications_dropped += 1
            return

        self.verifications_completed += 1
        log_stop_verdict(
            logger,
            did_full_stop=event.did_full_stop,
            stop_duration=event.stop_duration,
            confidence=event.confidence,
            drive_id=str(drive_id),
        )
        self._emit(StopSignRecorded(event=event, drive_id=drive_id))

        text = self.full_stop_text if event.did_full_stop else self.rolling_stop_text
        spoken = self.announcer.say(text, force=True)
        log_alert(logger, text, spoken, drive_id=str(drive_id))
        self._emit(AlertRequested(
            text=text,
            spoken=spoken,
            timestamp=self._clock(),
            drive_id=drive_id,
        ))

    @property
    def pending_verifications(self) -> int:
        return len(self._pending)

    def cancel_pending_verifications(self) -> int:
        """
        Cancela verificaciones en vuelo (al terminar un drive).

        Returns:
            Cantidad de timers cancelados
        """
        pending = list(self._pending.values())
        self._pending.clear()
        for handle in pending:
            handle.cancel()
        if pending:
            logger.info(
                "Pending stop verifications cancelled",
                extra={
                    "component": "detection_pipeline",
                    "event": "verifications_cancelled",
                    "count": len(pending),
                }
            )
        return len(pending)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def on_drive_ended(self) -> None:
        """Corta verificaciones y estado de movimiento del drive terminado."""
        self.cancel_pending_verifications()
        self.motion.reset()

    def teardown(self) -> None:
        """Resetea gate + memoria de dedup y cancela verificaciones."""
        self.cancel_pending_verifications()
        self.gate.reset()
        self.deduper.reset()
        logger.info(
            "Detection pipeline torn down",
            extra={"component": "detection_pipeline", "event": "teardown"}
        )

    def get_stats(self) -> Dict[str, int]:
        return {
            "frames_processed": self.frames_processed,
            "candidates_seen": self.candidates_seen,
            "stabilized_frames": self.stabilized_frames,
            "alerts_announced": self.alerts_announced,
            "alerts_suppressed": self.alerts_suppressed,
            "inference_errors": self.inference_errors,
            "verifications_scheduled": self.verifications_scheduled,
            "verifications_completed": self.verifications_completed,
            "verifications_skipped": self.verifications_skipped,
            "verifications_dropped": self.verifications_dropped,
            "pending_verifications": self.pending_verifications,
        }
