"""
Motion State
============

Fusión de velocidad GPS + acelerómetro en moving/stopped con hysteresis.

Clasificación (en cada tick del acelerómetro, ~10 Hz):
- speed > moving_speed_threshold (2.0 m/s) → moving, ignora acelerómetro
  (evita falsos "stopped" con andar suave)
- si no → stopped sólo si speed < stopped_speed_threshold (0.5 m/s) Y
  desviación de 1g <= accel_deviation_threshold (0.1): ambos tienen que estar
  de acuerdo (drift GPS estacionado / ruido del acelerómetro detenido)

Transiciones:
- moving → stopped: Stopped(since=now)
- stopped → moving: Moving (se loggea duración del stop)
- sin transición: fase intacta (el timer sigue corriendo)

Degradación:
- Sin acelerómetro → clasificación GPS-only en cada fix
- Sin permiso de location / sin fix → veredicto unknown

Thread-safety: NO es thread-safe. Se muta sólo desde el DriveEventLoop.
"""
from typing import Callable, Optional, TYPE_CHECKING
import logging
import time

from .models import (
    AccelerometerSample,
    GeoCoordinate,
    LocationFix,
    MotionPhase,
    Moving,
    Stopped,
    StopVerdict,
)

if TYPE_CHECKING:
    from ..app.loop import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class MotionState:
    """
    Estado de movimiento del vehículo para un drive.

    Usage:
        motion = MotionState(scheduler=loop)
        motion.on_location_update(LocationFix(speed=0.3))
        motion.on_accelerometer_tick(AccelerometerSample(0.0, 0.0, 1.0))
        motion.check_if_stopped_at_stop_sign(on_verdict)
    """

    def __init__(
        self,
        scheduler: Optional['Scheduler'] = None,
        moving_speed_threshold: float = 2.0,
        stopped_speed_threshold: float = 0.5,
        accel_deviation_threshold: float = 0.1,
        required_stop_duration: float = 2.0,
        verification_margin: float = 0.5,
        accelerometer_available: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.scheduler = scheduler
        self.moving_speed_threshold = moving_speed_threshold
        self.stopped_speed_threshold = stopped_speed_threshold
        self.accel_deviation_threshold = accel_deviation_threshold
        self.required_stop_duration = required_stop_duration
        self.verification_margin = verification_margin
        self._clock = clock

        self.accelerometer_available = accelerometer_available
        self.location_authorized = True
        self.has_fix = False

        self.current_speed = 0.0
        self.current_location: Optional[GeoCoordinate] = None
        self.last_gravity_deviation: Optional[float] = None
        self._phase: MotionPhase = Moving()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def phase(self) -> MotionPhase:
        return self._phase

    @property
    def is_moving(self) -> bool:
        return isinstance(self._phase, Moving)

    @property
    def motion_data_available(self) -> bool:
        return self.location_authorized and self.has_fix

    def stop_duration(self, now: Optional[float] = None) -> Optional[float]:
        """Segundos detenido (None si en movimiento)."""
        if not isinstance(self._phase, Stopped):
            return None
        if now is None:
            now = self._clock()
        return now - self._phase.since

    def did_full_stop(self, now: Optional[float] = None) -> bool:
        duration = self.stop_duration(now)
        return duration is not None and duration >= self.required_stop_duration

    def verdict(self, now: Optional[float] = None) -> StopVerdict:
        """Lectura one-shot del veredicto actual."""
        if not self.motion_data_available:
            return StopVerdict.unknown()
        if now is None:
            now = self._clock()
        return StopVerdict(
            known=True,
            did_full_stop=self.did_full_stop(now),
            stop_duration=self.stop_duration(now),
        )

    # ------------------------------------------------------------------
    # Sensor callbacks
    # ------------------------------------------------------------------

    def on_location_update(self, fix: LocationFix) -> None:
        """
        Actualiza velocidad/coordenada.

        No reclasifica (el próximo tick del acelerómetro toma la velocidad
        nueva), salvo en modo GPS-only.
        """
        if not fix.is_authorized:
            if self.location_authorized:
                logger.warning(
                    "⚠️ Location no autorizada, veredictos de stop deshabilitados",
                    extra={
                        "component": "motion_state",
                        "event": "location_unauthorized",
                        "authorization": fix.authorization,
                    }
                )
            self.location_authorized = False
            return

        if not self.location_authorized:
            logger.info(
                "Location autorizada nuevamente",
                extra={"component": "motion_state", "event": "location_authorized"}
            )
        self.location_authorized = True
        self.has_fix = True
        self.current_speed = max(0.0, fix.speed)
        if fix.coordinate is not None:
            self.current_location = fix.coordinate

        if not self.accelerometer_available:
            self._handle_state_change(
                is_stopped=self.current_speed < self.stopped_speed_threshold
            )

    def on_accelerometer_tick(self, sample: AccelerometerSample) -> None:
        """Reclasifica moving/stopped con la última velocidad conocida."""
        deviation = sample.gravity_deviation
        self.last_gravity_deviation = deviation

        if not self.has_fix:
            # Sin fix la velocidad es desconocida: la fase queda como está
            return

        if self.current_speed > self.moving_speed_threshold:
            is_stopped = False
        else:
            gps_stopped = self.current_speed < self.stopped_speed_threshold
            accel_calm = deviation <= self.accel_deviation_threshold
            is_stopped = gps_stopped and accel_calm

        self._handle_state_change(is_stopped)

    def set_accelerometer_available(self, available: bool) -> None:
        if available != self.accelerometer_available:
            logger.warning(
                "Accelerometer availability changed",
                extra={
                    "component": "motion_state",
                    "event": "accelerometer_availability",
                    "available": available,
                }
            )
        self.accelerometer_available = available

    def _handle_state_change(self, is_stopped: bool) -> None:
        now = self._clock()
        if is_stopped:
            if isinstance(self._phase, Moving):
                self._phase = Stopped(since=now)
                logger.debug(
                    "Vehicle stopped",
                    extra={"component": "motion_state", "event": "stopped"}
                )
            return

        if isinstance(self._phase, Stopped):
            duration = now - self._phase.since
            self._phase = Moving()
            logger.debug(
                "Vehicle moving",
                extra={
                    "component": "motion_state",
                    "event": "moving",
                    "stop_duration_s": round(duration, 2),
                }
            )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    @property
    def verification_delay(self) -> float:
        return self.required_stop_duration + self.verification_margin

    def check_if_stopped_at_stop_sign(
        self,
        callback: Callable[[StopVerdict], None],
    ) -> 'TimerHandle':
        """
        Agenda una lectura one-shot del veredicto.

        La lectura ocurre verification_delay segundos después (timer fijo,
        no polling), así un stop que empieza junto con la alerta alcanza a
        calificar o a descartarse.

        Returns:
            Handle cancelable del timer
        """
        if self.scheduler is None:
            raise RuntimeError("MotionState has no scheduler for delayed verification")

        def _read_verdict():
            callback(self.verdict())

        return self.scheduler.call_later(self.verification_delay, _read_verdict)

    def reset(self) -> None:
        self._phase = Moving()
        self.current_speed = 0.0
        self.current_location = None
        self.last_gravity_deviation = None
        self.has_fix = False

    def snapshot(self) -> dict:
        """Estado actual (para status / debugging)."""
        return {
            "is_moving": self.is_moving,
            "current_speed": self.current_speed,
            "stop_duration": self.stop_duration(),
            "location_authorized": self.location_authorized,
            "accelerometer_available": self.accelerometer_available,
            "has_fix": self.has_fix,
        }
