"""
Drive Event Loop
================

Serialización de todas las mutaciones de estado de un drive.

Problema resuelto:
- Tres fuentes independientes (frames, location, acelerómetro) mutan el
  mismo estado (MotionState, StabilityGate, DedupMemory)
- El timer de verificación de stop también lee ese estado

Solución:
- Un único worker thread drena una cola FIFO de callables (actor)
- Todo callback de sensor / resultado de inferencia / timer se postea ahí
- call_later(): threading.Timer que re-postea al loop (delay fijo, sin polling)

InferenceRunner:
- A lo sumo UNA inferencia en vuelo (lock no bloqueante)
- Frames que llegan mientras hay inferencia en curso se DESCARTAN (no se encolan)
- El resultado (o error) se postea al loop: orden de captura preservado
"""
from queue import Empty, Queue
from threading import Event, Lock, Thread, Timer
from typing import Any, Callable, Optional, Protocol, Sequence
import logging

from ..detection.models import RawDetection
from ..logging import log_error_with_context

logger = logging.getLogger(__name__)


# ============================================================================
# Scheduler contract
# ============================================================================

class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """
    Contrato del loop visto por los componentes del engine.

    - post(): ejecutar fn(*args) serializado (resultados de inferencia)
    - call_later(): ejecutar fn una vez tras `delay` segundos, serializado
    """

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        ...

    def call_later(self, delay: float, fn: Callable[[], None]) -> TimerHandle:
        ...


class _LoopTimer:
    """Handle de un timer del loop (cancelable antes de disparar)."""

    def __init__(self, timer: Timer):
        self._timer = timer
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self._timer.cancel()


# ============================================================================
# Event Loop
# ============================================================================

class DriveEventLoop:
    """
    Loop single-threaded para el estado de un drive.

    Usage:
        loop = DriveEventLoop()
        loop.start()
        loop.post(motion.on_accelerometer_tick, sample)
        loop.call_later(2.5, verify)
        ...
        loop.stop()
    """

    _STOP = object()

    def __init__(self, name: str = "drive-event-loop"):
        self.name = name
        self._queue: "Queue[Any]" = Queue()
        self._thread: Optional[Thread] = None
        self._running = Event()
        self._timers_lock = Lock()
        self._timers: set = set()
        self.tasks_executed = 0
        self.tasks_failed = 0

    @property
    def is_running(self) -> bool:
        return self._running.is_set()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._running.set()
        self._thread = Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info(
            "Event loop started",
            extra={"component": "event_loop", "event": "started", "loop": self.name}
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Cancela timers pendientes y drena la cola antes de terminar."""
        with self._timers_lock:
            timers = list(self._timers)
            self._timers.clear()
        for handle in timers:
            handle.cancel()

        if self._thread is None:
            return

        self._queue.put(self._STOP)
        self._thread.join(timeout=timeout)
        self._thread = None
        self._running.clear()
        logger.info(
            "Event loop stopped",
            extra={
                "component": "event_loop",
                "event": "stopped",
                "loop": self.name,
                "tasks_executed": self.tasks_executed,
                "tasks_failed": self.tasks_failed,
            }
        )

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        """Encola fn(*args) para ejecutarse en el thread del loop."""
        self._queue.put((fn, args))

    def call_later(self, delay: float, fn: Callable[[], None]) -> _LoopTimer:
        """Agenda fn en el loop tras `delay` segundos."""
        holder: dict = {}

        def _fire():
            handle = holder['handle']
            with self._timers_lock:
                self._timers.discard(handle)
            if not handle.cancelled:
                self.post(fn)

        timer = Timer(delay, _fire)
        timer.daemon = True
        handle = _LoopTimer(timer)
        holder['handle'] = handle
        with self._timers_lock:
            self._timers.add(handle)
        timer.start()
        return handle

    @property
    def pending_timers(self) -> int:
        with self._timers_lock:
            return sum(1 for handle in self._timers if not handle.cancelled)

    def _run(self) -> None:
        while True:
            try:
                item = self._queue.get(timeout=0.5)
            except Empty:
                continue

            if item is self._STOP:
                break

            fn, args = item
            try:
                fn(*args)
                self.tasks_executed += 1
            except Exception as e:
                # Un callback roto no puede tirar el loop del drive
                self.tasks_failed += 1
                log_error_with_context(
                    logger,
                    message="❌ Error ejecutando tarea del event loop",
                    exception=e,
                    component="event_loop",
                    event="task_failed",
                    task=getattr(fn, '__name__', repr(fn)),
                )


# ============================================================================
# Inference Runner (drop-while-busy)
# ============================================================================

class InferenceRunner:
    """
    Ejecuta el detector con a lo sumo una inferencia en vuelo.

    Args:
        detector: Callable frame -> lista de RawDetection
        on_result: Callback (detections, timestamp) ejecutado EN el loop
        on_error: Callback (exception) ejecutado EN el loop
        loop: Loop donde se postean los resultados (DriveEventLoop)
        clock: Reloj para el timestamp de captura
        background: Si True corre el detector en un thread aparte
    """

    def __init__(
        self,
        detector: Callable[[Any], Sequence[Any]],
        on_result: Callable[[Sequence[Any], float], None],
        on_error: Callable[[Exception], None],
        loop: Scheduler,
        clock: Callable[[], float],
        background: bool = True,
    ):
        self.detector = detector
        self.on_result = on_result
        self.on_error = on_error
        self.loop = loop
        self._clock = clock
        self.background = background
        self._busy = Lock()
        self.frames_submitted = 0
        self.frames_dropped = 0

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def submit(self, frame: Any) -> bool:
        """
        Envía un frame al detector.

        Returns:
            False si el frame se descartó (inferencia en curso)
        """
        if not self._busy.acquire(blocking=False):
            self.frames_dropped += 1
            logger.debug(
                "Frame dropped (inference in flight)",
                extra={
                    "component": "inference_runner",
                    "event": "frame_dropped",
                    "frames_dropped": self.frames_dropped,
                }
            )
            return False

        self.frames_submitted += 1
        timestamp = self._clock()
        if self.background:
            Thread(
                target=self._infer,
                args=(frame, timestamp),
                name="inference",
                daemon=True,
            ).start()
        else:
            self._infer(frame, timestamp)
        return True

    def _infer(self, frame: Any, timestamp: float) -> None:
        try:
            detections = [
                d if isinstance(d, RawDetection) else RawDetection.from_dict(d)
                for d in self.detector(frame)
            ]
        except Exception as e:
            # Detector caído o salida malformada: el gate se resetea en el loop
            self.loop.post(self.on_error, e)
        else:
            self.loop.post(self.on_result, detections, timestamp)
        finally:
            self._busy.release()

    def get_stats(self) -> dict:
        return {
            "frames_submitted": self.frames_submitted,
            "frames_dropped": self.frames_dropped,
            "busy": self.busy,
        }
