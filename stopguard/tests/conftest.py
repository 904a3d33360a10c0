"""
Fixtures compartidos
====================

- FakeClock: reloj manual (epoch seconds)
- ManualScheduler: mismo contrato post()/call_later() que DriveEventLoop, pero
  post() ejecuta inline y los timers disparan sólo cuando el test avanza el reloj
- echo_detector: detector local trivial (frame dict -> sus detecciones)
"""
from typing import Any, Callable, List
import pytest

from stopguard.detection.models import BoundingBox, RawDetection


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualTimer:
    def __init__(self, due: float, fn: Callable[[], None]):
        self.due = due
        self.fn = fn
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers: List[ManualTimer] = []

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        fn(*args)

    def call_later(self, delay: float, fn: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.clock() + delay, fn)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        """Avanza el reloj y dispara (en orden) los timers vencidos."""
        target = self.clock() + seconds
        while True:
            due = [t for t in self.pending if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.clock.now = max(self.clock.now, timer.due)
            timer.fired = True
            timer.fn()
        self.clock.now = target


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


def make_detection(
    label: str = "stop_sign",
    confidence: float = 0.9,
    x: float = 0.4,
    y: float = 0.3,
    width: float = 0.2,
    height: float = 0.2,
) -> RawDetection:
    """Detección cruda plausible (área 0.04, aspect 1.0) por default."""
    return RawDetection(
        label=label,
        confidence=confidence,
        bbox=BoundingBox(x=x, y=y, width=width, height=height),
    )


def echo_detector(frame: dict) -> List[Any]:
    """Detector de prueba: devuelve frame["detections"] o falla si frame["error"]."""
    if frame.get("error"):
        raise RuntimeError(frame["error"])
    return frame["detections"]


ECHO_DETECTOR = "stopguard.tests.conftest:echo_detector"
