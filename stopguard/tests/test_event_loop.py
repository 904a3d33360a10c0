"""
Event Loop & Inference Runner Tests
===================================

Invariantes:
1. Tareas posteadas se ejecutan en orden FIFO en un solo thread
2. call_later() re-postea al loop; cancel() antes de disparar = no-op
3. Una tarea que lanza excepción no tira el loop
4. InferenceRunner: a lo sumo UNA inferencia en vuelo, el resto se descarta
5. InferenceRunner: salida del detector en dicts se parsea; si está rota es error
"""
from threading import Event, current_thread
import pytest

from stopguard.app.loop import DriveEventLoop, InferenceRunner
from stopguard.detection.models import RawDetection

from .conftest import make_detection

WAIT = 2.0


@pytest.fixture
def loop():
    loop = DriveEventLoop(name="test-loop")
    loop.start()
    yield loop
    loop.stop()


def drain(loop):
    """Bloquea hasta que todo lo posteado antes haya corrido."""
    done = Event()
    loop.post(done.set)
    assert done.wait(WAIT), "Event loop no drenó a tiempo"


@pytest.mark.unit
class TestDriveEventLoop:

    def test_tasks_run_in_fifo_order(self, loop):
        seen = []
        for i in range(20):
            loop.post(seen.append, i)

        drain(loop)

        assert seen == list(range(20))

    def test_tasks_run_on_loop_thread(self, loop):
        threads = []
        loop.post(lambda: threads.append(current_thread().name))

        drain(loop)

        assert threads == ["test-loop"]

    def test_failing_task_does_not_stop_loop(self, loop):
        def broken():
            raise RuntimeError("boom")

        seen = []
        loop.post(broken)
        loop.post(seen.append, "after")

        drain(loop)

        assert seen == ["after"]
        assert loop.tasks_failed == 1

    def test_call_later_fires_on_loop(self, loop):
        fired = Event()
        threads = []

        def on_timer():
            threads.append(current_thread().name)
            fired.set()

        loop.call_later(0.05, on_timer)

        assert fired.wait(WAIT)
        assert threads == ["test-loop"]

    def test_cancelled_timer_never_fires(self, loop):
        fired = Event()

        handle = loop.call_later(0.2, fired.set)
        handle.cancel()

        assert not fired.wait(0.4)
        assert loop.pending_timers == 0

    def test_stop_cancels_pending_timers(self):
        loop = DriveEventLoop()
        loop.start()
        fired = Event()
        loop.call_later(0.3, fired.set)
        assert loop.pending_timers == 1

        loop.stop()

        assert loop.pending_timers == 0
        assert not loop.is_running
        assert not fired.wait(0.5)


class InlineLoop:
    """Loop sin thread: ejecuta lo posteado inmediatamente."""

    def post(self, fn, *args):
        fn(*args)


@pytest.mark.unit
class TestInferenceRunner:

    def test_inline_result_posted_with_capture_timestamp(self):
        results = []
        runner = InferenceRunner(
            detector=lambda frame: [frame],
            on_result=lambda detections, ts: results.append((detections, ts)),
            on_error=pytest.fail,
            loop=InlineLoop(),
            clock=lambda: 42.0,
            background=False,
        )

        frame = make_detection()
        assert runner.submit(frame)

        assert results == [([frame], 42.0)]
        assert not runner.busy

    def test_detector_error_goes_to_on_error(self):
        errors = []

        def broken_detector(frame):
            raise RuntimeError("model crashed")

        runner = InferenceRunner(
            detector=broken_detector,
            on_result=lambda detections, ts: pytest.fail("no result expected"),
            on_error=errors.append,
            loop=InlineLoop(),
            clock=lambda: 0.0,
            background=False,
        )

        runner.submit("frame")

        assert len(errors) == 1
        assert isinstance(errors[0], RuntimeError)
        assert not runner.busy, "Lock liberado aunque falle el detector"

    def test_frames_dropped_while_busy(self, loop):
        started = Event()
        release = Event()
        results = []
        result_posted = Event()

        def slow_detector(frame):
            started.set()
            release.wait(WAIT)
            return [frame]

        def on_result(detections, ts):
            results.append(detections)
            result_posted.set()

        runner = InferenceRunner(
            detector=slow_detector,
            on_result=on_result,
            on_error=pytest.fail,
            loop=loop,
            clock=lambda: 0.0,
        )

        first = make_detection(confidence=0.91)
        assert runner.submit(first)
        assert started.wait(WAIT)
        assert not runner.submit(make_detection(confidence=0.92))
        assert not runner.submit(make_detection(confidence=0.93))
        release.set()

        assert result_posted.wait(WAIT)
        assert results == [[first]]
        stats = runner.get_stats()
        assert (stats["frames_submitted"], stats["frames_dropped"]) == (1, 2)

    def test_dict_output_parsed_into_detections(self):
        results = []
        runner = InferenceRunner(
            detector=lambda frame: frame["detections"],
            on_result=lambda detections, ts: results.append(detections),
            on_error=pytest.fail,
            loop=InlineLoop(),
            clock=lambda: 0.0,
            background=False,
        )

        runner.submit({"detections": [{
            "label": "stop_sign",
            "confidence": 0.8,
            "bbox": {"x": 0.1, "y": 0.1, "width": 0.2, "height": 0.2},
        }]})

        detection = results[0][0]
        assert isinstance(detection, RawDetection)
        assert detection.label == "stop_sign"
        assert detection.bbox.height == 0.2

    def test_malformed_detector_output_is_an_error(self):
        errors = []
        runner = InferenceRunner(
            detector=lambda frame: [1],
            on_result=lambda detections, ts: pytest.fail("no result expected"),
            on_error=errors.append,
            loop=InlineLoop(),
            clock=lambda: 0.0,
            background=False,
        )

        runner.submit("frame")

        assert isinstance(errors[0], TypeError)
        assert not runner.busy
