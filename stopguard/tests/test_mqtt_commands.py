"""
MQTT Command Tests
==================

Tests de comandos del Control Plane y del ruteo de outputs por los planes MQTT.

Invariantes testeadas:
1. Registry básico: register, execute, is_available, params
2. CommandNotAvailableError cuando comando no existe
3. Comandos condicionales: sync solo con store persistente
4. shutdown_event se activa con comando STOP
5. start_drive sin user_id → CommandParamsError (loggeado, no propaga)
6. Data/Sensor plane: nunca propagan errores de payload
7. Detecciones malformadas o con error del detector resetean el gate
8. Detector local (InferenceRunner) cableado al topic de frames
"""
import json
import uuid
from unittest.mock import MagicMock, Mock

import paho.mqtt.client as mqtt
import pytest

from stopguard.app.builder import PipelineBuilder
from stopguard.app.controller import StopGuardController
from stopguard.config import StopGuardConfig
from stopguard.control import (
    CommandNotAvailableError,
    CommandParamsError,
    CommandRegistry,
    MQTTControlPlane,
)
from stopguard.control.cli import build_command
from stopguard.data import MQTTDataPlane, create_mqtt_sink
from stopguard.detection import AlertRequested, StopSignRecorded
from stopguard.drive import InMemoryDriveStore, StopSignEvent
from stopguard.sensors import DetectionPayloadError, MQTTSensorPlane, RemoteDetectorError

from .conftest import ECHO_DETECTOR


def make_message(payload, topic="stopguard/control/commands"):
    if not isinstance(payload, bytes):
        payload = json.dumps(payload).encode('utf-8')
    return Mock(payload=payload, topic=topic)


@pytest.mark.unit
@pytest.mark.mqtt
class TestCommandRegistry:
    """Tests de CommandRegistry (infraestructura)"""

    def test_register_and_execute(self):
        """
        Invariante: Comando registrado debe ejecutarse correctamente.
        """
        registry = CommandRegistry()
        executed = []

        registry.register('status', lambda: executed.append(True), "Estado")
        registry.execute('status')

        assert len(executed) == 1, "Handler debe ejecutarse una vez"

    def test_execute_unregistered_raises_error(self):
        registry = CommandRegistry()
        registry.register('status', lambda: None)

        with pytest.raises(CommandNotAvailableError) as exc_info:
            registry.execute('nonexistent_command')

        assert 'nonexistent_command' in str(exc_info.value)
        assert 'Available commands' in str(exc_info.value)
        assert 'status' in str(exc_info.value)

    def test_params_passed_only_to_param_commands(self):
        registry = CommandRegistry()
        received = []
        registry.register('start_drive', received.append, takes_params=True)
        registry.register('end_drive', lambda: received.append('ended'))

        registry.execute('start_drive', {"user_id": "u-1"})
        registry.execute('end_drive', {"ignored": True})

        assert received == [{"user_id": "u-1"}, 'ended']

    def test_param_command_without_params_gets_empty_dict(self):
        registry = CommandRegistry()
        received = []
        registry.register('start_drive', received.append, takes_params=True)

        registry.execute('start_drive')

        assert received == [{}]

    def test_available_commands_and_help(self):
        registry = CommandRegistry()
        registry.register('cmd1', lambda: None, "Description 1")
        registry.register('cmd2', lambda: None, "Description 2")

        assert registry.available_commands == {'cmd1', 'cmd2'}
        assert registry.get_help()['cmd2'] == "Description 2"
        assert registry.is_available('cmd1')
        assert not registry.is_available('cmd3')

    def test_overwrite_command_logs_warning(self, caplog):
        registry = CommandRegistry()
        registry.register('cmd', lambda: None, "First")

        with caplog.at_level('WARNING'):
            registry.register('cmd', lambda: None, "Second")

        assert any("sobrescribiendo" in record.message.lower() for record in caplog.records)


@pytest.fixture
def control_plane():
    plane = MQTTControlPlane(broker_host="localhost")
    plane.client = MagicMock()
    return plane


@pytest.mark.unit
@pytest.mark.mqtt
class TestControlPlaneDispatch:

    def test_command_with_params_dispatched(self, control_plane):
        received = []
        control_plane.command_registry.register('start_drive', received.append, takes_params=True)

        control_plane._on_message(None, None, make_message(
            {"command": "START_DRIVE", "user_id": "u-1", "family_id": "fam"}
        ))

        assert received == [{"user_id": "u-1", "family_id": "fam"}]

    def test_unknown_command_logged_not_raised(self, control_plane, caplog):
        with caplog.at_level('WARNING'):
            control_plane._on_message(None, None, make_message({"command": "reboot"}))

        assert any("reboot" in record.message for record in caplog.records)

    def test_invalid_params_logged_not_raised(self, control_plane, caplog):
        def handler(params):
            raise CommandParamsError("start_drive requires 'user_id'")

        control_plane.command_registry.register('start_drive', handler, takes_params=True)

        with caplog.at_level('WARNING'):
            control_plane._on_message(None, None, make_message({"command": "start_drive"}))

        assert any("user_id" in record.message for record in caplog.records)

    @pytest.mark.parametrize("payload", [b"not json", b"\xff\xfe", b"[1, 2]"])
    def test_malformed_payload_logged(self, control_plane, caplog, payload):
        with caplog.at_level('ERROR'):
            control_plane._on_message(None, None, make_message(payload))

        assert any("decodificando" in record.message for record in caplog.records)

    def test_publish_status_retained(self, control_plane):
        control_plane.publish_status("driving", {"drive_id": "abc"})

        topic, payload = control_plane.client.publish.call_args.args
        kwargs = control_plane.client.publish.call_args.kwargs
        message = json.loads(payload)
        assert topic == "stopguard/control/status"
        assert message["status"] == "driving"
        assert message["drive_id"] == "abc"
        assert kwargs["retain"] is True
        assert kwargs["qos"] == 1


@pytest.fixture
def data_plane():
    plane = MQTTDataPlane(broker_host="localhost")
    plane.client = MagicMock()
    plane.client.publish.return_value = Mock(rc=mqtt.MQTT_ERR_SUCCESS)
    plane._connected.set()
    return plane


def make_recorded(did_full_stop=True):
    event = StopSignEvent(
        did_full_stop=did_full_stop,
        stop_duration=2.4 if did_full_stop else None,
        confidence=0.9,
    )
    return StopSignRecorded(event=event, drive_id=uuid.uuid4())


@pytest.mark.unit
@pytest.mark.mqtt
class TestDataPlane:

    def test_alert_published_fire_and_forget(self, data_plane):
        alert = AlertRequested(text="Stop sign ahead", spoken=True, timestamp=1000.0)

        assert data_plane.publish_alert(alert)

        topic, payload = data_plane.client.publish.call_args.args
        message = json.loads(payload)
        assert topic == "stopguard/data/alerts"
        assert data_plane.client.publish.call_args.kwargs["qos"] == 0
        assert message["text"] == "Stop sign ahead"
        assert message["drive_id"] is None

    def test_stop_event_published_at_least_once(self, data_plane):
        recorded = make_recorded(did_full_stop=False)

        data_plane.publish_stop_event(recorded)

        topic, payload = data_plane.client.publish.call_args.args
        message = json.loads(payload)
        assert topic == "stopguard/data/stop_events"
        assert data_plane.client.publish.call_args.kwargs["qos"] == 1
        assert message["verdict"] == "rolling_stop"
        assert message["drive_id"] == str(recorded.drive_id)

    def test_not_connected_skips_publish(self, data_plane):
        data_plane._connected.clear()

        assert not data_plane.publish_alert(AlertRequested("x", False, 0.0))
        data_plane.client.publish.assert_not_called()

    def test_publish_failure_counted(self, data_plane):
        data_plane.client.publish.return_value = Mock(rc=mqtt.MQTT_ERR_NO_CONN)

        assert not data_plane.publish_alert(AlertRequested("x", False, 0.0))
        assert data_plane.get_stats()["publish_failures"] == 1

    def test_publish_exception_swallowed(self, data_plane):
        data_plane.client.publish.side_effect = OSError("socket closed")

        assert not data_plane.publish_stop_event(make_recorded())
        assert data_plane.get_stats()["publish_failures"] == 1

    def test_sink_routes_by_output_type(self):
        plane = Mock()
        sink = create_mqtt_sink(plane)
        alert = AlertRequested("Stop sign ahead", True, 0.0)
        recorded = make_recorded()

        sink(alert)
        sink(recorded)

        plane.publish_alert.assert_called_once_with(alert)
        plane.publish_stop_event.assert_called_once_with(recorded)
        assert sink.__name__ == 'mqtt_sink'


@pytest.fixture
def sensor_plane():
    plane = MQTTSensorPlane(broker_host="localhost")
    plane.client = MagicMock()
    return plane


@pytest.mark.unit
@pytest.mark.mqtt
class TestSensorPlane:

    def test_detections_parsed(self, sensor_plane):
        received = []
        sensor_plane.on_detections = lambda dets, ts: received.append((dets, ts))

        sensor_plane._on_detections_message(None, None, make_message({
            "timestamp": 12.5,
            "detections": [{
                "label": "stop_sign",
                "confidence": 0.9,
                "bbox": {"x": 0.4, "y": 0.3, "width": 0.2, "height": 0.2},
            }],
        }, topic=sensor_plane.detections_topic))

        detections, timestamp = received[0]
        assert timestamp == 12.5
        assert detections[0].label == "stop_sign"
        assert detections[0].bbox.width == 0.2

    def test_malformed_detection_rejected(self, sensor_plane):
        errors = []
        sensor_plane.on_detections = lambda dets, ts: pytest.fail("no dispatch expected")
        sensor_plane.on_detections_error = errors.append

        sensor_plane._on_detections_message(None, None, make_message(
            {"detections": [{"label": "stop_sign"}]}
        ))

        assert sensor_plane.messages_rejected == 1
        assert isinstance(errors[0], DetectionPayloadError)

    @pytest.mark.parametrize("payload", [
        {"detections": [1]},
        {"detections": ["stop_sign"]},
        {"detections": {"label": "stop_sign"}},
        {"detections": [], "timestamp": "yesterday"},
    ])
    def test_non_object_detections_counted_as_errors(self, sensor_plane, payload):
        errors = []
        sensor_plane.on_detections = lambda dets, ts: pytest.fail("no dispatch expected")
        sensor_plane.on_detections_error = errors.append

        sensor_plane._on_detections_message(None, None, make_message(payload))

        assert sensor_plane.messages_rejected == 1
        assert len(errors) == 1

    def test_invalid_json_detections_counted_as_error(self, sensor_plane):
        errors = []
        sensor_plane.on_detections_error = errors.append

        sensor_plane._on_detections_message(None, None, make_message(b"{broken"))

        assert sensor_plane.messages_rejected == 1
        assert isinstance(errors[0], DetectionPayloadError)

    def test_detector_error_payload(self, sensor_plane):
        errors = []
        sensor_plane.on_detections = lambda dets, ts: pytest.fail("no dispatch expected")
        sensor_plane.on_detections_error = errors.append

        sensor_plane._on_detections_message(None, None, make_message(
            {"error": "model timeout"}
        ))

        assert isinstance(errors[0], RemoteDetectorError)
        assert str(errors[0]) == "model timeout"
        assert sensor_plane.messages_rejected == 0

    def test_frames_topic_only_when_configured(self, sensor_plane):
        assert "stopguard/sensors/frames" not in sensor_plane.topics

        plane = MQTTSensorPlane(broker_host="localhost", frames_topic="stopguard/sensors/frames")
        plane.client = MagicMock()
        frames = []
        plane.on_frame = frames.append

        plane._on_frame_message(None, None, make_message({"id": 7}, topic=plane.frames_topic))

        assert "stopguard/sensors/frames" in plane.topics
        assert frames == [{"id": 7}]

    def test_location_parsed(self, sensor_plane):
        received = []
        sensor_plane.on_location = received.append

        sensor_plane._on_location_message(None, None, make_message(
            {"speed": 0.2, "latitude": -34.6, "longitude": -58.4}
        ))

        assert received[0].speed == 0.2
        assert received[0].coordinate.latitude == -34.6

    def test_accelerometer_availability_toggle(self, sensor_plane):
        availability = []
        sensor_plane.on_accelerometer_availability = availability.append
        sensor_plane.on_accelerometer = lambda s: pytest.fail("no sample expected")

        sensor_plane._on_accelerometer_message(None, None, make_message({"available": False}))

        assert availability == [False]

    def test_invalid_json_rejected(self, sensor_plane):
        sensor_plane.on_accelerometer = lambda s: pytest.fail("no sample expected")

        sensor_plane._on_accelerometer_message(None, None, make_message(b"{broken"))

        assert sensor_plane.get_stats()["messages_rejected"] == 1


@pytest.mark.unit
class TestCli:

    def test_start_drive_payload(self):
        assert build_command("start_drive", "u-1", "fam") == {
            "command": "start_drive",
            "user_id": "u-1",
            "family_id": "fam",
        }

    def test_start_drive_requires_user(self):
        with pytest.raises(ValueError):
            build_command("start_drive")

    def test_plain_command(self):
        assert build_command("end_drive", "u-1") == {"command": "end_drive"}


@pytest.fixture
def controller(clock, scheduler):
    config = StopGuardConfig(drive={"background_sync": False})
    controller = StopGuardController(config)
    controller.engine = PipelineBuilder(config, clock=clock).build(
        scheduler=scheduler,
        speech_backend=lambda text: None,
        store=InMemoryDriveStore(),
    )
    controller.control_plane = MagicMock()
    controller.control_plane.command_registry = CommandRegistry()
    controller.data_plane = MagicMock()
    controller.sensor_plane = MagicMock()
    return controller


@pytest.mark.unit
@pytest.mark.mqtt
class TestControllerCommands:

    def test_stop_command_sets_shutdown_event(self, controller):
        controller._setup_control_callbacks()

        controller.control_plane.command_registry.execute('stop')

        assert controller.shutdown_event.is_set()

    def test_sync_only_with_persistent_store(self, controller):
        controller._setup_control_callbacks()

        assert not controller.control_plane.command_registry.is_available('sync')

        controller.config.drive.store = 'json'
        controller.control_plane.command_registry = CommandRegistry()
        controller._setup_control_callbacks()

        assert controller.control_plane.command_registry.is_available('sync')

    def test_start_drive_requires_user_id(self, controller):
        with pytest.raises(CommandParamsError):
            controller._handle_start_drive({})

    def test_drive_lifecycle_publishes_summary(self, controller):
        controller._start_drive("u-1", None)
        drive = controller.engine.drive_manager.current_drive
        assert drive is not None

        controller._end_drive()

        controller.data_plane.publish_summary.assert_called_once_with(drive)
        status, details = controller.control_plane.publish_status.call_args.args
        assert status == "running"
        assert details["summary"]["score"] == 100
        assert not controller.engine.drive_manager.is_active

    def test_start_drive_while_active_is_noop(self, controller):
        controller._start_drive("u-1", None)
        first = controller.engine.drive_manager.current_drive

        controller._start_drive("u-2", None)

        assert controller.engine.drive_manager.current_drive is first

    def test_end_drive_without_active_drive(self, controller):
        controller._end_drive()

        controller.data_plane.publish_summary.assert_not_called()


GOOD_FRAME = {
    "detections": [{
        "label": "stop_sign",
        "confidence": 0.9,
        "bbox": {"x": 0.4, "y": 0.3, "width": 0.2, "height": 0.2},
    }],
}


@pytest.fixture
def wired_controller(controller, scheduler):
    """Controller con sensor plane real (client mockeado) y loop inline."""
    controller.loop = scheduler
    controller.sensor_plane = MQTTSensorPlane(broker_host="localhost")
    controller.sensor_plane.client = MagicMock()
    controller._setup_sensor_callbacks()
    return controller


@pytest.mark.integration
@pytest.mark.mqtt
class TestSensorPlaneToPipeline:

    def feed(self, controller, payload):
        controller.sensor_plane._on_detections_message(None, None, make_message(
            payload, topic=controller.sensor_plane.detections_topic,
        ))

    def test_malformed_frame_resets_stability(self, wired_controller):
        pipeline = wired_controller.engine.pipeline
        for _ in range(3):
            self.feed(wired_controller, GOOD_FRAME)
        self.feed(wired_controller, {"detections": [{"label": "stop_sign"}]})
        self.feed(wired_controller, GOOD_FRAME)

        stats = pipeline.get_stats()
        assert stats["alerts_announced"] == 0
        assert stats["inference_errors"] == 1
        assert pipeline.gate.hits == 1

    def test_detector_error_payload_resets_stability(self, wired_controller):
        pipeline = wired_controller.engine.pipeline
        for _ in range(3):
            self.feed(wired_controller, GOOD_FRAME)
        self.feed(wired_controller, {"error": "model timeout"})
        self.feed(wired_controller, GOOD_FRAME)

        assert pipeline.get_stats()["alerts_announced"] == 0
        assert pipeline.gate.hits == 1

    def test_non_object_detection_never_escapes_callback(self, wired_controller):
        self.feed(wired_controller, {"detections": [1]})

        assert wired_controller.engine.pipeline.get_stats()["inference_errors"] == 1

    def test_four_clean_frames_alert(self, wired_controller):
        for _ in range(4):
            self.feed(wired_controller, GOOD_FRAME)

        assert wired_controller.engine.pipeline.get_stats()["alerts_announced"] == 1


@pytest.fixture
def local_detector_controller(clock, scheduler):
    config = StopGuardConfig(
        drive={"background_sync": False},
        detection={"detector": ECHO_DETECTOR},
    )
    controller = StopGuardController(config)
    controller.engine = PipelineBuilder(config, clock=clock).build(
        scheduler=scheduler,
        speech_backend=lambda text: None,
        store=InMemoryDriveStore(),
    )
    controller.engine.inference.background = False
    controller.loop = scheduler
    controller.sensor_plane = MQTTSensorPlane(
        broker_host="localhost",
        frames_topic=config.mqtt.topics.sensor_frames,
    )
    controller.sensor_plane.client = MagicMock()
    controller._setup_sensor_callbacks()
    return controller


@pytest.mark.integration
@pytest.mark.mqtt
class TestLocalDetector:

    def feed(self, controller, payload):
        controller.sensor_plane._on_frame_message(None, None, make_message(
            payload, topic=controller.sensor_plane.frames_topic,
        ))

    def test_builder_wires_runner_only_when_configured(self, scheduler):
        engine = PipelineBuilder(StopGuardConfig(drive={"background_sync": False})).build(
            scheduler=scheduler, store=InMemoryDriveStore(),
        )

        assert engine.inference is None

    def test_frames_run_through_detector(self, local_detector_controller):
        for _ in range(4):
            self.feed(local_detector_controller, GOOD_FRAME)

        engine = local_detector_controller.engine
        assert engine.pipeline.get_stats()["alerts_announced"] == 1
        assert engine.inference.get_stats()["frames_submitted"] == 4

    def test_detector_failure_resets_stability(self, local_detector_controller):
        for _ in range(3):
            self.feed(local_detector_controller, GOOD_FRAME)
        self.feed(local_detector_controller, {"error": "gpu lost"})
        self.feed(local_detector_controller, GOOD_FRAME)

        pipeline = local_detector_controller.engine.pipeline
        assert pipeline.get_stats()["alerts_announced"] == 0
        assert pipeline.get_stats()["inference_errors"] == 1
        assert pipeline.gate.hits == 1
