"""
MQTT Sensor Plane
=================

Ingesta de sensores vía MQTT: un topic por fuente.

- detections: {"detections": [{"label", "confidence", "bbox": {...}}], "timestamp"?}
  | {"error": "..."} (el detector remoto falló en este frame)
- frames: payload opaco para el detector local (InferenceRunner)
- location: {"speed", "latitude"?, "longitude"?, "authorization"?}
- accelerometer: {"x", "y", "z"} | {"available": false}

El plane sólo parsea y despacha a los handlers; el controller los postea
al DriveEventLoop (el plane corre en el thread de red de paho).
Payloads inválidos se loggean y se descartan. En el topic de detecciones
además cuentan como error de inferencia (on_detections_error): un frame
roto no puede ser invisible para el gate.
"""
from threading import Event
from typing import Any, Callable, List, Optional
import json
import logging

import paho.mqtt.client as mqtt

from ..detection.models import RawDetection
from ..logging import log_error_with_context
from ..motion.models import AccelerometerSample, LocationFix

logger = logging.getLogger(__name__)

DetectionsHandler = Callable[[List[RawDetection], Optional[float]], None]
LocationHandler = Callable[[LocationFix], None]
AccelerometerHandler = Callable[[AccelerometerSample], None]
AvailabilityHandler = Callable[[bool], None]
DetectionsErrorHandler = Callable[[Exception], None]
FrameHandler = Callable[[Any], Any]


class DetectionPayloadError(ValueError):
    """Payload de detecciones que no se puede interpretar."""


class RemoteDetectorError(RuntimeError):
    """El detector remoto reportó un fallo para el frame."""


class MQTTSensorPlane:
    """
    Suscriptor de topics de sensores.

    Usage:
        sensors = MQTTSensorPlane(broker_host="localhost")
        sensors.on_detections = lambda dets, ts: loop.post(pipeline.process_frame, dets, ts)
        sensors.on_location = lambda fix: loop.post(motion.on_location_update, fix)
        sensors.on_accelerometer = lambda s: loop.post(motion.on_accelerometer_tick, s)
        sensors.connect()
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int = 1883,
        detections_topic: str = "stopguard/sensors/detections",
        location_topic: str = "stopguard/sensors/location",
        accelerometer_topic: str = "stopguard/sensors/accelerometer",
        frames_topic: Optional[str] = None,
        client_id: str = "stopguard_sensors",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.detections_topic = detections_topic
        self.location_topic = location_topic
        self.accelerometer_topic = accelerometer_topic
        self.frames_topic = frames_topic
        self.client_id = client_id
        self.qos = qos

        self.on_detections: Optional[DetectionsHandler] = None
        self.on_detections_error: Optional[DetectionsErrorHandler] = None
        self.on_frame: Optional[FrameHandler] = None
        self.on_location: Optional[LocationHandler] = None
        self.on_accelerometer: Optional[AccelerometerHandler] = None
        self.on_accelerometer_availability: Optional[AvailabilityHandler] = None

        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv5,
        )
        if username and password:
            self.client.username_pw_set(username, password)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.message_callback_add(detections_topic, self._on_detections_message)
        self.client.message_callback_add(location_topic, self._on_location_message)
        self.client.message_callback_add(accelerometer_topic, self._on_accelerometer_message)
        if frames_topic:
            self.client.message_callback_add(frames_topic, self._on_frame_message)

        self._connected = Event()
        self.messages_received = 0
        self.messages_rejected = 0

    @property
    def topics(self) -> List[str]:
        topics = [self.detections_topic, self.location_topic, self.accelerometer_topic]
        if self.frames_topic:
            topics.append(self.frames_topic)
        return topics

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            log_error_with_context(
                logger,
                message=f"❌ Error conectando Sensor Plane: {reason_code}",
                component="sensor_plane",
                event="connection_failed",
                broker_host=self.broker_host,
                broker_port=self.broker_port,
            )
            return

        for topic in self.topics:
            self.client.subscribe(topic, qos=self.qos)
        logger.info(
            "✅ Sensor Plane conectado",
            extra={
                "component": "sensor_plane",
                "event": "connected",
                "topics": self.topics,
                "qos": self.qos,
            }
        )
        self._connected.set()

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        logger.warning(
            "⚠️ Sensor Plane desconectado",
            extra={
                "component": "sensor_plane",
                "event": "disconnected",
                "reason_code": str(reason_code),
            }
        )
        self._connected.clear()

    # ------------------------------------------------------------------
    # Message handlers
    # ------------------------------------------------------------------

    def _decode(self, msg) -> Optional[dict]:
        self.messages_received += 1
        try:
            data = json.loads(msg.payload.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError):
            data = None
        if not isinstance(data, dict):
            self._reject(msg.topic, "invalid_json")
            return None
        return data

    def _reject(self, topic: str, reason: str) -> None:
        self.messages_rejected += 1
        logger.warning(
            "⚠️ Payload de sensor descartado",
            extra={
                "component": "sensor_plane",
                "event": "payload_rejected",
                "mqtt_topic": topic,
                "reason": reason,
            }
        )

    def _on_detections_message(self, client, userdata, msg):
        data = self._decode(msg)
        if data is None:
            self._detections_failed(DetectionPayloadError("detections payload is not a JSON object"))
            return

        if data.get('error') is not None:
            logger.warning(
                "⚠️ Detector remoto reportó error",
                extra={
                    "component": "sensor_plane",
                    "event": "detector_error",
                    "error": str(data['error']),
                }
            )
            self._detections_failed(RemoteDetectorError(str(data['error'])))
            return

        try:
            detections = self._parse_detections(data)
            timestamp = data.get('timestamp')
            timestamp = float(timestamp) if timestamp is not None else None
        except (KeyError, TypeError, ValueError) as e:
            self._reject(msg.topic, "invalid_detections")
            self._detections_failed(DetectionPayloadError(str(e)))
            return

        if self.on_detections is not None:
            self.on_detections(detections, timestamp)

    @staticmethod
    def _parse_detections(data: dict) -> List[RawDetection]:
        items = data.get('detections', [])
        if not isinstance(items, list):
            raise TypeError(f"'detections' must be a list, got {type(items).__name__}")
        return [RawDetection.from_dict(d) for d in items]

    def _detections_failed(self, error: Exception) -> None:
        if self.on_detections_error is not None:
            self.on_detections_error(error)

    def _on_frame_message(self, client, userdata, msg):
        data = self._decode(msg)
        if data is None or self.on_frame is None:
            return
        self.on_frame(data)

    def _on_location_message(self, client, userdata, msg):
        data = self._decode(msg)
        if data is None or self.on_location is None:
            return
        try:
            fix = LocationFix.from_dict(data)
        except (KeyError, TypeError, ValueError):
            self._reject(msg.topic, "invalid_location")
            return
        self.on_location(fix)

    def _on_accelerometer_message(self, client, userdata, msg):
        data = self._decode(msg)
        if data is None:
            return

        if 'available' in data:
            if self.on_accelerometer_availability is not None:
                self.on_accelerometer_availability(bool(data['available']))
            return

        if self.on_accelerometer is None:
            return
        try:
            sample = AccelerometerSample.from_dict(data)
        except (KeyError, TypeError, ValueError):
            self._reject(msg.topic, "invalid_accelerometer")
            return
        self.on_accelerometer(sample)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self, timeout: float = 5.0) -> bool:
        try:
            logger.info(
                "🔌 Conectando Sensor Plane",
                extra={
                    "component": "sensor_plane",
                    "event": "connecting",
                    "broker_host": self.broker_host,
                    "broker_port": self.broker_port,
                }
            )
            self.client.connect(self.broker_host, self.broker_port, keepalive=60)
            self.client.loop_start()
            return self._connected.wait(timeout=timeout)
        except Exception as e:
            log_error_with_context(
                logger,
                message="❌ Error conectando Sensor Plane",
                exception=e,
                component="sensor_plane",
                event="connection_error",
                broker_host=self.broker_host,
                broker_port=self.broker_port,
            )
            return False

    def disconnect(self):
        logger.info(
            "🔌 Desconectando Sensor Plane",
            extra={"component": "sensor_plane", "event": "disconnecting"}
        )
        self.client.loop_stop()
        self.client.disconnect()

    def get_stats(self) -> dict:
        return {
            "messages_received": self.messages_received,
            "messages_rejected": self.messages_rejected,
            "connected": self._connected.is_set(),
        }
