"""
MQTT Data Plane
===============

Data Plane para publicar outputs del engine vía MQTT.

- alerts: QoS 0 (fire-and-forget, la alerta ya se habló localmente)
- stop events: QoS 1
- drive summaries: QoS 1 (al terminar el drive)

Plane = infraestructura MQTT; Publishers = formateo de mensajes.
Nunca propaga errores: un publish fallido se loggea y se descarta.
"""
from threading import Event, Lock
from typing import Any, Dict, Optional, TYPE_CHECKING
import json
import logging

import paho.mqtt.client as mqtt

from .publishers import AlertPublisher, DriveSummaryPublisher, StopEventPublisher
from ..logging import log_error_with_context, log_mqtt_publish

if TYPE_CHECKING:
    from ..detection.pipeline import AlertRequested, StopSignRecorded
    from ..drive.models import DriveSession

logger = logging.getLogger(__name__)


class MQTTDataPlane:
    """
    Data Plane para publicar alertas, eventos de stop y summaries.

    Responsabilidad: Infraestructura MQTT (canal)
    - Conecta/desconecta de broker MQTT
    - Publica mensajes formateados por publishers
    - NO conoce estructura de mensajes (delega a publishers)
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int = 1883,
        alerts_topic: str = "stopguard/data/alerts",
        stop_events_topic: str = "stopguard/data/stop_events",
        summaries_topic: str = "stopguard/data/drive_summaries",
        client_id: str = "stopguard_data",
        username: Optional[str] = None,
        password: Optional[str] = None,
        alerts_qos: int = 0,
        events_qos: int = 1,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.alerts_topic = alerts_topic
        self.stop_events_topic = stop_events_topic
        self.summaries_topic = summaries_topic
        self.client_id = client_id
        self.alerts_qos = alerts_qos
        self.events_qos = events_qos

        self.alert_publisher = AlertPublisher()
        self.stop_event_publisher = StopEventPublisher()
        self.summary_publisher = DriveSummaryPublisher()

        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv5,
        )
        if username and password:
            self.client.username_pw_set(username, password)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        self._connected = Event()
        self._lock = Lock()
        self._failed_count = 0

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            log_error_with_context(
                logger,
                message=f"❌ Error conectando Data Plane al broker MQTT: {reason_code}",
                component="data_plane",
                event="connection_failed",
                broker_host=self.broker_host,
                broker_port=self.broker_port,
            )
            return

        logger.info(
            "✅ Data Plane conectado",
            extra={
                "component": "data_plane",
                "event": "connected",
                "broker_host": self.broker_host,
                "broker_port": self.broker_port,
            }
        )
        self._connected.set()

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        logger.warning(
            "⚠️ Data Plane desconectado",
            extra={
                "component": "data_plane",
                "event": "disconnected",
                "reason_code": str(reason_code),
            }
        )
        self._connected.clear()

    def connect(self, timeout: float = 5.0) -> bool:
        try:
            logger.info(
                "🔌 Conectando Data Plane",
                extra={
                    "component": "data_plane",
                    "event": "connecting",
                    "broker_host": self.broker_host,
                    "broker_port": self.broker_port,
                    "timeout": timeout,
                }
            )
            self.client.connect(self.broker_host, self.broker_port, keepalive=60)
            self.client.loop_start()
            return self._connected.wait(timeout=timeout)
        except Exception as e:
            log_error_with_context(
                logger,
                message="❌ Error conectando Data Plane",
                exception=e,
                component="data_plane",
                event="connection_error",
                broker_host=self.broker_host,
                broker_port=self.broker_port,
            )
            return False

    def disconnect(self):
        logger.info(
            "🔌 Desconectando Data Plane",
            extra={"component": "data_plane", "event": "disconnecting"}
        )
        self.client.loop_stop()
        self.client.disconnect()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish_alert(self, alert: 'AlertRequested') -> bool:
        return self._publish(
            self.alerts_topic,
            lambda: self.alert_publisher.format_message(alert),
            qos=self.alerts_qos,
            message_type="alert",
        )

    def publish_stop_event(self, recorded: 'StopSignRecorded') -> bool:
        return self._publish(
            self.stop_events_topic,
            lambda: self.stop_event_publisher.format_message(recorded),
            qos=self.events_qos,
            message_type="stop_event",
        )

    def publish_summary(self, drive: 'DriveSession') -> bool:
        return self._publish(
            self.summaries_topic,
            lambda: self.summary_publisher.format_message(drive),
            qos=self.events_qos,
            message_type="drive_summary",
        )

    def _publish(self, topic: str, build_message, qos: int, message_type: str) -> bool:
        """
        Formatea (vía publisher) y publica.

        Returns:
            True si el cliente aceptó el mensaje
        """
        if not self._connected.is_set():
            logger.warning(
                "⚠️ Data Plane no conectado, mensaje descartado",
                extra={
                    "component": "data_plane",
                    "event": "publish_skipped",
                    "reason": "not_connected",
                    "message_type": message_type,
                }
            )
            return False

        try:
            payload = json.dumps(build_message(), default=str)
            result = self.client.publish(topic, payload, qos=qos)
            success = result.rc == mqtt.MQTT_ERR_SUCCESS
            if not success:
                with self._lock:
                    self._failed_count += 1
            log_mqtt_publish(
                logger,
                topic=topic,
                qos=qos,
                payload_size=len(payload),
                success=success,
                error_code=None if success else result.rc,
                message_type=message_type,
            )
            return success

        except Exception as e:
            with self._lock:
                self._failed_count += 1
            log_error_with_context(
                logger,
                message=f"❌ Error publicando {message_type}",
                exception=e,
                component="data_plane",
                event="publish_exception",
                topic=topic,
            )
            return False

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "alerts_published": self.alert_publisher.message_count,
                "stop_events_published": self.stop_event_publisher.message_count,
                "summaries_published": self.summary_publisher.message_count,
                "publish_failures": self._failed_count,
                "connected": self._connected.is_set(),
            }
