"""
MQTT Control Plane
==================

Control Plane del engine vía MQTT (QoS 1).
Recibe comandos JSON {"command": ..., ...params} y los despacha por el
CommandRegistry.

Comandos típicos:
- start_drive: Inicia un drive (user_id, family_id opcional)
- end_drive: Termina el drive activo (publica summary)
- status: Publica estado actual
- summary: Publica summary del drive activo o del último
- stats: Publica estadísticas de historial
- sync: Reintenta persistencia pendiente
- stop: Detiene el engine
"""
from datetime import datetime
from threading import Event
from typing import Any, Dict, Optional
import json
import logging

import paho.mqtt.client as mqtt

from .registry import CommandNotAvailableError, CommandParamsError, CommandRegistry
from ..logging import (
    generate_trace_id,
    log_error_with_context,
    log_mqtt_command,
    trace_context,
)

logger = logging.getLogger(__name__)


class MQTTControlPlane:
    """
    Control Plane vía MQTT.

    Usage:
        control_plane = MQTTControlPlane(broker_host="localhost")
        control_plane.command_registry.register('end_drive', ctrl.end_drive, "Termina el drive")
        control_plane.connect()
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int = 1883,
        command_topic: str = "stopguard/control/commands",
        status_topic: str = "stopguard/control/status",
        client_id: str = "stopguard_control",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 1,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.command_topic = command_topic
        self.status_topic = status_topic
        self.client_id = client_id
        self.qos = qos

        self.command_registry = CommandRegistry()

        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv5,
        )
        if username and password:
            self.client.username_pw_set(username, password)

        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

        self._connected = Event()

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(
                "Failed to connect to MQTT broker",
                extra={
                    "component": "control_plane",
                    "event": "connection_error",
                    "broker_host": self.broker_host,
                    "broker_port": self.broker_port,
                    "reason_code": str(reason_code),
                }
            )
            return

        logger.info(
            "Control Plane connected to broker",
            extra={
                "component": "control_plane",
                "event": "broker_connected",
                "broker_host": self.broker_host,
                "broker_port": self.broker_port,
            }
        )
        self.client.subscribe(self.command_topic, qos=self.qos)
        logger.info(
            "Subscribed to command topic",
            extra={
                "component": "control_plane",
                "event": "topic_subscribed",
                "topic": self.command_topic,
                "qos": self.qos,
            }
        )
        self._connected.set()
        self.publish_status("connected")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        logger.warning(
            "Control Plane disconnected from broker",
            extra={
                "component": "control_plane",
                "event": "broker_disconnected",
                "reason_code": str(reason_code),
            }
        )
        self._connected.clear()

    def _on_message(self, client, userdata, msg):
        """
        Decodifica el comando y lo ejecuta vía registry.

        Cada comando corre en su propio trace (cmd-{command}-xxxx).
        """
        try:
            command_data = json.loads(msg.payload.decode('utf-8'))
            if not isinstance(command_data, dict):
                raise CommandParamsError("Command payload must be a JSON object")

            command = str(command_data.get('command', '')).lower()
            params = {k: v for k, v in command_data.items() if k != 'command'}
            trace_id = generate_trace_id(prefix=f"cmd-{command}")

            with trace_context(trace_id):
                log_mqtt_command(
                    logger,
                    command=command,
                    topic=msg.topic,
                    payload=command_data,
                    trace_id=trace_id,
                )

                try:
                    self.command_registry.execute(command, params)
                    logger.debug(
                        f"✅ Comando '{command}' ejecutado correctamente",
                        extra={"command": command, "trace_id": trace_id}
                    )
                except CommandNotAvailableError as e:
                    logger.warning(
                        f"⚠️ {e}",
                        extra={
                            "command": command,
                            "trace_id": trace_id,
                            "available_commands": sorted(self.command_registry.available_commands),
                        }
                    )
                except CommandParamsError as e:
                    logger.warning(
                        f"⚠️ Parámetros inválidos para '{command}': {e}",
                        extra={"command": command, "trace_id": trace_id}
                    )

        except (UnicodeDecodeError, json.JSONDecodeError, CommandParamsError):
            logger.error(
                f"❌ Error decodificando comando: {msg.payload!r}",
                extra={
                    "component": "control_plane",
                    "mqtt_topic": msg.topic,
                    "raw_payload": str(msg.payload),
                }
            )
        except Exception as e:
            log_error_with_context(
                logger,
                message="Error procesando mensaje MQTT",
                exception=e,
                component="control_plane",
                event="message_processing_error",
                mqtt_topic=msg.topic,
            )

    def publish_status(self, status: str, details: Optional[Dict[str, Any]] = None):
        """
        Publica el estado actual (retained).

        Args:
            status: Estado a publicar (ej: "running", "driving", "stopped")
            details: Datos extra (drive activo, stats, summary)
        """
        message: Dict[str, Any] = {
            "status": status,
            "timestamp": datetime.now().isoformat(),
            "client_id": self.client_id,
        }
        if details:
            message.update(details)

        self.client.publish(
            self.status_topic,
            json.dumps(message, default=str),
            qos=self.qos,
            retain=True,
        )
        logger.info(
            "Status published",
            extra={
                "component": "control_plane",
                "event": "status_published",
                "status": status,
                "topic": self.status_topic,
            }
        )

    def connect(self, timeout: float = 5.0) -> bool:
        try:
            logger.info(
                "Connecting to MQTT broker",
                extra={
                    "component": "control_plane",
                    "event": "connection_attempt",
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
                message="Failed to connect to MQTT",
                exception=e,
                component="control_plane",
                event="connection_exception",
                broker_host=self.broker_host,
                broker_port=self.broker_port,
            )
            return False

    def disconnect(self):
        logger.info("🔌 Desconectando Control Plane...")
        if self.is_connected:
            self.publish_status("disconnected")
        self.client.loop_stop()
        self.client.disconnect()
