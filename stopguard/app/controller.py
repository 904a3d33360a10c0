"""
StopGuard Engine con MQTT Control, Data y Sensor Plane
======================================================

Control Plane: start/end drive, status, summary, stats, sync, stop
Data Plane: publica alertas, eventos de stop y summaries
Sensor Plane: ingesta de detecciones, location y acelerómetro

Todo lo que muta estado del drive se postea al DriveEventLoop.
"""
from pathlib import Path
from threading import Event
from typing import Any, Dict, Optional
import argparse
import logging
import os
import signal
import sys

from dotenv import load_dotenv
from pydantic import ValidationError

from ..config import StopGuardConfig
from ..control import CommandParamsError, MQTTControlPlane
from ..data import MQTTDataPlane, create_mqtt_sink
from ..logging import setup_logging, trace_context
from ..sensors import MQTTSensorPlane
from .builder import Engine, PipelineBuilder
from .loop import DriveEventLoop

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/stopguard/config.yaml"


# ============================================================================
# ENGINE CONTROLLER
# ============================================================================
class StopGuardController:
    """
    Controlador del engine con MQTT planes.

    Responsabilidad: Orquestación y lifecycle management
    - Setup de componentes (delega construcción a Builder)
    - Comandos de control (drive lifecycle, status, stats)
    - Signal handling (Ctrl+C)
    - Cleanup de recursos
    """

    def __init__(self, config: StopGuardConfig):
        self.config = config
        self.builder = PipelineBuilder(config)

        self.loop = DriveEventLoop()
        self.engine: Optional[Engine] = None
        self.control_plane: Optional[MQTTControlPlane] = None
        self.data_plane: Optional[MQTTDataPlane] = None
        self.sensor_plane: Optional[MQTTSensorPlane] = None

        self.shutdown_event = Event()

    def setup(self) -> bool:
        """
        Inicializa loop, engine y conexiones MQTT.

        Returns:
            bool: True si setup exitoso, False si falla
        """
        logger.info("🚀 Inicializando StopGuard con MQTT...")
        mqtt_config = self.config.mqtt
        broker = mqtt_config.broker

        # ====================================================================
        # 1. Data Plane (publicador de outputs)
        # ====================================================================
        logger.info("📡 Configurando Data Plane...")
        self.data_plane = MQTTDataPlane(
            broker_host=broker.host,
            broker_port=broker.port,
            alerts_topic=mqtt_config.topics.alerts,
            stop_events_topic=mqtt_config.topics.stop_events,
            summaries_topic=mqtt_config.topics.drive_summaries,
            username=broker.username,
            password=broker.password,
            alerts_qos=mqtt_config.qos.alerts,
            events_qos=mqtt_config.qos.events,
        )
        if not self.data_plane.connect(timeout=10):
            logger.error("❌ No se pudo conectar Data Plane")
            return False

        # ====================================================================
        # 2. Engine (pipeline + motion + drives) sobre el event loop
        # ====================================================================
        self.loop.start()
        self.engine = self.builder.build(
            scheduler=self.loop,
            sinks=[create_mqtt_sink(self.data_plane)],
        )

        # ====================================================================
        # 3. Sensor Plane (todo se postea al loop)
        # ====================================================================
        logger.info("🛰️ Configurando Sensor Plane...")
        self.sensor_plane = MQTTSensorPlane(
            broker_host=broker.host,
            broker_port=broker.port,
            detections_topic=mqtt_config.topics.sensor_detections,
            location_topic=mqtt_config.topics.sensor_location,
            accelerometer_topic=mqtt_config.topics.sensor_accelerometer,
            frames_topic=mqtt_config.topics.sensor_frames if self.engine.inference else None,
            username=broker.username,
            password=broker.password,
            qos=mqtt_config.qos.sensors,
        )
        self._setup_sensor_callbacks()
        if not self.sensor_plane.connect(timeout=10):
            logger.error("❌ No se pudo conectar Sensor Plane")
            return False

        # ====================================================================
        # 4. Control Plane
        # ====================================================================
        logger.info("🎛️ Configurando Control Plane...")
        self.control_plane = MQTTControlPlane(
            broker_host=broker.host,
            broker_port=broker.port,
            command_topic=mqtt_config.topics.control_commands,
            status_topic=mqtt_config.topics.control_status,
            username=broker.username,
            password=broker.password,
            qos=mqtt_config.qos.control,
        )
        self._setup_control_callbacks()
        if not self.control_plane.connect(timeout=10):
            logger.error("❌ No se pudo conectar Control Plane")
            return False

        self.control_plane.publish_status("running")
        return True

    def _setup_sensor_callbacks(self):
        engine = self.engine
        post = self.loop.post

        self.sensor_plane.on_detections = (
            lambda detections, timestamp: post(engine.pipeline.process_frame, detections, timestamp)
        )
        self.sensor_plane.on_detections_error = (
            lambda exc: post(engine.pipeline.process_inference_error, exc)
        )
        if engine.inference is not None:
            # Detector local: drop-while-busy, resultados posteados al loop
            self.sensor_plane.on_frame = engine.inference.submit
        self.sensor_plane.on_location = (
            lambda fix: post(engine.motion.on_location_update, fix)
        )
        self.sensor_plane.on_accelerometer = (
            lambda sample: post(engine.motion.on_accelerometer_tick, sample)
        )
        self.sensor_plane.on_accelerometer_availability = (
            lambda available: post(engine.motion.set_accelerometer_available, available)
        )

    def _setup_control_callbacks(self):
        """Registra comandos en CommandRegistry del Control Plane."""
        registry = self.control_plane.command_registry

        registry.register(
            'start_drive', self._handle_start_drive,
            "Inicia un drive (user_id, family_id opcional)",
            takes_params=True,
        )
        registry.register('end_drive', self._handle_end_drive, "Termina el drive activo")
        registry.register('status', self._handle_status, "Consulta estado actual")
        registry.register('summary', self._handle_summary, "Summary del drive activo o del último")
        registry.register('stats', self._handle_stats, "Estadísticas de historial y pipeline")
        registry.register('stop', self._handle_stop, "Detiene y finaliza el engine")

        # SYNC sólo tiene sentido con store persistente
        if self.config.drive.store != 'memory':
            registry.register('sync', self._handle_sync, "Reintenta persistencia pendiente")
            logger.info("✅ sync command registered (persistent store)")

    # ------------------------------------------------------------------
    # Command handlers (thread de paho → se postean al loop)
    # ------------------------------------------------------------------

    def _handle_start_drive(self, params: Dict[str, Any]):
        """Callback para comando START_DRIVE"""
        user_id = params.get('user_id')
        if not user_id:
            raise CommandParamsError("start_drive requires 'user_id'")
        family_id = params.get('family_id')
        logger.info("🚗 Comando START_DRIVE recibido")
        self.loop.post(self._start_drive, str(user_id), family_id)

    def _handle_end_drive(self):
        """Callback para comando END_DRIVE"""
        logger.info("🏁 Comando END_DRIVE recibido")
        self.loop.post(self._end_drive)

    def _handle_status(self):
        """Callback para comando STATUS - publica estado actual"""
        logger.info("📋 Comando STATUS recibido")
        self.loop.post(self._publish_status)

    def _handle_summary(self):
        """Callback para comando SUMMARY"""
        logger.info("📊 Comando SUMMARY recibido")
        self.loop.post(self._publish_summary)

    def _handle_stats(self):
        """Callback para comando STATS"""
        logger.info("📈 Comando STATS recibido")
        self.loop.post(self._publish_stats)

    def _handle_sync(self):
        """Callback para comando SYNC - reintenta snapshots pendientes"""
        logger.info("🔄 Comando SYNC recibido")
        pending = self.engine.sync.flush()
        self.control_plane.publish_status(self._status_name(), {"pending_sync": pending})

    def _handle_stop(self):
        """Callback para comando STOP - detiene y finaliza el programa"""
        logger.info("⏹️ Comando STOP recibido")
        self.control_plane.publish_status("stopped")
        logger.info("🛑 Finalizando servicio...")
        self.shutdown_event.set()

    # ------------------------------------------------------------------
    # Loop tasks
    # ------------------------------------------------------------------

    def _start_drive(self, user_id: str, family_id: Optional[str]):
        drive = self.engine.drive_manager.start_drive(user_id, family_id)
        if drive is None:
            return
        with trace_context(f"drive-{drive.id.hex[:8]}"):
            self.control_plane.publish_status("driving", {"drive_id": str(drive.id)})

    def _end_drive(self):
        drive = self.engine.drive_manager.end_drive()
        if drive is None:
            return
        self.engine.pipeline.on_drive_ended()
        with trace_context(f"drive-{drive.id.hex[:8]}"):
            self.data_plane.publish_summary(drive)
            if self.control_plane is not None:
                self.control_plane.publish_status(
                    "running", {"summary": drive.summary.to_dict()}
                )

    def _status_name(self) -> str:
        return "driving" if self.engine.drive_manager.is_active else "running"

    def _publish_status(self):
        drive = self.engine.drive_manager.current_drive
        self.control_plane.publish_status(
            self._status_name(),
            {
                "drive_id": str(drive.id) if drive else None,
                "motion": self.engine.motion.snapshot(),
                "pending_sync": self.engine.sync.pending_count,
            }
        )

    def _publish_summary(self):
        manager = self.engine.drive_manager
        drive = manager.current_drive
        if drive is None:
            history = manager.history
            drive = history[0] if history else None
        if drive is None:
            logger.warning("⚠️ No hay drives para resumir")
            return
        self.control_plane.publish_status(self._status_name(), {"summary": drive.summary.to_dict()})

    def _publish_stats(self):
        self.control_plane.publish_status(
            self._status_name(),
            {
                "history": self.engine.drive_manager.statistics().to_dict(),
                "pipeline": self.engine.pipeline.get_stats(),
                "data_plane": self.data_plane.get_stats(),
                "sensor_plane": self.sensor_plane.get_stats(),
                "inference": self.engine.inference.get_stats() if self.engine.inference else None,
            }
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self):
        """Ejecuta el engine hasta STOP o señal"""
        if not self.setup():
            logger.error("❌ Setup falló")
            self.cleanup()
            return

        topics = self.config.mqtt.topics
        logger.info("=" * 70)
        logger.info("🎬 StopGuard activo y corriendo")
        logger.info(f"📡 Control Topic: {topics.control_commands}")
        logger.info(f"🛰️ Sensor Topics: {topics.sensor_detections}, {topics.sensor_location}, {topics.sensor_accelerometer}")
        logger.info(f"📊 Alerts Topic: {topics.alerts}")
        for command, description in sorted(self.control_plane.command_registry.get_help().items()):
            logger.info(f"   {command}: {description}")
        logger.info("⌨️  Presiona Ctrl+C para salir")
        logger.info("=" * 70)

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        try:
            while not self.shutdown_event.is_set():
                self.shutdown_event.wait(timeout=1.0)
        except KeyboardInterrupt:
            logger.info("⚠️ Interrupción forzada...")
            self.shutdown_event.set()

        self.cleanup()

    def _signal_handler(self, signum, frame):
        logger.info("⚠️ Señal de terminación recibida...")
        self.shutdown_event.set()

    def cleanup(self):
        """
        Limpia recursos al finalizar.

        Orden: sensores (no entra más input) → drive activo terminado →
        loop drenado → sync drenado → control/data planes.
        """
        logger.info("🧹 Limpiando recursos...")

        if self.sensor_plane:
            try:
                self.sensor_plane.disconnect()
                logger.info("✅ Sensor Plane desconectado")
            except Exception as e:
                logger.error(f"❌ Error desconectando Sensor Plane: {e}")

        if self.engine is not None:
            self.loop.post(self._end_drive)
            self.loop.post(self.engine.pipeline.teardown)
        self.loop.stop(timeout=10.0)

        if self.engine is not None:
            self.engine.sync.close()
            pending = self.engine.sync.flush()
            if pending:
                logger.warning(f"⚠️ {pending} drives sin persistir al salir")

        if self.control_plane:
            try:
                self.control_plane.disconnect()
                logger.info("✅ Control Plane desconectado")
            except Exception as e:
                logger.error(f"❌ Error desconectando Control Plane: {e}")

        if self.data_plane:
            try:
                logger.info(f"📊 Data Plane stats: {self.data_plane.get_stats()}")
                self.data_plane.disconnect()
                logger.info("✅ Data Plane desconectado")
            except Exception as e:
                logger.error(f"❌ Error desconectando Data Plane: {e}")

        logger.info("👋 Hasta luego!")


# ============================================================================
# MAIN
# ============================================================================
def load_config(config_path: str) -> StopGuardConfig:
    """YAML validado o defaults si el archivo no existe."""
    if Path(config_path).exists():
        config = StopGuardConfig.from_yaml(config_path)
        print(f"✅ Config loaded and validated from {config_path}")
        return config

    config = StopGuardConfig()
    config.apply_env_credentials()
    print(f"⚠️  Config file not found ({config_path}), using defaults")
    return config


def main(argv=None):
    """Punto de entrada principal"""
    parser = argparse.ArgumentParser(description="StopGuard stop-sign assistance engine")
    parser.add_argument(
        "--config",
        default=os.environ.get("STOPGUARD_CONFIG", DEFAULT_CONFIG_PATH),
        help=f"Path al config YAML (default: {DEFAULT_CONFIG_PATH})",
    )
    args = parser.parse_args(argv)
    config_path = args.config

    try:
        config = load_config(config_path)
    except ValidationError as e:
        print("❌ Invalid configuration:")
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error['loc'])
            print(f"   • {field}: {error['msg']}")
        print(f"\nPlease fix {config_path} and try again.")
        sys.exit(1)
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        sys.exit(1)

    log_config = config.logging
    setup_logging(
        level=log_config.level,
        indent=log_config.json_indent,
        log_file=log_config.file,
        max_bytes=log_config.max_bytes,
        backup_count=log_config.backup_count,
    )
    logger.info("🔧 StopGuard starting...")

    # Reducir verbosidad de paho-mqtt
    logging.getLogger('paho').setLevel(getattr(logging, log_config.paho_level.upper()))

    controller = StopGuardController(config)

    try:
        controller.run()
    except Exception as e:
        logger.error(f"❌ Error fatal: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
