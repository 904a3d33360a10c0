"""
Structured Logging Infrastructure
==================================

Logging JSON-based para queryability en producción.

Design Philosophy:
- Solo JSON (no dual output)
- Trace correlation vía contextvars (un trace por drive / por comando)
- Helpers para casos comunes (MQTT, alertas, veredictos de stop, errores)
- File rotation automático (RotatingFileHandler)

Usage:
    # Setup (una vez al inicio)
    from stopguard.logging import setup_logging

    setup_logging(level="INFO")

    # Logging con contexto
    logger.info("🛑 Stop sign confirmado", extra={
        "component": "detection_pipeline",
        "confidence": 0.91,
    })

    # Con trace propagation
    from stopguard.logging import trace_context, get_trace_id

    with trace_context(f"drive-{drive.id.hex[:8]}"):
        logger.info("Drive iniciado", extra={"trace_id": get_trace_id()})
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from contextvars import ContextVar
from contextlib import contextmanager
from typing import Optional, Dict, Any
import uuid

from pythonjsonlogger import jsonlogger

# ============================================================================
# Trace Context (propagación de trace_id)
# ============================================================================

trace_id_var: ContextVar[Optional[str]] = ContextVar('trace_id', default=None)


def get_trace_id() -> Optional[str]:
    """Obtiene el trace_id actual del contexto (None si no hay contexto activo)."""
    return trace_id_var.get()


def generate_trace_id(prefix: str = "trace") -> str:
    """
    Genera un nuevo trace ID único.

    Args:
        prefix: Prefijo para el trace ID (ej: "cmd", "drive", "verify")

    Returns:
        Trace ID en formato: {prefix}-{short_uuid}
    """
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def trace_context(trace_id: Optional[str] = None):
    """
    Context manager para propagar trace_id en toda la call stack.

    Args:
        trace_id: ID de trace a propagar. Si None, genera uno automático.
    """
    if trace_id is None:
        trace_id = generate_trace_id()

    token = trace_id_var.set(trace_id)
    try:
        yield trace_id
    finally:
        trace_id_var.reset(token)


# ============================================================================
# Logger Setup
# ============================================================================

class StopGuardJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter con nombres de campos consistentes.

    - levelname → level
    - name → logger
    - trace_id del contexto si el record no trae uno
    """

    def __init__(self, *args, global_fields: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._global_fields = global_fields or {}

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        if 'levelname' in log_record:
            log_record['level'] = log_record.pop('levelname')

        if 'name' in log_record:
            log_record['logger'] = log_record.pop('name')

        current_trace_id = get_trace_id()
        if current_trace_id and not log_record.get('trace_id'):
            log_record['trace_id'] = current_trace_id

        for key, value in self._global_fields.items():
            if key not in log_record:
                log_record[key] = value


def setup_logging(
    level: str = "INFO",
    indent: Optional[int] = None,
    add_fields: Optional[Dict[str, Any]] = None,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
) -> None:
    """
    Configura structured logging (JSON) para toda la aplicación.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        indent: JSON indent para pretty-print (None = compact, 2 = readable)
        add_fields: Campos adicionales globales (ej: {"device": "dashcam-01"})
        log_file: Path al archivo de logs (None = stdout). Si se especifica, usa rotation.
        max_bytes: Tamaño máximo por archivo antes de rotar (default 10 MB)
        backup_count: Número de archivos backup a mantener (default 5)
    """
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        print(
            f"📄 Logging to file: {log_file} (max: {max_bytes//1024//1024}MB, backups: {backup_count})",
            file=sys.stderr,
        )
    else:
        handler = logging.StreamHandler(sys.stdout)

    formatter = StopGuardJsonFormatter(
        '%(asctime)s %(levelname)s %(name)s %(message)s',
        json_indent=indent,
        global_fields=add_fields,
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))


# ============================================================================
# Helper Functions (DRY para casos comunes)
# ============================================================================

def log_mqtt_command(
    logger: logging.Logger,
    command: str,
    topic: str,
    payload: Optional[Dict[str, Any]] = None,
    trace_id: Optional[str] = None
) -> None:
    """Helper para logs de comandos MQTT (Control Plane)."""
    extra = {
        "component": "control_plane",
        "command": command,
        "mqtt_topic": topic,
        "trace_id": trace_id or get_trace_id()
    }

    if payload:
        extra["payload"] = payload

    logger.info(f"📥 Comando recibido: {command}", extra=extra)


def log_mqtt_publish(
    logger: logging.Logger,
    topic: str,
    qos: int,
    payload_size: int,
    success: bool = True,
    error_code: Optional[int] = None,
    message_type: Optional[str] = None,
    component: str = "data_plane",
) -> None:
    """
    Helper para logs de publicación MQTT (Data Plane).

    Args:
        logger: Logger instance
        topic: MQTT topic
        qos: QoS level
        payload_size: Tamaño del payload en bytes
        success: Si la publicación fue exitosa
        error_code: Código de error MQTT (si success=False)
        message_type: Tipo de mensaje publicado (alert, stop_event, drive_summary)
        component: Componente que genera el log
    """
    extra = {
        "component": component,
        "mqtt_topic": topic,
        "qos": qos,
        "payload_size_bytes": payload_size,
        "success": success
    }

    if error_code is not None:
        extra["mqtt_error_code"] = error_code

    if message_type is not None:
        extra["message_type"] = message_type

    if success:
        logger.debug(f"📤 Mensaje publicado a {topic}", extra=extra)
    else:
        logger.warning(f"⚠️ Error publicando a {topic}", extra=extra)


def log_alert(
    logger: logging.Logger,
    text: str,
    spoken: bool,
    drive_id: Optional[str] = None,
    component: str = "detection_pipeline",
) -> None:
    """Helper para logs de alertas emitidas al usuario."""
    extra = {
        "component": component,
        "event": "alert_requested",
        "alert_text": text,
        "spoken": spoken,
        "drive_id": drive_id,
    }
    logger.info(f"🔊 Alerta: {text}", extra=extra)


def log_stop_verdict(
    logger: logging.Logger,
    did_full_stop: bool,
    stop_duration: Optional[float],
    confidence: float,
    drive_id: Optional[str] = None,
    component: str = "detection_pipeline",
) -> None:
    """
    Helper para logs del veredicto de stop (full stop vs rolling stop).

    Args:
        logger: Logger instance
        did_full_stop: Si el conductor hizo full stop
        stop_duration: Duración del stop en segundos (None si no frenó)
        confidence: Confidence del detector para el cartel
        drive_id: Drive al que se asocia el evento
        component: Componente que genera el log
    """
    extra = {
        "component": component,
        "event": "stop_verdict",
        "verdict": {
            "did_full_stop": did_full_stop,
            "stop_duration_s": round(stop_duration, 2) if stop_duration is not None else None,
            "confidence": round(confidence, 3),
        },
        "drive_id": drive_id,
    }

    verdict = "full stop" if did_full_stop else "rolling stop"
    logger.info(f"🚦 Veredicto: {verdict}", extra=extra)


def log_error_with_context(
    logger: logging.Logger,
    message: str,
    exception: Optional[Exception] = None,
    component: str = "unknown",
    event: Optional[str] = None,
    trace_id: Optional[str] = None,
    **kwargs: Any
) -> None:
    """
    Helper para logs de errores con contexto completo.

    Args:
        logger: Logger instance
        message: Mensaje de error
        exception: Excepción capturada (opcional)
        component: Componente donde ocurrió el error
        event: Evento que causó el error
        trace_id: Trace ID (usa contexto si no se especifica)
        **kwargs: Contexto adicional (broker_host, topic, drive_id, etc.)
    """
    extra = {
        "component": component,
        "trace_id": trace_id or get_trace_id()
    }

    if event:
        extra["event"] = event

    if exception:
        extra["error_type"] = type(exception).__name__
        extra["error_message"] = str(exception)

    extra.update(kwargs)

    if exception:
        logger.error(f"{message}: {exception}", extra=extra, exc_info=True)
    else:
        logger.error(message, extra=extra)


def get_component_logger(component: str) -> logging.Logger:
    """Obtiene un logger con namespace stopguard.{component}."""
    return logging.getLogger(f"stopguard.{component}")


__all__ = [
    # Setup
    "setup_logging",
    "StopGuardJsonFormatter",
    # Trace context
    "trace_context",
    "get_trace_id",
    "generate_trace_id",
    # Helpers
    "log_mqtt_command",
    "log_mqtt_publish",
    "log_alert",
    "log_stop_verdict",
    "log_error_with_context",
    # Component loggers
    "get_component_logger",
]
