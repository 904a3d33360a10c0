"""
Pydantic Configuration Schemas
================================

Type-safe configuration validation usando Pydantic v2.

Benefits:
- Validación en load time (no en runtime, no a 50 km/h)
- Type safety con IDE autocomplete
- Mejores mensajes de error

Usage:
    config = StopGuardConfig.from_yaml("config/stopguard/config.yaml")
    # Config ya está validado, tipos garantizados
"""
from typing import Literal, Optional
from pathlib import Path
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ============================================================================
# Detection (candidate filter) Configuration
# ============================================================================

class DetectionSettings(BaseModel):
    """Filtro geométrico y de label sobre la salida cruda del detector"""
    label_sentinel: str = Field(
        default="stop",
        min_length=1,
        description="Substring (lowercase, '_' → ' ') que identifica la clase objetivo"
    )
    target_label: str = Field(
        default="stop_sign",
        min_length=1,
        description="Label canónico usado por el deduper"
    )
    min_area: float = Field(
        default=0.02,
        ge=0.0,
        le=1.0,
        description="Área normalizada mínima (exclusiva)"
    )
    max_area: float = Field(
        default=0.80,
        ge=0.0,
        le=1.0,
        description="Área normalizada máxima (exclusiva)"
    )
    min_aspect_ratio: float = Field(
        default=0.7,
        gt=0.0,
        description="Aspect ratio (height/width) mínimo (exclusivo)"
    )
    max_aspect_ratio: float = Field(
        default=1.4,
        gt=0.0,
        description="Aspect ratio (height/width) máximo (exclusivo)"
    )
    alert_text: str = Field(
        default="Stop sign ahead",
        description="Texto de la alerta principal"
    )
    full_stop_text: str = Field(
        default="Good stop",
        description="Texto de la alerta secundaria (full stop)"
    )
    rolling_stop_text: str = Field(
        default="Rolling stop detected",
        description="Texto de la alerta secundaria (rolling stop)"
    )
    detector: Optional[str] = Field(
        default=None,
        description="Detector local 'modulo:callable' (frame -> detecciones). None = detecciones ya resueltas vía MQTT"
    )

    @field_validator('label_sentinel')
    @classmethod
    def normalize_sentinel(cls, v: str) -> str:
        """El sentinel se compara contra labels normalizados"""
        return v.lower().replace('_', ' ')

    @field_validator('detector')
    @classmethod
    def validate_detector_path(cls, v: Optional[str]) -> Optional[str]:
        """Formato 'paquete.modulo:callable'"""
        if v is None:
            return v
        module_name, sep, attr = v.partition(':')
        if not sep or not module_name or not attr:
            raise ValueError(f"detector must be 'module:callable', got '{v}'")
        return v

    @model_validator(mode='after')
    def validate_ranges(self):
        """min < max para área y aspect ratio"""
        if self.min_area >= self.max_area:
            raise ValueError(
                f"min_area ({self.min_area}) must be < max_area ({self.max_area})"
            )
        if self.min_aspect_ratio >= self.max_aspect_ratio:
            raise ValueError(
                f"min_aspect_ratio ({self.min_aspect_ratio}) must be < "
                f"max_aspect_ratio ({self.max_aspect_ratio})"
            )
        return self


# ============================================================================
# Stabilization Configuration
# ============================================================================

class StabilitySettings(BaseModel):
    """Stability gate: frames consecutivos requeridos"""
    needed: int = Field(
        default=4,
        ge=2,
        description="Frames consecutivos con candidato para considerarlo estable"
    )


class DedupSettings(BaseModel):
    """Parámetros del deduper (confidence gating + IoU + forget window)"""
    min_confidence: float = Field(
        default=0.65,
        ge=0.0,
        le=1.0,
        description="Confidence mínima para considerar un anuncio"
    )
    max_spatial_overlap_for_new: float = Field(
        default=0.35,
        ge=0.0,
        le=1.0,
        description="IoU por encima del cual es el mismo cartel"
    )
    forget_after: float = Field(
        default=8.0,
        gt=0.0,
        description="Segundos tras los cuales se olvida el último anuncio"
    )


# ============================================================================
# Motion Configuration
# ============================================================================

class MotionSettings(BaseModel):
    """Fusión GPS + acelerómetro"""
    moving_speed_threshold: float = Field(
        default=2.0,
        ge=0.0,
        description="Velocidad GPS (m/s) por encima de la cual siempre está en movimiento"
    )
    stopped_speed_threshold: float = Field(
        default=0.5,
        ge=0.0,
        description="Velocidad GPS (m/s) por debajo de la cual puede estar detenido"
    )
    accel_deviation_threshold: float = Field(
        default=0.1,
        ge=0.0,
        description="Desviación máxima de 1g para considerar acelerómetro en calma"
    )
    required_stop_duration: float = Field(
        default=2.0,
        gt=0.0,
        description="Segundos detenido para contar como full stop"
    )
    verification_margin: float = Field(
        default=0.5,
        ge=0.0,
        description="Margen extra antes de leer el veredicto"
    )
    accelerometer_available: bool = Field(
        default=True,
        description="False = clasificación GPS-only en cada fix"
    )

    @model_validator(mode='after')
    def validate_speed_order(self):
        """stopped threshold debe ser <= moving threshold"""
        if self.stopped_speed_threshold > self.moving_speed_threshold:
            raise ValueError(
                f"stopped_speed_threshold ({self.stopped_speed_threshold}) must be <= "
                f"moving_speed_threshold ({self.moving_speed_threshold})"
            )
        return self


class AnnouncerSettings(BaseModel):
    """Canal de voz (rate limit secundario)"""
    min_speak_interval: float = Field(
        default=6.0,
        ge=0.0,
        description="Intervalo mínimo entre utterances (s)"
    )


# ============================================================================
# Drive / Persistence Configuration
# ============================================================================

class DriveSettings(BaseModel):
    """Persistencia de drives"""
    store: Literal['memory', 'json'] = Field(
        default='memory',
        description="Backend de persistencia"
    )
    data_dir: str = Field(
        default="data/drives",
        description="Directorio para store 'json'"
    )
    background_sync: bool = Field(
        default=True,
        description="Persistir en un worker thread (no bloquea el pipeline)"
    )


# ============================================================================
# MQTT Configuration
# ============================================================================

class MQTTCredentials(BaseSettings):
    """Credenciales MQTT desde environment (MQTT_USERNAME / MQTT_PASSWORD)"""
    model_config = SettingsConfigDict(env_prefix='MQTT_', extra='ignore')

    username: Optional[str] = None
    password: Optional[str] = None


class MQTTBrokerSettings(BaseModel):
    """MQTT broker connection settings"""
    host: str = Field(
        default="localhost",
        description="MQTT broker hostname"
    )
    port: int = Field(
        default=1883,
        ge=1,
        le=65535,
        description="MQTT broker port"
    )
    username: Optional[str] = Field(
        default=None,
        description="MQTT username (optional, from env)"
    )
    password: Optional[str] = Field(
        default=None,
        description="MQTT password (optional, from env)"
    )


class MQTTTopicsSettings(BaseModel):
    """MQTT topic configuration"""
    control_commands: str = Field(
        default="stopguard/control/commands",
        description="Control commands topic (QoS 1)"
    )
    control_status: str = Field(
        default="stopguard/control/status",
        description="Control status topic"
    )
    alerts: str = Field(
        default="stopguard/data/alerts",
        description="Alertas para UI/audio (QoS 0)"
    )
    stop_events: str = Field(
        default="stopguard/data/stop_events",
        description="Stop sign events (QoS 1)"
    )
    drive_summaries: str = Field(
        default="stopguard/data/drive_summaries",
        description="Resumen al terminar un drive (QoS 1)"
    )
    sensor_detections: str = Field(
        default="stopguard/sensors/detections",
        description="Detecciones crudas por frame"
    )
    sensor_location: str = Field(
        default="stopguard/sensors/location",
        description="Location fixes"
    )
    sensor_accelerometer: str = Field(
        default="stopguard/sensors/accelerometer",
        description="Ticks del acelerómetro"
    )
    sensor_frames: str = Field(
        default="stopguard/sensors/frames",
        description="Frames para el detector local (si detection.detector está configurado)"
    )


class MQTTQoSSettings(BaseModel):
    """MQTT QoS levels"""
    control: Literal[0, 1, 2] = Field(
        default=1,
        description="Control plane QoS"
    )
    alerts: Literal[0, 1, 2] = Field(
        default=0,
        description="Alertas: fire-and-forget"
    )
    events: Literal[0, 1, 2] = Field(
        default=1,
        description="Stop events y summaries: at-least-once"
    )
    sensors: Literal[0, 1, 2] = Field(
        default=0,
        description="Sensores: fire-and-forget"
    )


class MQTTSettings(BaseModel):
    """Complete MQTT configuration"""
    broker: MQTTBrokerSettings = Field(default_factory=MQTTBrokerSettings)
    topics: MQTTTopicsSettings = Field(default_factory=MQTTTopicsSettings)
    qos: MQTTQoSSettings = Field(default_factory=MQTTQoSSettings)


# ============================================================================
# Logging Configuration
# ============================================================================

class LoggingSettings(BaseModel):
    """Logging configuration (JSON structured logging)"""
    level: Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'] = Field(
        default='INFO',
        description="Log level"
    )
    json_indent: Optional[int] = Field(
        default=None,
        ge=0,
        le=4,
        description="JSON indent para pretty-print (None=compact, 2=readable)"
    )
    paho_level: Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'] = Field(
        default='WARNING',
        description="Paho MQTT library log level"
    )
    file: Optional[str] = Field(
        default=None,
        description="Path to log file (None=stdout). Si se especifica, usa rotation."
    )
    max_bytes: int = Field(
        default=10485760,  # 10 MB
        ge=1024,
        description="Maximum bytes per log file before rotation"
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep"
    )


# ============================================================================
# Root Configuration
# ============================================================================

class StopGuardConfig(BaseModel):
    """
    Root configuration con validación completa.

    Carga desde YAML y valida todo. Variables de entorno pisan el YAML para
    datos sensibles (credenciales MQTT).
    """
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    stability: StabilitySettings = Field(default_factory=StabilitySettings)
    dedup: DedupSettings = Field(default_factory=DedupSettings)
    motion: MotionSettings = Field(default_factory=MotionSettings)
    announcer: AnnouncerSettings = Field(default_factory=AnnouncerSettings)
    drive: DriveSettings = Field(default_factory=DriveSettings)
    mqtt: MQTTSettings = Field(default_factory=MQTTSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_yaml(cls, config_path: str) -> 'StopGuardConfig':
        """
        Load and validate configuration from YAML file.

        Args:
            config_path: Path to config.yaml

        Returns:
            Validated StopGuardConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValidationError: If config is invalid
        """
        import yaml

        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create it from config/stopguard/config.yaml"
            )

        with open(config_file, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        config = cls(**config_dict)
        config.apply_env_credentials()
        return config

    def apply_env_credentials(self) -> None:
        """Override de credenciales MQTT desde environment"""
        credentials = MQTTCredentials()
        if credentials.username:
            self.mqtt.broker.username = credentials.username
        if credentials.password:
            self.mqtt.broker.password = credentials.password
