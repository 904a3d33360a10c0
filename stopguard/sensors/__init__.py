"""
Sensor Plane - MQTT ingestion (detecciones, frames, location, acelerómetro)
"""
from .plane import DetectionPayloadError, MQTTSensorPlane, RemoteDetectorError

__all__ = ["MQTTSensorPlane", "DetectionPayloadError", "RemoteDetectorError"]
