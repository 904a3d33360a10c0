"""
Data Plane - MQTT Data Publishing (alertas, eventos de stop, summaries)
"""
from .plane import MQTTDataPlane
from .sinks import create_mqtt_sink

__all__ = ["MQTTDataPlane", "create_mqtt_sink"]
