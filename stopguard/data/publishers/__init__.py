"""
Publishers
==========

Publishers especializados para formatear mensajes MQTT.

- Conocen la estructura de mensajes (lógica de negocio)
- NO conocen detalles de MQTT (eso es del DataPlane)
- Un publisher por tipo de mensaje
"""
from .alerts import AlertPublisher
from .events import DriveSummaryPublisher, StopEventPublisher

__all__ = ['AlertPublisher', 'DriveSummaryPublisher', 'StopEventPublisher']
