"""
MQTT Sink Factory
=================

Factory function para crear un sink del DetectionPipeline que publica vía MQTT.
"""
from typing import Callable

from ..detection.pipeline import AlertRequested, PipelineOutput, StopSignRecorded
from .plane import MQTTDataPlane


def create_mqtt_sink(data_plane: MQTTDataPlane) -> Callable[[PipelineOutput], None]:
    """
    Crea un sink que despacha cada output del pipeline a su topic.

    Args:
        data_plane: Instancia de MQTTDataPlane

    Returns:
        Función sink compatible con DetectionPipeline.add_sink()

    Note:
        La función retornada tiene __name__ = 'mqtt_sink' para identificarla
        en los logs del pipeline.
    """
    def mqtt_sink(output: PipelineOutput) -> None:
        """Sink que publica outputs del pipeline vía MQTT"""
        if isinstance(output, AlertRequested):
            data_plane.publish_alert(output)
        elif isinstance(output, StopSignRecorded):
            data_plane.publish_stop_event(output)

    mqtt_sink.__name__ = 'mqtt_sink'

    return mqtt_sink
