"""
Announcer
=========

Canal de voz one-shot con rate limiting.

El Deduper es el guard principal contra alertas repetidas; el intervalo
mínimo del Announcer es la red de seguridad secundaria (nunca hablar dos
veces dentro de min_speak_interval, pase lo que pase aguas arriba).

Fallas del backend de voz se loggean y se tragan: las alertas son best-effort.
"""
from typing import Callable, Optional
import logging
import time

from ..logging import log_error_with_context

logger = logging.getLogger(__name__)


class Announcer:
    """
    Wrapper rate-limited de un backend de speech.

    Args:
        speech_backend: Callable text -> None (TTS, print, MQTT, etc.)
        min_speak_interval: Segundos mínimos entre dos locuciones
        clock: Reloj inyectable (tests)
    """

    def __init__(
        self,
        speech_backend: Callable[[str], None],
        min_speak_interval: float = 6.0,
        clock: Callable[[], float] = time.time,
    ):
        self.speech_backend = speech_backend
        self.min_speak_interval = min_speak_interval
        self._clock = clock
        self._last_spoken_at: Optional[float] = None
        self.spoken_count = 0
        self.throttled_count = 0
        self.failed_count = 0

    @property
    def last_spoken_at(self) -> Optional[float]:
        return self._last_spoken_at

    def say(self, text: str, force: bool = False) -> bool:
        """
        Habla `text` si pasó el intervalo mínimo.

        Args:
            text: Texto a locutar
            force: Ignora el intervalo (feedback de veredicto). Una locución
                   forzada no mueve la ventana de rate limiting.

        Returns:
            True si el backend aceptó la locución
        """
        now = self._clock()
        if (
            not force
            and self._last_spoken_at is not None
            and now - self._last_spoken_at < self.min_speak_interval
        ):
            self.throttled_count += 1
            logger.debug(
                "Speech throttled",
                extra={
                    "component": "announcer",
                    "event": "throttled",
                    "text": text,
                    "since_last_s": round(now - self._last_spoken_at, 2),
                }
            )
            return False

        try:
            self.speech_backend(text)
        except Exception as e:
            self.failed_count += 1
            log_error_with_context(
                logger,
                message="⚠️ Speech backend falló",
                exception=e,
                component="announcer",
                event="speech_failed",
                text=text,
            )
            return False

        if not force:
            self._last_spoken_at = now
        self.spoken_count += 1
        return True

    def reset(self) -> None:
        self._last_spoken_at = None


def log_speech_backend(text: str) -> None:
    """Backend por defecto: sólo loggea (sin TTS en el host)."""
    logger.info(
        f"🗣️ {text}",
        extra={"component": "announcer", "event": "spoken", "text": text}
    )
