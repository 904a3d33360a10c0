"""
Command Registry
================

Registry explícito de comandos MQTT disponibles.

- Sólo se registran comandos que el engine soporta en este modo
  (ej: 'sync' sólo si hay store persistente)
- Validación temprana: error claro si el comando no existe
- Comandos con parámetros (start_drive) reciben el payload del mensaje
"""
from typing import Any, Callable, Dict, Mapping, Optional, Set
import logging

logger = logging.getLogger(__name__)


class CommandNotAvailableError(Exception):
    """Comando no está disponible en el modo actual."""
    pass


class CommandParamsError(ValueError):
    """Parámetros inválidos para un comando."""
    pass


class CommandRegistry:
    """
    Registry de comandos MQTT.

    Usage:
        registry = CommandRegistry()
        registry.register('end_drive', controller.end_drive, "Termina el drive")
        registry.register(
            'start_drive', controller.start_drive, "Inicia un drive",
            takes_params=True,
        )

        registry.execute('start_drive', {"user_id": "u-1"})
    """

    def __init__(self):
        self._commands: Dict[str, Callable] = {}
        self._descriptions: Dict[str, str] = {}
        self._takes_params: Set[str] = set()

    def register(
        self,
        command: str,
        handler: Callable,
        description: str = "",
        takes_params: bool = False,
    ):
        """
        Registra un comando.

        Args:
            command: Nombre del comando (ej: 'start_drive', 'status')
            handler: Función a ejecutar
            description: Descripción del comando para help/logging
            takes_params: Si True, el handler recibe el dict de parámetros

        Note:
            Si comando ya existe, se sobrescribe con warning.
        """
        if command in self._commands:
            logger.warning(f"⚠️ Comando '{command}' ya registrado, sobrescribiendo")

        self._commands[command] = handler
        self._descriptions[command] = description
        if takes_params:
            self._takes_params.add(command)
        else:
            self._takes_params.discard(command)
        logger.debug(f"📝 Comando registrado: '{command}' - {description}")

    def execute(self, command: str, params: Optional[Mapping[str, Any]] = None):
        """
        Ejecuta un comando.

        Args:
            command: Nombre del comando
            params: Parámetros del mensaje (ignorados si el comando no los usa)

        Returns:
            Resultado del handler (o None)

        Raises:
            CommandNotAvailableError: Si comando no está registrado
        """
        if command not in self._commands:
            available = ', '.join(sorted(self.available_commands))
            raise CommandNotAvailableError(
                f"Command '{command}' not available. "
                f"Available commands: {available}"
            )

        handler = self._commands[command]
        logger.debug(f"⚙️ Ejecutando comando: '{command}'")
        if command in self._takes_params:
            return handler(dict(params or {}))
        return handler()

    def is_available(self, command: str) -> bool:
        return command in self._commands

    @property
    def available_commands(self) -> Set[str]:
        return set(self._commands.keys())

    def get_help(self) -> Dict[str, str]:
        """
        Retorna diccionario de comandos con descripciones.

        Usage:
            for cmd, desc in registry.get_help().items():
                print(f"{cmd}: {desc}")
        """
        return dict(self._descriptions)

    def __repr__(self) -> str:
        cmds = ', '.join(sorted(self.available_commands))
        return f"CommandRegistry({len(self._commands)} commands: {cmds})"
