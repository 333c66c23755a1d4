from __future__ import annotations

import threading
import sys
from typing import Callable, Optional, Protocol, TextIO

from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

HELP = "Comandos: stop | config | collect | sell | set <clave> <valor>"


class ControlTarget(Protocol):
    def stop(self) -> bool: ...
    def sell(self) -> bool: ...
    def request_collect(self) -> bool: ...
    def update_config(self, key: str, raw: object) -> bool: ...
    def describe(self) -> str: ...


class CommandController:
    """
    Traduce comandos de texto del operador (consola o Telegram) a llamadas
    del controlador de sesiones. Un comando inválido no toca ningún estado.
    """

    def __init__(self, target: ControlTarget) -> None:
        self.target = target

    @log_function
    def handle(self, line: str) -> str:
        parts = (line or "").strip().split()
        if not parts:
            return HELP
        cmd, args = parts[0].lower().lstrip("/"), parts[1:]

        if cmd == "stop":
            return "Deteniendo sesiones" if self.target.stop() else "Parada ya en curso"
        if cmd == "sell":
            return "Venta forzada enviada" if self.target.sell() else "Venta ya en curso"
        if cmd == "collect":
            return "Recogida solicitada" if self.target.request_collect() else "Recogida ya en curso"
        if cmd == "config":
            return self.target.describe()
        if cmd == "set":
            if len(args) != 2:
                return "Uso: set <clave> <valor>"
            key, value = args
            if self.target.update_config(key, value):
                return f"{key} actualizado a {value}"
            return f"No se pudo cambiar {key}"
        if cmd in ("help", "?"):
            return HELP
        logger.warning(f"Comando desconocido: {line!r}")
        return f"Comando desconocido: {cmd}. {HELP}"


class ConsoleReader:
    """Lee comandos de stdin en un hilo daemon."""

    def __init__(self, commands: CommandController, stream: Optional[TextIO] = None,
                 output: Callable[[str], None] = print) -> None:
        self.commands = commands
        self.stream = stream or sys.stdin
        self.output = output
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="Console", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        for line in self.stream:
            if not line.strip():
                continue
            self.output(self.commands.handle(line))
