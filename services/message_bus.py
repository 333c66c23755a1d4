from __future__ import annotations
import os
import queue
import threading
from typing import Dict, Optional

from enums.command import Command
from models.messages import ControlMessage, SessionEvent
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)

INBOX_SIZE = int(os.getenv("SESSION_INBOX_SIZE", "64"))
COMMAND_PUT_TIMEOUT_SECS = 1.0


class MessageBus:
    """
    Canales controlador ↔ sesiones.

    - Un inbox acotado por sesión (controlador → sesión), ordenado.
    - Un outbox compartido (sesión → controlador), ordenado por sesión.
    - METADATA_UPDATE se envía sin bloquear: si el inbox está lleno se
      descarta y la siguiente difusión lo sustituye.
    """

    def __init__(self, inbox_size: int = INBOX_SIZE) -> None:
        self.inbox_size = inbox_size
        self.outbox: "queue.Queue[SessionEvent]" = queue.Queue()
        self._inboxes: Dict[int, "queue.Queue[ControlMessage]"] = {}
        self._lock = threading.Lock()

    # ---------- registro ----------
    def register(self, session_id: int) -> "queue.Queue[ControlMessage]":
        with self._lock:
            if session_id in self._inboxes:
                raise ValueError(f"Sesión {session_id} ya registrada")
            inbox: "queue.Queue[ControlMessage]" = queue.Queue(maxsize=self.inbox_size)
            self._inboxes[session_id] = inbox
            return inbox

    def unregister(self, session_id: int) -> None:
        with self._lock:
            self._inboxes.pop(session_id, None)

    def session_ids(self) -> list[int]:
        with self._lock:
            return list(self._inboxes)

    # ---------- controlador → sesión ----------
    def send(self, session_id: int, message: ControlMessage) -> bool:
        with self._lock:
            inbox = self._inboxes.get(session_id)
        if inbox is None:
            return False
        try:
            if message.command is Command.METADATA_UPDATE:
                inbox.put_nowait(message)
            else:
                inbox.put(message, timeout=COMMAND_PUT_TIMEOUT_SECS)
            return True
        except queue.Full:
            if message.command is Command.METADATA_UPDATE:
                logger.debug(f"[bus] inbox de sesión {session_id} lleno; metadata descartada")
            else:
                logger.error(f"[bus] inbox de sesión {session_id} lleno; se pierde {message.command.value}")
            return False

    def broadcast(self, message: ControlMessage) -> int:
        delivered = 0
        for sid in self.session_ids():
            if self.send(sid, message):
                delivered += 1
        return delivered

    # ---------- sesión → controlador ----------
    def publish(self, event: SessionEvent) -> None:
        self.outbox.put(event)

    def next_event(self, timeout: float) -> Optional[SessionEvent]:
        try:
            return self.outbox.get(timeout=timeout)
        except queue.Empty:
            return None
