from __future__ import annotations

from enum import Enum


class Command(str, Enum):
    """Mensajes controlador → sesión."""

    BUY = "buy"
    SELL = "sell"
    STOP = "stop"
    COLLECT = "collect"
    METADATA_UPDATE = "metadata_update"
    CONFIG_UPDATE = "config_update"


class EventKind(str, Enum):
    """Mensajes sesión → controlador."""

    LOG = "log"
    STARTED = "started"
    FINISHED = "finished"
