from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from enums.command import Command, EventKind
from models.market_metadata import MarketMetadata
from models.session import SessionState


@dataclass(frozen=True)
class ControlMessage:
    """Controlador → sesión. Idempotente en el receptor."""

    command: Command
    metadata: Optional[MarketMetadata] = None
    key: Optional[str] = None
    value: Any = None

    @classmethod
    def buy(cls) -> "ControlMessage":
        return cls(Command.BUY)

    @classmethod
    def sell(cls) -> "ControlMessage":
        return cls(Command.SELL)

    @classmethod
    def stop(cls) -> "ControlMessage":
        return cls(Command.STOP)

    @classmethod
    def collect(cls) -> "ControlMessage":
        return cls(Command.COLLECT)

    @classmethod
    def metadata_update(cls, metadata: MarketMetadata) -> "ControlMessage":
        return cls(Command.METADATA_UPDATE, metadata=metadata)

    @classmethod
    def config_update(cls, key: str, value: Any) -> "ControlMessage":
        return cls(Command.CONFIG_UPDATE, key=key, value=value)


@dataclass(frozen=True)
class SessionEvent:
    """Sesión → controlador."""

    kind: EventKind
    session_id: int
    text: str = ""
    address: Optional[str] = None
    state: Optional[SessionState] = field(default=None, compare=False)
