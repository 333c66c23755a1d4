"""
Per-session configuration and mutable state.

``SessionConfig`` is derived from :class:`models.bot_config.BotConfig` for one
funding account. ``spend_limit`` is adjusted once at startup from the balance
snapshot and stays fixed for the rest of the session.

``SessionState`` belongs to a single session thread; the controller only sees
copies of it (``snapshot()``) inside FINISHED events.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Optional

from pydantic import BaseModel

from enums.session_phase import SessionPhase
from models.bot_config import BotConfig, is_session_field, parse_config_value
from utils.exceptions import ConfigError


class SessionConfig(BaseModel):
    session_id: int
    spend_limit: float
    start_amount: float
    buy_interval: float
    market_cap_threshold: float = math.inf
    buy_once: bool = False
    buy_slippage: float = 0.85
    sell_slippage: float = 0.5

    @classmethod
    def from_bot_config(cls, session_id: int, bot: BotConfig) -> "SessionConfig":
        return cls(
            session_id=session_id,
            spend_limit=bot.spend_limit,
            start_amount=bot.start_amount,
            buy_interval=bot.buy_interval,
            market_cap_threshold=bot.effective_threshold,
            buy_once=bot.buy_once,
            buy_slippage=bot.buy_slippage,
            sell_slippage=bot.sell_slippage,
        )

    def apply(self, key: str, raw: Any) -> Any:
        """Cambio en vivo; solo los campos de sesión de la tabla cerrada."""
        if not is_session_field(key):
            raise ConfigError(f"'{key}' no se puede cambiar en una sesión en marcha")
        value = parse_config_value(key, raw)
        setattr(self, key, float(value) if key == "market_cap_threshold" else value)
        return value


@dataclass
class SessionState:
    phase: SessionPhase = SessionPhase.IDLE
    spent_so_far: float = 0.0
    current_buy_amount: float = 0.0
    buy_signal_received: bool = False
    sell_signal_received: bool = False
    done: bool = False
    buys: int = 0
    sells: int = 0
    failed_attempts: int = 0
    error: Optional[str] = None

    def mark_sell(self) -> bool:
        """Activa la señal de venta. Devuelve False si ya estaba activa (nunca se desactiva)."""
        if self.sell_signal_received:
            return False
        self.sell_signal_received = True
        return True

    def add_spend(self, amount: float) -> None:
        self.spent_so_far += max(0.0, amount)

    def saturate(self, limit: float) -> None:
        self.spent_so_far = max(self.spent_so_far, limit)

    def snapshot(self) -> "SessionState":
        return replace(self)
