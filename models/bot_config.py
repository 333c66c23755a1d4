"""
Run configuration chosen by the operator.

``BotConfig`` is validated once at load time. Live changes (``set <key>
<value>``) go through the closed ``CONFIG_FIELDS`` table: every editable
field has its own parser, and keys outside the table are rejected.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, field_validator, model_validator

from enums.venue import AfterAction, Venue
from utils.exceptions import ConfigError
from utils.validators import is_valid_pubkey, parse_bool, parse_float, parse_int, parse_pubkey

MIN_MARKET_CAP_THRESHOLD = 5000


class BotConfig(BaseModel):

    thread_count: int = 1
    buy_interval: float = 5.0
    spend_limit: float
    start_amount: float
    market_cap_threshold: Optional[int] = None  # None = sin umbral
    action: AfterAction = AfterAction.SELL
    token_name: Optional[str] = None
    token_ticker: Optional[str] = None
    collect_address: Optional[str] = None
    asset_address: Optional[str] = None
    buy_once: bool = False
    start_interval: float = 0.0
    venue: Venue = Venue.PUMP
    buy_slippage: float = 0.85
    sell_slippage: float = 0.5

    @field_validator("thread_count")
    @classmethod
    def _threads(cls, v: int) -> int:
        if v < 1:
            raise ValueError("thread_count debe ser >= 1")
        return v

    @field_validator("buy_interval", "spend_limit")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("debe ser > 0")
        return v

    @field_validator("start_interval")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("start_interval debe ser >= 0")
        return v

    @field_validator("market_cap_threshold")
    @classmethod
    def _mcap(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < MIN_MARKET_CAP_THRESHOLD:
            raise ValueError(f"market_cap_threshold debe ser >= {MIN_MARKET_CAP_THRESHOLD}")
        return v

    @field_validator("buy_slippage", "sell_slippage")
    @classmethod
    def _slippage(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("slippage es una fracción en (0, 1]")
        return v

    @field_validator("collect_address", "asset_address")
    @classmethod
    def _address(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_valid_pubkey(v):
            raise ValueError(f"dirección inválida: {v}")
        return v.strip() if v else v

    @model_validator(mode="after")
    def _cross_fields(self) -> "BotConfig":
        if not 0 < self.start_amount < self.spend_limit:
            raise ValueError("start_amount debe estar entre 0 y spend_limit")
        if bool(self.token_name) != bool(self.token_ticker):
            raise ValueError("token_name y token_ticker van juntos")
        if self.asset_address and self.token_name:
            raise ValueError("usa asset_address o token_name/token_ticker, no ambos")
        if not self.asset_address and not self.token_name:
            raise ValueError("falta asset_address o token_name/token_ticker")
        return self

    @property
    def effective_threshold(self) -> float:
        return float(self.market_cap_threshold) if self.market_cap_threshold is not None else math.inf

    def apply(self, key: str, raw: Any) -> Any:
        """Valida y aplica un cambio en vivo. ConfigError si la clave o el valor no valen."""
        value = parse_config_value(key, raw)
        setattr(self, key, value)
        return value

    def describe(self) -> str:
        return "\n".join(f"{k}: {v.value if hasattr(v, 'value') else v}" for k, v in self.model_dump().items())


# ---------- tabla cerrada de campos editables ----------
@dataclass(frozen=True)
class ConfigField:
    parse: Callable[[Any], Any]
    session_level: bool = False
    # solo tiene efecto antes de arrancar las sesiones
    startup_only: bool = False


def _action(raw: Any) -> AfterAction:
    try:
        return AfterAction(str(raw).strip().lower())
    except ValueError:
        raise ValueError(f"'{raw}' no es sell|collect")


CONFIG_FIELDS: Dict[str, ConfigField] = {
    "buy_interval": ConfigField(lambda v: parse_int(v, 1), session_level=True),
    "spend_limit": ConfigField(lambda v: parse_float(v, 0.001), startup_only=True),
    "buy_once": ConfigField(parse_bool, session_level=True),
    "market_cap_threshold": ConfigField(lambda v: parse_int(v, MIN_MARKET_CAP_THRESHOLD), session_level=True),
    "start_interval": ConfigField(lambda v: parse_float(v, 0.0)),
    "action": ConfigField(_action),
    "collect_address": ConfigField(parse_pubkey),
}


def parse_config_value(key: str, raw: Any) -> Any:
    field = CONFIG_FIELDS.get(key)
    if field is None:
        raise ConfigError(f"Clave desconocida: '{key}'. Válidas: {', '.join(CONFIG_FIELDS)}")
    try:
        return field.parse(raw)
    except ValueError as e:
        raise ConfigError(f"Valor inválido para {key}: {e}") from e


def is_session_field(key: str) -> bool:
    field = CONFIG_FIELDS.get(key)
    return bool(field and field.session_level)


def is_startup_only(key: str) -> bool:
    field = CONFIG_FIELDS.get(key)
    return bool(field and field.startup_only)
