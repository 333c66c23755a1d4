"""
Live market data for the traded asset.

Built from the launchpad coin endpoint or from DexScreener pairs. Sessions
replace their copy wholesale on every broadcast.
"""

from __future__ import annotations

import time
from typing import Optional

from pydantic import BaseModel, Field


class MarketMetadata(BaseModel):

    asset_address: str
    usd_market_cap: float = 0.0
    is_migrated: bool = False
    symbol: str = ""
    name: str = ""
    pool_address: Optional[str] = None
    virtual_sol_reserves: Optional[float] = None
    virtual_token_reserves: Optional[float] = None
    decimals: int = 6
    updated_at: int = Field(default_factory=lambda: int(time.time()))

    @classmethod
    def from_pump(cls, raw: dict) -> "MarketMetadata":
        return cls(
            asset_address=raw.get("mint", ""),
            usd_market_cap=float(raw.get("usd_market_cap") or 0),
            # complete = la curva terminó y el pool migró
            is_migrated=bool(raw.get("complete")) or bool(raw.get("raydium_pool") or raw.get("pump_swap_pool")),
            symbol=raw.get("symbol", "") or "",
            name=raw.get("name", "") or "",
            pool_address=raw.get("pump_swap_pool") or raw.get("raydium_pool") or raw.get("bonding_curve"),
            virtual_sol_reserves=_opt_float(raw.get("virtual_sol_reserves")),
            virtual_token_reserves=_opt_float(raw.get("virtual_token_reserves")),
        )

    @classmethod
    def from_dexscreener(cls, raw: dict) -> "MarketMetadata":
        base = raw.get("baseToken", {}) or {}
        return cls(
            asset_address=base.get("address", ""),
            usd_market_cap=float(raw.get("marketCap") or raw.get("fdv") or 0),
            is_migrated=raw.get("dexId", "") != "pumpfun",
            symbol=base.get("symbol", "") or "",
            name=base.get("name", "") or "",
            pool_address=raw.get("pairAddress"),
        )


def _opt_float(value) -> Optional[float]:
    return float(value) if value is not None else None
