"""
Result of one confirmed trade submission.

``realized_spend`` is the SOL actually debited from the funding account
(balance delta for the confirmed signature). It stays ``None`` when the delta
could not be observed; callers then fall back to the nominal ``amount``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class TradeResult(BaseModel):
    signature: str
    side: str
    amount: float
    realized_spend: Optional[float] = None

    @property
    def spend(self) -> float:
        if self.realized_spend is not None and self.realized_spend > 0:
            return self.realized_spend
        return self.amount


class TokenHolding(BaseModel):
    mint: str
    amount: int = 0          # unidades mínimas
    decimals: int = 0
    ui_amount: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.amount <= 0
