from __future__ import annotations
import base64
import os
from typing import Any, Dict

import requests
from solders.pubkey import Pubkey

from enums.venue import Venue
from models.market_metadata import MarketMetadata
from models.trade_result import TokenHolding
from services.market_service import MarketService
from services.trader_base import SOL_MINT, Trader
from utils.amounts import LAMPORTS_PER_SOL, to_lamports
from utils.exceptions import SniperError
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

JUPITER_API_URL = os.getenv("JUPITER_API_URL", "https://lite-api.jup.ag/swap/v1").rstrip("/")
PRIORITY_FEE_SOL = float(os.getenv("PRIORITY_FEE_SOL", "0.0005"))
HTTP_TIMEOUT_SECS = float(os.getenv("JUPITER_HTTP_TIMEOUT_SECS", "10"))


class JupiterTrader(Trader):
    """Rutas del agregador. También vende activos ya migrados de la curva."""

    venue = Venue.JUPITER

    def __init__(self, market: MarketService | None = None, api_url: str | None = None) -> None:
        self.market = market or MarketService()
        self.api_url = (api_url or JUPITER_API_URL).rstrip("/")

    # ---------- API ----------
    def _quote(self, input_mint: str, output_mint: str, amount_raw: int, slippage: float) -> Dict[str, Any]:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(int(amount_raw)),
            "slippageBps": int(round(slippage * 10_000)),
        }
        r = requests.get(f"{self.api_url}/quote", params=params, timeout=HTTP_TIMEOUT_SECS)
        r.raise_for_status()
        data = r.json()
        if "error" in data or "errorCode" in data:
            raise SniperError(f"Jupiter quote: {data.get('error') or data.get('errorCode')}")
        return data

    def _swap_tx(self, quote: Dict[str, Any], owner: Pubkey) -> bytes:
        body = {
            "quoteResponse": quote,
            "userPublicKey": str(owner),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": to_lamports(PRIORITY_FEE_SOL),
        }
        r = requests.post(f"{self.api_url}/swap", json=body, timeout=HTTP_TIMEOUT_SECS)
        r.raise_for_status()
        tx_b64 = r.json().get("swapTransaction")
        if not tx_b64:
            raise SniperError(f"Jupiter swap sin transacción: {r.text[:200]}")
        return base64.b64decode(tx_b64)

    # ---------- Trader ----------
    def quote(self, metadata: MarketMetadata, amount: float, side: str) -> float:
        if side == "buy":
            q = self._quote(SOL_MINT, metadata.asset_address, to_lamports(amount), 0.01)
            return int(q["outAmount"]) / (10 ** metadata.decimals)
        q = self._quote(metadata.asset_address, SOL_MINT, int(amount * 10 ** metadata.decimals), 0.01)
        return int(q["outAmount"]) / LAMPORTS_PER_SOL

    @log_function
    def build_buy(self, owner: Pubkey, metadata: MarketMetadata, sol_amount: float, slippage: float) -> bytes:
        q = self._quote(SOL_MINT, metadata.asset_address, to_lamports(sol_amount), slippage)
        return self._swap_tx(q, owner)

    @log_function
    def build_sell(self, owner: Pubkey, metadata: MarketMetadata, holding: TokenHolding, slippage: float) -> bytes:
        q = self._quote(metadata.asset_address, SOL_MINT, holding.amount, slippage)
        return self._swap_tx(q, owner)

    def describe_asset(self, mint: str) -> MarketMetadata:
        md = self.market.fetch_dexscreener(mint) or self.market.fetch_pump_coin(mint)
        if md is None:
            raise SniperError(f"Sin datos de mercado para {mint}")
        return md
