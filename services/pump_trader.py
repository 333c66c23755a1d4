from __future__ import annotations
import os

import requests
from solders.pubkey import Pubkey

from enums.venue import Venue
from models.market_metadata import MarketMetadata
from models.trade_result import TokenHolding
from services.jupiter_trader import JupiterTrader
from services.market_service import MarketService
from services.trader_base import Trader
from utils.amounts import to_lamports
from utils.exceptions import SniperError
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

PUMPPORTAL_API_URL = os.getenv("PUMPPORTAL_API_URL", "https://pumpportal.fun/api").rstrip("/")
PRIORITY_FEE_SOL = float(os.getenv("PRIORITY_FEE_SOL", "0.0005"))
HTTP_TIMEOUT_SECS = float(os.getenv("PUMPPORTAL_HTTP_TIMEOUT_SECS", "10"))


class PumpTrader(Trader):
    """
    Curva del launchpad vía la API trade-local de PumpPortal, que devuelve la
    transacción serializada lista para firmar. Si el activo ya migró, la venta
    va por el agregador.
    """

    venue = Venue.PUMP

    def __init__(self, market: MarketService | None = None, aggregator: JupiterTrader | None = None,
                 api_url: str | None = None) -> None:
        self.market = market or MarketService()
        self.aggregator = aggregator or JupiterTrader(self.market)
        self.api_url = (api_url or PUMPPORTAL_API_URL).rstrip("/")

    def _trade_local(self, owner: Pubkey, mint: str, action: str, amount: float | str,
                     denominated_in_sol: bool, slippage: float) -> bytes:
        payload = {
            "publicKey": str(owner),
            "action": action,
            "mint": mint,
            "amount": amount,
            "denominatedInSol": "true" if denominated_in_sol else "false",
            "slippage": int(round(slippage * 100)),  # en %
            "priorityFee": PRIORITY_FEE_SOL,
            "pool": "pump",
        }
        r = requests.post(f"{self.api_url}/trade-local", data=payload, timeout=HTTP_TIMEOUT_SECS)
        if r.status_code != 200:
            raise SniperError(f"PumpPortal {action} {r.status_code}: {r.text[:200]}")
        return r.content

    # ---------- Trader ----------
    def quote(self, metadata: MarketMetadata, amount: float, side: str) -> float:
        """Estimación con las reservas virtuales de la curva (producto constante)."""
        vsr, vtr = metadata.virtual_sol_reserves, metadata.virtual_token_reserves
        if not vsr or not vtr:
            return 0.0
        if side == "buy":
            sol_in = to_lamports(amount)
            return (vtr * sol_in / (vsr + sol_in)) / (10 ** metadata.decimals)
        tokens_in = amount * 10 ** metadata.decimals
        return (vsr * tokens_in / (vtr + tokens_in)) / 1e9

    @log_function
    def build_buy(self, owner: Pubkey, metadata: MarketMetadata, sol_amount: float, slippage: float) -> bytes:
        if metadata.is_migrated:
            return self.aggregator.build_buy(owner, metadata, sol_amount, slippage)
        return self._trade_local(owner, metadata.asset_address, "buy", sol_amount, True, slippage)

    @log_function
    def build_sell(self, owner: Pubkey, metadata: MarketMetadata, holding: TokenHolding, slippage: float) -> bytes:
        if metadata.is_migrated:
            return self.aggregator.build_sell(owner, metadata, holding, slippage)
        return self._trade_local(owner, metadata.asset_address, "sell", holding.ui_amount, False, slippage)

    def describe_asset(self, mint: str) -> MarketMetadata:
        md = self.market.fetch_pump_coin(mint)
        if md is None or (md.is_migrated and not md.usd_market_cap):
            md = self.market.fetch_dexscreener(mint) or md
        if md is None:
            raise SniperError(f"Sin datos de mercado para {mint}")
        return md
