# services/market_service.py
from __future__ import annotations
import os
import requests

from models.market_metadata import MarketMetadata
from utils.log_config import log_function

PUMP_API_URL = os.getenv("PUMP_API_URL", "https://frontend-api-v3.pump.fun").rstrip("/")
DEXSCREENER_BASE_URL = os.getenv("DEXSCREENER_BASE_URL", "https://api.dexscreener.com/latest/dex").rstrip("/")
HTTP_TIMEOUT_SECS = float(os.getenv("MARKET_HTTP_TIMEOUT_SECS", "8"))


class MarketService:
    """
    Metadatos de mercado del activo: endpoint de monedas del launchpad
    (curva) y DexScreener (pools ya migrados).
    """

    def __init__(self, pump_url: str | None = None, dexscreener_url: str | None = None) -> None:
        self.pump_url = (pump_url or PUMP_API_URL).rstrip("/")
        self.dexscreener_url = (dexscreener_url or DEXSCREENER_BASE_URL).rstrip("/")

    @log_function
    def fetch_pump_coin(self, mint: str) -> MarketMetadata | None:
        r = requests.get(f"{self.pump_url}/coins/{mint}", timeout=HTTP_TIMEOUT_SECS)
        r.raise_for_status()
        data = r.json() if r.content else None
        if not data or not isinstance(data, dict):
            return None
        return MarketMetadata.from_pump(data)

    @log_function
    def fetch_dexscreener(self, mint: str) -> MarketMetadata | None:
        r = requests.get(f"{self.dexscreener_url}/tokens/{mint}", timeout=HTTP_TIMEOUT_SECS)
        r.raise_for_status()
        pairs = [p for p in (r.json().get("pairs") or []) if p.get("chainId") == "solana"]
        if not pairs:
            return None
        # el pool con más liquidez manda
        best = max(pairs, key=lambda p: float((p.get("liquidity") or {}).get("usd") or 0))
        return MarketMetadata.from_dexscreener(best)
