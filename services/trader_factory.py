from __future__ import annotations

from enums.venue import Venue
from services.jupiter_trader import JupiterTrader
from services.market_service import MarketService
from services.pump_trader import PumpTrader
from services.trader_base import Trader


def get_trader(venue: Venue | str, market: MarketService | None = None) -> Trader:
    venue = Venue(venue)
    market = market or MarketService()
    if venue is Venue.JUPITER:
        return JupiterTrader(market)
    return PumpTrader(market)
