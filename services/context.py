"""
Shared handles built once at startup.

Everything that used to be a module-level client (RPC pool, market data,
trader, notifier) is created here and passed to the components that need it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from enums.venue import Venue
from orchestrators.listing_detector import ListingDetector
from services.log_stream_service import LogStreamService
from services.market_service import MarketService
from services.solana_service import RpcPool, SolanaService
from services.telegram_service import TelegramService
from services.trader_base import Trader
from services.trader_factory import get_trader


@dataclass
class AppContext:
    rpc_pool: RpcPool
    market: MarketService
    trader: Trader
    notifier: Optional[TelegramService] = None
    detector_factory: Optional[Callable[[str, str], ListingDetector]] = field(default=None, repr=False)

    @classmethod
    def from_env(cls, venue: Venue | str) -> "AppContext":
        market = MarketService()
        notifier = TelegramService()
        return cls(
            rpc_pool=RpcPool(),
            market=market,
            trader=get_trader(venue, market),
            notifier=notifier if notifier.enabled else None,
        )

    def solana_for(self, session_id: int) -> SolanaService:
        return self.rpc_pool.for_session(session_id)

    def listing_detector(self, token_name: str, token_ticker: str) -> ListingDetector:
        if self.detector_factory is not None:
            return self.detector_factory(token_name, token_ticker)
        return ListingDetector(
            stream=LogStreamService(),
            fetch_transaction=self.rpc_pool.primary().get_parsed_transaction,
            token_name=token_name,
            token_ticker=token_ticker,
        )

    def notify(self, text: str) -> None:
        if self.notifier is not None:
            self.notifier.notify(text)
