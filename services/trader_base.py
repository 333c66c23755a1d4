"""
Venue-independent trading capability.

The session state machine is written once against :class:`Trader`; each
venue supplies quotes, unsigned serialized transactions and the market
metadata of the asset. Signing and sending stay in ``SolanaService``.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from solders.pubkey import Pubkey

from enums.venue import Venue
from models.market_metadata import MarketMetadata
from models.trade_result import TokenHolding

SOL_MINT = "So11111111111111111111111111111111111111112"


class Trader(ABC):
    venue: Venue

    @abstractmethod
    def quote(self, metadata: MarketMetadata, amount: float, side: str) -> float:
        """Salida esperada (tokens al comprar, SOL al vender) para ``amount``."""

    @abstractmethod
    def build_buy(self, owner: Pubkey, metadata: MarketMetadata, sol_amount: float, slippage: float) -> bytes:
        """VersionedTransaction serializada sin firmar."""

    @abstractmethod
    def build_sell(self, owner: Pubkey, metadata: MarketMetadata, holding: TokenHolding, slippage: float) -> bytes:
        ...

    @abstractmethod
    def describe_asset(self, mint: str) -> MarketMetadata:
        ...
