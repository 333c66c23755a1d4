"""
Buy side of a trading session.

Builds the venue transaction for a SOL amount, signs it with the session's
funding account and measures what the account actually spent.
"""

from __future__ import annotations

from typing import Optional

from controllers.trade_controller import BatchResult, TradeController
from models.market_metadata import MarketMetadata
from models.trade_result import TradeResult
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)


class BuyController(TradeController):
    """Lotes de compra concurrentes para una cuenta."""

    side = "buy"
    side_label = "compra"

    @log_function
    def buy(self, metadata: MarketMetadata, amount: float, slippage: float) -> BatchResult:
        self.note(f"Comprando {amount:.5f} SOL de {metadata.symbol or metadata.asset_address}")
        try:
            expected = self.trader.quote(metadata, amount, "buy")
            if expected:
                self.note(f"Estimado: {expected:,.2f} tokens")
        except Exception as e:
            logger.debug(f"[buy] sin quote: {e}")

        result = self._run_batch(lambda: self._submit(metadata, amount, slippage))
        for r in result.results:
            self.note(f"✅ Compra confirmada {r.signature} (gasto {r.spend:.6f} SOL)")
        return result

    def _submit(self, metadata: MarketMetadata, amount: float, slippage: float) -> TradeResult:
        raw = self.trader.build_buy(self.account.pubkey, metadata, amount, slippage)
        signature = self.solana.sign_and_send(raw, self.account.keypair)
        return TradeResult(signature=signature, side="buy", amount=amount,
                           realized_spend=self._realized_spend(signature))

    def _realized_spend(self, signature: str) -> Optional[float]:
        try:
            return self.solana.balance_change(signature, self.account.address)
        except Exception as e:
            # se contabiliza el nominal
            logger.debug(f"[buy] sin delta de saldo para {signature}: {e}")
            return None
