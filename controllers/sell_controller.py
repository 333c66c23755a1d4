from __future__ import annotations

import os
from typing import Callable, Optional

from controllers.trade_controller import BatchResult, TradeController
from models.market_metadata import MarketMetadata
from models.trade_result import TokenHolding, TradeResult
from utils.exceptions import EmptyHoldingError, RetryExhaustedError
from utils.log_config import logger_manager, log_function
from utils.cancellable_wait import control_sleep
from utils.retry import execute

logger = logger_manager.setup_logger(__name__)

SELL_BALANCE_RETRIES = int(os.getenv("SELL_BALANCE_RETRIES", "5"))
SELL_BALANCE_DELAY_SECS = float(os.getenv("SELL_BALANCE_DELAY_SECS", "1.0"))


def _wait(duration: float) -> None:
    completion, _ = control_sleep(duration)
    completion()


class SellController(TradeController):
    """
    Vende toda la posición de la cuenta:
      - consulta el saldo del token con reintentos acotados
      - lanza lotes de venta hasta que uno confirma (no se rinde salvo parada)
      - fondos insuficientes para comisiones: se propaga y la sesión termina
    """

    side = "sell"
    side_label = "venta"

    def __init__(self, *args, balance_retries: int = SELL_BALANCE_RETRIES,
                 balance_delay: float = SELL_BALANCE_DELAY_SECS,
                 wait_fn: Optional[Callable[[float], None]] = None,
                 stopped: Optional[Callable[[], bool]] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.balance_retries = balance_retries
        self.balance_delay = balance_delay
        # espera entre rondas; la sesión pasa la suya, que un STOP interrumpe
        self.wait_fn: Callable[[float], None] = wait_fn or _wait
        self.stopped: Callable[[], bool] = stopped or (lambda: False)

    def poll_holding(self, mint: str) -> Optional[TokenHolding]:
        def fetch() -> TokenHolding:
            holding = self.solana.token_balance(self.account.pubkey, mint)
            if holding is None or holding.is_empty:
                raise EmptyHoldingError(f"sin saldo de {mint}")
            return holding

        try:
            return execute(fetch, max_attempts=self.balance_retries, delay=self.balance_delay,
                           label=f"holding:{self.account.name}", sleep=self.wait_fn)
        except RetryExhaustedError:
            return None

    @log_function
    def sell(self, latest: Callable[[], MarketMetadata], slippage: float) -> Optional[BatchResult]:
        """
        ``latest`` devuelve los metadatos vigentes: cada ronda usa la ruta
        actual (curva o agregador si el activo migró entre rondas).
        Devuelve el lote que confirmó, o None si no había nada que vender.
        """
        rounds = 0
        while True:
            if self.stopped():
                self.note("Venta interrumpida por parada")
                return None
            metadata = latest()
            holding = self.poll_holding(metadata.asset_address)
            if holding is None:
                self.note("No hay tokens que vender, saliendo..." if rounds == 0 else "Posición cerrada")
                return None

            rounds += 1
            route = "agregador" if metadata.is_migrated else self.trader.venue.value
            self.note(f"Vendiendo {holding.ui_amount:,.2f} tokens vía {route} (ronda {rounds})")
            result = self._run_batch(lambda: self._submit(metadata, holding, slippage))
            if result.fatal is not None:
                raise result.fatal
            if result.success:
                for r in result.results:
                    self.note(f"✅ Venta confirmada {r.signature}")
                return result
            self.note(f"Ronda de venta {rounds} sin éxito, reintentando")
            self.wait_fn(self.retry_interval)

    def _submit(self, metadata: MarketMetadata, holding: TokenHolding, slippage: float) -> TradeResult:
        raw = self.trader.build_sell(self.account.pubkey, metadata, holding, slippage)
        signature = self.solana.sign_and_send(raw, self.account.keypair)
        return TradeResult(signature=signature, side="sell", amount=holding.ui_amount)
