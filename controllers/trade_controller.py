"""
Common batch logic for buy and sell controllers.

A batch launches ``TRADE_BATCH`` concurrent attempts at the same size. Each
attempt is a full build → sign → send → confirm cycle wrapped in the retry
executor; the batch waits for all of them and succeeds if any did.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, List, Optional

from models.funding_account import FundingAccount
from models.trade_result import TradeResult
from services.solana_service import SolanaService
from services.trader_base import Trader
from utils.exceptions import InsufficientFundsError, SimulationError
from utils.log_config import logger_manager
from utils.retry import execute
from utils.settle import Outcome, errors_of, settle_all

logger = logger_manager.setup_logger(__name__)

TRADE_BATCH = int(os.getenv("TRADE_BATCH", "2"))
SUBMIT_RETRIES = int(os.getenv("SUBMIT_RETRIES", "5"))
RETRY_INTERVAL_SECS = float(os.getenv("SNIPE_RETRY_INTERVAL_SECS", "0.5"))

Note = Callable[[str], None]


@dataclass
class BatchResult:
    outcomes: List[Outcome[TradeResult]]

    @property
    def success(self) -> bool:
        return any(o.ok for o in self.outcomes)

    @property
    def results(self) -> List[TradeResult]:
        return [o.value for o in self.outcomes if o.ok and o.value is not None]

    @property
    def failures(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @property
    def fatal(self) -> Optional[InsufficientFundsError]:
        return next((e for e in errors_of(self.outcomes) if isinstance(e, InsufficientFundsError)), None)


class TradeController:
    side = "trade"
    side_label = "operación"

    def __init__(
        self,
        solana: SolanaService,
        trader: Trader,
        account: FundingAccount,
        note: Optional[Note] = None,
        batch_size: int = TRADE_BATCH,
        retries: int = SUBMIT_RETRIES,
        retry_interval: float = RETRY_INTERVAL_SECS,
        stagger: float = RETRY_INTERVAL_SECS,
    ) -> None:
        self.solana = solana
        self.trader = trader
        self.account = account
        self.note: Note = note or (lambda msg: logger.info(msg))
        self.batch_size = max(1, batch_size)
        self.retries = retries
        self.retry_interval = retry_interval
        self.stagger = stagger

    def _run_batch(self, submit: Callable[[], TradeResult]) -> BatchResult:
        def attempt() -> TradeResult:
            return execute(
                submit,
                max_attempts=self.retries,
                delay=self.retry_interval,
                label=f"{self.side}:{self.account.name}",
                on_failure=self._on_failure,
            )

        outcomes = settle_all(
            [attempt] * self.batch_size,
            stagger=self.stagger,
            thread_name_prefix=f"{self.side}-{self.account.id}",
        )
        return BatchResult(outcomes)

    def _on_failure(self, attempt: int, err: BaseException) -> None:
        if isinstance(err, SimulationError):
            self.note(f"Simulación de {self.side_label} fallida, reintentando... ({attempt}/{self.retries})")
        else:
            self.note(f"Fallo en {self.side_label} ({err}), reintentando... ({attempt}/{self.retries})")
