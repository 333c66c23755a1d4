from __future__ import annotations

import os
from typing import Callable, List, Sequence

from models.funding_account import FundingAccount
from services.solana_service import RpcPool
from utils.exceptions import InsufficientFundsError
from utils.log_config import logger_manager, log_function
from utils.retry import execute
from utils.settle import Outcome, settle_all

logger = logger_manager.setup_logger(__name__)

COLLECT_RETRIES = int(os.getenv("COLLECT_RETRIES", "5"))
COLLECT_RETRY_DELAY_SECS = float(os.getenv("COLLECT_RETRY_DELAY_SECS", "1.0"))
COLLECT_STAGGER_SECS = float(os.getenv("COLLECT_STAGGER_SECS", "0.5"))


class CollectController:
    """
    Barre el SOL de las cuentas de sesión hacia la dirección de recogida.
    Cada transferencia va por el ejecutor de reintentos; una cuenta sin saldo
    se salta y no afecta a las demás.
    """

    def __init__(self, rpc_pool: RpcPool, retries: int = COLLECT_RETRIES,
                 delay: float = COLLECT_RETRY_DELAY_SECS, stagger: float = COLLECT_STAGGER_SECS) -> None:
        self.rpc_pool = rpc_pool
        self.retries = retries
        self.delay = delay
        self.stagger = stagger

    def _task(self, account: FundingAccount, receiver: str) -> Callable[[], str]:
        solana = self.rpc_pool.for_session(account.id)

        def run() -> str:
            try:
                sig = execute(
                    lambda: solana.transfer_lamports(account.keypair, receiver),
                    max_attempts=self.retries,
                    delay=self.delay,
                    label=f"collect:{account.name}",
                )
            except InsufficientFundsError:
                logger.info(f"[collect] {account.name} sin saldo, se omite")
                return ""
            logger.info(f"[collect] {account.name} → {receiver}: {sig}")
            return sig

        return run

    @log_function
    def collect(self, accounts: Sequence[FundingAccount], receiver: str) -> List[Outcome[str]]:
        targets = [a for a in accounts if a.address != receiver]
        if not targets:
            return []
        logger.info(f"💰 Recogiendo SOL de {len(targets)} cuentas en {receiver}")
        outcomes = settle_all([self._task(a, receiver) for a in targets],
                              stagger=self.stagger, thread_name_prefix="collect")
        failed = [a.name for a, o in zip(targets, outcomes) if not o.ok]
        if failed:
            logger.error(f"[collect] fallaron: {', '.join(failed)}")
        return outcomes
