# orchestrators/trading_session.py
"""
One funding account's buy → monitor → sell loop.

The session runs in its own thread (``run``) and owns its ``SessionState``.
Commands arrive through the inbox and are applied by a listener thread that
may interrupt the current wait; everything else only happens in the loop at
the top of each pass:

    IDLE → BUYING ⇄ SLEEPING → SELLING → DONE
"""
from __future__ import annotations

import math
import os
import queue
import random
import threading
from typing import Callable, List, Optional

from controllers.buy_controller import BuyController
from controllers.sell_controller import SellController
from enums.command import Command, EventKind
from enums.session_phase import SessionPhase
from models.funding_account import FundingAccount
from models.market_metadata import MarketMetadata
from models.messages import ControlMessage, SessionEvent
from models.session import SessionConfig, SessionState
from services.message_bus import MessageBus
from services.solana_service import SolanaService
from services.trader_base import Trader
from utils.amounts import clamp, normal_random
from utils.cancellable_wait import control_sleep
from utils.exceptions import ConfigError, InsufficientFundsError
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)

MIN_BUY = float(os.getenv("MIN_BUY_SOL", "0.005"))
MIN_BUY_THRESHOLD = 0.00001
MIN_BALANCE_RESERVE = float(os.getenv("MIN_BALANCE_RESERVE_SOL", "0.01"))
SAFETY_FACTOR = 0.95
POLL_INTERVAL_SECS = float(os.getenv("SESSION_POLL_INTERVAL_SECS", "0.2"))
RETRY_INTERVAL_SECS = float(os.getenv("SNIPE_RETRY_INTERVAL_SECS", "0.5"))
INBOX_POLL_SECS = 0.1
AMOUNT_DECIMALS = 5


def _floor_sol(amount: float) -> float:
    scale = 10 ** AMOUNT_DECIMALS
    return math.floor(amount * scale) / scale


class TradingSession:

    def __init__(
        self,
        account: FundingAccount,
        config: SessionConfig,
        solana: SolanaService,
        trader: Trader,
        bus: MessageBus,
        buy_options: Optional[dict] = None,
        sell_options: Optional[dict] = None,
        poll_interval: float = POLL_INTERVAL_SECS,
        retry_interval: float = RETRY_INTERVAL_SECS,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.account = account
        self.config = config
        self.solana = solana
        self.trader = trader
        self.bus = bus
        self.inbox: "queue.Queue[ControlMessage]" = bus.register(config.session_id)
        self.buyer = BuyController(solana, trader, account, note=self._note, **(buy_options or {}))
        self.seller = SellController(solana, trader, account, note=self._note, wait_fn=self._sleep,
                                     stopped=self._stopped, **(sell_options or {}))
        self.poll_interval = poll_interval
        self.retry_interval = retry_interval
        self.rng = rng or random.Random()

        self.state = SessionState()
        self._metadata: Optional[MarketMetadata] = None
        self._lock = threading.RLock()
        self._cancel_wait: Optional[Callable[[], None]] = None
        self._wake_pending = False
        self._closed = threading.Event()
        self._buffer: List[str] = []
        self._buffer_lock = threading.Lock()

    @property
    def session_id(self) -> int:
        return self.config.session_id

    @property
    def metadata(self) -> Optional[MarketMetadata]:
        with self._lock:
            return self._metadata

    # ---------- ciclo de vida ----------
    def run(self) -> SessionState:
        """Punto de entrada del hilo. Devuelve una copia del estado final."""
        listener = threading.Thread(target=self._listen, name=f"session-{self.session_id}-inbox", daemon=True)
        try:
            self._startup()
            listener.start()
            self._loop()
        except InsufficientFundsError as e:
            self._note(f"⛔ Fondos insuficientes, sesión detenida: {e}")
            with self._lock:
                self.state.error = str(e)
                self.state.done = True
        finally:
            with self._lock:
                self.state.done = True
                self.state.phase = SessionPhase.DONE
            self._closed.set()
            self._flush()
            self.bus.publish(SessionEvent(EventKind.FINISHED, self.session_id, state=self.state.snapshot()))
            self.bus.unregister(self.session_id)
        return self.state.snapshot()

    def _startup(self) -> None:
        balance = self.solana.sol_balance(self.account.address)
        limit = max(0.0, min(balance, self.config.spend_limit) - MIN_BALANCE_RESERVE)
        self.config.spend_limit = limit
        self._note(f"Saldo {balance:.4f} SOL, límite de gasto {limit:.4f} SOL")
        self.bus.publish(SessionEvent(EventKind.STARTED, self.session_id, address=self.account.address))

    def _loop(self) -> None:
        while True:
            with self._lock:
                if self.state.done:
                    return
            self._process()
            with self._lock:
                if self.state.done:
                    return
            self._sleep(self._next_sleep())

    # ---------- decisión ----------
    def should_sell(self, metadata: MarketMetadata) -> bool:
        with self._lock:
            return metadata.usd_market_cap >= self.config.market_cap_threshold or self.state.sell_signal_received

    def _stopped(self) -> bool:
        with self._lock:
            return self.state.done

    def should_buy(self) -> bool:
        with self._lock:
            s = self.state
            return (
                s.buy_signal_received
                and s.spent_so_far < self.config.spend_limit
                and s.current_buy_amount > MIN_BUY_THRESHOLD
            )

    def _process(self) -> None:
        metadata = self.metadata
        if metadata is None:
            return
        if self.should_sell(metadata):
            self._sell_phase()
            return
        if self.should_buy():
            self._buy_phase()

    def _buy_phase(self) -> None:
        with self._lock:
            self.state.phase = SessionPhase.BUYING
        bought = False
        while not bought:
            metadata = self.metadata
            with self._lock:
                if self.state.done or self.should_sell(metadata) or not self.should_buy():
                    return
                remaining = self.config.spend_limit - self.state.spent_so_far
                # el lote entero confirmado no puede pasar del límite
                per_attempt = remaining / self.buyer.batch_size
                amount = _floor_sol(min(clamp(self.state.current_buy_amount, MIN_BUY, remaining), per_attempt))
                slippage = self.config.buy_slippage
                if amount <= 0:
                    self.state.saturate(self.config.spend_limit)
                    self._note("Límite de gasto alcanzado")
                    return

            result = self.buyer.buy(metadata, amount, slippage)

            # lo confirmado se aplica aunque haya llegado un STOP entretanto
            with self._lock:
                for r in result.results:
                    self.state.add_spend(r.spend)
                    self.state.buys += 1
                self.state.failed_attempts += result.failures
                self.state.current_buy_amount = (self.config.spend_limit - self.state.spent_so_far) * SAFETY_FACTOR
                spent, limit = self.state.spent_so_far, self.config.spend_limit

            if result.fatal is not None:
                raise result.fatal

            bought = result.success
            if bought:
                self._note(f"Gastado {spent:.5f}/{limit:.5f} SOL")
                with self._lock:
                    if self.config.buy_once or not self.should_buy():
                        self.state.saturate(self.config.spend_limit)
                        self._note("Límite de gasto alcanzado")
            else:
                self._flush()
                self._sleep(self.retry_interval)

    def _sell_phase(self) -> None:
        with self._lock:
            self.state.phase = SessionPhase.SELLING
            slippage = self.config.sell_slippage
        self._flush()
        result = self.seller.sell(lambda: self.metadata, slippage)
        with self._lock:
            if result is not None:
                self.state.sells += len(result.results)
                self.state.failed_attempts += result.failures
            self.state.done = True

    def _next_sleep(self) -> float:
        if self.should_buy():
            with self._lock:
                self.state.phase = SessionPhase.SLEEPING
                interval = self.config.buy_interval
            return normal_random(interval, 0.5 * interval, self.rng)
        with self._lock:
            if self.state.buy_signal_received and not self.state.done:
                self.state.phase = SessionPhase.SLEEPING
        return self.poll_interval

    def _sleep(self, duration: float) -> None:
        completion, cancel = control_sleep(duration)
        with self._lock:
            self._cancel_wait = cancel
            if self._wake_pending or self.state.done:
                self._wake_pending = False
                cancel()
        self._flush()
        completion()
        with self._lock:
            self._cancel_wait = None

    def _interrupt(self) -> None:
        # con el lock tomado
        if self._cancel_wait is not None:
            self._cancel_wait()
        else:
            self._wake_pending = True

    # ---------- comandos ----------
    def _listen(self) -> None:
        while not self._closed.is_set():
            try:
                msg = self.inbox.get(timeout=INBOX_POLL_SECS)
            except queue.Empty:
                continue
            try:
                self.handle(msg)
            except Exception as e:
                logger.exception(f"[session {self.session_id}] error aplicando {msg.command.value}: {e}")

    def handle(self, msg: ControlMessage) -> None:
        with self._lock:
            cmd = msg.command
            if cmd is Command.METADATA_UPDATE:
                if msg.metadata is not None:
                    self._metadata = msg.metadata
            elif cmd is Command.BUY:
                if self.state.buy_signal_received:
                    self._note("Ya está comprando")
                    return
                start = self.config.start_amount
                self.state.current_buy_amount = clamp(
                    normal_random(start, 0.5 * start, self.rng), MIN_BUY, self.config.spend_limit
                )
                self.state.buy_signal_received = True
                self._note(f"Compra activada, importe inicial {self.state.current_buy_amount:.5f} SOL")
            elif cmd is Command.SELL:
                if not self.state.mark_sell():
                    self._note("Venta ya en curso")
                    return
                self._note("Señal de venta recibida")
                self._interrupt()
            elif cmd in (Command.STOP, Command.COLLECT):
                if self.state.done:
                    self._note("Ya detenida")
                    return
                self.state.done = True
                self._note("Recogida solicitada, sesión detenida" if cmd is Command.COLLECT else "Sesión detenida")
                self._interrupt()
            elif cmd is Command.CONFIG_UPDATE:
                try:
                    value = self.config.apply(msg.key or "", msg.value)
                    self._note(f"Config {msg.key} = {value}")
                except ConfigError as e:
                    self._note(f"Config rechazada: {e}")

    # ---------- buffer de mensajes ----------
    def _note(self, text: str) -> None:
        logger.debug(f"[session {self.session_id}] {text}")
        with self._buffer_lock:
            self._buffer.append(text)

    def _flush(self) -> None:
        with self._buffer_lock:
            if not self._buffer:
                return
            text = "\n".join(self._buffer)
            self._buffer.clear()
        self.bus.publish(SessionEvent(EventKind.LOG, self.session_id, text=text))
