# orchestrators/session_controller.py
"""
Runs one trading session per funding account and feeds them.

1. check balances and spawn the sessions, wait until all report STARTED;
2. resolve the asset (config address or listing detection);
3. broadcast market metadata now and every ``META_UPDATE_INTERVAL``;
4. after ``BUY_START_DELAY`` send BUY to each session (spaced by
   ``start_interval``);
5. wait for every session, then sweep SOL if collection was requested.

The controller never touches session state: it only sends messages and waits
on futures. Operator commands arrive from other threads through ``stop``,
``sell``, ``request_collect`` and ``update_config``.
"""
from __future__ import annotations

import os
import random
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from controllers.collect_controller import CollectController
from enums.command import EventKind
from enums.venue import AfterAction
from models.bot_config import BotConfig, is_session_field, is_startup_only
from models.funding_account import FundingAccount
from models.market_metadata import MarketMetadata
from models.messages import ControlMessage, SessionEvent
from models.session import SessionConfig, SessionState
from orchestrators.listing_detector import ListingDetector
from orchestrators.trading_session import TradingSession
from services.context import AppContext
from services.message_bus import MessageBus
from utils.exceptions import ConfigError, SessionCrashed
from utils.log_config import NOTIFY_ERRORS, logger_manager, log_function
from utils.retry import execute

logger = logger_manager.setup_logger(__name__)

META_UPDATE_INTERVAL_SECS = float(os.getenv("META_UPDATE_INTERVAL", "1.0"))
BUY_START_DELAY_SECS = float(os.getenv("BUY_START_DELAY_SECS", "1.0"))
METADATA_RETRIES = int(os.getenv("METADATA_RETRIES", "3"))
METADATA_RETRY_DELAY_SECS = float(os.getenv("METADATA_RETRY_DELAY_SECS", "0.5"))
RELAY_POLL_SECS = 0.2


@dataclass
class SessionHandle:
    session: TradingSession
    future: Future
    started: threading.Event = field(default_factory=threading.Event)
    address: Optional[str] = None


@dataclass
class RunReport:
    asset_address: Optional[str] = None
    states: Dict[int, SessionState] = field(default_factory=dict)
    errors: Dict[int, str] = field(default_factory=dict)
    collected: bool = False

    @property
    def finished(self) -> int:
        return len(self.states)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def total_spent(self) -> float:
        return sum(s.spent_so_far for s in self.states.values())

    @property
    def ok(self) -> bool:
        return not self.errors


class SessionController:

    def __init__(
        self,
        bot_config: BotConfig,
        accounts: Sequence[FundingAccount],
        context: AppContext,
        bus: Optional[MessageBus] = None,
        meta_interval: float = META_UPDATE_INTERVAL_SECS,
        buy_start_delay: float = BUY_START_DELAY_SECS,
        session_options: Optional[dict] = None,
        collect_options: Optional[dict] = None,
        reserve: Optional[FundingAccount] = None,
    ) -> None:
        self.bot_config = bot_config
        self.accounts = list(accounts)
        self.context = context
        self.bus = bus or MessageBus()
        self.meta_interval = meta_interval
        self.buy_start_delay = buy_start_delay
        self.session_options = session_options or {}
        self.collect_options = collect_options or {}
        self.reserve = reserve

        self.handles: Dict[int, SessionHandle] = {}
        self.asset_address: Optional[str] = bot_config.asset_address
        self.metadata: Optional[MarketMetadata] = None

        self._executor: Optional[ThreadPoolExecutor] = None
        self._detector: Optional[ListingDetector] = None
        self._stop_evt = threading.Event()
        self._refresh_stop = threading.Event()
        self._relay_stop = threading.Event()
        # reentrante: el handler de señales corre en el hilo que ejecuta run()
        self._lock = threading.RLock()
        self._sell_requested = False
        self._collect_requested = False
        self._threshold_logged = False

    # ---------- comandos del operador ----------
    def stop(self) -> bool:
        with self._lock:
            if self._stop_evt.is_set():
                logger.info("Parada ya en curso")
                return False
            self._stop_evt.set()
            detector = self._detector
        logger.info("🛑 Deteniendo sesiones...")
        if detector is not None:
            detector.stop()
        self.bus.broadcast(ControlMessage.stop())
        return True

    def sell(self) -> bool:
        with self._lock:
            if self._sell_requested:
                logger.info("Venta ya en curso")
                return False
            self._sell_requested = True
        logger.info("💸 Venta forzada en todas las sesiones")
        self.bus.broadcast(ControlMessage.sell())
        return True

    def request_collect(self) -> bool:
        with self._lock:
            if self._collect_requested:
                logger.info("Recogida ya en curso")
                return False
            self._collect_requested = True
            detector = self._detector
        logger.info("💰 Recogida solicitada; las sesiones terminan sin vender")
        if detector is not None:
            detector.stop()
        self.bus.broadcast(ControlMessage.collect())
        return True

    def update_config(self, key: str, raw: object) -> bool:
        if is_startup_only(key) and self.handles:
            logger.warning(f"⚠️ {key} solo se aplica antes de arrancar; las sesiones ya están en marcha")
            return False
        try:
            value = self.bot_config.apply(key, raw)
        except ConfigError as e:
            logger.error(f"❌ {e}")
            return False
        logger.info(f"⚙️ {key} = {value}")
        if is_session_field(key):
            self.bus.broadcast(ControlMessage.config_update(key, value))
        return True

    def describe(self) -> str:
        active = sum(1 for h in self.handles.values() if not h.future.done())
        lines = [self.bot_config.describe(), f"sesiones activas: {active}/{len(self.handles)}"]
        if self.asset_address:
            lines.append(f"activo: {self.asset_address}")
        if self.metadata is not None:
            lines.append(f"market cap: ${self.metadata.usd_market_cap:,.0f}")
        return "\n".join(lines)

    @property
    def stopping(self) -> bool:
        return self._stop_evt.is_set()

    # ---------- ejecución ----------
    @log_function
    def check_has_balances(self) -> None:
        empty = []
        for account in self.accounts:
            if self.context.solana_for(account.id).lamports_balance(account.address) <= 0:
                empty.append(account.name)
        if empty:
            raise ConfigError(f"Cuentas sin saldo: {', '.join(empty)}")

    def run(self) -> RunReport:
        report = RunReport(asset_address=self.asset_address)
        self.check_has_balances()
        self._spawn_sessions()
        relay = threading.Thread(target=self._relay, name="Relay", daemon=True)
        relay.start()
        refresher: Optional[threading.Thread] = None
        try:
            self._wait_started()
            mint = None if self.stopping else self._resolve_asset()
            report.asset_address = mint

            if mint and not self.stopping:
                self.metadata = self._fetch_metadata(mint, METADATA_RETRIES)
                self._broadcast_metadata(self.metadata)
                self._notify_listing(self.metadata)
                refresher = threading.Thread(target=self._refresh_loop, args=(mint,), name="MetaRefresh", daemon=True)
                refresher.start()
                self._start_buying()
            elif not self.stopping:
                self.stop()

            self._await_sessions(report)
        except Exception as e:
            logger.error(f"❌ Error fatal: {e}")
            if not self.stopping:
                self.stop()
            self._await_sessions(report)
            raise
        finally:
            self._refresh_stop.set()
            if refresher is not None:
                refresher.join(timeout=self.meta_interval * 2 + 1)
            self._relay_stop.set()
            relay.join(timeout=RELAY_POLL_SECS * 10)
            if self._executor is not None:
                self._executor.shutdown(wait=False)

        if self._collect_requested or self.bot_config.action is AfterAction.COLLECT:
            report.collected = self._collect()
        logger.info(
            f"🏁 Ejecución terminada: {report.finished} sesiones OK, {report.failed} con error, "
            f"gastado {report.total_spent:.4f} SOL"
        )
        if self.context.notifier is not None:
            self.context.notifier.notify_run_finished(report.finished, report.failed, report.total_spent)
        return report

    def _spawn_sessions(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=len(self.accounts), thread_name_prefix="session")
        for account in self.accounts:
            config = SessionConfig.from_bot_config(account.id, self.bot_config)
            session = TradingSession(
                account=account,
                config=config,
                solana=self.context.solana_for(account.id),
                trader=self.context.trader,
                bus=self.bus,
                **self.session_options,
            )
            future = self._executor.submit(session.run)
            self.handles[account.id] = SessionHandle(session=session, future=future)
            logger.info(f"Hilo iniciado para sesión {account.id} ({account.name})")

    def _wait_started(self) -> None:
        while not self.stopping:
            pending = [h for h in self.handles.values() if not h.started.is_set() and not h.future.done()]
            if not pending:
                return
            pending[0].started.wait(RELAY_POLL_SECS)

    def _resolve_asset(self) -> Optional[str]:
        if self.asset_address:
            return self.asset_address
        detector = self.context.listing_detector(self.bot_config.token_name or "", self.bot_config.token_ticker or "")
        with self._lock:
            if self._stop_evt.is_set() or self._collect_requested:
                return None
            self._detector = detector
        try:
            mint = detector.wait_for_listing()
        finally:
            with self._lock:
                self._detector = None
        self.asset_address = mint
        return mint

    def _fetch_metadata(self, mint: str, retries: int) -> MarketMetadata:
        return execute(
            lambda: self.context.trader.describe_asset(mint),
            max_attempts=retries,
            delay=METADATA_RETRY_DELAY_SECS,
            label="metadata",
        )

    def _broadcast_metadata(self, metadata: MarketMetadata) -> None:
        self.bus.broadcast(ControlMessage.metadata_update(metadata))
        threshold = self.bot_config.effective_threshold
        if not self._threshold_logged and metadata.usd_market_cap >= threshold:
            self._threshold_logged = True
            logger.info(f"🎯 Market cap ${metadata.usd_market_cap:,.0f} >= objetivo ${threshold:,.0f}")

    def _refresh_loop(self, mint: str) -> None:
        while not self._refresh_stop.wait(self.meta_interval):
            if all(h.future.done() for h in self.handles.values()):
                return
            try:
                metadata = self._fetch_metadata(mint, 1)
            except Exception as e:
                logger.warning(f"[meta] refresco fallido, se mantiene el anterior: {e}")
                continue
            self.metadata = metadata
            logger.debug(f"[meta] {metadata.symbol} mcap=${metadata.usd_market_cap:,.0f} migrated={metadata.is_migrated}")
            self._broadcast_metadata(metadata)

    def _start_buying(self) -> None:
        if self._stop_evt.wait(self.buy_start_delay):
            return
        ids = list(self.handles)
        spacing = self.bot_config.start_interval
        for i, sid in enumerate(ids):
            if self.stopping:
                return
            self.bus.send(sid, ControlMessage.buy())
            if spacing > 0 and i < len(ids) - 1:
                if self._stop_evt.wait(random.uniform(spacing, spacing * 1.5)):
                    return
        logger.info(f"🚀 BUY enviado a {len(ids)} sesiones")

    def _await_sessions(self, report: RunReport) -> None:
        for sid, handle in self.handles.items():
            try:
                report.states[sid] = handle.future.result()
            except Exception as e:
                crash = SessionCrashed(sid, e)
                report.errors[sid] = str(e)
                logger.error(f"❌ {crash}")
                if NOTIFY_ERRORS:
                    self.context.notify(f"❌ {crash}")

    def _collect(self) -> bool:
        receiver = self.bot_config.collect_address or (self.reserve.address if self.reserve else None)
        if not receiver:
            logger.error("Recogida solicitada pero no hay collect_address ni cuenta de reserva")
            return False
        outcomes = CollectController(self.context.rpc_pool, **self.collect_options).collect(self.accounts, receiver)
        return all(o.ok for o in outcomes)

    def _notify_listing(self, metadata: MarketMetadata) -> None:
        if self.context.notifier is not None:
            self.context.notifier.notify_listing(metadata.asset_address, metadata.name, metadata.symbol)

    # ---------- eventos de sesiones ----------
    def _relay(self) -> None:
        while not (self._relay_stop.is_set() and self.bus.outbox.empty()):
            event = self.bus.next_event(RELAY_POLL_SECS)
            if event is not None:
                self._on_event(event)

    def _on_event(self, event: SessionEvent) -> None:
        handle = self.handles.get(event.session_id)
        if event.kind is EventKind.STARTED:
            if handle is not None:
                handle.address = event.address
                handle.started.set()
            logger.info(f"[session {event.session_id}] iniciada ({event.address})")
        elif event.kind is EventKind.LOG:
            for line in event.text.splitlines():
                logger.info(f"[session {event.session_id}] {line}")
        elif event.kind is EventKind.FINISHED:
            st = event.state
            if st is not None:
                logger.info(
                    f"[session {event.session_id}] terminada: compras={st.buys} ventas={st.sells} "
                    f"gastado={st.spent_so_far:.5f} SOL{' error=' + st.error if st.error else ''}"
                )
                if st.error and NOTIFY_ERRORS:
                    self.context.notify(f"⛔ Sesión {event.session_id}: {st.error}")
