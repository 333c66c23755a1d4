from __future__ import annotations
import asyncio
import os
import queue
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from solana.rpc.commitment import Confirmed
from solana.rpc.websocket_api import connect
from solders.pubkey import Pubkey
from solders.rpc.config import RpcTransactionLogsFilterMentions

from utils.exceptions import SubscriptionError
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)

WS_URL = os.getenv("WS_URL", "wss://api.mainnet-beta.solana.com")
LAUNCH_PROGRAM_ID = os.getenv("LAUNCH_PROGRAM_ID", "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
SUBSCRIBE_TIMEOUT_SECS = float(os.getenv("SUBSCRIBE_TIMEOUT_SECS", "15"))
RECV_POLL_SECS = 1.0


@dataclass(frozen=True)
class LogEvent:
    signature: str
    logs: List[str] = field(default_factory=list)
    err: Optional[str] = None


class LogStreamService:
    """
    Suscripción ``logsSubscribe`` (mentions = programa del launchpad).

    El websocket vive en un hilo propio con su loop asyncio; los eventos se
    reenvían a una ``queue.Queue`` que consume el detector desde su hilo.
    """

    def __init__(self, ws_url: str | None = None, program_id: str | None = None) -> None:
        self.ws_url = ws_url or WS_URL
        self.program_id = Pubkey.from_string(program_id or LAUNCH_PROGRAM_ID)
        self.events: "queue.Queue[LogEvent]" = queue.Queue()
        self.error: Optional[BaseException] = None
        self._ready = threading.Event()
        self._stop_evt = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._subscription_id: Optional[int] = None
        self._unsubscribed = False
        self._lock = threading.Lock()

    # ---------- API síncrona ----------
    def subscribe(self) -> "queue.Queue[LogEvent]":
        """Abre la suscripción. SubscriptionError si no queda confirmada."""
        if self._thread is not None:
            return self.events
        self._thread = threading.Thread(target=self._run_loop, name="LogStream", daemon=True)
        self._thread.start()

        if not self._ready.wait(SUBSCRIBE_TIMEOUT_SECS):
            self.unsubscribe()
            raise SubscriptionError(f"Sin confirmación de suscripción en {SUBSCRIBE_TIMEOUT_SECS:.0f}s ({self.ws_url})")
        if self.error is not None:
            raise SubscriptionError(f"No se pudo suscribir a {self.ws_url}: {self.error}") from self.error
        logger.info(f"📡 Suscrito a logs de {self.program_id} (id={self._subscription_id})")
        return self.events

    def unsubscribe(self) -> None:
        """Idempotente: la segunda llamada no hace nada."""
        with self._lock:
            if self._unsubscribed:
                return
            self._unsubscribed = True
        self._stop_evt.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=RECV_POLL_SECS * 5)
        logger.info("Suscripción de logs cerrada")

    # ---------- hilo del websocket ----------
    def _run_loop(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._consume())
        except Exception as e:
            self.error = e
            logger.error(f"[logs] stream caído: {e}")
        finally:
            self._ready.set()
            loop.close()

    async def _consume(self) -> None:
        async with connect(self.ws_url) as ws:
            await ws.logs_subscribe(RpcTransactionLogsFilterMentions(self.program_id), commitment=Confirmed)
            first = await ws.recv()
            self._subscription_id = first[0].result
            self._ready.set()

            while not self._stop_evt.is_set():
                try:
                    msgs = await asyncio.wait_for(ws.recv(), timeout=RECV_POLL_SECS)
                except asyncio.TimeoutError:
                    continue
                for msg in msgs:
                    value = getattr(getattr(msg, "result", None), "value", None)
                    if value is None:
                        continue
                    self.events.put(LogEvent(
                        signature=str(value.signature),
                        logs=list(value.logs or []),
                        err=str(value.err) if value.err is not None else None,
                    ))

            if self._subscription_id is not None:
                await ws.logs_unsubscribe(self._subscription_id)
