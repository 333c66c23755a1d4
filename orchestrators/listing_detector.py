"""
Listing detection.

Listens to the launchpad program logs and resolves the mint of the token whose
metadata matches the configured name and ticker:

    subscribed → inspect(event) → matched | unmatched → unsubscribe

Only a "Create" log line makes an event a candidate. The full transaction is
then fetched and its inner instructions scanned for the Token Metadata
``CreateMetadataAccountV3`` call (or, when that CPI is missing, the
launchpad's own ``create`` instruction). Any fetch/decode problem skips the
candidate; only losing the subscription is fatal.

Whether a match is "the" listing is decided by a confirmation strategy. The
default one (``signer_contains_mint``) relies on the new mint keypair signing
its own creation; it is a heuristic and can be swapped with
``LISTING_CONFIRMATION=any``.
"""
from __future__ import annotations

import os
import queue
import threading
from time import monotonic
from typing import Any, Callable, Dict, List, Optional, Protocol

from utils.exceptions import DecodeError, SubscriptionError
from utils.instruction_decoder import decode_create_metadata_v3, decode_launch_create
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)

METADATA_PROGRAM_ID = os.getenv("METADATA_PROGRAM_ID", "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")
LAUNCH_PROGRAM_ID = os.getenv("LAUNCH_PROGRAM_ID", "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
LISTING_CONFIRMATION = os.getenv("LISTING_CONFIRMATION", "signer").lower()
CREATE_LOG_MARKER = "Program log: Instruction: Create"
MINT_ACCOUNT_INDEX = 1          # CreateMetadataAccountV3: [metadata, mint, ...]
LAUNCH_MINT_ACCOUNT_INDEX = 0   # create del launchpad: [mint, ...]

Transaction = Dict[str, Any]
ConfirmStrategy = Callable[[Transaction, str], bool]


class LogStream(Protocol):
    error: Optional[BaseException]

    def subscribe(self) -> "queue.Queue": ...
    def unsubscribe(self) -> None: ...


# ---------- estrategias de confirmación ----------
def _account_keys(tx: Transaction) -> List[Any]:
    return ((tx.get("transaction") or {}).get("message") or {}).get("accountKeys") or []


def signer_contains_mint(tx: Transaction, mint: str) -> bool:
    """La mint recién creada firma su propia creación."""
    return any(isinstance(k, dict) and k.get("signer") and k.get("pubkey") == mint for k in _account_keys(tx))


def accept_any(tx: Transaction, mint: str) -> bool:
    return True


CONFIRMATION_STRATEGIES: Dict[str, ConfirmStrategy] = {
    "signer": signer_contains_mint,
    "any": accept_any,
}


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class ListingDetector:

    def __init__(
        self,
        stream: LogStream,
        fetch_transaction: Callable[[str], Optional[Transaction]],
        token_name: str,
        token_ticker: str,
        metadata_program_id: str = METADATA_PROGRAM_ID,
        launch_program_id: str = LAUNCH_PROGRAM_ID,
        confirm: Optional[ConfirmStrategy] = None,
        poll_secs: float = 0.5,
    ) -> None:
        self.stream = stream
        self.fetch_transaction = fetch_transaction
        self.token_name = _norm(token_name)
        self.token_ticker = _norm(token_ticker)
        self.metadata_program_id = metadata_program_id
        self.launch_program_id = launch_program_id
        self.confirm = confirm or CONFIRMATION_STRATEGIES.get(LISTING_CONFIRMATION, signer_contains_mint)
        self.poll_secs = poll_secs
        self._stop_evt = threading.Event()
        self._unsub_lock = threading.Lock()
        self._unsubscribed = False
        self.candidates_seen = 0

    # ---------- ciclo principal ----------
    def wait_for_listing(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Bloquea hasta resolver la mint. Devuelve None si se paró (stop) o
        venció ``timeout``. SubscriptionError si la suscripción falla.
        """
        events = self.stream.subscribe()
        deadline = monotonic() + timeout if timeout else None
        logger.info(f"🔎 Esperando listado de {self.token_name} ({self.token_ticker})")
        try:
            while not self._stop_evt.is_set():
                if deadline is not None and monotonic() > deadline:
                    logger.warning("Tiempo de espera del listado agotado")
                    return None
                try:
                    event = events.get(timeout=self.poll_secs)
                except queue.Empty:
                    if self.stream.error is not None:
                        raise SubscriptionError(f"Stream de logs perdido: {self.stream.error}") from self.stream.error
                    continue
                mint = self.inspect(event)
                if mint:
                    logger.info(f"🎯 Listado detectado: {mint} (tx {event.signature})")
                    return mint
            logger.info("Detección de listado detenida")
            return None
        finally:
            self.unsubscribe()

    def stop(self) -> None:
        self._stop_evt.set()

    def unsubscribe(self) -> None:
        with self._unsub_lock:
            if self._unsubscribed:
                return
            self._unsubscribed = True
        self.stream.unsubscribe()

    # ---------- inspección ----------
    def inspect(self, event: Any) -> Optional[str]:
        if getattr(event, "err", None):
            return None
        if not any(CREATE_LOG_MARKER in line for line in (event.logs or [])):
            return None

        self.candidates_seen += 1
        try:
            tx = self.fetch_transaction(event.signature)
        except Exception as e:
            logger.debug(f"[listing] no se pudo obtener {event.signature}: {e}")
            return None
        if not tx:
            return None

        mint = self.match_transaction(tx)
        if mint and self.confirm(tx, mint):
            return mint
        if mint:
            logger.debug(f"[listing] {mint} coincide pero no pasa la confirmación")
        return None

    def match_transaction(self, tx: Transaction) -> Optional[str]:
        for ix in self._inner_instructions(tx):
            if ix.get("programId") != self.metadata_program_id or not ix.get("data"):
                continue
            try:
                decoded = decode_create_metadata_v3(ix["data"])
            except DecodeError as e:
                logger.debug(f"[listing] metadata no decodificable: {e}")
                continue
            if self._is_target(decoded.name, decoded.symbol):
                return self.resolve_address(tx, ix, MINT_ACCOUNT_INDEX)

        # sin CPI de metadata: la propia instrucción create del launchpad
        for ix in self._top_instructions(tx):
            if ix.get("programId") != self.launch_program_id or not ix.get("data"):
                continue
            try:
                created = decode_launch_create(ix["data"])
            except DecodeError:
                continue
            if self._is_target(created.name, created.symbol):
                return self.resolve_address(tx, ix, LAUNCH_MINT_ACCOUNT_INDEX)
        return None

    @staticmethod
    def resolve_address(tx: Transaction, instruction: Dict[str, Any], account_index: int = MINT_ACCOUNT_INDEX) -> Optional[str]:
        balances = (tx.get("meta") or {}).get("postTokenBalances") or []
        if balances and balances[0].get("mint"):
            return balances[0]["mint"]
        accounts = instruction.get("accounts") or []
        if len(accounts) > account_index:
            return accounts[account_index]
        return None

    def _is_target(self, name: str, symbol: str) -> bool:
        return _norm(name) == self.token_name and _norm(symbol) == self.token_ticker

    @staticmethod
    def _inner_instructions(tx: Transaction) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for group in (tx.get("meta") or {}).get("innerInstructions") or []:
            out.extend(group.get("instructions") or [])
        return out

    @staticmethod
    def _top_instructions(tx: Transaction) -> List[Dict[str, Any]]:
        return ((tx.get("transaction") or {}).get("message") or {}).get("instructions") or []
