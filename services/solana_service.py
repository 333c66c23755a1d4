from __future__ import annotations
import json
import math
import os
import threading
from time import time, sleep
from typing import Any, Callable, Dict, List, Optional, Union

from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus

from models.trade_result import TokenHolding
from utils.amounts import to_sol
from utils.exceptions import InsufficientFundsError, SniperError
from utils.logger import logger_manager, log_function
from utils.retry import execute

logger = logger_manager.setup_logger(__name__)

# ---------- ENV ----------
# RPCs: coma-separado. El pool reparte sesiones entre ellos y cada servicio
# hace failover en orden a partir del suyo.
_RPC_ENV = (
    os.getenv("RPC_URLS")
    or os.getenv("RPC_URL")
    or "https://api.mainnet-beta.solana.com"
)
DEFAULT_RPC_URLS = [u.strip().rstrip("/") for u in _RPC_ENV.split(",") if u.strip()]

DRY_RUN = os.getenv("DRY_RUN", "true").lower() == "true"

REQUEST_TIMEOUT_SECS   = float(os.getenv("RPC_TIMEOUT_SECS", "30"))
RETRY_RPC_TIMES        = int(os.getenv("RPC_RETRIES", "3"))
RETRY_BACKOFF_SECS     = float(os.getenv("RPC_RETRY_BACKOFF_SECS", "0.4"))
CONFIRM_TIMEOUT_SECS   = float(os.getenv("CONFIRM_TIMEOUT_SECS", "60"))
CONFIRM_POLL_SECS      = float(os.getenv("CONFIRM_POLL_SECS", "1.0"))
SEND_MAX_RETRIES       = int(os.getenv("SEND_MAX_RETRIES", "2"))  # reintentos internos del nodo

# Transferencias de SOL (collect)
TRANSFER_BASE_FEE_LAMPORTS = 5000
TRANSFER_COMPUTE_UNITS     = int(os.getenv("TRANSFER_COMPUTE_UNITS", "500"))
TRANSFER_CU_PRICE_MICRO    = int(os.getenv("TRANSFER_CU_PRICE_MICRO", "100000"))

PubkeyLike = Union[Pubkey, str]


def _pk(value: PubkeyLike) -> Pubkey:
    return value if isinstance(value, Pubkey) else Pubkey.from_string(str(value))


def _as_dict(resp: Any) -> Dict[str, Any]:
    """Respuesta solders → dict JSON-RPC ({'result': ...})."""
    return json.loads(resp.to_json())


class SolanaService:
    def __init__(self, rpc_urls: Optional[List[str]] = None) -> None:
        # Lista de RPCs con failover
        self._rpc_urls: List[str] = list(rpc_urls) if rpc_urls else list(DEFAULT_RPC_URLS)
        if not self._rpc_urls:
            self._rpc_urls = ["https://api.mainnet-beta.solana.com"]
        self._lock = threading.Lock()
        self._current_rpc_idx = 0
        self._client = self._connect(self._rpc_urls[0])
        logger.debug(f"Cliente RPC en {self.active_rpc}")

    # ---------- conexión / failover ----------
    def _connect(self, url: str) -> Client:
        return Client(url, commitment=Confirmed, timeout=REQUEST_TIMEOUT_SECS)

    @property
    def active_rpc(self) -> str:
        return self._rpc_urls[self._current_rpc_idx]

    def _rotate(self) -> None:
        if len(self._rpc_urls) < 2:
            return
        with self._lock:
            self._current_rpc_idx = (self._current_rpc_idx + 1) % len(self._rpc_urls)
            self._client = self._connect(self._rpc_urls[self._current_rpc_idx])
        logger.info(f"Cambiando a RPC: {self.active_rpc}")

    def _rpc_call(self, label: str, fn: Callable[[Client], Any], retries: int = RETRY_RPC_TIMES) -> Any:
        """
        Ejecuta una llamada RPC con reintentos y failover de proveedor.
        ``fn`` recibe el cliente activo para que la rotación tenga efecto.
        """
        return execute(
            lambda: fn(self._client),
            max_attempts=retries,
            delay=RETRY_BACKOFF_SECS,
            scale_by_attempt=True,
            label=f"RPC:{label}",
            on_failure=lambda attempt, err: self._rotate(),
        )

    # ---------- lecturas ----------
    @log_function
    def lamports_balance(self, address: PubkeyLike) -> int:
        return int(self._rpc_call("get_balance", lambda c: c.get_balance(_pk(address)).value))

    def sol_balance(self, address: PubkeyLike) -> float:
        return to_sol(self.lamports_balance(address))

    @log_function
    def token_balance(self, owner: PubkeyLike, mint: PubkeyLike) -> TokenHolding:
        resp = self._rpc_call(
            "get_token_accounts_by_owner",
            lambda c: c.get_token_accounts_by_owner_json_parsed(_pk(owner), TokenAccountOpts(mint=_pk(mint))),
        )
        accounts = (_as_dict(resp).get("result") or {}).get("value") or []
        amount, decimals = 0, 0
        for acc in accounts:
            info = acc["account"]["data"]["parsed"]["info"]["tokenAmount"]
            amount += int(info.get("amount", 0))
            decimals = int(info.get("decimals", decimals))
        ui = amount / (10 ** decimals) if decimals else float(amount)
        return TokenHolding(mint=str(mint), amount=amount, decimals=decimals, ui_amount=ui)

    @log_function
    def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        resp = self._rpc_call(
            "get_transaction",
            lambda c: c.get_transaction(
                Signature.from_string(signature),
                encoding="jsonParsed",
                max_supported_transaction_version=0,
            ),
        )
        return _as_dict(resp).get("result")

    def balance_change(self, signature: str, address: PubkeyLike) -> float:
        """SOL que salió de ``address`` en la tx (positivo = gasto)."""
        tx = self.get_parsed_transaction(signature)
        if not tx or not tx.get("meta"):
            raise SniperError(f"Transacción {signature} no encontrada")
        keys = tx["transaction"]["message"]["accountKeys"]
        target = str(address)
        for idx, key in enumerate(keys):
            pubkey = key.get("pubkey") if isinstance(key, dict) else key
            if pubkey == target:
                meta = tx["meta"]
                return to_sol(int(meta["preBalances"][idx]) - int(meta["postBalances"][idx]))
        raise SniperError(f"{target} no aparece en {signature}")

    # ---------- envío ----------
    def _send_signed(self, tx: VersionedTransaction) -> str:
        opts = TxOpts(skip_preflight=False, preflight_commitment=Confirmed, max_retries=SEND_MAX_RETRIES)
        # un solo intento: el reintento de la operación completa lo hace quien llama
        sig = self._rpc_call("send_raw_transaction", lambda c: c.send_raw_transaction(bytes(tx), opts=opts).value, retries=1)
        signature = str(sig)
        self.wait_for_confirmation(signature)
        return signature

    @log_function
    def sign_and_send(self, raw_tx: bytes, signer: Keypair) -> str:
        """Firma una VersionedTransaction serializada (construida por el trader) y la envía."""
        unsigned = VersionedTransaction.from_bytes(raw_tx)
        signed = VersionedTransaction(unsigned.message, [signer])
        if DRY_RUN:
            logger.info(f"[DRY_RUN] No se envía tx de {signer.pubkey()}")
            return str(Signature.default())
        return self._send_signed(signed)

    def wait_for_confirmation(self, signature: str, timeout: float = CONFIRM_TIMEOUT_SECS) -> None:
        sig = Signature.from_string(signature)
        deadline = time() + timeout
        ok_states = (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)
        while time() < deadline:
            statuses = self._rpc_call(
                "get_signature_statuses",
                lambda c: c.get_signature_statuses([sig], search_transaction_history=True).value,
            )
            status = statuses[0] if statuses else None
            if status is not None:
                if status.err is not None:
                    raise SniperError(f"Transacción {signature} falló: {status.err}")
                if status.confirmation_status in ok_states:
                    return
            sleep(CONFIRM_POLL_SECS)
        raise SniperError(f"Transacción {signature} sin confirmar tras {timeout:.0f}s")

    @log_function
    def transfer_lamports(self, sender: Keypair, receiver: PubkeyLike, lamports: Optional[int] = None) -> str:
        """
        Transfiere ``lamports`` (por defecto todo el saldo menos comisiones) a ``receiver``.
        """
        balance = self.lamports_balance(sender.pubkey())
        fee = TRANSFER_BASE_FEE_LAMPORTS + math.ceil(TRANSFER_CU_PRICE_MICRO * TRANSFER_COMPUTE_UNITS / 1_000_000)
        amount = (balance - fee) if lamports is None else min(lamports, balance - fee)
        if amount <= 0:
            raise InsufficientFundsError(f"{sender.pubkey()} sin saldo para transferir ({balance} lamports)")

        ixs = [
            set_compute_unit_limit(TRANSFER_COMPUTE_UNITS),
            set_compute_unit_price(TRANSFER_CU_PRICE_MICRO),
            transfer(TransferParams(from_pubkey=sender.pubkey(), to_pubkey=_pk(receiver), lamports=amount)),
        ]
        blockhash = self._rpc_call("get_latest_blockhash", lambda c: c.get_latest_blockhash().value.blockhash)
        msg = MessageV0.try_compile(sender.pubkey(), ixs, [], blockhash)
        tx = VersionedTransaction(msg, [sender])

        if DRY_RUN:
            logger.info(f"[DRY_RUN] Transferencia de {to_sol(amount):.6f} SOL a {receiver} no enviada")
            return str(Signature.default())
        logger.info(f"Transfiriendo {to_sol(amount):.6f} SOL de {sender.pubkey()} a {receiver}")
        return self._send_signed(tx)


class RpcPool:
    """
    Reparte sesiones entre endpoints equivalentes (round-robin por id).
    Cada servicio es de solo lectura para las sesiones y se reutiliza.
    """

    def __init__(self, rpc_urls: Optional[List[str]] = None) -> None:
        self._urls = list(rpc_urls) if rpc_urls else list(DEFAULT_RPC_URLS)
        self._services: Dict[int, SolanaService] = {}
        self._lock = threading.Lock()

    def for_session(self, session_id: int) -> SolanaService:
        idx = session_id % len(self._urls)
        with self._lock:
            svc = self._services.get(idx)
            if svc is None:
                ordered = self._urls[idx:] + self._urls[:idx]
                svc = SolanaService(ordered)
                self._services[idx] = svc
            return svc

    def primary(self) -> SolanaService:
        return self.for_session(0)
