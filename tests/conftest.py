import os
import queue
import struct
import threading
import time

import base58
import pytest
from solders.keypair import Keypair

os.environ.setdefault("LOG_TO_FILE", "false")

from enums.venue import Venue  # noqa: E402
from models.funding_account import FundingAccount  # noqa: E402
from models.market_metadata import MarketMetadata  # noqa: E402
from models.trade_result import TokenHolding  # noqa: E402
from services.trader_base import Trader  # noqa: E402
from utils.exceptions import SniperError  # noqa: E402
from utils.instruction_decoder import CREATE_METADATA_V3_DISCRIMINATOR  # noqa: E402


class _DummySolana:
    """Sin red: saldo fijo, firmas secuenciales, posición configurable."""

    def __init__(self, balance=5.0, holding=1_000_000, realized=None, send_error=None):
        self.balance = balance
        self.holding = holding
        self.realized = realized
        self.send_error = send_error
        self.sent = []
        self.transfers = []
        self._lock = threading.Lock()

    def sol_balance(self, address):
        return self.balance

    def lamports_balance(self, address):
        return int(self.balance * 1_000_000_000)

    def sign_and_send(self, raw_tx, signer):
        if self.send_error is not None:
            raise self.send_error
        with self._lock:
            self.sent.append((str(signer.pubkey()), raw_tx))
            return f"sig{len(self.sent)}"

    def balance_change(self, signature, address):
        if self.realized is None:
            raise SniperError("no tx")
        return self.realized

    def token_balance(self, owner, mint):
        return TokenHolding(mint=str(mint), amount=self.holding, decimals=6, ui_amount=self.holding / 1e6)

    def transfer_lamports(self, sender, receiver, lamports=None):
        with self._lock:
            self.transfers.append((str(sender.pubkey()), str(receiver)))
            return f"transfer{len(self.transfers)}"


class _DummyTrader(Trader):
    venue = Venue.PUMP

    def __init__(self, market_cap=10_000.0):
        self.market_cap = market_cap
        self.buys = []   # (owner, market_cap_visto, amount)
        self.sells = []  # (owner, amount)
        self._lock = threading.Lock()

    def quote(self, metadata, amount, side):
        return 0.0

    def build_buy(self, owner, metadata, sol_amount, slippage):
        with self._lock:
            self.buys.append((str(owner), metadata.usd_market_cap, sol_amount))
        return b"buy"

    def build_sell(self, owner, metadata, holding, slippage):
        with self._lock:
            self.sells.append((str(owner), holding.amount))
        return b"sell"

    def describe_asset(self, mint):
        return MarketMetadata(asset_address=mint, usd_market_cap=self.market_cap, symbol="TST", name="Test")


class _DummyPool:
    def __init__(self, solana):
        self.solana = solana

    def for_session(self, session_id):
        return self.solana

    def primary(self):
        return self.solana


def make_account(idx, reserve=False):
    return FundingAccount(id=idx, name=f"w{idx}", keypair=Keypair(), is_reserve=reserve)


def wait_for(predicate, timeout=5.0, step=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step)
    return False


def drain(q):
    items = []
    while True:
        try:
            items.append(q.get_nowait())
        except queue.Empty:
            return items


@pytest.fixture
def dummy_solana():
    return _DummySolana()


@pytest.fixture
def dummy_trader():
    return _DummyTrader()


@pytest.fixture
def dummy_pool():
    return _DummyPool


@pytest.fixture
def fast_trade_options():
    return {
        "buy_options": {"stagger": 0.0, "retry_interval": 0.0},
        "sell_options": {"stagger": 0.0, "retry_interval": 0.0, "balance_delay": 0.0},
        "poll_interval": 0.02,
        "retry_interval": 0.01,
    }


def encode_string(value):
    b = value.encode("utf-8")
    return struct.pack("<I", len(b)) + b


def encode_create_metadata_v3(name, symbol, uri="", seller_fee_basis_points=0):
    """Datos base58 de un CreateMetadataAccountV3 mínimo (sin creators/collection/uses)."""
    payload = (
        bytes([CREATE_METADATA_V3_DISCRIMINATOR])
        + encode_string(name)
        + encode_string(symbol)
        + encode_string(uri)
        + struct.pack("<H", seller_fee_basis_points)
        + b"\x00\x00\x00\x01\x00"
    )
    return base58.b58encode(payload).decode("ascii")
