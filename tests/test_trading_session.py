import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from enums.command import EventKind
from enums.session_phase import SessionPhase
from models.market_metadata import MarketMetadata
from models.messages import ControlMessage
from models.session import SessionConfig
from orchestrators.trading_session import TradingSession
from services.message_bus import MessageBus

from conftest import _DummySolana, _DummyTrader, drain, make_account, wait_for


def _session(bus, solana, trader, opts, session_id=1, **config):
    base = dict(session_id=session_id, spend_limit=1.0, start_amount=0.1, buy_interval=0.05,
                market_cap_threshold=50_000.0)
    base.update(config)
    return TradingSession(make_account(session_id), SessionConfig(**base), solana, trader, bus,
                          rng=random.Random(7), **opts)


def _md(mcap):
    return ControlMessage.metadata_update(MarketMetadata(asset_address="Mint111", usd_market_cap=mcap, symbol="MCAT"))


def test_stop_before_metadata_ends_without_trades(fast_trade_options):
    bus, solana, trader = MessageBus(), _DummySolana(), _DummyTrader()
    session = _session(bus, solana, trader, fast_trade_options)
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(session.run)
        bus.send(1, ControlMessage.buy())
        bus.send(1, ControlMessage.stop())
        state = future.result(timeout=5)
    assert state.done and state.phase is SessionPhase.DONE
    assert trader.buys == [] and trader.sells == []
    kinds = [e.kind for e in drain(bus.outbox)]
    assert kinds[0] is EventKind.STARTED
    assert kinds[-1] is EventKind.FINISHED
    assert 1 not in bus.session_ids()


def test_two_sessions_buy_below_threshold_then_sell(fast_trade_options):
    bus, solana, trader = MessageBus(), _DummySolana(), _DummyTrader()
    sessions = [_session(bus, solana, trader, fast_trade_options, session_id=i) for i in (1, 2)]
    with ThreadPoolExecutor(2) as pool:
        futures = [pool.submit(s.run) for s in sessions]
        bus.broadcast(_md(10_000))
        bus.broadcast(ControlMessage.buy())
        assert wait_for(lambda: all(s.state.spent_so_far > 0 for s in sessions))
        bus.broadcast(_md(60_000))
        states = [f.result(timeout=10) for f in futures]

    assert trader.buys
    assert all(mcap < 50_000 for _, mcap, _ in trader.buys)
    for st, session in zip(states, sessions):
        assert st.done
        assert st.sells >= 1
        assert 0 < st.spent_so_far <= session.config.spend_limit
    # cada sesión vende con su propia cuenta
    assert {owner for owner, _ in trader.sells} == {s.account.address for s in sessions}


def test_spend_limit_adjusted_by_balance(fast_trade_options):
    bus, trader = MessageBus(), _DummyTrader()
    solana = _DummySolana(balance=0.3)
    session = _session(bus, solana, trader, fast_trade_options, market_cap_threshold=float("inf"))
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(session.run)
        bus.send(1, _md(10_000))
        bus.send(1, ControlMessage.buy())
        assert wait_for(lambda: session.state.spent_so_far >= session.config.spend_limit)
        bus.send(1, ControlMessage.stop())
        state = future.result(timeout=5)
    assert session.config.spend_limit == pytest.approx(0.29)
    assert state.spent_so_far == pytest.approx(0.29)
    assert all(amount <= 0.29 + 1e-9 for _, _, amount in trader.buys)


def test_buy_once_saturates_after_first_batch(fast_trade_options):
    bus, solana, trader = MessageBus(), _DummySolana(), _DummyTrader()
    session = _session(bus, solana, trader, fast_trade_options, buy_once=True)
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(session.run)
        bus.send(1, _md(10_000))
        bus.send(1, ControlMessage.buy())
        assert wait_for(lambda: session.state.buys > 0)
        bus.send(1, ControlMessage.stop())
        state = future.result(timeout=5)
    # un único lote
    assert len(trader.buys) == 2
    assert state.spent_so_far == session.config.spend_limit


def test_realized_spend_preferred_over_nominal(fast_trade_options):
    bus, trader = MessageBus(), _DummyTrader()
    solana = _DummySolana(realized=0.05)
    session = _session(bus, solana, trader, {**fast_trade_options, "buy_options": {
        "stagger": 0.0, "retry_interval": 0.0, "batch_size": 1}}, buy_once=False,
        market_cap_threshold=float("inf"))
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(session.run)
        bus.send(1, _md(10_000))
        bus.send(1, ControlMessage.buy())
        assert wait_for(lambda: session.state.buys > 0)
        bus.send(1, ControlMessage.stop())
        state = future.result(timeout=5)
    assert state.spent_so_far == pytest.approx(0.05 * state.buys)


def test_insufficient_funds_is_a_hard_stop(fast_trade_options):
    bus, trader = MessageBus(), _DummyTrader()
    solana = _DummySolana(send_error=Exception("Transfer: insufficient lamports 5000, need 100000"))
    session = _session(bus, solana, trader, fast_trade_options)
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(session.run)
        bus.send(1, _md(10_000))
        bus.send(1, ControlMessage.buy())
        state = future.result(timeout=5)
    assert state.done
    assert state.error
    assert state.spent_so_far == 0
    # un intento por hilo del lote, sin reintentos
    assert len(trader.buys) == 2


def test_sell_signal_is_sticky(fast_trade_options):
    bus = MessageBus()
    session = _session(bus, _DummySolana(), _DummyTrader(), fast_trade_options)
    session.handle(ControlMessage.sell())
    session.handle(ControlMessage.sell())
    assert session.state.sell_signal_received
    assert "Venta ya en curso" in session._buffer
    md = MarketMetadata(asset_address="Mint111", usd_market_cap=1.0)
    assert session.should_sell(md)


def test_duplicate_buy_is_ignored(fast_trade_options):
    session = _session(MessageBus(), _DummySolana(), _DummyTrader(), fast_trade_options)
    session.handle(ControlMessage.buy())
    first = session.state.current_buy_amount
    session.handle(ControlMessage.buy())
    assert session.state.current_buy_amount == first
    assert "Ya está comprando" in session._buffer
    assert 0.005 <= first <= session.config.spend_limit


def test_config_update_applies_session_fields_only(fast_trade_options):
    session = _session(MessageBus(), _DummySolana(), _DummyTrader(), fast_trade_options)
    session.handle(ControlMessage.config_update("market_cap_threshold", 80_000))
    assert session.config.market_cap_threshold == 80_000.0
    session.handle(ControlMessage.config_update("spend_limit", 9))
    assert session.config.spend_limit == 1.0


def test_sell_with_nothing_held_exits(fast_trade_options):
    bus, trader = MessageBus(), _DummyTrader()
    solana = _DummySolana(holding=0)
    opts = {**fast_trade_options, "sell_options": {"stagger": 0.0, "retry_interval": 0.0,
                                                   "balance_delay": 0.0, "balance_retries": 2}}
    session = _session(bus, solana, trader, opts)
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(session.run)
        bus.send(1, ControlMessage.sell())
        bus.send(1, _md(10_000))
        state = future.result(timeout=5)
    assert state.done
    assert trader.sells == []
    assert state.sells == 0


def test_confirmed_buys_never_exceed_limit(fast_trade_options):
    bus, trader = MessageBus(), _DummyTrader()
    solana = _DummySolana(balance=0.3)
    # lote por defecto de dos hilos, ambos confirman
    session = _session(bus, solana, trader, fast_trade_options, market_cap_threshold=float("inf"))
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(session.run)
        bus.send(1, _md(10_000))
        bus.send(1, ControlMessage.buy())
        assert wait_for(lambda: session.state.spent_so_far >= session.config.spend_limit)
        bus.send(1, ControlMessage.stop())
        future.result(timeout=5)
    assert len(trader.buys) >= 2
    assert sum(amount for _, _, amount in trader.buys) <= session.config.spend_limit + 1e-9


class _RejectingSellTrader(_DummyTrader):
    def __init__(self):
        super().__init__()
        self.sell_attempts = 0

    def build_sell(self, owner, metadata, holding, slippage):
        with self._lock:
            self.sell_attempts += 1
        raise RuntimeError("blockhash not found")


def test_stop_ends_a_sell_that_never_confirms(fast_trade_options):
    bus, solana, trader = MessageBus(), _DummySolana(), _RejectingSellTrader()
    opts = {**fast_trade_options, "sell_options": {"stagger": 0.0, "retry_interval": 0.05,
                                                   "balance_delay": 0.0}}
    session = _session(bus, solana, trader, opts)
    with ThreadPoolExecutor(1) as pool:
        future = pool.submit(session.run)
        bus.send(1, _md(10_000))
        bus.send(1, ControlMessage.sell())
        assert wait_for(lambda: trader.sell_attempts >= 2)
        bus.send(1, ControlMessage.stop())
        state = future.result(timeout=5)
    assert state.done
    assert state.sells == 0
    assert trader.sells == []
