import queue
import threading

import pytest
from solders.keypair import Keypair

from models.bot_config import BotConfig
from orchestrators.listing_detector import ListingDetector
from orchestrators.session_controller import SessionController
from services.context import AppContext
from utils.exceptions import ConfigError, SubscriptionError

from conftest import _DummyPool, _DummySolana, _DummyTrader, make_account, wait_for


class _SilentStream:
    def __init__(self, error=None):
        self.error = error
        self.unsubscribed = 0

    def subscribe(self):
        return queue.Queue()

    def unsubscribe(self):
        self.unsubscribed += 1


class _Notifier:
    def __init__(self):
        self.listings = []
        self.finished = []

    def notify(self, text):
        pass

    def notify_listing(self, mint, name, symbol):
        self.listings.append(mint)

    def notify_run_finished(self, finished, failed, spent):
        self.finished.append((finished, failed))


def _controller(solana, trader, fast_trade_options, detector_stream=None, accounts=2, pool=None, reserve=None,
                **config):
    base = dict(thread_count=accounts, spend_limit=1.0, start_amount=0.1, buy_interval=0.05)
    base.update(config)
    bot = BotConfig(**base)
    factory = None
    if detector_stream is not None:
        def factory(name, ticker):
            return ListingDetector(detector_stream, lambda sig: None, name, ticker, poll_secs=0.02)
    context = AppContext(rpc_pool=pool or _DummyPool(solana), market=None, trader=trader,
                         notifier=_Notifier(), detector_factory=factory)
    return SessionController(
        bot, [make_account(i) for i in range(1, accounts + 1)], context,
        meta_interval=0.05, buy_start_delay=0.0,
        session_options=fast_trade_options,
        collect_options={"delay": 0.0, "stagger": 0.0},
        reserve=reserve,
    )


def test_known_asset_above_threshold_sells_and_finishes(fast_trade_options):
    solana, trader = _DummySolana(), _DummyTrader(market_cap=10_000)
    mint = str(Keypair().pubkey())
    ctl = _controller(solana, trader, fast_trade_options, asset_address=mint, market_cap_threshold=5000)
    report = ctl.run()
    assert report.ok
    assert report.asset_address == mint
    assert report.finished == 2
    assert all(st.done for st in report.states.values())
    assert trader.buys == []
    assert len({owner for owner, _ in trader.sells}) == 2
    assert ctl.context.notifier.listings == [mint]
    assert ctl.context.notifier.finished == [(2, 0)]
    assert solana.transfers == []


def test_stop_during_detection_exits_without_trades(fast_trade_options):
    solana, trader = _DummySolana(), _DummyTrader()
    stream = _SilentStream()
    ctl = _controller(solana, trader, fast_trade_options, detector_stream=stream,
                      token_name="Moon Cat", token_ticker="MCAT")
    threading.Timer(0.3, ctl.stop).start()
    report = ctl.run()
    assert report.asset_address is None
    assert report.finished == 2
    assert trader.buys == [] and trader.sells == []
    assert ctl.stop() is False


def test_lost_subscription_aborts_run(fast_trade_options):
    solana, trader = _DummySolana(), _DummyTrader()
    stream = _SilentStream(error=ConnectionError("socket closed"))
    ctl = _controller(solana, trader, fast_trade_options, detector_stream=stream,
                      token_name="Moon Cat", token_ticker="MCAT")
    with pytest.raises(SubscriptionError):
        ctl.run()
    assert ctl.stopping
    assert all(h.future.done() for h in ctl.handles.values())
    assert stream.unsubscribed == 1


def test_collect_action_sweeps_every_account(fast_trade_options):
    solana, trader = _DummySolana(), _DummyTrader(market_cap=10_000)
    receiver = str(Keypair().pubkey())
    ctl = _controller(solana, trader, fast_trade_options, asset_address=str(Keypair().pubkey()),
                      market_cap_threshold=5000, action="collect", collect_address=receiver)
    report = ctl.run()
    assert report.collected
    assert len(solana.transfers) == 2
    assert all(to == receiver for _, to in solana.transfers)


def test_empty_account_blocks_start(fast_trade_options):
    ctl = _controller(_DummySolana(balance=0), _DummyTrader(), fast_trade_options,
                      asset_address=str(Keypair().pubkey()))
    with pytest.raises(ConfigError):
        ctl.run()
    assert ctl.handles == {}


def test_live_config_update(fast_trade_options):
    ctl = _controller(_DummySolana(), _DummyTrader(), fast_trade_options,
                      asset_address=str(Keypair().pubkey()))
    assert ctl.update_config("buy_interval", "3") is True
    assert ctl.bot_config.buy_interval == 3
    assert ctl.update_config("thread_count", "9") is False
    assert ctl.sell() is True
    assert ctl.sell() is False
    assert "buy_interval: 3" in ctl.describe()


class _BrokenSolana(_DummySolana):
    def sol_balance(self, address):
        raise RuntimeError("boom")


class _MappedPool:
    def __init__(self, by_session):
        self.by_session = by_session

    def for_session(self, session_id):
        return self.by_session[session_id]

    def primary(self):
        return self.by_session[min(self.by_session)]


class _FlakyMetadataTrader(_DummyTrader):
    """Metadatos solo en la primera consulta; los refrescos fallan."""

    def __init__(self, market_cap=10_000.0):
        super().__init__(market_cap)
        self.describe_calls = 0

    def describe_asset(self, mint):
        with self._lock:
            self.describe_calls += 1
            first = self.describe_calls == 1
        if not first:
            raise ConnectionError("429 Too Many Requests")
        return super().describe_asset(mint)


def test_session_crash_is_isolated(fast_trade_options):
    healthy, trader = _DummySolana(), _DummyTrader(market_cap=10_000)
    pool = _MappedPool({1: _BrokenSolana(), 2: healthy})
    ctl = _controller(healthy, trader, fast_trade_options, pool=pool,
                      asset_address=str(Keypair().pubkey()), market_cap_threshold=5000)
    report = ctl.run()
    assert not report.ok
    assert report.failed == 1
    assert report.finished == 1
    assert 1 in report.errors and "boom" in report.errors[1]
    assert report.states[2].done
    assert {owner for owner, _ in trader.sells} == {ctl.accounts[1].address}


def test_refresh_failure_keeps_previous_metadata(fast_trade_options):
    solana, trader = _DummySolana(), _FlakyMetadataTrader(market_cap=10_000)
    ctl = _controller(solana, trader, fast_trade_options, asset_address=str(Keypair().pubkey()),
                      market_cap_threshold=50_000)
    outcome = {}

    def operator():
        wait_for(lambda: trader.buys and trader.describe_calls >= 3)
        outcome["spend_limit"] = ctl.update_config("spend_limit", "5")
        ctl.sell()

    threading.Thread(target=operator, daemon=True).start()
    report = ctl.run()
    assert report.ok
    assert trader.describe_calls >= 3
    assert trader.buys and all(mcap == 10_000 for _, mcap, _ in trader.buys)
    assert ctl.metadata.usd_market_cap == 10_000
    assert trader.sells
    # el límite de gasto no cambia con las sesiones en marcha
    assert outcome["spend_limit"] is False
    assert ctl.bot_config.spend_limit == 1.0


def test_spend_limit_accepted_before_start(fast_trade_options):
    ctl = _controller(_DummySolana(), _DummyTrader(), fast_trade_options,
                      asset_address=str(Keypair().pubkey()))
    assert ctl.update_config("spend_limit", "2") is True
    assert ctl.bot_config.spend_limit == 2.0


def test_stop_reenters_held_lock(fast_trade_options):
    # el handler de señales puede interrumpir al hilo que ya tiene el lock
    ctl = _controller(_DummySolana(), _DummyTrader(), fast_trade_options,
                      asset_address=str(Keypair().pubkey()))
    with ctl._lock:
        assert ctl.stop() is True
    assert ctl.stopping


def test_collect_defaults_to_reserve_account(fast_trade_options):
    solana, trader = _DummySolana(), _DummyTrader(market_cap=10_000)
    reserve = make_account(9, reserve=True)
    ctl = _controller(solana, trader, fast_trade_options, reserve=reserve,
                      asset_address=str(Keypair().pubkey()), market_cap_threshold=5000, action="collect")
    report = ctl.run()
    assert report.collected
    assert len(solana.transfers) == 2
    assert all(to == reserve.address for _, to in solana.transfers)
