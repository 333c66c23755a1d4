import math

import pytest
from pydantic import ValidationError
from solders.keypair import Keypair

from enums.venue import AfterAction
from models.bot_config import BotConfig, is_session_field, is_startup_only, parse_config_value
from models.session import SessionConfig, SessionState
from utils.exceptions import ConfigError


def _config(**overrides):
    base = dict(spend_limit=1.0, start_amount=0.1, token_name="Moon Cat", token_ticker="MCAT")
    base.update(overrides)
    return BotConfig(**base)


def test_defaults():
    cfg = _config()
    assert cfg.thread_count == 1
    assert cfg.action is AfterAction.SELL
    assert cfg.effective_threshold == math.inf


@pytest.mark.parametrize("overrides", [
    {"thread_count": 0},
    {"spend_limit": 0},
    {"start_amount": 2.0},
    {"market_cap_threshold": 4999},
    {"buy_slippage": 1.5},
    {"token_ticker": None},
    {"collect_address": "not-an-address"},
    {"asset_address": str(Keypair().pubkey())},
])
def test_rejects_invalid_config(overrides):
    with pytest.raises(ValidationError):
        _config(**overrides)


def test_asset_address_alone_is_enough():
    cfg = BotConfig(spend_limit=1.0, start_amount=0.1, asset_address=str(Keypair().pubkey()))
    assert cfg.token_name is None


def test_live_update_parses_values():
    cfg = _config()
    assert cfg.apply("buy_interval", "3") == 3
    assert cfg.apply("buy_once", "true") is True
    assert cfg.apply("action", "collect") is AfterAction.COLLECT
    assert cfg.apply("market_cap_threshold", "60000") == 60000
    assert cfg.effective_threshold == 60000.0


@pytest.mark.parametrize("key,raw", [
    ("thread_count", "3"),
    ("buy_interval", "0"),
    ("buy_interval", "abc"),
    ("market_cap_threshold", "100"),
    ("spend_limit", "-1"),
    ("action", "hold"),
    ("collect_address", "xyz"),
])
def test_live_update_rejects_bad_input_without_changes(key, raw):
    cfg = _config()
    before = cfg.model_dump()
    with pytest.raises(ConfigError):
        cfg.apply(key, raw)
    assert cfg.model_dump() == before


def test_session_field_table():
    assert is_session_field("buy_interval")
    assert is_session_field("market_cap_threshold")
    assert not is_session_field("spend_limit")
    assert not is_session_field("nope")
    with pytest.raises(ConfigError):
        parse_config_value("nope", "1")


def test_session_config_only_accepts_session_fields():
    sc = SessionConfig.from_bot_config(3, _config(market_cap_threshold=50000))
    assert sc.session_id == 3
    assert sc.market_cap_threshold == 50000.0
    with pytest.raises(ConfigError):
        sc.apply("spend_limit", "5")
    sc.apply("market_cap_threshold", "70000")
    assert sc.market_cap_threshold == 70000.0


def test_session_state_records_true_spend():
    st = SessionState()
    st.add_spend(0.7)
    st.add_spend(0.7)
    assert st.spent_so_far == pytest.approx(1.4)
    st.add_spend(-5)
    assert st.spent_so_far == pytest.approx(1.4)
    # saturar nunca rebaja lo gastado
    st.saturate(1.0)
    assert st.spent_so_far == pytest.approx(1.4)
    st.saturate(2.0)
    assert st.spent_so_far == 2.0


def test_sell_flag_is_sticky():
    st = SessionState()
    assert st.mark_sell() is True
    assert st.mark_sell() is False
    assert st.sell_signal_received is True


def test_spend_limit_is_startup_only():
    assert is_startup_only("spend_limit")
    assert not is_startup_only("market_cap_threshold")
    assert not is_startup_only("nope")
