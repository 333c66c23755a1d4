import json

import pytest
from solders.keypair import Keypair

from utils.exceptions import ConfigError
from utils.wallets import load_accounts, parse_keypair, reserve_account, trading_accounts


def test_parse_keypair_formats():
    kp = Keypair()
    assert parse_keypair(str(kp)).pubkey() == kp.pubkey()
    assert parse_keypair(json.dumps(list(bytes(kp)))).pubkey() == kp.pubkey()
    with pytest.raises(ConfigError):
        parse_keypair("garbage")


def test_load_accounts_assigns_ids_in_order(tmp_path):
    kps = [Keypair() for _ in range(3)]
    path = tmp_path / "wallets.csv"
    path.write_text(
        "name,secret,is_reserve\n"
        f"a,{kps[0]},false\n"
        f"b,{kps[1]},true\n"
        f"c,{kps[2]},false\n"
    )
    accounts = load_accounts(str(path))
    assert [a.id for a in accounts] == [1, 2, 3]
    assert reserve_account(accounts).name == "b"
    assert [a.name for a in trading_accounts(accounts, 2)] == ["a", "c"]
    with pytest.raises(ConfigError):
        trading_accounts(accounts, 3)


def test_only_one_reserve(tmp_path):
    path = tmp_path / "wallets.csv"
    path.write_text(f"name,secret,is_reserve\na,{Keypair()},true\nb,{Keypair()},true\n")
    with pytest.raises(ConfigError):
        load_accounts(str(path))


def test_missing_file():
    with pytest.raises(ConfigError):
        load_accounts("/nonexistent/wallets.csv")
