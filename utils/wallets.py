"""
Funding account loading.

Accounts come from a CSV with a ``name,secret,is_reserve`` header. ``secret``
is either a base58 secret key (Phantom/Solflare export) or a JSON byte array
(``solana-keygen`` file contents). Ids follow file order starting at 1.
"""

from __future__ import annotations

import csv
import json
import os
from typing import List

from solders.keypair import Keypair

from models.funding_account import FundingAccount
from utils.exceptions import ConfigError
from utils.logger import logger_manager
from utils.validators import parse_bool

logger = logger_manager.setup_logger(__name__)

WALLETS_PATH = os.getenv("WALLETS_PATH", "wallets.csv")


def parse_keypair(secret: str) -> Keypair:
    secret = secret.strip()
    try:
        if secret.startswith("["):
            return Keypair.from_bytes(bytes(json.loads(secret)))
        return Keypair.from_base58_string(secret)
    except Exception as e:
        raise ConfigError(f"Clave privada inválida: {e}") from e


def load_accounts(path: str | None = None) -> List[FundingAccount]:
    csv_path = path or WALLETS_PATH
    if not os.path.exists(csv_path):
        raise ConfigError(f"No existe el fichero de cuentas: {csv_path}")

    accounts: List[FundingAccount] = []
    with open(csv_path, newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            secret = (row.get("secret") or "").strip()
            if not secret:
                continue
            accounts.append(FundingAccount(
                id=len(accounts) + 1,
                name=(row.get("name") or f"wallet-{len(accounts) + 1}").strip(),
                keypair=parse_keypair(secret),
                is_reserve=parse_bool(row.get("is_reserve") or "false"),
            ))

    reserves = [a for a in accounts if a.is_reserve]
    if len(reserves) > 1:
        raise ConfigError("Solo puede haber una cuenta de reserva")
    logger.info(f"Cargadas {len(accounts)} cuentas ({len(reserves)} de reserva) desde {csv_path}")
    return accounts


def trading_accounts(accounts: List[FundingAccount], count: int) -> List[FundingAccount]:
    """Las primeras ``count`` cuentas que no son de reserva."""
    usable = [a for a in accounts if not a.is_reserve]
    if count > len(usable):
        raise ConfigError(f"thread_count={count} pero solo hay {len(usable)} cuentas disponibles")
    return usable[:count]


def reserve_account(accounts: List[FundingAccount]) -> FundingAccount | None:
    return next((a for a in accounts if a.is_reserve), None)
