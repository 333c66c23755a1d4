from __future__ import annotations
from typing import Any

from solders.pubkey import Pubkey


def is_valid_pubkey(value: Any) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        Pubkey.from_string(value.strip())
        return True
    except Exception:
        return False


def parse_int(value: Any, min_value: int, max_value: int | None = None) -> int:
    try:
        num = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValueError(f"'{value}' no es un entero")
    if num < min_value or (max_value is not None and num > max_value):
        bound = f"[{min_value}, {max_value}]" if max_value is not None else f">= {min_value}"
        raise ValueError(f"{num} fuera de rango {bound}")
    return num


def parse_float(value: Any, min_value: float) -> float:
    try:
        num = float(str(value).strip())
    except (TypeError, ValueError):
        raise ValueError(f"'{value}' no es un número")
    if num != num or num < min_value:
        raise ValueError(f"{num} debe ser >= {min_value}")
    return num


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "y", "si", "sí"):
        return True
    if text in ("false", "0", "no", "n"):
        return False
    raise ValueError(f"'{value}' no es booleano (true/false)")


def parse_pubkey(value: Any) -> str:
    if not is_valid_pubkey(value):
        raise ValueError(f"'{value}' no es una dirección válida")
    return str(value).strip()
