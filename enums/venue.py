from __future__ import annotations

from enum import Enum


class Venue(str, Enum):
    PUMP = "pump"          # bonding curve vía PumpPortal
    JUPITER = "jupiter"    # agregador


class AfterAction(str, Enum):
    """Qué hacer con los fondos cuando termina la ejecución."""

    SELL = "sell"
    COLLECT = "collect"
