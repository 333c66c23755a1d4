from __future__ import annotations
import random

LAMPORTS_PER_SOL = 1_000_000_000


def normal_random(mean: float, std: float, rng: random.Random | None = None) -> float:
    """Muestra gaussiana recortada a >= 0."""
    r = rng or random
    return max(0.0, r.gauss(mean, std))


def clamp(value: float, low: float, high: float) -> float:
    # high manda si low > high (presupuesto restante menor que el mínimo)
    return min(max(value, low), high)


def to_lamports(sol: float) -> int:
    return int(round(sol * LAMPORTS_PER_SOL))


def to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL
