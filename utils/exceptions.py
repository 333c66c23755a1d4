from __future__ import annotations
from typing import Optional


class SniperError(Exception):
    """Base de todos los errores propios."""


class SimulationError(SniperError):
    """El nodo rechazó la transacción en la simulación previa (preflight)."""


class InsufficientFundsError(SniperError):
    """La cuenta no tiene SOL suficiente. Nunca se reintenta."""


class RetryExhaustedError(SniperError):
    def __init__(self, label: str, attempts: int, last_error: Optional[BaseException]) -> None:
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"[{label}] agotados {attempts} intentos: {last_error}")


class SubscriptionError(SniperError):
    """Fallo al abrir o mantener la suscripción de logs. Fatal para la ejecución."""


class DecodeError(SniperError):
    pass


class ConfigError(SniperError):
    pass


class EmptyHoldingError(SniperError):
    pass


class SessionCrashed(SniperError):
    def __init__(self, session_id: int, cause: BaseException) -> None:
        self.session_id = session_id
        self.cause = cause
        super().__init__(f"Sesión {session_id} terminó con error: {cause}")


# Fragmentos de texto que devuelven los nodos RPC
_SIMULATION_MARKERS = ("simulation failed", "blockhash not found")
_FUNDS_MARKERS = ("insufficient lamports", "insufficient funds", "insufficientfunds")


def classify_error(exc: BaseException) -> BaseException:
    """
    Traduce errores del RPC/SDK a la taxonomía propia según su texto.
    Los errores ya clasificados se devuelven tal cual.
    """
    if isinstance(exc, RetryExhaustedError) and exc.last_error is not None:
        return classify_error(exc.last_error)
    if isinstance(exc, SniperError):
        return exc
    text = str(exc).lower()
    if any(m in text for m in _FUNDS_MARKERS):
        return InsufficientFundsError(str(exc))
    if any(m in text for m in _SIMULATION_MARKERS):
        return SimulationError(str(exc))
    return exc
