from __future__ import annotations
import os
from time import sleep as _sleep
from typing import Any, Callable, Optional, TypeVar

from utils.logger import logger_manager
from utils.exceptions import (
    InsufficientFundsError,
    RetryExhaustedError,
    SimulationError,
    classify_error,
)

logger = logger_manager.setup_logger(__name__)

T = TypeVar("T")

# Espera extra tras un fallo de simulación (preflight)
SIMULATION_BACKOFF = float(os.getenv("SIMULATION_BACKOFF_SECS", "0.5"))


def execute(
    operation: Callable[[], T],
    max_attempts: int,
    delay: float,
    scale_by_attempt: bool = False,
    label: str = "op",
    on_failure: Optional[Callable[[int, BaseException], Any]] = None,
    sleep: Callable[[float], Any] = _sleep,
) -> T:
    """
    Ejecuta ``operation`` hasta ``max_attempts`` veces.

    - Éxito en cualquier intento: devuelve el resultado.
    - Fallo de simulación: espera ``delay`` + SIMULATION_BACKOFF y reintenta.
    - Otro fallo: espera ``delay`` (× intento si ``scale_by_attempt``) y reintenta.
    - Fondos insuficientes: se propaga sin reintentar.
    - Agotado: RetryExhaustedError con el último error.

    ``on_failure(attempt, err)`` se llama tras cada intento fallido
    (rotación de RPC, buffer de mensajes de la sesión...).
    """
    attempts = max(1, int(max_attempts))
    last_exc: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except Exception as e:
            err = classify_error(e)
            if isinstance(err, InsufficientFundsError):
                logger.warning(f"[{label}] fondos insuficientes, sin reintento: {e}")
                if err is e:
                    raise
                raise err from e

            last_exc = err
            if isinstance(err, SimulationError):
                logger.warning(f"[{label}] simulación fallida ({attempt}/{attempts}): {e}")
            else:
                logger.warning(f"[{label}] intento {attempt}/{attempts} falló: {e}")

            if on_failure is not None:
                on_failure(attempt, err)

            if attempt == attempts:
                break

            wait = delay * attempt if scale_by_attempt else delay
            if isinstance(err, SimulationError):
                wait += SIMULATION_BACKOFF
            if wait > 0:
                sleep(wait)

    raise RetryExhaustedError(label, attempts, last_exc)
