from __future__ import annotations
import threading
from typing import Callable, Optional, Tuple


def control_sleep(duration: float) -> Tuple[Callable[[], bool], Callable[[], None]]:
    """
    Espera interrumpible.

    Devuelve ``(completion, cancel)``. ``completion()`` bloquea hasta que pasa
    ``duration`` o alguien llama a ``cancel()``; devuelve True si fue cancelada.
    ``cancel()`` es idempotente y no falla aunque la espera ya haya terminado.
    """
    evt = threading.Event()
    timeout = max(0.0, float(duration))
    result: list[Optional[bool]] = [None]
    lock = threading.Lock()

    def completion() -> bool:
        cancelled = evt.wait(timeout)
        with lock:
            # la primera resolución manda; un cancel tardío no la cambia
            if result[0] is None:
                result[0] = cancelled
            return bool(result[0])

    def cancel() -> None:
        evt.set()

    return completion, cancel
