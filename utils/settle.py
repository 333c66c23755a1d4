from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from time import sleep
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None


def settle_all(
    tasks: Sequence[Callable[[], T]],
    max_workers: Optional[int] = None,
    stagger: float = 0.0,
    thread_name_prefix: str = "attempt",
) -> List[Outcome[T]]:
    """
    Lanza todas las tareas a la vez y espera a que terminen todas.
    Un fallo individual no corta el lote: queda registrado en su Outcome.
    El orden del resultado es el de envío.
    """
    if not tasks:
        return []

    workers = max_workers or len(tasks)
    outcomes: List[Outcome[T]] = []
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=thread_name_prefix) as pool:
        futures = []
        for i, task in enumerate(tasks):
            futures.append(pool.submit(task))
            if stagger > 0 and i < len(tasks) - 1:
                sleep(stagger)

        for fut in futures:
            try:
                outcomes.append(Outcome(ok=True, value=fut.result()))
            except Exception as e:
                outcomes.append(Outcome(ok=False, error=e))
    return outcomes


def errors_of(outcomes: Sequence[Outcome[Any]]) -> List[BaseException]:
    return [o.error for o in outcomes if not o.ok and o.error is not None]
