import threading
import time

from utils.cancellable_wait import control_sleep


def test_completes_after_duration():
    completion, _ = control_sleep(0.05)
    start = time.monotonic()
    assert completion() is False
    assert time.monotonic() - start >= 0.04


def test_cancel_wakes_waiter_early():
    completion, cancel = control_sleep(10)
    threading.Timer(0.05, cancel).start()
    start = time.monotonic()
    assert completion() is True
    assert time.monotonic() - start < 2


def test_cancel_before_waiting_returns_immediately():
    completion, cancel = control_sleep(10)
    cancel()
    cancel()
    assert completion() is True


def test_late_cancel_does_not_change_result():
    completion, cancel = control_sleep(0)
    assert completion() is False
    cancel()
    assert completion() is False
