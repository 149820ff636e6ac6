import os
import signal
import threading
import time

import pytest

from glibkit.keylock import KeyLock, wait_signal


def test_lock_and_unlock_counts():
    kl = KeyLock()
    unlock = kl.lock("a")
    assert kl.get_num("a") == 1
    assert len(kl) == 1
    unlock()
    assert kl.get_num("a") == 0
    assert len(kl) == 0


def test_context_manager():
    kl = KeyLock()
    with kl.locked(42):
        assert kl.get_num(42) == 1
    assert len(kl) == 0


def test_context_manager_releases_on_error():
    kl = KeyLock()
    with pytest.raises(KeyError):
        with kl.locked("x"):
            raise KeyError("boom")
    assert len(kl) == 0


def test_double_unlock_raises():
    kl = KeyLock()
    unlock = kl.lock("a")
    unlock()
    with pytest.raises(RuntimeError):
        unlock()


def test_different_keys_do_not_block():
    kl = KeyLock()
    unlock_a = kl.lock("a")
    counts = []

    def worker():
        with kl.locked("b"):
            counts.append(kl.get_num("b"))

    t = threading.Thread(target=worker)
    t.start()
    t.join(timeout=2)
    assert counts == [1]
    assert kl.get_num("a") == 1
    assert kl.get_num("b") == 0
    assert len(kl) == 1
    unlock_a()
    assert len(kl) == 0


def test_same_key_is_exclusive():
    kl = KeyLock()
    state = {"active": 0, "max": 0, "total": 0}
    guard = threading.Lock()

    def worker():
        for _ in range(20):
            with kl.locked("shared"):
                with guard:
                    state["active"] += 1
                    state["max"] = max(state["max"], state["active"])
                value = state["total"]
                time.sleep(0.0005)
                state["total"] = value + 1
                with guard:
                    state["active"] -= 1

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert state["total"] == 100
    assert state["max"] == 1
    assert len(kl) == 0


def test_waiter_is_counted():
    kl = KeyLock()
    unlock = kl.lock("k")
    started = threading.Event()

    def worker():
        started.set()
        with kl.locked("k"):
            pass

    t = threading.Thread(target=worker)
    t.start()
    started.wait()
    deadline = time.monotonic() + 2
    while kl.get_num("k") < 2 and time.monotonic() < deadline:
        time.sleep(0.01)
    assert kl.get_num("k") == 2
    unlock()
    t.join(timeout=2)
    assert len(kl) == 0


def test_wait_signal_returns_signal_and_restores_handler():
    before = signal.getsignal(signal.SIGTERM)
    timer = threading.Timer(0.2, os.kill, (os.getpid(), signal.SIGTERM))
    timer.start()
    try:
        got = wait_signal()
    finally:
        timer.cancel()
    assert got == signal.SIGTERM
    assert signal.getsignal(signal.SIGTERM) == before