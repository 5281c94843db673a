"""Tests for shipstack.services.release.locks module."""

from __future__ import annotations

import threading

from shipstack.services.release import KeyedLock


def test_hold_is_reentrant() -> None:
    locks = KeyedLock()
    with locks.hold("a"):
        with locks.hold("a"):
            pass


def test_different_keys_do_not_block() -> None:
    locks = KeyedLock()
    entered = threading.Event()

    def other() -> None:
        with locks.hold("b"):
            entered.set()

    with locks.hold("a"):
        thread = threading.Thread(target=other)
        thread.start()
        assert entered.wait(timeout=5)
        thread.join()


def test_same_key_serializes_threads() -> None:
    locks = KeyedLock()
    order: list[str] = []
    started = threading.Event()

    def second() -> None:
        started.set()
        with locks.hold("a"):
            order.append("second")

    with locks.hold("a"):
        thread = threading.Thread(target=second)
        thread.start()
        assert started.wait(timeout=5)
        threading.Event().wait(0.05)
        assert not done.is_set()
        assert len(locks) == 1
        order.append("first")
    thread.join()

    assert order == ["first", "second"]


def test_released_keys_are_dropped() -> None:
    locks = KeyedLock()
    with locks.hold("a"):
        with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 1
    assert len(locks) == 0


def test_waiting_thread_keeps_the_key() -> None:
    locks = KeyedLock()
    done = threading.Event()

    def waiter() -> None:
        with locks.hold("a"):
            done.set()

    with locks.hold("a"):
        thread = threading.Thread(target=waiter)
        thread.start()
        threading.Event().wait(0.05)
        assert not done.is_set()
        assert len(locks) == 1
    assert done.wait(timeout=5)
    thread.join()
    assert len(locks) == 0
