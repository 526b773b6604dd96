from __future__ import annotations

import threading

from clock import ThreadingClock, run_in_background


def test_run_in_background_uses_another_thread() -> None:
    done = threading.Event()
    seen: list[threading.Thread] = []

    def work() -> None:
        seen.append(threading.current_thread())
        done.set()

    run_in_background(work)

    assert done.wait(timeout=2.0)
    assert seen[0] is not threading.main_thread()
    assert seen[0].daemon is True


def test_call_later_fires_and_cancel_prevents_it() -> None:
    clock = ThreadingClock()
    fired = threading.Event()
    skipped = threading.Event()

    clock.call_later(0.01, fired.set)
    clock.call_later(0.05, skipped.set).cancel()

    assert fired.wait(timeout=2.0)
    assert not skipped.wait(timeout=0.2)
    assert clock.now() > 0
