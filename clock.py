"""Wall-clock timers backed by ``threading.Timer``."""

from __future__ import annotations

import threading
import time
from typing import Callable


class ThreadingClock:
    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay_s, callback)
        timer.daemon = True
        timer.start()
        return timer


def run_in_background(fn: Callable[[], None]) -> None:
    """Run ``fn`` on a daemon thread so blocking engine or audio work stays off the caller."""
    threading.Thread(target=fn, daemon=True).start()
