from __future__ import annotations

import threading
import time

from ticker import ThreadTicker


def test_ticker_fires_until_cancelled() -> None:
    ticks: list[int] = []
    fired = threading.Event()

    def on_tick() -> None:
        ticks.append(1)
        if len(ticks) >= 3:
            fired.set()

    ticker = ThreadTicker()
    ticker.start(0.01, on_tick)
    assert fired.wait(timeout=2.0)
    ticker.cancel()
    time.sleep(0.05)
    count = len(ticks)
    time.sleep(0.05)

    assert len(ticks) == count


def test_restart_replaces_previous_timer() -> None:
    first: list[int] = []
    second: list[int] = []

    ticker = ThreadTicker()
    ticker.start(0.01, lambda: first.append(1))
    ticker.start(0.01, lambda: second.append(1))
    time.sleep(0.1)
    ticker.cancel()
    count = len(first)
    time.sleep(0.05)

    assert len(first) == count
    assert second
