"""Repeating background timer driving the recording progress."""

from __future__ import annotations

import threading
from typing import Callable, Optional


class ThreadTicker:
    def __init__(self) -> None:
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self, interval_s: float, callback: Callable[[], None]) -> None:
        self.cancel()
        stop_event = threading.Event()
        self._stop_event = stop_event

        def _run() -> None:
            while not stop_event.wait(interval_s):
                callback()

        self._thread = threading.Thread(target=_run, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        # No join: the callback may be waiting on the caller's lock.
        self._stop_event.set()
        self._thread = None
