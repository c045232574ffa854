"""
Gym_Manager.utils.periodic

A small background task that runs a callable every `interval` seconds,
or immediately when trigger() is called. Owned and stopped explicitly by
whoever starts it (autosave, status refresh).
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

log = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(self, name: str, interval: float, func: Callable[[], object]) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = float(interval)
        self._func = func
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._wake.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        log.debug("Started periodic task %s (every %.1fs)", self.name, self.interval)

    def trigger(self) -> None:
        """Run the callable as soon as possible instead of waiting for the next tick."""
        self._wake.set()

    def stop(self, timeout: float = 5.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop.set()
        self._wake.set()
        if thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        log.debug("Stopped periodic task %s", self.name)

    def _run(self) -> None:
        while not self._stop.is_set():
            self._wake.wait(self.interval)
            self._wake.clear()
            if self._stop.is_set():
                break
            try:
                self._func()
            except Exception:
                # Keep ticking: one failed run must not end the task
                log.exception("Periodic task %s failed", self.name)
