"""Recurring timer that drives scheduled backfill runs."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "scheduler"})


class Scheduler:
    """Invoke ``callback`` every ``interval_seconds`` on a background thread.

    The scheduler is created and started explicitly by the process that owns
    it. A failing callback is logged and the next tick still fires; there is
    no caller to report scheduled failures to.
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        interval_seconds: float,
        *,
        run_immediately: bool = False,
        name: str = "blurhash-scheduler",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.callback = callback
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self.name = name
        self.runs = 0

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
            self._thread.start()
        LOGGER.info("scheduler_started", extra={"interval": self.interval_seconds})

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to exit and wait up to ``timeout`` for the current tick."""

        self._stop.set()
        with self._lock:
            thread = self._thread
        if thread is not None:
            thread.join(timeout)
        LOGGER.info("scheduler_stopped", extra={"runs": self.runs})

    def wait(self) -> None:
        """Block until the scheduler thread exits."""

        thread = self._thread
        if thread is not None:
            thread.join()

    def _loop(self) -> None:
        if not self.run_immediately and self._stop.wait(self.interval_seconds):
            return

        while not self._stop.is_set():
            self._tick()
            if self._stop.wait(self.interval_seconds):
                return

    def _tick(self) -> None:
        self.runs += 1
        try:
            self.callback()
        except Exception as exc:
            LOGGER.error("scheduled_run_error", extra={"run": self.runs, "error": str(exc)}, exc_info=True)


__all__ = ["Scheduler"]
