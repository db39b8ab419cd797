"""Per-key call deduplication for concurrent work on the same asset."""

from __future__ import annotations

import threading
from collections.abc import Callable, Hashable
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class Flight(Generic[T]):
    """One in-progress call for a key, shared by its leader and joiners.

    ``context`` is created once per flight and lets every participant
    coordinate on the same object while the call is still running.
    """

    def __init__(self, owner: SingleFlight[T], key: Hashable, context: Any) -> None:
        self.context = context
        self._owner = owner
        self._key = key
        self._done = threading.Event()
        self._result: T | None = None
        self._error: BaseException | None = None

    def run(self, fn: Callable[[], T]) -> T:
        """Leader only: run ``fn``, publish its outcome, and release the key."""

        try:
            self._result = fn()
        except BaseException as exc:
            self._error = exc
            raise
        finally:
            self._owner._release(self._key, self)
            self._done.set()
        return self._result

    def wait(self) -> T:
        """Joiners: block until the leader finishes and return its outcome."""

        self._done.wait()
        if self._error is not None:
            raise self._error
        return self._result  # type: ignore[return-value]


class SingleFlight(Generic[T]):
    """Run at most one call per key at a time.

    The first caller for a key becomes the leader and runs ``fn``. Callers
    that arrive while the leader is running wait for it and receive the same
    result (or exception) instead of running ``fn`` themselves. Once the
    leader finishes the key is released, so a later call runs afresh.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flights: dict[Hashable, Flight[T]] = {}

    def join(self, key: Hashable, context_factory: Callable[[], Any] | None = None) -> tuple[Flight[T], bool]:
        """Return the flight for ``key`` and whether the caller leads it."""

        with self._lock:
            flight = self._flights.get(key)
            if flight is not None:
                return flight, False
            flight = Flight(self, key, context_factory() if context_factory else None)
            self._flights[key] = flight
            return flight, True

    def do(self, key: Hashable, fn: Callable[[], T]) -> tuple[T, bool]:
        """Run ``fn`` under ``key``; return ``(result, shared)``."""

        flight, leader = self.join(key)
        if leader:
            return flight.run(fn), False
        return flight.wait(), True

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._flights

    def _release(self, key: Hashable, flight: Flight[T]) -> None:
        with self._lock:
            if self._flights.get(key) is flight:
                del self._flights[key]


__all__ = ["Flight", "SingleFlight"]
