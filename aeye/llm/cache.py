from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple


@dataclass
class _Flight:
    done: threading.Event = field(default_factory=threading.Event)
    value: Any = None
    error: Optional[BaseException] = None


class TTLCache:
    """
    Time-bounded memoization keyed by string (model identifier).

    - a value younger than `ttl_s` is returned as-is
    - a stale or missing value is recomputed once; concurrent callers for the same
      key wait for that single load and share its result (or its error)
    - failed loads are not cached
    """

    def __init__(self, ttl_s: float, *, clock: Callable[[], float] = time.monotonic):
        if ttl_s <= 0:
            raise ValueError("ttl_s must be positive")
        self._ttl_s = ttl_s
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._inflight: Dict[str, _Flight] = {}

    @property
    def ttl_s(self) -> float:
        return self._ttl_s

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() - entry[1] < self._ttl_s:
                return entry[0]
            flight = self._inflight.get(key)
            leader = flight is None
            if flight is None:
                flight = _Flight()
                self._inflight[key] = flight

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.value

        try:
            value = loader()
        except BaseException as e:
            flight.error = e
            with self._lock:
                self._inflight.pop(key, None)
            flight.done.set()
            raise

        flight.value = value
        with self._lock:
            self._entries[key] = (value, self._clock())
            self._inflight.pop(key, None)
        flight.done.set()
        return value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
