from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from store.kv_interface import KeyValueStoreProtocol


@dataclass(slots=True)
class _Entry:
    value: str | None = None
    counter: int | None = None
    expires_at: float | None = None


class InMemoryKeyValueStore(KeyValueStoreProtocol):
    """Process-local store. Every operation holds one lock, so each call is atomic."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._lock = threading.RLock()
        self._data: dict[str, _Entry] = {}

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            return entry.value if entry else None

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._data[key] = _Entry(value=value, expires_at=self._deadline(ttl_seconds))

    def set_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = _Entry(value=value, expires_at=self._deadline(ttl_seconds))
            return True

    def compare_and_set(
        self,
        key: str,
        expected: str | None,
        value: str,
        ttl_seconds: int | None = None,
    ) -> bool:
        with self._lock:
            entry = self._live(key)
            current = entry.value if entry else None
            if current != expected:
                return False
            self._data[key] = _Entry(value=value, expires_at=self._deadline(ttl_seconds))
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def expire(self, key: str, ttl_seconds: int) -> None:
        with self._lock:
            entry = self._live(key)
            if entry is not None:
                entry.expires_at = self._deadline(ttl_seconds)

    def get_counter(self, key: str) -> int | None:
        with self._lock:
            entry = self._live(key)
            return entry.counter if entry else None

    def set_counter(self, key: str, value: int) -> None:
        with self._lock:
            self._data[key] = _Entry(counter=int(value))

    def incr(self, key: str, amount: int = 1, ttl_seconds: int | None = None) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry.counter is None:
                entry = _Entry(counter=0, expires_at=self._deadline(ttl_seconds))
                self._data[key] = entry
            entry.counter = int(entry.counter or 0) + int(amount)
            return entry.counter

    def decrement_if_sufficient(self, key: str, amount: int) -> int | None:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry.counter is None or entry.counter < int(amount):
                return None
            entry.counter -= int(amount)
            return entry.counter

    def scan_prefix(self, prefix: str) -> dict[str, str]:
        with self._lock:
            out: dict[str, str] = {}
            for key in list(self._data):
                if not key.startswith(prefix):
                    continue
                entry = self._live(key)
                if entry is not None and entry.value is not None:
                    out[key] = entry.value
            return out

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _deadline(self, ttl_seconds: int | None) -> float | None:
        if ttl_seconds is None:
            return None
        return self._clock() + max(1, int(ttl_seconds))
