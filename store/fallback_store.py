from __future__ import annotations

import logging
from typing import Any, Callable

from store.kv_interface import KeyValueStoreProtocol
from store.memory_store import InMemoryKeyValueStore

logger = logging.getLogger(__name__)


class FallbackKeyValueStore(KeyValueStoreProtocol):
    """Delegates to a networked store and answers from a process-local map when a call fails.

    The fallback is per call: the next call tries the primary again.
    """

    def __init__(
        self,
        primary: KeyValueStoreProtocol,
        local: KeyValueStoreProtocol | None = None,
    ) -> None:
        self.primary = primary
        self.local = local or InMemoryKeyValueStore()
        self.fallback_count = 0

    def ping(self) -> bool:
        try:
            return bool(self.primary.ping())
        except Exception as exc:  # noqa: BLE001
            logger.warning("kv-ping-failed: %s", exc)
            return False

    def get(self, key: str) -> str | None:
        return self._call("get", lambda store: store.get(key))

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self._call("set", lambda store: store.set(key, value, ttl_seconds))

    def set_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        return self._call("set_if_absent", lambda store: store.set_if_absent(key, value, ttl_seconds))

    def compare_and_set(
        self,
        key: str,
        expected: str | None,
        value: str,
        ttl_seconds: int | None = None,
    ) -> bool:
        return self._call(
            "compare_and_set",
            lambda store: store.compare_and_set(key, expected, value, ttl_seconds),
        )

    def delete(self, key: str) -> None:
        self._call("delete", lambda store: store.delete(key))

    def expire(self, key: str, ttl_seconds: int) -> None:
        self._call("expire", lambda store: store.expire(key, ttl_seconds))

    def get_counter(self, key: str) -> int | None:
        return self._call("get_counter", lambda store: store.get_counter(key))

    def set_counter(self, key: str, value: int) -> None:
        self._call("set_counter", lambda store: store.set_counter(key, value))

    def incr(self, key: str, amount: int = 1, ttl_seconds: int | None = None) -> int:
        return self._call("incr", lambda store: store.incr(key, amount, ttl_seconds))

    def decrement_if_sufficient(self, key: str, amount: int) -> int | None:
        return self._call("decrement_if_sufficient", lambda store: store.decrement_if_sufficient(key, amount))

    def scan_prefix(self, prefix: str) -> dict[str, str]:
        return self._call("scan_prefix", lambda store: store.scan_prefix(prefix))

    def _call(self, operation: str, fn: Callable[[KeyValueStoreProtocol], Any]) -> Any:
        try:
            return fn(self.primary)
        except Exception as exc:  # noqa: BLE001
            self.fallback_count += 1
            logger.warning("kv-fallback: operation=%s error=%s", operation, exc)
            return fn(self.local)
