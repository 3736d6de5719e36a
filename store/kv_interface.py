from __future__ import annotations

from typing import Protocol


class KeyValueStoreProtocol(Protocol):
    def ping(self) -> bool: ...

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    def set_if_absent(self, key: str, value: str, ttl_seconds: int | None = None) -> bool: ...

    def compare_and_set(
        self,
        key: str,
        expected: str | None,
        value: str,
        ttl_seconds: int | None = None,
    ) -> bool: ...

    def delete(self, key: str) -> None: ...

    def expire(self, key: str, ttl_seconds: int) -> None: ...

    def get_counter(self, key: str) -> int | None: ...

    def set_counter(self, key: str, value: int) -> None: ...

    def incr(self, key: str, amount: int = 1, ttl_seconds: int | None = None) -> int: ...

    def decrement_if_sufficient(self, key: str, amount: int) -> int | None: ...

    def scan_prefix(self, prefix: str) -> dict[str, str]: ...
