from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from store.kv_interface import KeyValueStoreProtocol


@dataclass(slots=True, frozen=True)
class RateLimitDecision:
    allowed: bool
    reason: str | None = None
    wait_seconds: int = 0


class RateLimiter:
    """Fixed-window counters per customer, kept in the key-value store.

    A window opens on the first hit and closes when its key expires.
    """

    def __init__(
        self,
        kv_store: KeyValueStoreProtocol,
        *,
        max_messages: int = 20,
        message_window_seconds: int = 60,
        max_orders: int = 5,
        order_window_seconds: int = 86400,
        error_cooldown_seconds: int = 60,
    ) -> None:
        self.kv_store = kv_store
        self.max_messages = max(1, int(max_messages))
        self.message_window_seconds = max(1, int(message_window_seconds))
        self.max_orders = max(1, int(max_orders))
        self.order_window_seconds = max(1, int(order_window_seconds))
        self.error_cooldown_seconds = max(1, int(error_cooldown_seconds))

    @classmethod
    def from_config(cls, kv_store: KeyValueStoreProtocol, config: dict[str, Any]) -> "RateLimiter":
        rconf = config.get("rate_limit", {})
        return cls(
            kv_store,
            max_messages=int(rconf.get("max_messages_per_minute", 20)),
            message_window_seconds=int(rconf.get("message_window_seconds", 60)),
            max_orders=int(rconf.get("max_orders_per_day", 5)),
            order_window_seconds=int(rconf.get("order_window_seconds", 86400)),
            error_cooldown_seconds=int(rconf.get("error_cooldown_seconds", 60)),
        )

    def can_send_message(self, customer_id: str) -> RateLimitDecision:
        count = self.kv_store.incr(_message_key(customer_id), 1, ttl_seconds=self.message_window_seconds)
        if count > self.max_messages:
            return RateLimitDecision(
                allowed=False,
                reason=f"Too many messages. Please wait about {self.message_window_seconds} seconds.",
                wait_seconds=self.message_window_seconds,
            )
        return RateLimitDecision(allowed=True)

    def can_place_order(self, customer_id: str) -> RateLimitDecision:
        count = self.kv_store.get_counter(_order_key(customer_id)) or 0
        if count >= self.max_orders:
            hours = max(1, self.order_window_seconds // 3600)
            return RateLimitDecision(
                allowed=False,
                reason=f"Order limit reached ({self.max_orders} orders per {hours} hours). Please try again later.",
                wait_seconds=self.order_window_seconds,
            )
        return RateLimitDecision(allowed=True)

    def record_order(self, customer_id: str) -> int:
        return self.kv_store.incr(_order_key(customer_id), 1, ttl_seconds=self.order_window_seconds)

    def forget_order(self, customer_id: str) -> None:
        self.kv_store.decrement_if_sufficient(_order_key(customer_id), 1)

    def set_error_cooldown(self, customer_id: str) -> None:
        self.kv_store.set(_cooldown_key(customer_id), "1", ttl_seconds=self.error_cooldown_seconds)

    def is_in_cooldown(self, customer_id: str) -> bool:
        return self.kv_store.get(_cooldown_key(customer_id)) is not None


def _message_key(customer_id: str) -> str:
    return f"ratelimit:msg:{customer_id}"


def _order_key(customer_id: str) -> str:
    return f"ratelimit:order:{customer_id}"


def _cooldown_key(customer_id: str) -> str:
    return f"ratelimit:cooldown:{customer_id}"
