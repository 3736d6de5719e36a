from __future__ import annotations

import json
import logging
from typing import Callable

from core.errors import SessionConflictError, ValidationError
from core.masking import mask_customer_id
from store.kv_interface import KeyValueStoreProtocol

logger = logging.getLogger(__name__)

WISHLIST_KEY_PREFIX = "wishlist:"
MAX_WISHLIST_ITEMS = 20


class WishlistStore:
    """Saved product ids per customer, kept apart from the session so they outlive it."""

    def __init__(
        self,
        kv_store: KeyValueStoreProtocol,
        ttl_days: int = 90,
        max_items: int = MAX_WISHLIST_ITEMS,
    ) -> None:
        self.kv_store = kv_store
        self.ttl_seconds = max(1, int(ttl_days)) * 86400
        self.max_items = max(1, int(max_items))

    def product_ids(self, customer_id: str) -> list[str]:
        return _decode(customer_id, self.kv_store.get(_wishlist_key(customer_id)))

    def add(self, customer_id: str, product_id: str) -> bool:
        """Save ``product_id``. False if it was already saved."""

        def apply(items: list[str]) -> bool:
            if product_id in items:
                return False
            if len(items) >= self.max_items:
                raise ValidationError(f"wishlist is full ({self.max_items} items)")
            items.append(product_id)
            return True

        return self._update(customer_id, apply)

    def remove(self, customer_id: str, product_id: str) -> bool:
        def apply(items: list[str]) -> bool:
            if product_id not in items:
                return False
            items.remove(product_id)
            return True

        return self._update(customer_id, apply)

    def _update(self, customer_id: str, fn: Callable[[list[str]], bool], attempts: int = 3) -> bool:
        key = _wishlist_key(customer_id)
        for _ in range(attempts):
            raw = self.kv_store.get(key)
            items = _decode(customer_id, raw)
            changed = fn(items)
            if not changed:
                return False
            if self.kv_store.compare_and_set(key, raw, json.dumps(items), self.ttl_seconds):
                return True
            logger.info("wishlist-cas-retry: customer=%s", mask_customer_id(customer_id))
        raise SessionConflictError(f"wishlist update conflict: customer={mask_customer_id(customer_id)}")


def _wishlist_key(customer_id: str) -> str:
    return f"{WISHLIST_KEY_PREFIX}{customer_id}"


def _decode(customer_id: str, raw: str | None) -> list[str]:
    if raw is None:
        return []
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("wishlist-decode-failed: customer=%s", mask_customer_id(customer_id))
        return []
    if not isinstance(payload, list):
        return []
    return [str(item) for item in payload if item]
