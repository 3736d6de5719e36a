from __future__ import annotations

import json
import logging
from typing import Any

from core.errors import FulfillmentConflict
from core.models import Order
from store.kv_interface import KeyValueStoreProtocol

logger = logging.getLogger(__name__)


class OrderRepository:
    """Order records plus the per-order terminal claim.

    The claim key is written with set-if-absent before any fulfillment side
    effect; whoever writes it first owns the order's terminal outcome.
    """

    def __init__(self, kv_store: KeyValueStoreProtocol, retention_days: int = 30) -> None:
        self.kv_store = kv_store
        self.ttl_seconds = max(1, int(retention_days)) * 86400

    def create(self, order: Order) -> bool:
        created = self.kv_store.set_if_absent(_order_key(order.order_id), _encode(order), self.ttl_seconds)
        if created:
            self.kv_store.set(_customer_index_key(order.customer_id, order.order_id), order.order_id, self.ttl_seconds)
        return created

    def save(self, order: Order) -> None:
        self.kv_store.set(_order_key(order.order_id), _encode(order), self.ttl_seconds)

    def get(self, order_id: str) -> Order | None:
        raw = self.kv_store.get(_order_key(str(order_id or "").strip()))
        if raw is None:
            return None
        return _decode(raw)

    def attach_payment(self, order: Order, method: str, reference: str) -> Order:
        order.payment_method = method
        order.payment_reference = reference
        self.save(order)
        self.kv_store.set(_reference_key(reference), order.order_id, self.ttl_seconds)
        return order

    def find_by_payment_reference(self, reference: str) -> Order | None:
        ref = str(reference or "").strip()
        if not ref:
            return None
        order_id = self.kv_store.get(_reference_key(ref))
        if order_id is None:
            return None
        return self.get(order_id)

    def list_for_customer(self, customer_id: str, limit: int = 5) -> list[Order]:
        prefix = _customer_index_key(customer_id, "")
        orders: list[Order] = []
        for order_id in self.kv_store.scan_prefix(prefix).values():
            found = self.get(order_id)
            if found is not None:
                orders.append(found)
        orders.sort(key=lambda item: item.order_id, reverse=True)
        return orders[: max(1, int(limit))]

    def list_all(self) -> list[Order]:
        orders: list[Order] = []
        for key, raw in self.kv_store.scan_prefix(_order_key("")).items():
            try:
                orders.append(_decode(raw))
            except (json.JSONDecodeError, TypeError, ValueError) as exc:
                logger.warning("order-decode-failed: key=%s error=%s", key, exc)
        orders.sort(key=lambda item: item.order_id)
        return orders

    def claim(self, order_id: str, outcome: str) -> None:
        if self.kv_store.set_if_absent(_claim_key(order_id), outcome, self.ttl_seconds):
            logger.info("order-claimed: order_id=%s outcome=%s", order_id, outcome)
            return
        existing = self.claimed_outcome(order_id) or outcome
        raise FulfillmentConflict(order_id, existing)

    def claimed_outcome(self, order_id: str) -> str | None:
        return self.kv_store.get(_claim_key(order_id))

    def update_claim(self, order_id: str, outcome: str) -> None:
        self.kv_store.set(_claim_key(order_id), outcome, self.ttl_seconds)


def _order_key(order_id: str) -> str:
    return f"order:{order_id}"


def _reference_key(reference: str) -> str:
    return f"order_ref:{reference}"


def _customer_index_key(customer_id: str, order_id: str) -> str:
    return f"order_customer:{customer_id}:{order_id}"


def _claim_key(order_id: str) -> str:
    return f"order_claim:{order_id}"


def _encode(order: Order) -> str:
    return json.dumps(order.to_dict(), ensure_ascii=False, sort_keys=True)


def _decode(raw: str) -> Order:
    payload: Any = json.loads(raw)
    if not isinstance(payload, dict):
        payload = {}
    return Order.from_dict(payload)
