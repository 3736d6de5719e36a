from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Callable

from core.errors import NotFoundError, ValidationError
from store.kv_interface import KeyValueStoreProtocol


@dataclass(slots=True, frozen=True)
class PromoCode:
    code: str
    discount_percent: int
    expires_at: datetime | None = None
    description: str = ""


class PromoService:
    def __init__(
        self,
        kv_store: KeyValueStoreProtocol,
        codes: dict[str, PromoCode] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.kv_store = kv_store
        self.codes = {key.upper(): value for key, value in (codes or {}).items()}
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, kv_store: KeyValueStoreProtocol, config: dict[str, Any]) -> "PromoService":
        raw_codes = config.get("promo", {}).get("codes", {})
        codes: dict[str, PromoCode] = {}
        if isinstance(raw_codes, dict):
            for code, conf in raw_codes.items():
                if not isinstance(conf, dict):
                    continue
                normalized = str(code).strip().upper()
                codes[normalized] = PromoCode(
                    code=normalized,
                    discount_percent=max(0, min(100, int(conf.get("discount_percent", 0)))),
                    expires_at=_parse_datetime(conf.get("expires_at")),
                    description=str(conf.get("description", "")),
                )
        return cls(kv_store, codes)

    def validate(self, code: str, customer_id: str) -> PromoCode:
        normalized = str(code or "").strip().upper()
        if not normalized:
            raise ValidationError("promo code is empty")
        promo = self.codes.get(normalized)
        if promo is None:
            raise NotFoundError(f"unknown promo code: {normalized}")
        if promo.expires_at is not None and promo.expires_at <= self._clock():
            raise ValidationError(f"promo code expired: {normalized}")
        if self.is_used(normalized, customer_id):
            raise ValidationError(f"promo code already used: {normalized}")
        return promo

    def is_used(self, code: str, customer_id: str) -> bool:
        return self.kv_store.get(_used_key(code, customer_id)) is not None

    def consume(self, code: str, customer_id: str, order_id: str) -> bool:
        """Mark the code used by this customer. False if it was already consumed."""
        return self.kv_store.set_if_absent(_used_key(code, customer_id), order_id)

    def release(self, code: str, customer_id: str, order_id: str) -> bool:
        """Undo ``consume`` for ``order_id``. False if the code is held by another order."""
        key = _used_key(code, customer_id)
        if self.kv_store.get(key) != order_id:
            return False
        self.kv_store.delete(key)
        return True

    @staticmethod
    def calculate_discount(subtotal: int, discount_percent: int) -> int:
        return (max(0, int(subtotal)) * max(0, min(100, int(discount_percent)))) // 100


def _used_key(code: str, customer_id: str) -> str:
    return f"promo_used:{str(code).strip().upper()}:{customer_id}"


def _parse_datetime(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.max)
    else:
        parsed = datetime.fromisoformat(str(value).strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
