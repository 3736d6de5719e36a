from __future__ import annotations

from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from core.enums import PaymentStatus, SessionStep


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _serialize(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        return {k: _serialize(v) for k, v in asdict(value).items()}
    if isinstance(value, tuple):
        return [_serialize(v) for v in value]
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    return value


@dataclass(slots=True, frozen=True)
class Product:
    id: str
    name: str
    description: str
    unit_price: int
    stock: int
    category: str = "premium"

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)


@dataclass(slots=True, frozen=True)
class CartItem:
    product_id: str
    name: str
    unit_price: int

    @classmethod
    def from_product(cls, product: Product) -> "CartItem":
        return cls(product_id=product.id, name=product.name, unit_price=int(product.unit_price))

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CartItem":
        return cls(
            product_id=str(payload.get("product_id", "")),
            name=str(payload.get("name", "")),
            unit_price=int(payload.get("unit_price", 0)),
        )


@dataclass(slots=True)
class Session:
    customer_id: str
    step: str = SessionStep.MENU.value
    cart: list[CartItem] = field(default_factory=list)
    order_id: str | None = None
    payment_method: str | None = None
    payment_invoice_id: str | None = None
    promo_code: str | None = None
    discount_percent: int = 0
    last_activity: str = field(default_factory=utc_now_iso)

    def clear_payment(self) -> None:
        self.order_id = None
        self.payment_method = None
        self.payment_invoice_id = None

    def reset(self) -> None:
        self.step = SessionStep.MENU.value
        self.cart = []
        self.promo_code = None
        self.discount_percent = 0
        self.clear_payment()

    def cart_total(self) -> int:
        return sum(item.unit_price for item in self.cart)

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Session":
        cart_raw = payload.get("cart", [])
        return cls(
            customer_id=str(payload.get("customer_id", "")),
            step=str(payload.get("step", SessionStep.MENU.value)),
            cart=[CartItem.from_dict(item) for item in cart_raw if isinstance(item, dict)],
            order_id=payload.get("order_id"),
            payment_method=payload.get("payment_method"),
            payment_invoice_id=payload.get("payment_invoice_id"),
            promo_code=payload.get("promo_code"),
            discount_percent=int(payload.get("discount_percent", 0) or 0),
            last_activity=str(payload.get("last_activity") or utc_now_iso()),
        )


@dataclass(slots=True)
class Order:
    order_id: str
    customer_id: str
    items: list[CartItem]
    subtotal: int
    discount_amount: int
    total_amount: int
    promo_code: str | None = None
    created_at: str = field(default_factory=utc_now_iso)
    payment_method: str | None = None
    payment_reference: str | None = None
    payment_status: str = PaymentStatus.PENDING.value
    outcome: str | None = None
    stock_reserved: bool = False
    undelivered_product_ids: list[str] = field(default_factory=list)

    def is_terminal(self) -> bool:
        return self.outcome is not None

    def product_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for item in self.items:
            counts[item.product_id] = counts.get(item.product_id, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Order":
        return cls(
            order_id=str(payload.get("order_id", "")),
            customer_id=str(payload.get("customer_id", "")),
            items=[CartItem.from_dict(item) for item in payload.get("items", []) if isinstance(item, dict)],
            subtotal=int(payload.get("subtotal", 0)),
            discount_amount=int(payload.get("discount_amount", 0)),
            total_amount=int(payload.get("total_amount", 0)),
            promo_code=payload.get("promo_code"),
            created_at=str(payload.get("created_at") or utc_now_iso()),
            payment_method=payload.get("payment_method"),
            payment_reference=payload.get("payment_reference"),
            payment_status=str(payload.get("payment_status", PaymentStatus.PENDING.value)),
            outcome=payload.get("outcome"),
            stock_reserved=bool(payload.get("stock_reserved", False)),
            undelivered_product_ids=[str(v) for v in payload.get("undelivered_product_ids", [])],
        )


@dataclass(slots=True, frozen=True)
class Attachment:
    kind: str
    url: str
    caption: str = ""


@dataclass(slots=True, frozen=True)
class OutboundMessage:
    recipients: tuple[str, ...]
    text: str


@dataclass(slots=True)
class ChatResponse:
    text: str
    attachments: list[Attachment] = field(default_factory=list)
    outbound: list[OutboundMessage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)


@dataclass(slots=True)
class FulfillmentResult:
    order_id: str
    outcome: str
    won: bool
    outbound: list[OutboundMessage] = field(default_factory=list)
    undelivered_product_ids: list[str] = field(default_factory=list)
    session_reset: bool = False

    def to_dict(self) -> dict[str, Any]:
        return _serialize(self)
