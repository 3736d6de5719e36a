from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from core.enums import PaymentStatus

_STATUS_MAP = {
    "PAID": PaymentStatus.SUCCEEDED.value,
    "SETTLED": PaymentStatus.SUCCEEDED.value,
    "SUCCEEDED": PaymentStatus.SUCCEEDED.value,
    "COMPLETED": PaymentStatus.SUCCEEDED.value,
    "EXPIRED": PaymentStatus.EXPIRED.value,
    "FAILED": PaymentStatus.FAILED.value,
    "VOIDED": PaymentStatus.FAILED.value,
}


@dataclass(slots=True)
class ChannelResult:
    reference: str
    channel_type: str
    details: dict[str, Any] = field(default_factory=dict)
    image_url: str | None = None
    checkout_url: str | None = None


@dataclass(slots=True)
class PaymentStatusResult:
    status: str
    amount: int | None = None
    raw_status: str = ""


class PaymentGatewayProtocol(Protocol):
    name: str

    def create_channel(
        self,
        amount: int,
        order_id: str,
        channel_type: str,
        customer_meta: dict[str, Any],
    ) -> ChannelResult: ...

    def check_status(self, reference: str) -> PaymentStatusResult: ...


def normalize_gateway_status(raw_status: Any) -> str:
    key = str(raw_status or "").strip().upper()
    return _STATUS_MAP.get(key, PaymentStatus.PENDING.value)
