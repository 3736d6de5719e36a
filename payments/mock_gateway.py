from __future__ import annotations

import threading
from typing import Any
from uuid import uuid4

from core.enums import PaymentChannelType, PaymentStatus
from core.errors import GatewayError
from payments.gateway_interface import ChannelResult, PaymentStatusResult


class MockPaymentGateway:
    """In-process gateway for local runs. Payments stay pending until ``set_status``."""

    name = "mock"

    def __init__(self, image_base_url: str = "https://example.invalid/qr") -> None:
        self.image_base_url = image_base_url.rstrip("/")
        self._lock = threading.Lock()
        self._payments: dict[str, dict[str, Any]] = {}
        self.fail_next_create = False

    def create_channel(
        self,
        amount: int,
        order_id: str,
        channel_type: str,
        customer_meta: dict[str, Any],
    ) -> ChannelResult:
        with self._lock:
            if self.fail_next_create:
                self.fail_next_create = False
                raise GatewayError("mock gateway unavailable")
            reference = f"mock-{uuid4().hex[:16]}"
            self._payments[reference] = {
                "order_id": order_id,
                "amount": int(amount),
                "status": PaymentStatus.PENDING.value,
            }
        image_url = None
        details: dict[str, Any] = {"method": customer_meta.get("method_code", "")}
        if channel_type == PaymentChannelType.QRIS.value:
            image_url = f"{self.image_base_url}/{reference}.png"
        if channel_type == PaymentChannelType.VIRTUAL_ACCOUNT.value:
            details["account_number"] = f"8808{int(reference[-10:], 16) % 10**10:010d}"
        return ChannelResult(reference=reference, channel_type=channel_type, details=details, image_url=image_url)

    def check_status(self, reference: str) -> PaymentStatusResult:
        with self._lock:
            payment = self._payments.get(reference)
        if payment is None:
            raise GatewayError(f"unknown payment reference: {reference}")
        return PaymentStatusResult(status=payment["status"], amount=payment["amount"], raw_status=payment["status"])

    def set_status(self, reference: str, status: str) -> None:
        with self._lock:
            if reference not in self._payments:
                raise GatewayError(f"unknown payment reference: {reference}")
            self._payments[reference]["status"] = status
