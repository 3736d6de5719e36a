from __future__ import annotations

from typing import Any

from payments.gateway_interface import PaymentGatewayProtocol
from payments.mock_gateway import MockPaymentGateway
from payments.xendit_client import XenditInvoiceGateway


def create_payment_gateway(config: dict[str, Any]) -> PaymentGatewayProtocol:
    pconf = config.get("payment", {})
    name = str(pconf.get("gateway", "mock") or "mock").strip().lower()

    if name == "xendit":
        xconf = pconf.get("xendit", {}) if isinstance(pconf, dict) else {}
        return XenditInvoiceGateway(
            secret_key=str(xconf.get("secret_key", "") or ""),
            api_base_url=str(xconf.get("api_base_url", "https://api.xendit.co")),
            timeout_sec=float(xconf.get("timeout_sec", 15)),
            invoice_duration_seconds=int(xconf.get("invoice_duration_seconds", 86400)),
            success_redirect_url=str(xconf.get("success_redirect_url", "") or "") or None,
        )
    if name == "mock":
        return MockPaymentGateway(image_base_url=str(pconf.get("mock", {}).get("image_base_url", "https://example.invalid/qr")))
    raise ValueError(f"unsupported payment gateway: {name}")
