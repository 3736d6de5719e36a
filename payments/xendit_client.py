from __future__ import annotations

import base64
import json
from typing import Any
from urllib import error, parse, request

from core.errors import GatewayError
from payments.gateway_interface import ChannelResult, PaymentStatusResult, normalize_gateway_status


class XenditInvoiceGateway:
    """Xendit invoice API client. One invoice per order, restricted to the chosen method."""

    name = "xendit"

    def __init__(
        self,
        secret_key: str,
        api_base_url: str = "https://api.xendit.co",
        timeout_sec: float = 15.0,
        invoice_duration_seconds: int = 86400,
        success_redirect_url: str | None = None,
    ) -> None:
        self.secret_key = (secret_key or "").strip()
        self.api_base_url = (api_base_url or "https://api.xendit.co").rstrip("/")
        self.timeout_sec = float(timeout_sec)
        self.invoice_duration_seconds = max(60, int(invoice_duration_seconds))
        self.success_redirect_url = success_redirect_url

    def create_channel(
        self,
        amount: int,
        order_id: str,
        channel_type: str,
        customer_meta: dict[str, Any],
    ) -> ChannelResult:
        method_code = str(customer_meta.get("method_code", "") or "").strip().upper()
        payload: dict[str, Any] = {
            "external_id": order_id,
            "amount": int(amount),
            "currency": "IDR",
            "description": f"Order {order_id}",
            "invoice_duration": self.invoice_duration_seconds,
        }
        if method_code:
            payload["payment_methods"] = [method_code]
        if self.success_redirect_url:
            payload["success_redirect_url"] = self.success_redirect_url

        data = self._request_json("POST", "/v2/invoices", payload)
        reference = str(data.get("id", "") or "").strip()
        if not reference:
            raise GatewayError("xendit response missing invoice id")
        return ChannelResult(
            reference=reference,
            channel_type=channel_type,
            details={
                "status": str(data.get("status", "")),
                "expiry_date": str(data.get("expiry_date", "")),
                "method": method_code,
            },
            checkout_url=str(data.get("invoice_url", "") or "") or None,
        )

    def check_status(self, reference: str) -> PaymentStatusResult:
        ref = str(reference or "").strip()
        if not ref:
            raise GatewayError("payment reference is empty")
        data = self._request_json("GET", f"/v2/invoices/{parse.quote(ref, safe='')}", None)
        raw_status = str(data.get("status", "") or "")
        amount = data.get("paid_amount", data.get("amount"))
        return PaymentStatusResult(
            status=normalize_gateway_status(raw_status),
            amount=int(amount) if amount is not None else None,
            raw_status=raw_status,
        )

    def _request_json(self, method: str, path: str, payload: dict[str, Any] | None) -> dict[str, Any]:
        if not self.secret_key:
            raise GatewayError("payment.xendit.secret_key is required")
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8") if payload is not None else None
        req = request.Request(url=f"{self.api_base_url}{path}", data=data, method=method)
        req.add_header("Content-Type", "application/json; charset=utf-8")
        token = base64.b64encode(f"{self.secret_key}:".encode("utf-8")).decode("ascii")
        req.add_header("Authorization", f"Basic {token}")
        try:
            with request.urlopen(req, timeout=self.timeout_sec) as resp:
                body = resp.read().decode("utf-8")
        except error.HTTPError as exc:
            body = ""
            try:
                body = exc.read().decode("utf-8", errors="ignore")
            except Exception:
                pass
            raise GatewayError(f"xendit api error: status={exc.code} body={body}") from exc
        except error.URLError as exc:
            raise GatewayError(f"xendit api connection error: {exc}") from exc

        try:
            parsed = json.loads(body or "{}")
        except json.JSONDecodeError as exc:
            raise GatewayError("xendit api returned invalid json") from exc
        if not isinstance(parsed, dict):
            raise GatewayError("xendit api returned unexpected payload")
        return parsed
