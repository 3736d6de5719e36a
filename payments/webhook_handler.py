from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from audit.logger import AuditLogger
from checkout.fulfillment import FulfillmentCoordinator
from core.models import OutboundMessage
from payments.gateway_interface import normalize_gateway_status
from payments.signature import verify_callback_token

logger = logging.getLogger(__name__)

_REFERENCE_FIELDS = ("id", "invoice_id", "reference_id", "payment_id")


class OutboundSender(Protocol):
    def dispatch(self, messages: list[OutboundMessage]) -> list[str]: ...


class PaymentWebhookHandler:
    """Gateway callback endpoint logic.

    A bad token gets 401. Everything else is acknowledged with 200 once
    processing has been attempted, so the gateway never retries because of
    our own failures.
    """

    def __init__(
        self,
        coordinator: FulfillmentCoordinator,
        callback_token: str,
        sender: OutboundSender | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.callback_token = callback_token
        self.sender = sender
        self.audit = audit or AuditLogger()

    def handle(self, body: bytes, token: str | None) -> tuple[int, dict[str, Any]]:
        if not verify_callback_token(self.callback_token, token):
            self.audit.security(None, "invalid_payment_callback_token")
            return 401, {"ok": False, "error": "invalid callback token"}

        try:
            payload = json.loads(body.decode("utf-8"))
        except Exception:  # noqa: BLE001
            logger.warning("payment-webhook-invalid-json")
            return 200, {"received": True, "ok": False, "error": "invalid json payload"}
        if not isinstance(payload, dict):
            return 200, {"received": True, "ok": False, "error": "payload must be object"}

        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        reference = _first_text(data, _REFERENCE_FIELDS)
        order_id = _first_text(data, ("external_id", "order_id"))
        status = normalize_gateway_status(data.get("status"))

        errors: list[str] = []
        outcome: str | None = None
        try:
            result = self.coordinator.handle_payment_event(reference, status, order_id=order_id)
            if result is not None:
                outcome = result.outcome
                if result.won and result.outbound:
                    errors.extend(self._dispatch(result.outbound))
        except Exception as exc:  # noqa: BLE001
            logger.exception("payment-webhook-failed: reference=%s", reference)
            errors.append(str(exc))
        return 200, {"received": True, "ok": not errors, "outcome": outcome, "errors": errors}

    def _dispatch(self, messages: list[OutboundMessage]) -> list[str]:
        if self.sender is None:
            logger.warning("payment-webhook-no-sender: dropped=%s", len(messages))
            return []
        try:
            return self.sender.dispatch(messages)
        except Exception as exc:  # noqa: BLE001
            logger.error("payment-webhook-dispatch-failed: %s", exc)
            return [str(exc)]


def _first_text(data: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = str(data.get(key, "") or "").strip()
        if value:
            return value
    return ""
