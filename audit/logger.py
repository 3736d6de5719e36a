from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from core.enums import AuditEvent
from core.masking import mask_customer_id

AUDIT_LOGGER_NAME = "audit"


class AuditLogger:
    """Transaction and security events, one JSON document per log record.

    Customer ids are masked before they reach the log.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(AUDIT_LOGGER_NAME)

    def order_created(self, customer_id: str, order_id: str, total_amount: int, item_count: int, promo_code: str | None) -> None:
        self.emit(
            AuditEvent.ORDER_CREATED,
            customer_id,
            order_id=order_id,
            total_amount=total_amount,
            item_count=item_count,
            promo_code=promo_code,
        )

    def payment_initiated(self, customer_id: str, order_id: str, method: str, amount: int, reference: str) -> None:
        self.emit(
            AuditEvent.PAYMENT_INITIATED,
            customer_id,
            order_id=order_id,
            method=method,
            amount=amount,
            reference=reference,
        )

    def payment_succeeded(self, customer_id: str, order_id: str, reference: str | None, source: str) -> None:
        self.emit(AuditEvent.PAYMENT_SUCCEEDED, customer_id, order_id=order_id, reference=reference, source=source)

    def payment_failed(self, customer_id: str, order_id: str, outcome: str, source: str) -> None:
        self.emit(AuditEvent.PAYMENT_FAILED, customer_id, order_id=order_id, outcome=outcome, source=source)

    def products_delivered(self, customer_id: str, order_id: str, product_ids: list[str]) -> None:
        self.emit(AuditEvent.PRODUCTS_DELIVERED, customer_id, order_id=order_id, product_ids=product_ids)

    def delivery_shortfall(self, customer_id: str, order_id: str, product_ids: list[str]) -> None:
        self.emit(
            AuditEvent.DELIVERY_SHORTFALL,
            customer_id,
            level=logging.WARNING,
            order_id=order_id,
            product_ids=product_ids,
        )

    def admin_action(self, admin_id: str, action: str, **details: Any) -> None:
        self.emit(AuditEvent.ADMIN_ACTION, admin_id, action=action, **details)

    def security(self, customer_id: str, reason: str, **details: Any) -> None:
        self.emit(AuditEvent.SECURITY, customer_id, level=logging.WARNING, reason=reason, **details)

    def error(self, customer_id: str, error: BaseException, **details: Any) -> None:
        self.emit(
            AuditEvent.ERROR,
            customer_id,
            level=logging.ERROR,
            error_type=type(error).__name__,
            error=str(error),
            **details,
        )

    def emit(self, event: str, customer_id: str | None, level: int = logging.INFO, **fields: Any) -> None:
        record: dict[str, Any] = {
            "event": event,
            "at": datetime.now(timezone.utc).isoformat(),
            "customer": mask_customer_id(customer_id),
        }
        record.update({key: value for key, value in fields.items() if value is not None})
        self._logger.log(level, json.dumps(record, ensure_ascii=False, default=str))
