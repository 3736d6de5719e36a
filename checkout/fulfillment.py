from __future__ import annotations

import logging
from typing import Any, Protocol

from audit.logger import AuditLogger
from catalog.product_catalog import ProductCatalog
from chatbot import message_templates
from checkout.order_repository import OrderRepository
from core.enums import SUCCESS_OUTCOMES, OrderOutcome, PaymentStatus
from core.errors import FulfillmentConflict, NotFoundError, SessionConflictError, ValidationError
from core.masking import mask_customer_id
from core.models import CartItem, FulfillmentResult, Order, OutboundMessage, Session
from delivery.credential_store import Credential, CredentialStoreProtocol
from payments.gateway_interface import PaymentGatewayProtocol
from sessions.session_store import SessionStore

logger = logging.getLogger(__name__)

SOURCE_POLL = "poll"
SOURCE_WEBHOOK = "webhook"
SOURCE_ADMIN = "admin_approval"


class AdminAlerter(Protocol):
    def notify_admins(self, message: str) -> Any: ...


class FulfillmentCoordinator:
    """Single entry point for finishing an order, whichever signal arrives first.

    The customer's status poll, the gateway webhook and ``/approve`` all go
    through ``OrderRepository.claim`` before touching stock, credentials or the
    session. Exactly one caller wins the claim and performs the side effects;
    every other caller gets the recorded outcome back and does nothing.
    """

    def __init__(
        self,
        *,
        orders: OrderRepository,
        catalog: ProductCatalog,
        credentials: CredentialStoreProtocol,
        gateway: PaymentGatewayProtocol,
        session_store: SessionStore,
        alerter: AdminAlerter | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        self.orders = orders
        self.catalog = catalog
        self.credentials = credentials
        self.gateway = gateway
        self.session_store = session_store
        self.alerter = alerter
        self.audit = audit or AuditLogger()

    def poll(self, session: Session) -> FulfillmentResult:
        """Check the gateway for the session's open payment.

        ``session`` is a snapshot; the caller must not be inside
        ``SessionStore.mutate`` for this customer. When this call finishes the
        order, the stored session is reset through its own retried update.
        """
        reference = session.payment_invoice_id or ""
        order = self.orders.get(session.order_id or "") or self.orders.find_by_payment_reference(reference)
        if order is None:
            raise NotFoundError(f"order not found: {session.order_id}")

        existing = self.orders.claimed_outcome(order.order_id)
        if existing is not None:
            reset = self._reset_session(order)
            return FulfillmentResult(order_id=order.order_id, outcome=existing, won=False, session_reset=reset)

        status = self.gateway.check_status(reference or order.payment_reference or "")
        if status.status == PaymentStatus.SUCCEEDED.value:
            return self._fulfill(order, SOURCE_POLL)
        if status.status in (PaymentStatus.EXPIRED.value, PaymentStatus.FAILED.value):
            return self._close_unpaid(order, status.status, SOURCE_POLL, notify_customer=False)
        return FulfillmentResult(order_id=order.order_id, outcome=PaymentStatus.PENDING.value, won=False)

    def handle_payment_event(
        self,
        reference: str,
        status: str,
        order_id: str | None = None,
    ) -> FulfillmentResult | None:
        order = self.orders.find_by_payment_reference(reference)
        if order is None and order_id:
            candidate = self.orders.get(order_id)
            if candidate is not None and candidate.payment_reference:
                order = candidate
        if order is None:
            logger.warning("payment-event-unknown-reference: reference=%s status=%s", reference, status)
            if status == PaymentStatus.SUCCEEDED.value:
                self._alert_admins(message_templates.build_admin_unknown_payment_alert(reference, order_id))
            return None
        if status == PaymentStatus.SUCCEEDED.value:
            return self._fulfill(order, SOURCE_WEBHOOK)
        if status in (PaymentStatus.EXPIRED.value, PaymentStatus.FAILED.value):
            return self._close_unpaid(order, status, SOURCE_WEBHOOK)
        return None

    def approve(self, order_id: str, admin_id: str) -> FulfillmentResult:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"order not found: {order_id}")

        existing = self.orders.claimed_outcome(order.order_id)
        if existing is not None:
            return FulfillmentResult(order_id=order.order_id, outcome=existing, won=False)

        if not order.payment_reference:
            raise ValidationError(f"order {order.order_id} has no payment to verify")
        status = self.gateway.check_status(order.payment_reference)
        if status.status != PaymentStatus.SUCCEEDED.value:
            self.audit.admin_action(admin_id, "approve_refused", order_id=order.order_id, gateway_status=status.status)
            raise ValidationError(f"gateway reports payment {status.status} for order {order.order_id}")

        self.audit.admin_action(admin_id, "approve", order_id=order.order_id)
        return self._fulfill(order, SOURCE_ADMIN)

    def reject(self, order_id: str, admin_id: str) -> FulfillmentResult:
        """Cancel an unpaid order after a failed manual verification.

        Refused when the gateway already reports the payment as succeeded.
        """
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"order not found: {order_id}")

        existing = self.orders.claimed_outcome(order.order_id)
        if existing is not None:
            return FulfillmentResult(order_id=order.order_id, outcome=existing, won=False)

        if order.payment_reference:
            status = self.gateway.check_status(order.payment_reference)
            if status.status == PaymentStatus.SUCCEEDED.value:
                raise ValidationError(f"gateway reports order {order.order_id} as paid; use /approve")

        try:
            self.orders.claim(order.order_id, OrderOutcome.CANCELLED.value)
        except FulfillmentConflict as exc:
            return FulfillmentResult(order_id=order.order_id, outcome=exc.outcome, won=False)

        if order.stock_reserved:
            self.catalog.release(order.product_counts())
        order.outcome = OrderOutcome.CANCELLED.value
        order.stock_reserved = False
        self.orders.save(order)
        self.audit.admin_action(admin_id, "reject", order_id=order.order_id)

        outbound = [
            OutboundMessage(
                recipients=(order.customer_id,),
                text=message_templates.build_payment_rejected_message(order.order_id),
            )
        ]
        reset = self._reset_session(order)
        return FulfillmentResult(
            order_id=order.order_id,
            outcome=OrderOutcome.CANCELLED.value,
            won=True,
            outbound=outbound,
            session_reset=reset,
        )

    def _fulfill(self, order: Order, source: str) -> FulfillmentResult:
        try:
            self.orders.claim(order.order_id, OrderOutcome.DELIVERED.value)
        except FulfillmentConflict as exc:
            logger.info("fulfillment-skipped: order_id=%s outcome=%s source=%s", order.order_id, exc.outcome, source)
            if exc.outcome not in SUCCESS_OUTCOMES:
                logger.warning("payment-after-close: order_id=%s outcome=%s source=%s", order.order_id, exc.outcome, source)
                self._alert_admins(
                    message_templates.build_admin_paid_after_close_alert(
                        order.order_id, order.customer_id, exc.outcome, order.payment_reference
                    )
                )
            return FulfillmentResult(order_id=order.order_id, outcome=exc.outcome, won=False)

        self._commit_stock(order)

        delivered: list[tuple[CartItem, Credential]] = []
        missing: list[CartItem] = []
        for item in order.items:
            credential = self.credentials.fetch(item.product_id)
            if credential is None:
                missing.append(item)
            else:
                delivered.append((item, credential))

        outcome = OrderOutcome.DELIVERED_PARTIAL.value if missing else OrderOutcome.DELIVERED.value
        if missing:
            self.orders.update_claim(order.order_id, outcome)

        order.payment_status = PaymentStatus.SUCCEEDED.value
        order.outcome = outcome
        order.stock_reserved = False
        order.undelivered_product_ids = [item.product_id for item in missing]
        self.orders.save(order)

        self.audit.payment_succeeded(order.customer_id, order.order_id, order.payment_reference, source)
        if delivered:
            self.audit.products_delivered(order.customer_id, order.order_id, [item.product_id for item, _ in delivered])
        if missing:
            self.audit.delivery_shortfall(order.customer_id, order.order_id, order.undelivered_product_ids)
            self._alert_admins(message_templates.build_admin_shortfall_alert(order.order_id, order.customer_id, missing))

        outbound = [
            OutboundMessage(
                recipients=(order.customer_id,),
                text=message_templates.build_delivery_message(order.order_id, delivered, missing),
            )
        ]
        reset = self._reset_session(order)
        logger.info(
            "fulfillment-complete: order_id=%s customer=%s outcome=%s source=%s",
            order.order_id,
            mask_customer_id(order.customer_id),
            outcome,
            source,
        )
        return FulfillmentResult(
            order_id=order.order_id,
            outcome=outcome,
            won=True,
            outbound=outbound,
            undelivered_product_ids=list(order.undelivered_product_ids),
            session_reset=reset,
        )

    def _close_unpaid(
        self,
        order: Order,
        status: str,
        source: str,
        notify_customer: bool = True,
    ) -> FulfillmentResult:
        outcome = OrderOutcome.EXPIRED.value if status == PaymentStatus.EXPIRED.value else OrderOutcome.FAILED.value
        try:
            self.orders.claim(order.order_id, outcome)
        except FulfillmentConflict as exc:
            return FulfillmentResult(order_id=order.order_id, outcome=exc.outcome, won=False)

        if order.stock_reserved:
            self.catalog.release(order.product_counts())
        order.payment_status = status
        order.outcome = outcome
        order.stock_reserved = False
        self.orders.save(order)
        self.audit.payment_failed(order.customer_id, order.order_id, outcome, source)

        outbound: list[OutboundMessage] = []
        if notify_customer:
            outbound.append(
                OutboundMessage(
                    recipients=(order.customer_id,),
                    text=message_templates.build_payment_closed_message(order.order_id, outcome),
                )
            )
        reset = self._reset_session(order)
        return FulfillmentResult(order_id=order.order_id, outcome=outcome, won=True, outbound=outbound, session_reset=reset)

    def _commit_stock(self, order: Order) -> None:
        if order.stock_reserved:
            return
        for product_id, amount in order.product_counts().items():
            if not self.catalog.decrement(product_id, amount):
                logger.warning("stock-underflow: order_id=%s product=%s amount=%s", order.order_id, product_id, amount)

    def _reset_session(self, order: Order) -> bool:
        try:
            return self.session_store.mutate(
                order.customer_id,
                lambda current: self._reset_in_place(current, order.order_id),
            )
        except SessionConflictError as exc:
            logger.error("session-reset-failed: order_id=%s error=%s", order.order_id, exc)
            return False

    @staticmethod
    def _reset_in_place(session: Session, order_id: str) -> bool:
        if session.order_id != order_id:
            return False
        session.reset()
        return True

    def _alert_admins(self, message: str) -> None:
        if self.alerter is None:
            logger.warning("admin-alert-dropped: %s", message.splitlines()[0] if message else "")
            return
        try:
            self.alerter.notify_admins(message)
        except Exception as exc:  # noqa: BLE001
            logger.error("admin-alert-failed: %s", exc)
