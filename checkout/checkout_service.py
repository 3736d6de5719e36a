from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable

from audit.logger import AuditLogger
from catalog.product_catalog import ProductCatalog
from checkout.order_repository import OrderRepository
from checkout.promo_service import PromoService
from core.enums import OrderOutcome
from core.errors import FulfillmentConflict, NotFoundError, OutOfStockError, RateLimitError, ValidationError
from core.masking import mask_customer_id
from core.models import Order, Session
from payments.channels import PaymentMethod
from payments.gateway_interface import ChannelResult, PaymentGatewayProtocol
from sessions.rate_limiter import RateLimiter
from sessions.state_machine import STEP_AWAITING_PAYMENT, STEP_SELECT_PAYMENT, require_transition

logger = logging.getLogger(__name__)

ORDER_ID_PATTERN = re.compile(r"^ORD-\d{13}-[A-Za-z0-9]{4}$")


@dataclass(slots=True)
class CheckoutResult:
    order: Order
    promo_applied: bool = False
    promo_rejected: str | None = None


def build_order_id(customer_id: str, now_ms: int) -> str:
    suffix = re.sub(r"[^A-Za-z0-9]", "", str(customer_id or ""))[-4:].rjust(4, "0")
    return f"ORD-{int(now_ms):013d}-{suffix}"


class CheckoutOrchestrator:
    """Turns a session's cart into a pending order and opens its payment channel.

    Every method works on a ``Session`` handed in by ``SessionStore.mutate`` and
    changes it in place; the caller persists it.
    """

    def __init__(
        self,
        *,
        catalog: ProductCatalog,
        orders: OrderRepository,
        promos: PromoService,
        gateway: PaymentGatewayProtocol,
        rate_limiter: RateLimiter,
        audit: AuditLogger | None = None,
        clock_ms: Callable[[], int] | None = None,
    ) -> None:
        self.catalog = catalog
        self.orders = orders
        self.promos = promos
        self.gateway = gateway
        self.rate_limiter = rate_limiter
        self.audit = audit or AuditLogger()
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    def begin_checkout(self, session: Session) -> CheckoutResult:
        require_transition(session.step, STEP_SELECT_PAYMENT)
        if not session.cart:
            raise ValidationError("cart is empty")

        decision = self.rate_limiter.can_place_order(session.customer_id)
        if not decision.allowed:
            raise RateLimitError(decision.reason or "order limit reached", decision.wait_seconds)

        counts: dict[str, int] = {}
        for item in session.cart:
            if self.catalog.get(item.product_id) is None:
                raise NotFoundError(f"product no longer available: {item.name}")
            counts[item.product_id] = counts.get(item.product_id, 0) + 1

        short = self.catalog.reserve(counts)
        if short is not None:
            product = self.catalog.get(short)
            raise OutOfStockError(short, product.name if product else None)

        try:
            result = self._create_order(session, counts)
        except Exception:
            self.catalog.release(counts)
            raise

        order = result.order
        session.order_id = order.order_id
        session.payment_method = None
        session.payment_invoice_id = None
        session.step = STEP_SELECT_PAYMENT
        self.rate_limiter.record_order(session.customer_id)
        self.audit.order_created(
            session.customer_id,
            order.order_id,
            order.total_amount,
            len(order.items),
            order.promo_code,
        )
        logger.info(
            "checkout-created: customer=%s order_id=%s total=%s",
            mask_customer_id(session.customer_id),
            order.order_id,
            order.total_amount,
        )
        return result

    def open_payment_channel(self, session: Session, method: PaymentMethod) -> tuple[Order, ChannelResult]:
        """Ask the gateway for a channel and record its reference before changing step.

        ``GatewayError`` propagates with the session untouched.
        """
        require_transition(session.step, STEP_AWAITING_PAYMENT)
        order = self.orders.get(session.order_id or "")
        if order is None:
            raise NotFoundError(f"order not found: {session.order_id}")
        if order.is_terminal() or self.orders.claimed_outcome(order.order_id) is not None:
            raise ValidationError(f"order already closed: {order.order_id}")

        channel = self.gateway.create_channel(
            amount=order.total_amount,
            order_id=order.order_id,
            channel_type=method.channel_type,
            customer_meta={"customer_id": session.customer_id, "method_code": method.gateway_code},
        )
        self.orders.attach_payment(order, method.key, channel.reference)
        session.payment_method = method.key
        session.payment_invoice_id = channel.reference
        session.step = STEP_AWAITING_PAYMENT
        self.audit.payment_initiated(
            session.customer_id,
            order.order_id,
            method.key,
            order.total_amount,
            channel.reference,
        )
        return order, channel

    def abandon_pending(self, session: Session) -> None:
        """Drop the session's link to its order when the customer leaves the payment flow.

        An order that never got a payment channel is cancelled and its stock
        released. An order with an open channel stays pending, since the
        gateway may still confirm it.
        """
        order_id = session.order_id
        has_channel = bool(session.payment_invoice_id)
        session.clear_payment()
        session.promo_code = None
        session.discount_percent = 0
        if not order_id or has_channel:
            return

        order = self.orders.get(order_id)
        if order is None or order.payment_reference:
            return
        try:
            self.orders.claim(order.order_id, OrderOutcome.CANCELLED.value)
        except FulfillmentConflict:
            return
        self._cancel(order)
        logger.info("checkout-abandoned: order_id=%s", order.order_id)

    def rollback_checkout(self, result: CheckoutResult) -> None:
        """Undo ``begin_checkout`` whose session update was never stored.

        Cancels the order through the claim, returns its stock, frees the promo
        code it consumed and takes it off the customer's order count.
        """
        order = result.order
        try:
            self.orders.claim(order.order_id, OrderOutcome.CANCELLED.value)
        except FulfillmentConflict:
            return
        self._cancel(order)
        if result.promo_applied and order.promo_code:
            self.promos.release(order.promo_code, order.customer_id, order.order_id)
        self.rate_limiter.forget_order(order.customer_id)
        logger.warning(
            "checkout-rolled-back: customer=%s order_id=%s",
            mask_customer_id(order.customer_id),
            order.order_id,
        )

    def _cancel(self, order: Order) -> None:
        if order.stock_reserved:
            self.catalog.release(order.product_counts())
        order.outcome = OrderOutcome.CANCELLED.value
        order.stock_reserved = False
        self.orders.save(order)

    def _create_order(self, session: Session, counts: dict[str, int]) -> CheckoutResult:
        subtotal = session.cart_total()
        now_ms = self._clock_ms()
        order_id = build_order_id(session.customer_id, now_ms)
        while self.orders.get(order_id) is not None:
            now_ms += 1
            order_id = build_order_id(session.customer_id, now_ms)

        promo_applied = False
        promo_rejected: str | None = None
        discount = 0
        promo_code = session.promo_code
        if promo_code:
            if self.promos.consume(promo_code, session.customer_id, order_id):
                discount = self.promos.calculate_discount(subtotal, session.discount_percent)
                promo_applied = True
            else:
                promo_rejected = promo_code
                promo_code = None
            session.promo_code = None
            session.discount_percent = 0

        order = Order(
            order_id=order_id,
            customer_id=session.customer_id,
            items=list(session.cart),
            subtotal=subtotal,
            discount_amount=discount,
            total_amount=max(0, subtotal - discount),
            promo_code=promo_code,
            stock_reserved=True,
        )
        if not self.orders.create(order):
            raise ValidationError(f"duplicate order id: {order_id}")
        return CheckoutResult(order=order, promo_applied=promo_applied, promo_rejected=promo_rejected)
