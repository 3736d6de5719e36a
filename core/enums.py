from __future__ import annotations

from enum import Enum


class SessionStep(str, Enum):
    MENU = "menu"
    BROWSING = "browsing"
    CHECKOUT = "checkout"
    SELECT_PAYMENT = "select_payment"
    SELECT_BANK = "select_bank"
    AWAITING_PAYMENT = "awaiting_payment"
    AWAITING_ADMIN_APPROVAL = "awaiting_admin_approval"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    EXPIRED = "expired"
    FAILED = "failed"


class OrderOutcome(str, Enum):
    DELIVERED = "delivered"
    DELIVERED_PARTIAL = "delivered_partial"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentChannelType(str, Enum):
    QRIS = "qris"
    EWALLET = "ewallet"
    VIRTUAL_ACCOUNT = "virtual_account"


class AttachmentKind(str, Enum):
    IMAGE = "image"


class AuditEvent:
    ORDER_CREATED = "order_created"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PRODUCTS_DELIVERED = "products_delivered"
    DELIVERY_SHORTFALL = "delivery_shortfall"
    ADMIN_ACTION = "admin_action"
    SECURITY = "security"
    ERROR = "error"


PAYMENT_PENDING_STEPS = (
    SessionStep.SELECT_PAYMENT.value,
    SessionStep.SELECT_BANK.value,
    SessionStep.AWAITING_PAYMENT.value,
    SessionStep.AWAITING_ADMIN_APPROVAL.value,
)

CART_REQUIRED_STEPS = (
    SessionStep.CHECKOUT.value,
    SessionStep.SELECT_PAYMENT.value,
    SessionStep.SELECT_BANK.value,
    SessionStep.AWAITING_PAYMENT.value,
)

SUCCESS_OUTCOMES = (
    OrderOutcome.DELIVERED.value,
    OrderOutcome.DELIVERED_PARTIAL.value,
)
