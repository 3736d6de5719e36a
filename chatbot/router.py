from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from audit.logger import AuditLogger
from catalog.product_catalog import ProductCatalog
from checkout.checkout_service import CheckoutOrchestrator
from checkout.fulfillment import AdminAlerter, FulfillmentCoordinator
from checkout.order_repository import OrderRepository
from checkout.promo_service import PromoService
from chatbot import message_templates
from chatbot.admin_commands import AdminCommandHandler
from chatbot.authorization import AdminPolicy
from core.enums import AttachmentKind, OrderOutcome, PaymentStatus
from core.errors import (
    GatewayError,
    NotFoundError,
    OutOfStockError,
    RateLimitError,
    SessionConflictError,
    ValidationError,
)
from core.masking import mask_customer_id, sanitize_input
from core.models import Attachment, CartItem, ChatResponse, Session
from payments.channels import PaymentMethod, PaymentMethodRegistry
from sessions.rate_limiter import RateLimiter
from sessions.session_store import SessionStore
from sessions.wishlist_store import WishlistStore
from sessions.state_machine import (
    STEP_AWAITING_ADMIN_APPROVAL,
    STEP_AWAITING_PAYMENT,
    STEP_BROWSING,
    STEP_CHECKOUT,
    STEP_MENU,
    STEP_SELECT_BANK,
    STEP_SELECT_PAYMENT,
    require_transition,
)

logger = logging.getLogger(__name__)

MENU_COMMANDS = ("menu", "help")
HISTORY_COMMANDS = ("history", "track")
CHECKOUT_COMMANDS = ("checkout", "buy", "order")
STATUS_COMMANDS = ("status", "cek", "check")
WISHLIST_COMMANDS = ("wishlist", "save", "unsave", "move")
PAYMENT_FLOW_STEPS = (STEP_SELECT_PAYMENT, STEP_SELECT_BANK, STEP_AWAITING_PAYMENT)
UNKNOWN_COMMAND_TEXT = "Command not recognized. Type 'menu' to see what you can do."


class _Reply(Exception):
    """Ends routing with a reply and leaves the session as it was loaded."""

    def __init__(self, response: ChatResponse) -> None:
        super().__init__(response.text)
        self.response = response


class _StatusCheck(Exception):
    """Ends routing so the payment status is checked outside the session update."""

    def __init__(self, session: Session) -> None:
        super().__init__(session.order_id or "")
        self.session = session


@dataclass(slots=True)
class _Turn:
    """Undo actions for side effects made while routing one message."""

    rollbacks: list[Callable[[], None]] = field(default_factory=list)


class ConversationRouter:
    def __init__(
        self,
        *,
        session_store: SessionStore,
        rate_limiter: RateLimiter,
        catalog: ProductCatalog,
        checkout: CheckoutOrchestrator,
        fulfillment: FulfillmentCoordinator,
        orders: OrderRepository,
        promos: PromoService,
        payment_methods: PaymentMethodRegistry,
        admin_policy: AdminPolicy,
        admin_commands: AdminCommandHandler,
        wishlist: WishlistStore | None = None,
        alerter: AdminAlerter | None = None,
        audit: AuditLogger | None = None,
        shop: dict[str, Any] | None = None,
        max_message_length: int = 1000,
        sweep_interval_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_store = session_store
        self.rate_limiter = rate_limiter
        self.catalog = catalog
        self.checkout = checkout
        self.fulfillment = fulfillment
        self.orders = orders
        self.promos = promos
        self.payment_methods = payment_methods
        self.admin_policy = admin_policy
        self.admin_commands = admin_commands
        self.wishlist = wishlist or WishlistStore(session_store.kv_store)
        self.alerter = alerter
        self.audit = audit or AuditLogger()
        shop = shop or {}
        self.shop_name = str(shop.get("name", "Premium Shop"))
        self.about_text = str(shop.get("about", ""))
        self.contact_text = str(shop.get("contact", ""))
        self.max_message_length = max(1, int(max_message_length))
        self.sweep_interval_seconds = max(0, int(sweep_interval_seconds))
        self._clock = clock
        self._last_sweep = clock()
        self._sweep_lock = threading.Lock()

    def handle_message(self, customer_id: str, text: str | None, has_media: bool = False) -> ChatResponse:
        customer_id = str(customer_id or "").strip()
        if not customer_id:
            return ChatResponse(text=message_templates.build_error_message())
        message = sanitize_input(text, self.max_message_length)
        turn = _Turn()

        try:
            self._maybe_sweep()
            if self.rate_limiter.is_in_cooldown(customer_id):
                return ChatResponse(text=message_templates.build_cooldown_message())
            decision = self.rate_limiter.can_send_message(customer_id)
            if not decision.allowed:
                self.audit.security(customer_id, "message_rate_limited")
                return ChatResponse(text=message_templates.build_rate_limited_message(decision.reason))

            if self.admin_policy.is_admin_command(message):
                if not self.admin_policy.is_admin(customer_id):
                    self.audit.security(customer_id, "unauthorized_admin_command", command=message.split(" ")[0][:32])
                    return ChatResponse(text=UNKNOWN_COMMAND_TEXT)
                return self.admin_commands.handle(customer_id, message)

            with self.session_store.lock(customer_id):
                try:
                    return self.session_store.mutate(
                        customer_id,
                        lambda session: self._route(session, message, has_media, turn),
                        attempts=1,
                    )
                except _StatusCheck as check:
                    return self._check_status(check.session)
        except _Reply as reply:
            return reply.response
        except SessionConflictError:
            logger.warning("router-session-conflict: customer=%s", mask_customer_id(customer_id))
            self._rollback(customer_id, turn)
            return ChatResponse(text="Your previous message is still being processed. Please send that again.")
        except Exception as exc:  # noqa: BLE001
            logger.exception("router-unhandled-error: customer=%s", mask_customer_id(customer_id))
            self._rollback(customer_id, turn)
            self.audit.error(customer_id, exc)
            try:
                self.rate_limiter.set_error_cooldown(customer_id)
            except Exception as cooldown_exc:  # noqa: BLE001
                logger.error("router-cooldown-failed: %s", cooldown_exc)
            return ChatResponse(text=message_templates.build_error_message())

    def _route(self, session: Session, text: str, has_media: bool, turn: _Turn) -> ChatResponse:
        lowered = text.lower()
        command = lowered.split(" ")[0] if lowered else ""

        if command in HISTORY_COMMANDS:
            return self._history(session, text)

        if session.step == STEP_AWAITING_ADMIN_APPROVAL:
            return ChatResponse(text=message_templates.build_awaiting_verification_message())

        if has_media and session.step == STEP_AWAITING_PAYMENT:
            return self._payment_proof(session)

        if lowered in MENU_COMMANDS:
            self._leave_payment_flow(session)
            self._goto(session, STEP_MENU)
            return self._main_menu()
        if lowered == "cart":
            return self._show_cart(session)

        if command in WISHLIST_COMMANDS and session.step in (STEP_MENU, STEP_BROWSING, STEP_CHECKOUT):
            return self._wishlist(session, command, text[len(command):].strip(), turn)

        if session.step == STEP_CHECKOUT and lowered in CHECKOUT_COMMANDS:
            return self._begin_checkout(session, turn)

        handlers = {
            STEP_MENU: self._on_menu,
            STEP_BROWSING: self._on_browsing,
            STEP_CHECKOUT: self._on_checkout,
            STEP_SELECT_PAYMENT: self._on_select_payment,
            STEP_SELECT_BANK: self._on_select_bank,
            STEP_AWAITING_PAYMENT: self._on_awaiting_payment,
        }
        return handlers[session.step](session, text, lowered)

    def _on_menu(self, session: Session, text: str, lowered: str) -> ChatResponse:
        if lowered in ("1", "browse", "products", "shop"):
            self._goto(session, STEP_BROWSING)
            return ChatResponse(text=message_templates.build_product_list_message(self.catalog.list_products()))
        if lowered == "2":
            return self._show_cart(session)
        if lowered in ("3", "about"):
            return ChatResponse(text=message_templates.build_about_message(self.shop_name, self.about_text))
        if lowered in ("4", "contact"):
            return ChatResponse(text=message_templates.build_contact_message(self.contact_text))
        return self._main_menu(error_prefix="Invalid choice. Please reply with a number from the menu.")

    def _on_browsing(self, session: Session, text: str, lowered: str) -> ChatResponse:
        product = self.catalog.get(lowered) or self.catalog.find(text)
        if product is None:
            logger.info("product-not-found: customer=%s", mask_customer_id(session.customer_id))
            return ChatResponse(text=message_templates.build_product_not_found_message(text))
        item = CartItem.from_product(product)
        session.cart.append(item)
        return ChatResponse(text=message_templates.build_product_added_message(item, len(session.cart)))

    def _on_checkout(self, session: Session, text: str, lowered: str) -> ChatResponse:
        if lowered == "clear":
            session.cart = []
            session.promo_code = None
            session.discount_percent = 0
            self._goto(session, STEP_MENU)
            return ChatResponse(
                text=message_templates.build_cart_cleared_message() + "\n\n" + self._main_menu().text,
            )
        if lowered.startswith("promo"):
            return self._stage_promo(session, text[len("promo"):].strip())
        return ChatResponse(text=message_templates.build_checkout_prompt_message())

    def _on_select_payment(self, session: Session, text: str, lowered: str) -> ChatResponse:
        if self.payment_methods.is_bank_transfer(lowered):
            self._goto(session, STEP_SELECT_BANK)
            return ChatResponse(text=message_templates.build_bank_menu_message(self.payment_methods.banks))
        method = self.payment_methods.resolve_payment(lowered)
        if method is None:
            order = self.orders.get(session.order_id or "")
            if order is None:
                return ChatResponse(text="Invalid choice. Type 'cart' to review your order.")
            menu = message_templates.build_payment_menu_message(
                order,
                self.payment_methods.methods,
                self.payment_methods.bank_transfer_enabled,
            )
            return ChatResponse(text="Invalid choice.\n\n" + menu)
        return self._open_channel(session, method)

    def _on_select_bank(self, session: Session, text: str, lowered: str) -> ChatResponse:
        bank = self.payment_methods.resolve_bank(lowered)
        if bank is None:
            return ChatResponse(
                text="Invalid bank.\n\n" + message_templates.build_bank_menu_message(self.payment_methods.banks),
            )
        return self._open_channel(session, bank)

    def _on_awaiting_payment(self, session: Session, text: str, lowered: str) -> ChatResponse:
        if lowered not in STATUS_COMMANDS:
            return ChatResponse(text=message_templates.build_waiting_payment_message(session.order_id))
        raise _StatusCheck(session)

    def _check_status(self, session: Session) -> ChatResponse:
        order_id = session.order_id or ""
        try:
            result = self.fulfillment.poll(session)
        except GatewayError as exc:
            logger.warning("payment-status-check-failed: order_id=%s error=%s", order_id, exc)
            return ChatResponse(text="We could not check your payment right now. Please try 'status' again shortly.")
        except NotFoundError:
            return ChatResponse(text=message_templates.build_order_not_found_message(order_id))

        if result.outcome == PaymentStatus.PENDING.value:
            self._touch(session.customer_id)
            return ChatResponse(text=message_templates.build_payment_pending_message(order_id))
        if not result.won:
            return ChatResponse(text=message_templates.build_already_processed_message(order_id))
        if result.outcome in (OrderOutcome.DELIVERED.value, OrderOutcome.DELIVERED_PARTIAL.value):
            return ChatResponse(
                text=message_templates.build_payment_confirmed_message(order_id),
                outbound=list(result.outbound),
            )
        return ChatResponse(text=message_templates.build_payment_closed_message(order_id, result.outcome))

    def _payment_proof(self, session: Session) -> ChatResponse:
        self._goto(session, STEP_AWAITING_ADMIN_APPROVAL)
        order = self.orders.get(session.order_id or "")
        alert = message_templates.build_admin_proof_alert(
            session.customer_id,
            session.order_id,
            order.total_amount if order else None,
        )
        if self.alerter is not None:
            try:
                self.alerter.notify_admins(alert)
            except Exception as exc:  # noqa: BLE001
                logger.error("payment-proof-alert-failed: order_id=%s error=%s", session.order_id, exc)
        logger.info("payment-proof-received: customer=%s order_id=%s", mask_customer_id(session.customer_id), session.order_id)
        return ChatResponse(text=message_templates.build_proof_received_message(session.order_id))

    def _show_cart(self, session: Session) -> ChatResponse:
        if not session.cart:
            return ChatResponse(text=message_templates.build_empty_cart_message())
        self._leave_payment_flow(session)
        self._goto(session, STEP_CHECKOUT)
        return ChatResponse(
            text=message_templates.build_cart_message(session.cart, session.promo_code, session.discount_percent),
        )

    def _begin_checkout(self, session: Session, turn: _Turn) -> ChatResponse:
        try:
            result = self.checkout.begin_checkout(session)
        except OutOfStockError as exc:
            raise _Reply(ChatResponse(text=message_templates.build_out_of_stock_message(exc.product_name)))
        except RateLimitError as exc:
            self.audit.security(session.customer_id, "order_rate_limited")
            raise _Reply(ChatResponse(text=message_templates.build_rate_limited_message(str(exc))))
        except (ValidationError, NotFoundError) as exc:
            raise _Reply(ChatResponse(text=f"Checkout failed: {exc}"))
        turn.rollbacks.append(lambda: self.checkout.rollback_checkout(result))

        lines: list[str] = []
        if result.promo_rejected:
            lines += [message_templates.build_promo_rejected_message(f"{result.promo_rejected} was already used"), ""]
        lines.append(
            message_templates.build_payment_menu_message(
                result.order,
                self.payment_methods.methods,
                self.payment_methods.bank_transfer_enabled,
            )
        )
        return ChatResponse(text="\n".join(lines))

    def _open_channel(self, session: Session, method: PaymentMethod) -> ChatResponse:
        try:
            order, channel = self.checkout.open_payment_channel(session, method)
        except GatewayError as exc:
            logger.warning("payment-channel-failed: order_id=%s method=%s error=%s", session.order_id, method.key, exc)
            raise _Reply(ChatResponse(text=message_templates.build_gateway_error_message()))
        except (ValidationError, NotFoundError) as exc:
            raise _Reply(ChatResponse(text=f"Payment could not be started: {exc}"))

        attachments: list[Attachment] = []
        if channel.image_url:
            attachments.append(Attachment(kind=AttachmentKind.IMAGE.value, url=channel.image_url, caption=order.order_id))
        return ChatResponse(
            text=message_templates.build_payment_instructions_message(order, method, channel.details, channel.checkout_url),
            attachments=attachments,
        )

    def _stage_promo(self, session: Session, code: str) -> ChatResponse:
        try:
            promo = self.promos.validate(code, session.customer_id)
        except (ValidationError, NotFoundError) as exc:
            return ChatResponse(text=message_templates.build_promo_rejected_message(str(exc)))
        session.promo_code = promo.code
        session.discount_percent = promo.discount_percent
        return ChatResponse(text=message_templates.build_promo_applied_message(promo.code, promo.discount_percent))

    def _wishlist(self, session: Session, command: str, query: str, turn: _Turn) -> ChatResponse:
        customer_id = session.customer_id
        if command == "wishlist":
            saved = self.wishlist.product_ids(customer_id)
            products = [product for product in map(self.catalog.get, saved) if product is not None]
            return ChatResponse(text=message_templates.build_wishlist_message(products))
        if not query:
            return ChatResponse(text=f"Type '{command} <product>'.")
        product = self.catalog.get(query.lower()) or self.catalog.find(query)
        if product is None:
            return ChatResponse(text=message_templates.build_product_not_found_message(query))

        if command == "save":
            try:
                added = self.wishlist.add(customer_id, product.id)
            except ValidationError as exc:
                return ChatResponse(text=f"Could not save: {exc}")
            return ChatResponse(text=message_templates.build_wishlist_saved_message(product, added))
        if command == "unsave":
            removed = self.wishlist.remove(customer_id, product.id)
            return ChatResponse(text=message_templates.build_wishlist_removed_message(product, removed))

        if not self.wishlist.remove(customer_id, product.id):
            return ChatResponse(text=message_templates.build_wishlist_removed_message(product, False))
        turn.rollbacks.append(lambda: self.wishlist.add(customer_id, product.id))
        item = CartItem.from_product(product)
        session.cart.append(item)
        return ChatResponse(text=message_templates.build_product_added_message(item, len(session.cart)))

    def _history(self, session: Session, text: str) -> ChatResponse:
        parts = text.split()
        if len(parts) >= 2:
            order = self.orders.get(parts[1])
            if order is None or order.customer_id != session.customer_id:
                return ChatResponse(text=message_templates.build_order_not_found_message(parts[1]))
            return ChatResponse(text=message_templates.build_order_detail_message(order))
        return ChatResponse(text=message_templates.build_order_history_message(self.orders.list_for_customer(session.customer_id)))

    def _leave_payment_flow(self, session: Session) -> None:
        if session.step in PAYMENT_FLOW_STEPS:
            self.checkout.abandon_pending(session)

    def _main_menu(self, error_prefix: str | None = None) -> ChatResponse:
        return ChatResponse(text=message_templates.build_main_menu_message(self.shop_name, error_prefix))

    @staticmethod
    def _goto(session: Session, target: str) -> None:
        require_transition(session.step, target)
        session.step = target

    def _maybe_sweep(self) -> None:
        if self.sweep_interval_seconds <= 0:
            return
        now = self._clock()
        if now - self._last_sweep < self.sweep_interval_seconds:
            return
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            self._last_sweep = now
            self.session_store.sweep_expired()
        finally:
            self._sweep_lock.release()

    def _touch(self, customer_id: str) -> None:
        try:
            self.session_store.touch(customer_id)
        except SessionConflictError:
            logger.info("session-touch-skipped: customer=%s", mask_customer_id(customer_id))

    @staticmethod
    def _rollback(customer_id: str, turn: _Turn) -> None:
        for undo in reversed(turn.rollbacks):
            try:
                undo()
            except Exception as exc:  # noqa: BLE001
                logger.error("router-rollback-failed: customer=%s error=%s", mask_customer_id(customer_id), exc)
