from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from audit.logger import AuditLogger
from catalog.product_catalog import ProductCatalog
from checkout.checkout_service import ORDER_ID_PATTERN
from checkout.fulfillment import FulfillmentCoordinator
from chatbot.authorization import AdminPolicy
from chatbot.message_templates import format_idr
from core.enums import SUCCESS_OUTCOMES
from core.errors import CommerceError, GatewayError, NotFoundError, ValidationError
from core.models import ChatResponse, Order, OutboundMessage, Product
from delivery.credential_store import CredentialStoreProtocol
from sessions.session_store import SessionStore
from store.kv_interface import KeyValueStoreProtocol

logger = logging.getLogger(__name__)

ADMIN_HELP = "\n".join(
    [
        "Admin commands:",
        "/approve <orderId> - verify payment with the gateway and deliver",
        "/reject <orderId> - cancel an unpaid order and release its stock",
        "/stock - list stock and credential counts",
        "/stock <productId> <qty> - set stock",
        "/addproduct id | name | price | description | stock | category",
        "/editproduct id | field | value  (field: name, price, description, stock, category)",
        "/removeproduct <productId>",
        "/broadcast <message> - message every active customer",
        "/stats [days] - orders, revenue and top products (default 30 days)",
        "/status - service health",
    ]
)


class AdminCommandHandler:
    def __init__(
        self,
        *,
        policy: AdminPolicy,
        catalog: ProductCatalog,
        fulfillment: FulfillmentCoordinator,
        session_store: SessionStore,
        credentials: CredentialStoreProtocol,
        kv_store: KeyValueStoreProtocol,
        gateway_name: str = "",
        audit: AuditLogger | None = None,
    ) -> None:
        self.policy = policy
        self.catalog = catalog
        self.fulfillment = fulfillment
        self.session_store = session_store
        self.credentials = credentials
        self.kv_store = kv_store
        self.gateway_name = gateway_name
        self.audit = audit or AuditLogger()

    def handle(self, admin_id: str, text: str) -> ChatResponse:
        body = text[len(self.policy.command_prefix):].strip()
        command, _, args = body.partition(" ")
        command = command.lower()
        args = args.strip()
        handlers = {
            "approve": self._approve,
            "reject": self._reject,
            "stock": self._stock,
            "addproduct": self._add_product,
            "editproduct": self._edit_product,
            "removeproduct": self._remove_product,
            "broadcast": self._broadcast,
            "stats": self._stats,
            "status": self._status,
        }
        handler = handlers.get(command)
        if handler is None:
            return ChatResponse(text=ADMIN_HELP)
        try:
            response = handler(admin_id, args)
        except (ValidationError, NotFoundError) as exc:
            return ChatResponse(text=f"Error: {exc}")
        except GatewayError as exc:
            logger.warning("admin-gateway-error: command=%s error=%s", command, exc)
            return ChatResponse(text="Could not reach the payment gateway. Try again shortly.")
        except CommerceError as exc:
            return ChatResponse(text=f"Error: {exc}")
        if command not in ("approve", "reject"):
            self.audit.admin_action(admin_id, command, args=args[:200])
        return response

    def _approve(self, admin_id: str, args: str) -> ChatResponse:
        order_id = _order_id_arg(args, "approve")
        result = self.fulfillment.approve(order_id, admin_id)
        if not result.won:
            return ChatResponse(text=f"Order {order_id} was already processed ({result.outcome}).")
        if result.outcome not in SUCCESS_OUTCOMES:
            return ChatResponse(text=f"Order {order_id} closed: {result.outcome}.")
        lines = [f"Order {order_id} approved and delivered ({result.outcome})."]
        if result.undelivered_product_ids:
            lines.append(f"Missing credentials: {', '.join(result.undelivered_product_ids)}")
        return ChatResponse(text="\n".join(lines), outbound=list(result.outbound))

    def _reject(self, admin_id: str, args: str) -> ChatResponse:
        order_id = _order_id_arg(args, "reject")
        result = self.fulfillment.reject(order_id, admin_id)
        if not result.won:
            return ChatResponse(text=f"Order {order_id} was already processed ({result.outcome}).")
        return ChatResponse(text=f"Order {order_id} rejected and cancelled.", outbound=list(result.outbound))

    def _stock(self, admin_id: str, args: str) -> ChatResponse:
        if not args:
            return ChatResponse(text=self._stock_report())
        parts = args.split()
        if len(parts) != 2:
            raise ValidationError("usage: /stock <productId> <qty>")
        try:
            quantity = int(parts[1])
        except ValueError as exc:
            raise ValidationError("quantity must be a number") from exc
        product = self.catalog.set_stock(parts[0], quantity)
        return ChatResponse(text=f"Stock for {product.name} set to {product.stock}.")

    def _add_product(self, admin_id: str, args: str) -> ChatResponse:
        parts = [part.strip() for part in args.split("|")]
        if len(parts) < 6:
            raise ValidationError("usage: /addproduct id | name | price | description | stock | category")
        try:
            price = int(parts[2].replace(".", "").replace(",", ""))
            stock = int(parts[4])
        except ValueError as exc:
            raise ValidationError("price and stock must be numbers") from exc
        product = self.catalog.add_product(
            Product(
                id=parts[0].lower(),
                name=parts[1],
                description=parts[3],
                unit_price=price,
                stock=stock,
                category=parts[5].lower() or "premium",
            )
        )
        return ChatResponse(text=f"Product added: {product.name} ({product.id}) {format_idr(product.unit_price)}, stock {product.stock}.")

    def _edit_product(self, admin_id: str, args: str) -> ChatResponse:
        parts = [part.strip() for part in args.split("|")]
        if len(parts) < 3:
            raise ValidationError("usage: /editproduct id | field | value")
        product = self.catalog.edit_product(parts[0], parts[1], "|".join(parts[2:]))
        return ChatResponse(text=f"Product updated: {product.name} ({product.id}).")

    def _remove_product(self, admin_id: str, args: str) -> ChatResponse:
        product_id = args.split(" ")[0].strip() if args else ""
        if not product_id:
            raise ValidationError("usage: /removeproduct <productId>")
        product = self.catalog.remove_product(product_id)
        return ChatResponse(text=f"Product removed: {product.name} ({product.id}).")

    def _broadcast(self, admin_id: str, args: str) -> ChatResponse:
        if not args:
            raise ValidationError("usage: /broadcast <message>")
        recipients = tuple(
            customer_id
            for customer_id in self.session_store.list_customer_ids()
            if customer_id and not self.policy.is_admin(customer_id)
        )
        if not recipients:
            return ChatResponse(text="No active customers to broadcast to.")
        return ChatResponse(
            text=f"Broadcast queued for {len(recipients)} customer(s).",
            outbound=[OutboundMessage(recipients=recipients, text=args)],
        )

    def _stats(self, admin_id: str, args: str) -> ChatResponse:
        days = 30
        if args:
            try:
                days = int(args.split()[0])
            except ValueError as exc:
                raise ValidationError("usage: /stats [days]") from exc
            if days < 1:
                raise ValidationError("days must be at least 1")
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        orders = [order for order in self.fulfillment.orders.list_all() if _created_at(order) >= cutoff]

        completed = [order for order in orders if order.outcome in SUCCESS_OUTCOMES]
        pending = sum(1 for order in orders if order.outcome is None)
        revenue = sum(order.total_amount for order in completed)
        sold: dict[str, list[int]] = {}
        names: dict[str, str] = {}
        for order in completed:
            for item in order.items:
                tally = sold.setdefault(item.product_id, [0, 0])
                tally[0] += 1
                tally[1] += item.unit_price
                names.setdefault(item.product_id, item.name)

        lines = [
            f"Sales (last {days} days)",
            f"Orders: {len(orders)}",
            f"Completed: {len(completed)}",
            f"Pending: {pending}",
            f"Closed unpaid: {len(orders) - len(completed) - pending}",
            f"Revenue: {format_idr(revenue)}",
            f"Avg order: {format_idr(revenue // len(completed) if completed else 0)}",
        ]
        ranked = sorted(sold.items(), key=lambda entry: (-entry[1][0], -entry[1][1], entry[0]))[:5]
        if ranked:
            lines.append("Top products:")
            for index, (product_id, (units, amount)) in enumerate(ranked, start=1):
                lines.append(f"{index}. {names[product_id]} - {units} sold, {format_idr(amount)}")
        return ChatResponse(text="\n".join(lines))

    def _status(self, admin_id: str, args: str) -> ChatResponse:
        try:
            store_ok = self.kv_store.ping()
        except Exception as exc:  # noqa: BLE001
            logger.warning("admin-status-ping-failed: %s", exc)
            store_ok = False
        products = self.catalog.list_products()
        lines = [
            "Service status",
            f"Store: {'ok' if store_ok else 'degraded (local fallback)'}",
            f"Active sessions: {len(self.session_store.list_customer_ids())}",
            f"Products: {len(products)}",
            f"Out of stock: {sum(1 for product in products if product.stock <= 0)}",
            f"Payment gateway: {self.gateway_name or '-'}",
        ]
        return ChatResponse(text="\n".join(lines))

    def _stock_report(self) -> str:
        products = self.catalog.list_products()
        if not products:
            return "No products configured."
        lines = ["Stock (sellable / credentials):"]
        for product in products:
            credentials = self.credentials.count(product.id)
            flag = " (!)" if credentials < product.stock else ""
            lines.append(f"- {product.id}: {product.stock} / {credentials}{flag}")
        return "\n".join(lines)


def _created_at(order: Order) -> datetime:
    try:
        created = datetime.fromisoformat(order.created_at)
    except ValueError:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


def _order_id_arg(args: str, command: str) -> str:
    order_id = args.split(" ")[0].strip() if args else ""
    if not order_id:
        raise ValidationError(f"usage: /{command} <orderId>")
    if not ORDER_ID_PATTERN.match(order_id):
        raise ValidationError(f"invalid order id format: {order_id}")
    return order_id
