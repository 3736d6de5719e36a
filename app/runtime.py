from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Any, Callable

from audit.logger import AuditLogger
from catalog.product_catalog import ProductCatalog
from chatbot.admin_commands import AdminCommandHandler
from chatbot.authorization import AdminPolicy
from chatbot.router import ConversationRouter
from chatbot.transport_client import HttpTransportClient
from checkout.checkout_service import CheckoutOrchestrator
from checkout.fulfillment import FulfillmentCoordinator
from checkout.order_repository import OrderRepository
from checkout.promo_service import PromoService
from delivery.credential_store import CredentialStoreProtocol, FileCredentialStore
from notifications.factory import build_notification_channels
from notifications.service import AdminAlertService
from payments.channels import PaymentMethodRegistry
from payments.gateway_factory import create_payment_gateway
from payments.gateway_interface import PaymentGatewayProtocol
from payments.webhook_handler import PaymentWebhookHandler
from sessions.rate_limiter import RateLimiter
from sessions.session_store import SessionStore
from sessions.wishlist_store import WishlistStore
from store.kv_interface import KeyValueStoreProtocol
from store.store_factory import create_kv_store


@dataclass(slots=True)
class Runtime:
    config: dict[str, Any]
    kv_store: KeyValueStoreProtocol
    session_store: SessionStore
    catalog: ProductCatalog
    orders: OrderRepository
    gateway: PaymentGatewayProtocol
    credentials: CredentialStoreProtocol
    fulfillment: FulfillmentCoordinator
    router: ConversationRouter
    payment_webhook: PaymentWebhookHandler
    transport: HttpTransportClient | None
    alerts: AdminAlertService


def build_runtime(
    config: dict[str, Any],
    *,
    kv_store: KeyValueStoreProtocol | None = None,
    gateway: PaymentGatewayProtocol | None = None,
    credentials: CredentialStoreProtocol | None = None,
    transport: HttpTransportClient | None = None,
    channel_builder: Callable[[dict[str, Any]], Any] | None = None,
) -> Runtime:
    kv = kv_store or create_kv_store(config)
    audit = AuditLogger()
    policy = AdminPolicy.from_config(config)
    transport = transport or _build_transport(config)

    builder = channel_builder or partial(
        build_notification_channels,
        push_client=transport,
        admin_ids=policy.admin_ids,
    )
    alerts = AdminAlertService(config, channel_builder=builder)

    session_conf = config.get("session", {})
    session_store = SessionStore(kv, ttl_minutes=int(session_conf.get("ttl_minutes", 30)))
    rate_limiter = RateLimiter.from_config(kv, config)
    catalog = ProductCatalog.from_config(kv, config)
    orders = OrderRepository(kv, retention_days=int(config.get("orders", {}).get("retention_days", 30)))
    promos = PromoService.from_config(kv, config)
    payment_gateway = gateway or create_payment_gateway(config)
    credential_store = credentials or FileCredentialStore(
        str(config.get("delivery", {}).get("credentials_dir", "products_data"))
    )

    checkout = CheckoutOrchestrator(
        catalog=catalog,
        orders=orders,
        promos=promos,
        gateway=payment_gateway,
        rate_limiter=rate_limiter,
        audit=audit,
    )
    fulfillment = FulfillmentCoordinator(
        orders=orders,
        catalog=catalog,
        credentials=credential_store,
        gateway=payment_gateway,
        session_store=session_store,
        alerter=alerts,
        audit=audit,
    )
    admin_commands = AdminCommandHandler(
        policy=policy,
        catalog=catalog,
        fulfillment=fulfillment,
        session_store=session_store,
        credentials=credential_store,
        kv_store=kv,
        gateway_name=str(getattr(payment_gateway, "name", "")),
        audit=audit,
    )
    router = ConversationRouter(
        session_store=session_store,
        rate_limiter=rate_limiter,
        catalog=catalog,
        checkout=checkout,
        fulfillment=fulfillment,
        orders=orders,
        promos=promos,
        payment_methods=PaymentMethodRegistry.from_config(config),
        admin_policy=policy,
        admin_commands=admin_commands,
        wishlist=WishlistStore(kv, ttl_days=int(session_conf.get("wishlist_ttl_days", 90))),
        alerter=alerts,
        audit=audit,
        shop=config.get("shop", {}),
        max_message_length=int(session_conf.get("max_message_length", 1000)),
        sweep_interval_seconds=int(session_conf.get("sweep_interval_seconds", 300)),
    )
    payment_webhook = PaymentWebhookHandler(
        coordinator=fulfillment,
        callback_token=str(config.get("payment", {}).get("webhook_token", "") or ""),
        sender=transport,
        audit=audit,
    )
    return Runtime(
        config=config,
        kv_store=kv,
        session_store=session_store,
        catalog=catalog,
        orders=orders,
        gateway=payment_gateway,
        credentials=credential_store,
        fulfillment=fulfillment,
        router=router,
        payment_webhook=payment_webhook,
        transport=transport,
        alerts=alerts,
    )


def _build_transport(config: dict[str, Any]) -> HttpTransportClient | None:
    tconf = config.get("transport", {})
    base_url = str(tconf.get("api_base_url", "") or "").strip()
    if not base_url:
        return None
    return HttpTransportClient(
        api_base_url=base_url,
        access_token=str(tconf.get("access_token", "") or ""),
        send_path=str(tconf.get("send_path", "/messages") or "/messages"),
        timeout_sec=float(tconf.get("timeout_sec", 10)),
    )
