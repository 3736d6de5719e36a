from __future__ import annotations

import threading
import unittest
from dataclasses import replace

from catalog.product_catalog import ProductCatalog
from checkout.checkout_service import ORDER_ID_PATTERN, CheckoutOrchestrator, build_order_id
from checkout.order_repository import OrderRepository
from checkout.promo_service import PromoCode, PromoService
from core.errors import GatewayError, OutOfStockError, RateLimitError, ValidationError
from core.models import CartItem, Product, Session
from payments.channels import BANKS, PAYMENT_METHODS
from payments.mock_gateway import MockPaymentGateway
from sessions.rate_limiter import RateLimiter
from store.memory_store import InMemoryKeyValueStore

_NETFLIX = Product("netflix", "Netflix Premium Account (1 Month)", "Full HD", 15800, 0)
_SPOTIFY = Product("spotify", "Spotify Premium Account (1 Month)", "Ad-free", 15800, 0)


class _Ticker:
    def __init__(self) -> None:
        self.value = 1_767_225_600_000
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            return self.value


def _build(stock: int = 5, max_orders: int = 5) -> tuple[CheckoutOrchestrator, ProductCatalog, OrderRepository, MockPaymentGateway]:
    kv = InMemoryKeyValueStore()
    catalog = ProductCatalog(kv, [replace(_NETFLIX, stock=stock), replace(_SPOTIFY, stock=stock)])
    orders = OrderRepository(kv)
    promos = PromoService(kv, {"HEMAT10": PromoCode("HEMAT10", 10)})
    gateway = MockPaymentGateway()
    orchestrator = CheckoutOrchestrator(
        catalog=catalog,
        orders=orders,
        promos=promos,
        gateway=gateway,
        rate_limiter=RateLimiter(kv, max_orders=max_orders),
        clock_ms=_Ticker(),
    )
    return orchestrator, catalog, orders, gateway


def _session(customer_id: str = "628123456789", *products: Product) -> Session:
    items = [CartItem.from_product(product) for product in (products or (_NETFLIX,))]
    return Session(customer_id=customer_id, step="checkout", cart=items)


class BuildOrderIdTest(unittest.TestCase):
    def test_format(self) -> None:
        order_id = build_order_id("628123456789", 1_767_225_600_000)
        self.assertEqual(order_id, "ORD-1767225600000-6789")
        self.assertRegex(order_id, ORDER_ID_PATTERN)

    def test_short_customer_id_is_padded(self) -> None:
        self.assertEqual(build_order_id("U7", 5), "ORD-0000000000005-00U7")


class CheckoutOrchestratorTest(unittest.TestCase):
    def test_begin_checkout_reserves_stock_and_creates_order(self) -> None:
        orchestrator, catalog, orders, _ = _build(stock=2)
        session = _session("628123456789", _NETFLIX, _NETFLIX)

        result = orchestrator.begin_checkout(session)

        order = result.order
        self.assertRegex(order.order_id, ORDER_ID_PATTERN)
        self.assertEqual(order.total_amount, 31600)
        self.assertTrue(order.stock_reserved)
        self.assertEqual(catalog.stock("netflix"), 0)
        self.assertEqual(session.step, "select_payment")
        self.assertEqual(session.order_id, order.order_id)
        self.assertEqual(orders.get(order.order_id).items, order.items)
        self.assertEqual([item.order_id for item in orders.list_for_customer("628123456789")], [order.order_id])

    def test_empty_cart_is_rejected(self) -> None:
        orchestrator, _, _, _ = _build()
        session = Session(customer_id="628111", step="checkout")
        with self.assertRaises(ValidationError):
            orchestrator.begin_checkout(session)

    def test_wrong_step_is_rejected(self) -> None:
        orchestrator, _, _, _ = _build()
        session = _session()
        session.step = "browsing"
        with self.assertRaises(ValidationError):
            orchestrator.begin_checkout(session)

    def test_out_of_stock_leaves_everything_untouched(self) -> None:
        orchestrator, catalog, orders, _ = _build(stock=1)
        session = _session("628111", _SPOTIFY, _NETFLIX, _NETFLIX)

        with self.assertRaises(OutOfStockError) as ctx:
            orchestrator.begin_checkout(session)

        self.assertEqual(ctx.exception.product_id, "netflix")
        self.assertEqual(ctx.exception.product_name, _NETFLIX.name)
        self.assertEqual(catalog.stock("spotify"), 1)
        self.assertEqual(catalog.stock("netflix"), 1)
        self.assertEqual(session.step, "checkout")
        self.assertIsNone(session.order_id)
        self.assertEqual(orders.list_for_customer("628111"), [])

    def test_promo_applies_once_per_customer(self) -> None:
        orchestrator, _, _, _ = _build()
        first = _session("628111")
        first.promo_code, first.discount_percent = "HEMAT10", 10

        result = orchestrator.begin_checkout(first)

        self.assertTrue(result.promo_applied)
        self.assertEqual(result.order.discount_amount, 1580)
        self.assertEqual(result.order.total_amount, 14220)
        self.assertIsNone(first.promo_code)

        second = _session("628111")
        second.promo_code, second.discount_percent = "HEMAT10", 10
        again = orchestrator.begin_checkout(second)
        self.assertFalse(again.promo_applied)
        self.assertEqual(again.promo_rejected, "HEMAT10")
        self.assertEqual(again.order.total_amount, 15800)

    def test_order_rate_limit(self) -> None:
        orchestrator, catalog, _, _ = _build(max_orders=1)
        orchestrator.begin_checkout(_session("628111"))
        with self.assertRaises(RateLimitError):
            orchestrator.begin_checkout(_session("628111"))
        self.assertEqual(catalog.stock("netflix"), 4)

    def test_colliding_order_ids_are_bumped(self) -> None:
        orchestrator, _, _, _ = _build()
        first = orchestrator.begin_checkout(_session("628111")).order
        second = orchestrator.begin_checkout(_session("628111")).order
        self.assertNotEqual(first.order_id, second.order_id)

    def test_concurrent_checkouts_for_last_unit(self) -> None:
        orchestrator, catalog, _, _ = _build(stock=1)
        outcomes: list[str] = []
        lock = threading.Lock()
        barrier = threading.Barrier(2)

        def buyer(customer_id: str) -> None:
            barrier.wait()
            try:
                orchestrator.begin_checkout(_session(customer_id))
                result = "ok"
            except OutOfStockError:
                result = "out_of_stock"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=buyer, args=(cid,)) for cid in ("628111", "628222")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(outcomes), ["ok", "out_of_stock"])
        self.assertEqual(catalog.stock("netflix"), 0)

    def test_open_payment_channel_records_reference(self) -> None:
        orchestrator, _, orders, gateway = _build()
        session = _session()
        orchestrator.begin_checkout(session)

        order, channel = orchestrator.open_payment_channel(session, PAYMENT_METHODS[0])

        self.assertEqual(session.step, "awaiting_payment")
        self.assertEqual(session.payment_invoice_id, channel.reference)
        self.assertEqual(session.payment_method, "qris")
        self.assertIsNotNone(channel.image_url)
        self.assertEqual(orders.find_by_payment_reference(channel.reference).order_id, order.order_id)
        self.assertEqual(gateway.check_status(channel.reference).amount, 15800)

    def test_virtual_account_channel(self) -> None:
        orchestrator, _, _, _ = _build()
        session = _session()
        orchestrator.begin_checkout(session)
        session.step = "select_bank"

        _, channel = orchestrator.open_payment_channel(session, BANKS[0])

        self.assertEqual(channel.channel_type, "virtual_account")
        self.assertIn("account_number", channel.details)

    def test_gateway_failure_keeps_session_in_place(self) -> None:
        orchestrator, _, orders, gateway = _build()
        session = _session()
        orchestrator.begin_checkout(session)
        gateway.fail_next_create = True

        with self.assertRaises(GatewayError):
            orchestrator.open_payment_channel(session, PAYMENT_METHODS[1])

        self.assertEqual(session.step, "select_payment")
        self.assertIsNone(session.payment_invoice_id)
        self.assertIsNone(orders.get(session.order_id).payment_reference)

    def test_abandon_before_payment_cancels_and_releases(self) -> None:
        orchestrator, catalog, orders, _ = _build(stock=1)
        session = _session()
        order = orchestrator.begin_checkout(session).order
        self.assertEqual(catalog.stock("netflix"), 0)

        orchestrator.abandon_pending(session)

        self.assertIsNone(session.order_id)
        self.assertEqual(catalog.stock("netflix"), 1)
        self.assertEqual(orders.get(order.order_id).outcome, "cancelled")
        self.assertEqual(orders.claimed_outcome(order.order_id), "cancelled")

    def test_abandon_with_open_channel_keeps_order_pending(self) -> None:
        orchestrator, catalog, orders, _ = _build(stock=1)
        session = _session()
        order = orchestrator.begin_checkout(session).order
        orchestrator.open_payment_channel(session, PAYMENT_METHODS[0])

        orchestrator.abandon_pending(session)

        self.assertIsNone(session.order_id)
        self.assertEqual(catalog.stock("netflix"), 0)
        self.assertIsNone(orders.get(order.order_id).outcome)

    def test_rollback_undoes_every_checkout_side_effect(self) -> None:
        orchestrator, catalog, orders, _ = _build(stock=1, max_orders=1)
        session = _session("628111")
        session.promo_code, session.discount_percent = "HEMAT10", 10
        result = orchestrator.begin_checkout(session)
        self.assertTrue(result.promo_applied)

        orchestrator.rollback_checkout(result)

        self.assertEqual(catalog.stock("netflix"), 1)
        self.assertEqual(orders.get(result.order.order_id).outcome, "cancelled")
        self.assertEqual(orders.claimed_outcome(result.order.order_id), "cancelled")
        self.assertFalse(orchestrator.promos.is_used("HEMAT10", "628111"))

        retry = _session("628111")
        retry.promo_code, retry.discount_percent = "HEMAT10", 10
        again = orchestrator.begin_checkout(retry)
        self.assertTrue(again.promo_applied)
        self.assertEqual(catalog.stock("netflix"), 0)

    def test_rollback_leaves_a_claimed_order_alone(self) -> None:
        orchestrator, catalog, orders, _ = _build(stock=1)
        result = orchestrator.begin_checkout(_session("628111"))
        orders.claim(result.order.order_id, "delivered")

        orchestrator.rollback_checkout(result)

        self.assertEqual(catalog.stock("netflix"), 0)
        self.assertIsNone(orders.get(result.order.order_id).outcome)


if __name__ == "__main__":
    unittest.main()
