from __future__ import annotations

import tempfile
import unittest
from copy import deepcopy
from pathlib import Path

from app.config import DEFAULT_CONFIG
from app.runtime import build_runtime
from chatbot.admin_commands import ADMIN_HELP
from core.models import CartItem, Order
from delivery.credential_store import FileCredentialStore
from payments.mock_gateway import MockPaymentGateway
from store.memory_store import InMemoryKeyValueStore

ADMIN = "+62 899-9000-111"


class AdminCommandHandlerTest(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        (Path(tmp.name) / "netflix.txt").write_text("a|1\nb|2\n", encoding="utf-8")
        config = deepcopy(DEFAULT_CONFIG)
        config["admin"]["admin_ids"] = "628999000111, 628999000222"
        for product in config["catalog"]["products"]:
            product["stock"] = 3
        self.runtime = build_runtime(
            config,
            kv_store=InMemoryKeyValueStore(),
            gateway=MockPaymentGateway(),
            credentials=FileCredentialStore(tmp.name),
            channel_builder=lambda _: ({}, {}),
        )

    def say(self, text: str, customer_id: str = ADMIN):  # type: ignore[no-untyped-def]
        return self.runtime.router.handle_message(customer_id, text)

    def test_unknown_command_shows_help(self) -> None:
        self.assertEqual(self.say("/help").text, ADMIN_HELP)

    def test_stock_report_flags_missing_credentials(self) -> None:
        report = self.say("/stock").text
        self.assertIn("- netflix: 3 / 2 (!)", report)
        self.assertIn("- spotify: 3 / 0 (!)", report)

    def test_set_stock(self) -> None:
        self.assertIn("set to 10", self.say("/stock netflix 10").text)
        self.assertEqual(self.runtime.catalog.stock("netflix"), 10)
        self.assertIn("Error:", self.say("/stock netflix -1").text)
        self.assertIn("Error:", self.say("/stock netflix lots").text)
        self.assertIn("Error:", self.say("/stock missing 1").text)

    def test_add_edit_remove_product(self) -> None:
        added = self.say("/addproduct hbo | HBO Max | 20.000 | HD streaming | 4 | premium")
        self.assertIn("Product added: HBO Max (hbo) Rp 20.000, stock 4.", added.text)
        self.assertEqual(self.runtime.catalog.get("hbo").unit_price, 20000)

        self.assertIn("Error:", self.say("/addproduct hbo | HBO | 1 | x | 1 | premium").text)
        self.assertIn("Error:", self.say("/addproduct broken").text)

        self.assertIn("Product updated", self.say("/editproduct hbo | price | 25000").text)
        self.assertEqual(self.runtime.catalog.get("hbo").unit_price, 25000)

        self.assertIn("Product removed", self.say("/removeproduct hbo").text)
        self.assertIsNone(self.runtime.catalog.get("hbo"))

    def test_approve_validates_order_id(self) -> None:
        self.assertIn("usage", self.say("/approve").text)
        self.assertIn("invalid order id format", self.say("/approve ORD-123").text)
        self.assertIn("order not found", self.say("/approve ORD-1767225600000-0001").text)

    def test_reject_validates_order_id(self) -> None:
        self.assertIn("usage: /reject", self.say("/reject").text)
        self.assertIn("invalid order id format", self.say("/reject nope").text)
        self.assertIn("order not found", self.say("/reject ORD-1767225600000-0001").text)

    def test_broadcast_targets_customers_only(self) -> None:
        self.runtime.router.handle_message("628111", "hi")
        self.runtime.router.handle_message("628222", "hi")

        response = self.say("/broadcast Flash sale today!")

        self.assertIn("2 customer(s)", response.text)
        self.assertEqual(sorted(response.outbound[0].recipients), ["628111", "628222"])
        self.assertEqual(response.outbound[0].text, "Flash sale today!")

    def test_stats_summarises_recent_orders(self) -> None:
        netflix = CartItem("netflix", "Netflix Premium", 15800)
        spotify = CartItem("spotify", "Spotify Premium", 15800)
        for order_id, items, outcome, created_at in (
            ("ORD-1767225600001-0111", [netflix, netflix], "delivered", None),
            ("ORD-1767225600002-0111", [spotify], None, None),
            ("ORD-1767225600003-0222", [spotify], "cancelled", None),
            ("ORD-1577836800000-0222", [spotify], "delivered", "2020-01-01T00:00:00+00:00"),
        ):
            order = Order(order_id, order_id[-4:], items, 15800 * len(items), 0, 15800 * len(items), outcome=outcome)
            if created_at:
                order.created_at = created_at
            self.assertTrue(self.runtime.orders.create(order))

        text = self.say("/stats").text

        self.assertIn("Sales (last 30 days)", text)
        self.assertIn("Orders: 3", text)
        self.assertIn("Completed: 1", text)
        self.assertIn("Pending: 1", text)
        self.assertIn("Closed unpaid: 1", text)
        self.assertIn("Revenue: Rp 31.600", text)
        self.assertIn("1. Netflix Premium - 2 sold, Rp 31.600", text)
        self.assertNotIn("Spotify", text)

        everything = self.say("/stats 3650").text
        self.assertIn("Orders: 4", everything)
        self.assertIn("Revenue: Rp 47.400", everything)
        self.assertIn("2. Spotify Premium - 1 sold, Rp 15.800", everything)

        self.assertIn("usage: /stats", self.say("/stats soon").text)

    def test_status(self) -> None:
        text = self.say("/status").text
        self.assertIn("Store: ok", text)
        self.assertIn("Products: 6", text)
        self.assertIn("Payment gateway: mock", text)


if __name__ == "__main__":
    unittest.main()
