from __future__ import annotations

import json
import tempfile
import unittest
from copy import deepcopy
from pathlib import Path

from app.config import DEFAULT_CONFIG
from app.runtime import build_runtime
from core.models import CartItem, OutboundMessage
from delivery.credential_store import FileCredentialStore
from payments.channels import PAYMENT_METHODS
from payments.mock_gateway import MockPaymentGateway
from payments.signature import verify_callback_token
from store.memory_store import InMemoryKeyValueStore

TOKEN = "cb-token"


class _Sender:
    def __init__(self) -> None:
        self.sent: list[OutboundMessage] = []

    def dispatch(self, messages: list[OutboundMessage]) -> list[str]:
        self.sent.extend(messages)
        return []


class CallbackTokenTest(unittest.TestCase):
    def test_verify(self) -> None:
        self.assertTrue(verify_callback_token("abc", "abc"))
        self.assertFalse(verify_callback_token("abc", "abd"))
        self.assertFalse(verify_callback_token("", ""))
        self.assertFalse(verify_callback_token("abc", None))


class PaymentWebhookHandlerTest(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        (Path(tmp.name) / "netflix.txt").write_text("a@x.com|pw\n", encoding="utf-8")
        config = deepcopy(DEFAULT_CONFIG)
        config["payment"]["webhook_token"] = TOKEN
        for product in config["catalog"]["products"]:
            product["stock"] = 1
        self.gateway = MockPaymentGateway()
        self.runtime = build_runtime(
            config,
            kv_store=InMemoryKeyValueStore(),
            gateway=self.gateway,
            credentials=FileCredentialStore(tmp.name),
            channel_builder=lambda _: ({}, {}),
        )
        self.sender = _Sender()
        self.runtime.payment_webhook.sender = self.sender
        self.order_id, self.reference = self._place_order()

    def _place_order(self) -> tuple[str, str]:
        checkout = self.runtime.router.checkout

        def flow(session):  # type: ignore[no-untyped-def]
            session.step = "checkout"
            session.cart = [CartItem("netflix", "Netflix Premium Account (1 Month)", 15800)]
            order = checkout.begin_checkout(session).order
            _, channel = checkout.open_payment_channel(session, PAYMENT_METHODS[0])
            return order.order_id, channel.reference

        return self.runtime.session_store.mutate("628123456789", flow)

    def post(self, payload, token: str | None = TOKEN):  # type: ignore[no-untyped-def]
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        return self.runtime.payment_webhook.handle(body, token)

    def test_rejects_bad_token(self) -> None:
        status, payload = self.post({"id": self.reference, "status": "PAID"}, token="wrong")
        self.assertEqual(status, 401)
        self.assertFalse(payload["ok"])
        self.assertIsNone(self.runtime.orders.claimed_outcome(self.order_id))

    def test_paid_invoice_delivers_once(self) -> None:
        status, payload = self.post({"id": self.reference, "external_id": self.order_id, "status": "PAID"})

        self.assertEqual(status, 200)
        self.assertEqual(payload, {"received": True, "ok": True, "outcome": "delivered", "errors": []})
        self.assertEqual(len(self.sender.sent), 1)
        self.assertIn("a@x.com", self.sender.sent[0].text)

        status, payload = self.post({"id": self.reference, "status": "PAID"})
        self.assertEqual(status, 200)
        self.assertEqual(payload["outcome"], "delivered")
        self.assertEqual(len(self.sender.sent), 1)

    def test_nested_data_and_order_id_fallback(self) -> None:
        status, payload = self.post({"data": {"reference_id": "other", "order_id": self.order_id, "status": "EXPIRED"}})
        self.assertEqual(status, 200)
        self.assertEqual(payload["outcome"], "expired")
        self.assertEqual(self.runtime.catalog.stock("netflix"), 1)

    def test_pending_status_is_acknowledged_without_change(self) -> None:
        status, payload = self.post({"id": self.reference, "status": "PENDING"})
        self.assertEqual(status, 200)
        self.assertIsNone(payload["outcome"])
        self.assertIsNone(self.runtime.orders.claimed_outcome(self.order_id))

    def test_unknown_reference_and_bad_json_are_acknowledged(self) -> None:
        status, payload = self.post({"id": "nope", "status": "PAID"})
        self.assertEqual((status, payload["ok"]), (200, True))
        self.assertIsNone(payload["outcome"])

        status, payload = self.post(b"{not json")
        self.assertEqual((status, payload["ok"]), (200, False))

        status, payload = self.post([1, 2])
        self.assertEqual((status, payload["error"]), (200, "payload must be object"))


if __name__ == "__main__":
    unittest.main()
