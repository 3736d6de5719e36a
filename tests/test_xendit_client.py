from __future__ import annotations

import base64
import io
import json
import unittest
from unittest import mock
from urllib import error

from core.errors import GatewayError
from payments.gateway_interface import normalize_gateway_status
from payments.xendit_client import XenditInvoiceGateway


def _response(payload: object) -> mock.MagicMock:
    resp = mock.MagicMock()
    resp.__enter__.return_value.read.return_value = json.dumps(payload).encode("utf-8")
    return resp


class NormalizeStatusTest(unittest.TestCase):
    def test_mapping(self) -> None:
        self.assertEqual(normalize_gateway_status("PAID"), "succeeded")
        self.assertEqual(normalize_gateway_status("settled"), "succeeded")
        self.assertEqual(normalize_gateway_status("EXPIRED"), "expired")
        self.assertEqual(normalize_gateway_status("VOIDED"), "failed")
        self.assertEqual(normalize_gateway_status("PENDING"), "pending")
        self.assertEqual(normalize_gateway_status(None), "pending")


class XenditInvoiceGatewayTest(unittest.TestCase):
    def test_create_channel_posts_invoice(self) -> None:
        gateway = XenditInvoiceGateway(secret_key="xnd_test", success_redirect_url="https://shop.example/thanks")
        with mock.patch("payments.xendit_client.request.urlopen") as urlopen:
            urlopen.return_value = _response(
                {"id": "inv-1", "status": "PENDING", "invoice_url": "https://checkout.xendit.co/inv-1", "expiry_date": "2026-03-02"}
            )
            channel = gateway.create_channel(
                amount=15800,
                order_id="ORD-1767225600000-6789",
                channel_type="ewallet",
                customer_meta={"customer_id": "628123456789", "method_code": "DANA"},
            )

        self.assertEqual(channel.reference, "inv-1")
        self.assertEqual(channel.checkout_url, "https://checkout.xendit.co/inv-1")
        req = urlopen.call_args.args[0]
        self.assertEqual(req.full_url, "https://api.xendit.co/v2/invoices")
        self.assertEqual(req.get_method(), "POST")
        token = base64.b64encode(b"xnd_test:").decode("ascii")
        self.assertEqual(req.get_header("Authorization"), f"Basic {token}")
        body = json.loads(req.data.decode("utf-8"))
        self.assertEqual(body["external_id"], "ORD-1767225600000-6789")
        self.assertEqual(body["amount"], 15800)
        self.assertEqual(body["payment_methods"], ["DANA"])
        self.assertEqual(body["success_redirect_url"], "https://shop.example/thanks")

    def test_check_status(self) -> None:
        gateway = XenditInvoiceGateway(secret_key="xnd_test")
        with mock.patch("payments.xendit_client.request.urlopen") as urlopen:
            urlopen.return_value = _response({"id": "inv-1", "status": "SETTLED", "amount": 15800, "paid_amount": 15800})
            status = gateway.check_status("inv-1")

        self.assertEqual(status.status, "succeeded")
        self.assertEqual(status.amount, 15800)
        self.assertEqual(status.raw_status, "SETTLED")
        self.assertEqual(urlopen.call_args.args[0].full_url, "https://api.xendit.co/v2/invoices/inv-1")

    def test_http_error_becomes_gateway_error(self) -> None:
        gateway = XenditInvoiceGateway(secret_key="xnd_test")
        http_error = error.HTTPError(
            url="https://api.xendit.co/v2/invoices",
            code=400,
            msg="Bad Request",
            hdrs=None,
            fp=io.BytesIO(b'{"error_code":"API_VALIDATION_ERROR"}'),
        )
        with mock.patch("payments.xendit_client.request.urlopen", side_effect=http_error):
            with self.assertRaises(GatewayError) as ctx:
                gateway.check_status("inv-1")
        self.assertIn("API_VALIDATION_ERROR", str(ctx.exception))

    def test_connection_error_becomes_gateway_error(self) -> None:
        gateway = XenditInvoiceGateway(secret_key="xnd_test")
        with mock.patch("payments.xendit_client.request.urlopen", side_effect=error.URLError("timed out")):
            with self.assertRaises(GatewayError):
                gateway.create_channel(15800, "ORD-1", "qris", {})

    def test_missing_secret_key(self) -> None:
        with self.assertRaises(GatewayError):
            XenditInvoiceGateway(secret_key="").check_status("inv-1")

    def test_missing_invoice_id(self) -> None:
        gateway = XenditInvoiceGateway(secret_key="xnd_test")
        with mock.patch("payments.xendit_client.request.urlopen", return_value=_response({"status": "PENDING"})):
            with self.assertRaises(GatewayError):
                gateway.create_channel(15800, "ORD-1", "qris", {"method_code": "QRIS"})


if __name__ == "__main__":
    unittest.main()
