from __future__ import annotations

import unittest
from unittest import mock

from payments.gateway_factory import create_payment_gateway
from payments.mock_gateway import MockPaymentGateway
from payments.xendit_client import XenditInvoiceGateway
from store.fallback_store import FallbackKeyValueStore
from store.memory_store import InMemoryKeyValueStore
from store.store_factory import create_kv_store


class _DummyDynamoStore:
    def __init__(self, **kwargs: object) -> None:
        self.kwargs = kwargs


class StoreFactoryTest(unittest.TestCase):
    def test_default_backend_is_memory(self) -> None:
        self.assertIsInstance(create_kv_store({}), InMemoryKeyValueStore)

    def test_dynamodb_backend_is_wrapped_with_local_fallback(self) -> None:
        config = {
            "store": {
                "backend": "dynamodb",
                "dynamodb": {"table_name": "shop-kv", "region": "ap-southeast-3", "endpoint_url": ""},
            }
        }
        with mock.patch("store.store_factory.DynamoKeyValueStore", _DummyDynamoStore):
            store = create_kv_store(config)

        self.assertIsInstance(store, FallbackKeyValueStore)
        self.assertEqual(
            store.primary.kwargs,
            {"table_name": "shop-kv", "region_name": "ap-southeast-3", "endpoint_url": None},
        )

    def test_dynamodb_backend_without_fallback(self) -> None:
        config = {"store": {"backend": "dynamodb", "local_fallback": False}}
        with mock.patch("store.store_factory.DynamoKeyValueStore", _DummyDynamoStore):
            store = create_kv_store(config)
        self.assertIsInstance(store, _DummyDynamoStore)

    def test_unknown_backend(self) -> None:
        with self.assertRaises(ValueError):
            create_kv_store({"store": {"backend": "redis"}})


class GatewayFactoryTest(unittest.TestCase):
    def test_default_is_mock(self) -> None:
        self.assertIsInstance(create_payment_gateway({}), MockPaymentGateway)

    def test_xendit(self) -> None:
        gateway = create_payment_gateway(
            {"payment": {"gateway": "xendit", "xendit": {"secret_key": "xnd", "timeout_sec": 5}}}
        )
        self.assertIsInstance(gateway, XenditInvoiceGateway)
        self.assertEqual(gateway.timeout_sec, 5.0)

    def test_unknown_gateway(self) -> None:
        with self.assertRaises(ValueError):
            create_payment_gateway({"payment": {"gateway": "stripe"}})


if __name__ == "__main__":
    unittest.main()
