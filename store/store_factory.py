from __future__ import annotations

from typing import Any

from store.dynamo_store import DynamoKeyValueStore
from store.fallback_store import FallbackKeyValueStore
from store.kv_interface import KeyValueStoreProtocol
from store.memory_store import InMemoryKeyValueStore


def create_kv_store(config: dict[str, Any]) -> KeyValueStoreProtocol:
    store_conf = config.get("store", {})
    backend = str(store_conf.get("backend", "memory") or "memory").strip().lower()

    if backend == "dynamodb":
        ddb_conf = store_conf.get("dynamodb", {}) if isinstance(store_conf, dict) else {}
        primary = DynamoKeyValueStore(
            table_name=str(ddb_conf.get("table_name", "shopbot-kv")),
            region_name=_as_optional_str(ddb_conf.get("region")),
            endpoint_url=_as_optional_str(ddb_conf.get("endpoint_url")),
        )
        if bool(store_conf.get("local_fallback", True)):
            return FallbackKeyValueStore(primary)
        return primary

    if backend != "memory":
        raise ValueError(f"unsupported store backend: {backend}")
    return InMemoryKeyValueStore()


def _as_optional_str(value: Any) -> str | None:
    text = str(value or "").strip()
    return text or None
