from __future__ import annotations

import json
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Mapping

_DEFAULT_PRICE = 15800

DEFAULT_CONFIG: dict[str, Any] = {
    "shop": {
        "name": "Premium Shop",
        "about": "We sell premium streaming accounts and virtual cards with instant delivery.",
        "contact": "Reply here during business hours (09:00-21:00 WIB).",
    },
    "catalog": {
        "default_price": _DEFAULT_PRICE,
        "products": [
            {
                "id": "netflix",
                "name": "Netflix Premium Account (1 Month)",
                "price": _DEFAULT_PRICE,
                "description": "Full HD streaming, 4 screens",
                "stock": 0,
                "category": "premium",
            },
            {
                "id": "spotify",
                "name": "Spotify Premium Account (1 Month)",
                "price": _DEFAULT_PRICE,
                "description": "Ad-free music, offline download",
                "stock": 0,
                "category": "premium",
            },
            {
                "id": "youtube",
                "name": "YouTube Premium Account (1 Month)",
                "price": _DEFAULT_PRICE,
                "description": "Ad-free videos, background play",
                "stock": 0,
                "category": "premium",
            },
            {
                "id": "disney",
                "name": "Disney+ Premium Account (1 Month)",
                "price": _DEFAULT_PRICE,
                "description": "HD streaming, all content",
                "stock": 0,
                "category": "premium",
            },
            {
                "id": "vcc-basic",
                "name": "Virtual Credit Card - Basic",
                "price": _DEFAULT_PRICE,
                "description": "Pre-loaded $10 balance",
                "stock": 0,
                "category": "vcc",
            },
            {
                "id": "vcc-standard",
                "name": "Virtual Credit Card - Standard",
                "price": _DEFAULT_PRICE,
                "description": "Pre-loaded $25 balance",
                "stock": 0,
                "category": "vcc",
            },
        ],
    },
    "session": {
        "ttl_minutes": 30,
        "sweep_interval_seconds": 300,
        "max_message_length": 1000,
        "wishlist_ttl_days": 90,
    },
    "rate_limit": {
        "max_messages_per_minute": 20,
        "message_window_seconds": 60,
        "max_orders_per_day": 5,
        "order_window_seconds": 86400,
        "error_cooldown_seconds": 60,
    },
    "store": {
        "backend": "memory",
        "local_fallback": True,
        "dynamodb": {
            "region": None,
            "table_name": "shopbot-kv",
            "endpoint_url": None,
        },
    },
    "orders": {
        "retention_days": 30,
    },
    "payment": {
        "gateway": "mock",
        "webhook_token": None,
        "disabled_methods": [],
        "xendit": {
            "secret_key": None,
            "api_base_url": "https://api.xendit.co",
            "timeout_sec": 15,
            "invoice_duration_seconds": 86400,
            "success_redirect_url": None,
        },
        "mock": {
            "image_base_url": "https://example.invalid/qr",
        },
    },
    "promo": {
        "codes": {},
    },
    "admin": {
        "command_prefix": "/",
        "admin_ids": [],
    },
    "delivery": {
        "credentials_dir": "products_data",
    },
    "transport": {
        "api_base_url": None,
        "access_token": None,
        "send_path": "/messages",
        "signing_secret": None,
        "timeout_sec": 10,
    },
    "notifications": {
        "enabled": False,
        "channels": [],
        "message_prefix": "[shopbot]",
        "timeout_sec": 10,
        "slack": {
            "webhook_url": None,
        },
        "discord": {
            "webhook_url": None,
        },
    },
    "logging": {
        "level": "INFO",
        "audit_log_path": None,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 8000,
        "chat_webhook_path": "/webhook/chat",
        "payment_webhook_path": "/webhook/payment",
    },
}

# environment variable -> (section, key); values are strings unless listed in _LIST_ENV
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "SHOPBOT_STORE_BACKEND": ("store", "backend"),
    "SHOPBOT_DYNAMODB_TABLE": ("store", "dynamodb", "table_name"),
    "SHOPBOT_DYNAMODB_REGION": ("store", "dynamodb", "region"),
    "SHOPBOT_PAYMENT_GATEWAY": ("payment", "gateway"),
    "XENDIT_SECRET_KEY": ("payment", "xendit", "secret_key"),
    "XENDIT_CALLBACK_TOKEN": ("payment", "webhook_token"),
    "SHOPBOT_ADMIN_IDS": ("admin", "admin_ids"),
    "SHOPBOT_TRANSPORT_URL": ("transport", "api_base_url"),
    "SHOPBOT_TRANSPORT_TOKEN": ("transport", "access_token"),
    "SHOPBOT_TRANSPORT_SECRET": ("transport", "signing_secret"),
    "SHOPBOT_CREDENTIALS_DIR": ("delivery", "credentials_dir"),
    "SHOPBOT_LOG_LEVEL": ("logging", "level"),
}
_LIST_ENV = {"SHOPBOT_ADMIN_IDS"}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: str | None = None) -> dict[str, Any]:
    if not config_path:
        return deepcopy(DEFAULT_CONFIG)

    path = Path(config_path)
    if not path.exists():
        return deepcopy(DEFAULT_CONFIG)

    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return deepcopy(DEFAULT_CONFIG)

    if path.suffix.lower() == ".json":
        loaded = json.loads(text)
    else:
        import yaml

        loaded = yaml.safe_load(text)
    data = loaded if isinstance(loaded, dict) else {}
    return deep_merge(deepcopy(DEFAULT_CONFIG), data)


def apply_env_overrides(config: dict[str, Any], environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    env = os.environ if environ is None else environ
    result = deepcopy(config)
    for name, path in ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw is None or not raw.strip():
            continue
        value: Any = [item.strip() for item in raw.split(",") if item.strip()] if name in _LIST_ENV else raw.strip()
        cursor = result
        for key in path[:-1]:
            nested = cursor.get(key)
            if not isinstance(nested, dict):
                nested = {}
                cursor[key] = nested
            cursor = nested
        cursor[path[-1]] = value
    return result
