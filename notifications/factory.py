from __future__ import annotations

from typing import Any

from notifications.base import HttpJsonClient, NotificationChannel, UrllibHttpJsonClient
from notifications.channels import AdminChatNotifier, DiscordWebhookNotifier, PushClient, SlackWebhookNotifier


def build_notification_channels(
    config: dict[str, Any],
    http_client: HttpJsonClient | None = None,
    push_client: PushClient | None = None,
    admin_ids: list[str] | None = None,
) -> tuple[dict[str, NotificationChannel], dict[str, str]]:
    nconf = config.get("notifications", {})
    selected = nconf.get("channels", [])
    if not isinstance(selected, list):
        selected = []

    client = http_client or UrllibHttpJsonClient(timeout_sec=float(nconf.get("timeout_sec", 10)))
    channels: dict[str, NotificationChannel] = {}
    errors: dict[str, str] = {}

    for raw in selected:
        name = str(raw).strip().lower()
        if not name or name in channels or name in errors:
            continue

        if name in ("slack", "discord"):
            webhook = _str_from_dict(nconf.get(name, {}), "webhook_url")
            if not webhook:
                errors[name] = f"notifications.{name}.webhook_url is required"
                continue
            notifier_cls = SlackWebhookNotifier if name == "slack" else DiscordWebhookNotifier
            channels[name] = notifier_cls(webhook_url=webhook, http_client=client)
            continue

        if name == "chat":
            if push_client is None:
                errors[name] = "chat transport is not configured"
                continue
            channels[name] = AdminChatNotifier(admin_ids=list(admin_ids or []), push_client=push_client)
            continue

        errors[name] = f"unsupported notification channel: {name}"

    return channels, errors


def _str_from_dict(value: Any, key: str) -> str:
    if not isinstance(value, dict):
        return ""
    return str(value.get(key, "") or "").strip()
