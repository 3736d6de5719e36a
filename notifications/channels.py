from __future__ import annotations

from typing import Protocol

from notifications.base import HttpJsonClient, NotificationError


class PushClient(Protocol):
    def push(self, to: str, text: str, image_url: str | None = None) -> None: ...


class SlackWebhookNotifier:
    name = "slack"

    def __init__(self, webhook_url: str, http_client: HttpJsonClient) -> None:
        self.webhook_url = webhook_url.strip()
        self.http_client = http_client

    def send(self, message: str) -> None:
        if not self.webhook_url:
            raise NotificationError("slack webhook url is empty")
        self.http_client.post_json(self.webhook_url, {"text": message})


class DiscordWebhookNotifier:
    name = "discord"

    def __init__(self, webhook_url: str, http_client: HttpJsonClient) -> None:
        self.webhook_url = webhook_url.strip()
        self.http_client = http_client

    def send(self, message: str) -> None:
        if not self.webhook_url:
            raise NotificationError("discord webhook url is empty")
        self.http_client.post_json(self.webhook_url, {"content": message[:2000]})


class AdminChatNotifier:
    """Messages every admin on the allow-list through the chat transport."""

    name = "chat"

    def __init__(self, admin_ids: list[str], push_client: PushClient) -> None:
        self.admin_ids = [item for item in admin_ids if item]
        self.push_client = push_client

    def send(self, message: str) -> None:
        if not self.admin_ids:
            raise NotificationError("admin.admin_ids is empty")
        failures: list[str] = []
        for admin_id in self.admin_ids:
            try:
                self.push_client.push(admin_id, message)
            except Exception as exc:  # noqa: BLE001
                failures.append(str(exc))
        if len(failures) == len(self.admin_ids):
            raise NotificationError(f"chat alert failed for every admin: {failures[0]}")
