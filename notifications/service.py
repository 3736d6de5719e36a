from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from notifications.base import NotificationChannel
from notifications.factory import build_notification_channels

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class NotificationResult:
    sent_channels: list[str]
    failed_channels: dict[str, str]
    message: str | None = None
    skipped: bool = False


class AdminAlertService:
    """Fans an operator alert out to every configured channel; one failing channel never stops the rest."""

    def __init__(
        self,
        config: dict[str, Any],
        channel_builder: Callable[
            [dict[str, Any]],
            tuple[dict[str, NotificationChannel], dict[str, str]],
        ] = build_notification_channels,
    ) -> None:
        nconf = config.get("notifications", {})
        self.enabled = bool(nconf.get("enabled", False))
        self.prefix = str(nconf.get("message_prefix", "") or "")
        self._channels, self._build_errors = channel_builder(config)
        for name, reason in self._build_errors.items():
            logger.warning("notification-channel-unavailable: channel=%s reason=%s", name, reason)

    def notify_admins(self, message: str) -> NotificationResult:
        if not self.enabled or not message:
            logger.info("admin-alert-skipped: %s", message.splitlines()[0] if message else "")
            return NotificationResult(sent_channels=[], failed_channels={}, message=message, skipped=True)

        text = f"{self.prefix} {message}".strip() if self.prefix else message
        sent: list[str] = []
        failed = dict(self._build_errors)
        for name, notifier in self._channels.items():
            try:
                notifier.send(text)
                sent.append(name)
            except Exception as exc:  # noqa: BLE001
                failed[name] = str(exc)
                logger.error("admin-alert-failed: channel=%s error=%s", name, exc)
        return NotificationResult(sent_channels=sent, failed_channels=failed, message=text, skipped=False)
