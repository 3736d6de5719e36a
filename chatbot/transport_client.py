from __future__ import annotations

import json
import logging
from typing import Any
from urllib import error, request

from core.masking import mask_customer_id
from core.models import OutboundMessage

logger = logging.getLogger(__name__)


class TransportApiError(RuntimeError):
    pass


class HttpTransportClient:
    """Pushes text to customers through the chat transport's send endpoint."""

    def __init__(
        self,
        api_base_url: str,
        access_token: str,
        send_path: str = "/messages",
        timeout_sec: float = 10.0,
    ) -> None:
        self.api_base_url = (api_base_url or "").rstrip("/")
        self.access_token = (access_token or "").strip()
        self.send_path = send_path if send_path.startswith("/") else f"/{send_path}"
        self.timeout_sec = float(timeout_sec)

    def push(self, to: str, text: str, image_url: str | None = None) -> None:
        if not self.api_base_url:
            raise TransportApiError("transport.api_base_url is required")
        target = (to or "").strip()
        if not target:
            raise TransportApiError("push target is empty")
        payload: dict[str, Any] = {"to": target, "text": text[:4096]}
        if image_url:
            payload["image_url"] = image_url
        self._post_json(self.send_path, payload)

    def dispatch(self, messages: list[OutboundMessage]) -> list[str]:
        """Send every message to every recipient; returns one error string per failed send."""
        errors: list[str] = []
        for message in messages:
            for recipient in message.recipients:
                try:
                    self.push(recipient, message.text)
                except TransportApiError as exc:
                    logger.error("transport-push-failed: to=%s error=%s", mask_customer_id(recipient), exc)
                    errors.append(str(exc))
        return errors

    def _post_json(self, path: str, payload: dict[str, Any]) -> None:
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        req = request.Request(url=f"{self.api_base_url}{path}", data=data, method="POST")
        req.add_header("Content-Type", "application/json; charset=utf-8")
        if self.access_token:
            req.add_header("Authorization", f"Bearer {self.access_token}")
        try:
            with request.urlopen(req, timeout=self.timeout_sec) as resp:
                status = int(getattr(resp, "status", 200))
                if status >= 400:
                    raise TransportApiError(f"transport api error: status={status}")
        except error.HTTPError as exc:
            body = ""
            try:
                body = exc.read().decode("utf-8", errors="ignore")
            except Exception:
                pass
            raise TransportApiError(f"transport api error: status={exc.code} body={body}") from exc
        except error.URLError as exc:
            raise TransportApiError(f"transport api connection error: {exc}") from exc
