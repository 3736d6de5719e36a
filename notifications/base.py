from __future__ import annotations

import json
from typing import Any, Protocol
from urllib import error, request


class NotificationError(RuntimeError):
    pass


class NotificationChannel(Protocol):
    name: str

    def send(self, message: str) -> None:
        ...


class HttpJsonClient(Protocol):
    def post_json(self, url: str, payload: dict[str, Any], headers: dict[str, str] | None = None) -> None:
        ...


class UrllibHttpJsonClient:
    def __init__(self, timeout_sec: float = 10.0) -> None:
        self.timeout_sec = float(timeout_sec)

    def post_json(self, url: str, payload: dict[str, Any], headers: dict[str, str] | None = None) -> None:
        req = request.Request(url=url, data=json.dumps(payload, ensure_ascii=False).encode("utf-8"), method="POST")
        req.add_header("Content-Type", "application/json; charset=utf-8")
        for key, value in (headers or {}).items():
            req.add_header(key, value)
        try:
            with request.urlopen(req, timeout=self.timeout_sec) as resp:
                status = int(getattr(resp, "status", 200))
        except error.HTTPError as exc:
            raise NotificationError(f"webhook rejected alert: status={exc.code}") from exc
        except error.URLError as exc:
            raise NotificationError(f"webhook unreachable: {exc}") from exc
        if status >= 400:
            raise NotificationError(f"webhook rejected alert: status={status}")
