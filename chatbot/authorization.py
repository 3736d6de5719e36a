from __future__ import annotations

from typing import Any, Iterable

from core.masking import normalize_phone


class AdminPolicy:
    """Allow-list of admin identities, compared on digits only."""

    def __init__(self, admin_ids: Iterable[str] = (), command_prefix: str = "/") -> None:
        self.command_prefix = command_prefix or "/"
        self._admin_ids = {normalize_phone(item) for item in admin_ids if normalize_phone(item)}

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "AdminPolicy":
        aconf = config.get("admin", {})
        raw = aconf.get("admin_ids", [])
        if isinstance(raw, str):
            raw = [item for item in raw.split(",")]
        return cls(
            admin_ids=[str(item) for item in raw if str(item).strip()] if isinstance(raw, list) else [],
            command_prefix=str(aconf.get("command_prefix", "/") or "/"),
        )

    @property
    def admin_ids(self) -> list[str]:
        return sorted(self._admin_ids)

    def is_admin(self, customer_id: str) -> bool:
        normalized = normalize_phone(customer_id)
        return bool(normalized) and normalized in self._admin_ids

    def is_admin_command(self, text: str) -> bool:
        return str(text or "").startswith(self.command_prefix)
