from __future__ import annotations

import re

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def mask_customer_id(customer_id: str | None) -> str:
    text = str(customer_id or "").strip()
    if not text:
        return "***"
    return f"***{text[-4:]}"


def sanitize_input(text: str | None, max_length: int = 1000) -> str:
    if not isinstance(text, str):
        return ""
    cleaned = _CONTROL_CHARS.sub("", text.replace("\x00", ""))
    return cleaned.strip()[: max(1, int(max_length))]


def normalize_phone(value: str | None) -> str:
    return re.sub(r"\D", "", str(value or ""))
