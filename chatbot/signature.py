from __future__ import annotations

import hashlib
import hmac


def sign_transport_body(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_transport_signature(secret: str, body: bytes, signature: str | None) -> bool:
    key = (secret or "").strip()
    received = (signature or "").strip().lower()
    if not key or not received:
        return False
    return hmac.compare_digest(sign_transport_body(key, body), received)
