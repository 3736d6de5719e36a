from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_SAFE_PRODUCT_ID = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


@dataclass(slots=True, frozen=True)
class Credential:
    raw: str
    email: str | None = None
    password: str | None = None


class CredentialStoreProtocol(Protocol):
    def fetch(self, product_id: str) -> Credential | None: ...

    def count(self, product_id: str) -> int: ...


class FileCredentialStore(CredentialStoreProtocol):
    """Pre-provisioned credentials, one per line in ``<base_dir>/<product_id>.txt``.

    ``fetch`` pops the first non-empty line and rewrites the file atomically.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)
        self._lock = threading.Lock()

    def fetch(self, product_id: str) -> Credential | None:
        path = self._path(product_id)
        if path is None:
            return None
        with self._lock:
            if not path.exists():
                logger.warning("credentials-file-missing: product=%s", product_id)
                return None
            lines = [line.strip() for line in path.read_text(encoding="utf-8").splitlines()]
            lines = [line for line in lines if line]
            if not lines:
                logger.warning("credentials-exhausted: product=%s", product_id)
                return None
            first, remaining = lines[0], lines[1:]
            _atomic_write(path, "".join(f"{line}\n" for line in remaining))
        return parse_credential(first)

    def count(self, product_id: str) -> int:
        path = self._path(product_id)
        if path is None or not path.exists():
            return 0
        with self._lock:
            return sum(1 for line in path.read_text(encoding="utf-8").splitlines() if line.strip())

    def add(self, product_id: str, lines: list[str]) -> int:
        path = self._path(product_id)
        if path is None:
            raise ValueError(f"invalid product id: {product_id}")
        cleaned = [line.strip() for line in lines if line.strip()]
        with self._lock:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            existing = path.read_text(encoding="utf-8") if path.exists() else ""
            if existing and not existing.endswith("\n"):
                existing += "\n"
            _atomic_write(path, existing + "".join(f"{line}\n" for line in cleaned))
        return len(cleaned)

    def _path(self, product_id: str) -> Path | None:
        key = str(product_id or "").strip().lower()
        if not _SAFE_PRODUCT_ID.match(key):
            return None
        return self.base_dir / f"{key}.txt"


def parse_credential(line: str) -> Credential:
    text = str(line or "").strip()
    separator = "|" if "|" in text else ":"
    parts = text.split(separator)
    if len(parts) >= 2 and parts[0].strip() and parts[1].strip():
        return Credential(raw=text, email=parts[0].strip(), password=parts[1].strip())
    return Credential(raw=text)


def _atomic_write(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
