from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, TypeVar

from core.errors import SessionConflictError
from core.masking import mask_customer_id
from core.models import Session
from sessions.state_machine import STEP_MENU, is_known_step
from store.kv_interface import KeyValueStoreProtocol

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:"

T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Per-customer conversation state kept in the key-value store.

    Updates go through ``mutate``: an in-process lock per customer serializes
    local callers, and a compare-and-set on the stored document detects writers
    in other processes.
    """

    def __init__(
        self,
        kv_store: KeyValueStoreProtocol,
        ttl_minutes: int = 30,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.kv_store = kv_store
        self.ttl_seconds = max(60, int(ttl_minutes) * 60)
        self._clock = clock
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def lock(self, customer_id: str) -> threading.RLock:
        with self._locks_guard:
            found = self._locks.get(customer_id)
            if found is None:
                found = threading.RLock()
                self._locks[customer_id] = found
            return found

    def get(self, customer_id: str) -> Session:
        customer_id = str(customer_id or "").strip()
        with self.lock(customer_id):
            raw = self.kv_store.get(_session_key(customer_id))
            session = self._decode(customer_id, raw)
            if raw is None:
                self.kv_store.set_if_absent(_session_key(customer_id), self._encode(session), self.ttl_seconds)
            return session

    def mutate(self, customer_id: str, fn: Callable[[Session], T], attempts: int = 3) -> T:
        """Apply ``fn`` to the customer's session and persist the result atomically.

        If ``fn`` raises, nothing is written. ``SessionConflictError`` is raised when
        another writer keeps winning the compare-and-set.
        """
        customer_id = str(customer_id or "").strip()
        key = _session_key(customer_id)
        with self.lock(customer_id):
            for _ in range(max(1, int(attempts))):
                raw = self.kv_store.get(key)
                session = self._decode(customer_id, raw)
                result = fn(session)
                session.last_activity = self._clock().isoformat()
                if self.kv_store.compare_and_set(key, raw, self._encode(session), self.ttl_seconds):
                    return result
                logger.info("session-cas-retry: customer=%s", mask_customer_id(customer_id))
        raise SessionConflictError(f"session update conflict: customer={mask_customer_id(customer_id)}")

    def touch(self, customer_id: str) -> None:
        """Refresh ``last_activity`` and the TTL without changing anything else."""
        self.mutate(customer_id, lambda session: None)

    def reset(self, customer_id: str) -> None:
        self.mutate(customer_id, lambda session: session.reset())

    def delete(self, customer_id: str) -> None:
        with self.lock(customer_id):
            self.kv_store.delete(_session_key(customer_id))

    def find_by_order_id(self, order_id: str) -> Session | None:
        target = str(order_id or "").strip()
        if not target:
            return None
        for session in self._iter_sessions():
            if session.order_id == target:
                return session
        return None

    def list_customer_ids(self) -> list[str]:
        return [key[len(SESSION_KEY_PREFIX):] for key in self.kv_store.scan_prefix(SESSION_KEY_PREFIX)]

    def sweep_expired(self) -> int:
        cutoff = self._clock() - timedelta(seconds=self.ttl_seconds)
        removed = 0
        for session in self._iter_sessions():
            if _parse_iso(session.last_activity) > cutoff:
                continue
            with self.lock(session.customer_id):
                current = self.kv_store.get(_session_key(session.customer_id))
                if current is None:
                    continue
                latest = self._decode(session.customer_id, current)
                if _parse_iso(latest.last_activity) > cutoff:
                    continue
                self.kv_store.delete(_session_key(session.customer_id))
                removed += 1
        with self._locks_guard:
            live = set(self.list_customer_ids())
            for customer_id in list(self._locks):
                if customer_id not in live:
                    self._locks.pop(customer_id, None)
        if removed:
            logger.info("session-sweep: removed=%s", removed)
        return removed

    def _iter_sessions(self) -> list[Session]:
        out: list[Session] = []
        for key, raw in self.kv_store.scan_prefix(SESSION_KEY_PREFIX).items():
            out.append(self._decode(key[len(SESSION_KEY_PREFIX):], raw))
        return out

    def _decode(self, customer_id: str, raw: str | None) -> Session:
        if raw is None:
            return Session(customer_id=customer_id, last_activity=self._clock().isoformat())
        try:
            payload: Any = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("session-decode-failed: customer=%s", mask_customer_id(customer_id))
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        payload["customer_id"] = customer_id
        session = Session.from_dict(payload)
        if not is_known_step(session.step):
            session.reset()
            session.step = STEP_MENU
        return session

    @staticmethod
    def _encode(session: Session) -> str:
        return json.dumps(session.to_dict(), ensure_ascii=False, sort_keys=True)


def _session_key(customer_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{customer_id}"


def _parse_iso(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
