"""
Attempt Store - persistence for failed-login attempt records

Two independent keyed collections are kept: one keyed by client IP and one
keyed by target email. Every backend offers the same small surface:

    get(kind, key)            -> AttemptRecord or None
    upsert(kind, record)      -> create or replace by key
    delete(kind, key)         -> idempotent
    update_lockout(kind, ...) -> patch only the lockout fields and updated_at
    list_recent(kind, limit)  -> newest last_attempt first
    delete_stale(kind, ...)   -> housekeeping, returns rows removed

Backends:
    InMemoryAttemptStore  - single process (development, tests)
    SupabaseAttemptStore  - shared PostgREST tables (login_guard.tools.supabase_tool)

Usage:
    from login_guard.services.attempt_store import get_store, AttemptKind

    store = get_store()
    record = store.get(AttemptKind.EMAIL, "a@example.com")
"""

import copy
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class AttemptKind(str, Enum):
    """Which collection a record lives in"""
    IP = "ip"
    EMAIL = "email"


class AttemptStoreError(Exception):
    """Base class for attempt store failures"""


class StoreUnavailable(AttemptStoreError):
    """The backing store could not be reached or rejected the operation"""


@dataclass
class AttemptRecord:
    """Failed-attempt state for a single IP or email"""
    key: str
    attempt_count: int
    first_attempt: datetime
    last_attempt: datetime
    is_locked: bool = False
    lockout_until: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def first_failure(cls, key: str, now: datetime) -> "AttemptRecord":
        return cls(
            key=key,
            attempt_count=1,
            first_attempt=now,
            last_attempt=now,
            is_locked=False,
            lockout_until=None,
            updated_at=now,
        )

    def with_failure(self, now: datetime) -> "AttemptRecord":
        """Copy of this record with one more failure at `now`"""
        return replace(
            self,
            attempt_count=self.attempt_count + 1,
            last_attempt=now,
            updated_at=now,
        )


class AttemptStore:
    """Base class for attempt record storage"""

    backend_name = "base"

    def get(self, kind: AttemptKind, key: str) -> Optional[AttemptRecord]:
        raise NotImplementedError

    def upsert(self, kind: AttemptKind, record: AttemptRecord) -> None:
        raise NotImplementedError

    def delete(self, kind: AttemptKind, key: str) -> None:
        raise NotImplementedError

    def list_recent(self, kind: AttemptKind, limit: int = 100) -> List[AttemptRecord]:
        raise NotImplementedError

    def delete_stale(self, kind: AttemptKind, cutoff: datetime, now: datetime) -> int:
        """Remove records with last_attempt before cutoff and no active lockout"""
        raise NotImplementedError

    def update_lockout(
        self,
        kind: AttemptKind,
        key: str,
        is_locked: bool,
        lockout_until: Optional[datetime],
        updated_at: Optional[datetime] = None,
    ) -> None:
        """
        Patch only the lockout fields (and updated_at, when given) of an
        existing record.

        Absent records are left absent. Backends with partial updates should
        override this so a concurrent increment is never overwritten.
        """
        record = self.get(kind, key)
        if record is None:
            return
        self.upsert(kind, replace(
            record,
            is_locked=is_locked,
            lockout_until=lockout_until,
            updated_at=updated_at or record.updated_at,
        ))

    def is_healthy(self) -> bool:
        return True


class InMemoryAttemptStore(AttemptStore):
    """In-memory attempt storage (single process only)

    Thread-safe via threading.Lock; async callers reach it through
    asyncio.to_thread.
    """

    backend_name = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[AttemptKind, Dict[str, AttemptRecord]] = {
            AttemptKind.IP: {},
            AttemptKind.EMAIL: {},
        }

    def get(self, kind: AttemptKind, key: str) -> Optional[AttemptRecord]:
        with self._lock:
            record = self._records[kind].get(key)
            return copy.copy(record) if record else None

    def upsert(self, kind: AttemptKind, record: AttemptRecord) -> None:
        with self._lock:
            self._records[kind][record.key] = copy.copy(record)

    def delete(self, kind: AttemptKind, key: str) -> None:
        with self._lock:
            self._records[kind].pop(key, None)

    def update_lockout(
        self,
        kind: AttemptKind,
        key: str,
        is_locked: bool,
        lockout_until: Optional[datetime],
        updated_at: Optional[datetime] = None,
    ) -> None:
        with self._lock:
            record = self._records[kind].get(key)
            if record is None:
                return
            record.is_locked = is_locked
            record.lockout_until = lockout_until
            if updated_at is not None:
                record.updated_at = updated_at

    def list_recent(self, kind: AttemptKind, limit: int = 100) -> List[AttemptRecord]:
        with self._lock:
            records = sorted(
                self._records[kind].values(),
                key=lambda r: r.last_attempt,
                reverse=True,
            )
            return [copy.copy(r) for r in records[:limit]]

    def delete_stale(self, kind: AttemptKind, cutoff: datetime, now: datetime) -> int:
        with self._lock:
            stale = [
                key for key, record in self._records[kind].items()
                if record.last_attempt < cutoff
                and (record.lockout_until is None or record.lockout_until <= now)
            ]
            for key in stale:
                del self._records[kind][key]
            return len(stale)

    def clear(self):
        """Drop every record (tests and local resets)"""
        with self._lock:
            for records in self._records.values():
                records.clear()


# Global store instance
_store: Optional[AttemptStore] = None


def create_store(config=None) -> AttemptStore:
    """
    Build the store selected by configuration.

    Falls back to the in-memory store when Supabase is selected but no URL
    or key is configured, so a misconfigured deployment still throttles
    within a single process.
    """
    if config is None:
        from config.loader import get_config
        config = get_config()

    if config.store_backend == "supabase":
        key = config.supabase_service_key or config.supabase_anon_key
        if config.supabase_url and key:
            from login_guard.tools.supabase_tool import SupabaseAttemptStore
            return SupabaseAttemptStore(config)
        logger.warning("Supabase store selected but SUPABASE_URL/key missing, using in-memory store")

    logger.info("Using in-memory attempt store (set LOGIN_GUARD_STORE=supabase for shared state)")
    return InMemoryAttemptStore()


def get_store() -> AttemptStore:
    """Get or create the process-wide attempt store"""
    global _store
    if _store is None:
        _store = create_store()
    return _store


def set_store(store: Optional[AttemptStore]) -> None:
    """Replace the process-wide store (None resets to lazy creation)"""
    global _store
    _store = store
