"""
Supabase Tool - Attempt records in Supabase (PostgreSQL via PostgREST)

Handles the two login-attempt tables:
- login_attempts_ip     (key column: ip_address)
- login_attempts_email  (key column: email)

All calls are synchronous (the supabase client is synchronous); async
callers go through asyncio.to_thread. Every failure is
raised as StoreUnavailable so callers can fail open.

Usage:
    from config.loader import get_config
    from login_guard.tools.supabase_tool import SupabaseAttemptStore

    store = SupabaseAttemptStore(get_config())
    record = store.get(AttemptKind.IP, "1.2.3.4")
"""

import logging
from typing import Dict, Any, List, Optional, Callable
from datetime import datetime, timezone

from supabase import create_client, Client

from config.database import SupabaseTables
from login_guard.services.attempt_store import (
    AttemptKind,
    AttemptRecord,
    AttemptStore,
    StoreUnavailable,
)
from login_guard.utils.circuit_breaker import CircuitBreaker, supabase_circuit
from login_guard.utils.retry_utils import retry_on_network_error

logger = logging.getLogger(__name__)


# ==================== Client Cache ====================
# Cache Supabase clients to avoid reinitializing on every request
_supabase_client_cache: Dict[str, Client] = {}


def get_cached_supabase_client(supabase_url: str, supabase_key: str) -> Optional[Client]:
    """Get or create a cached Supabase client"""
    cache_key = f"{supabase_url}:{supabase_key[-8:]}"

    if cache_key not in _supabase_client_cache:
        try:
            _supabase_client_cache[cache_key] = create_client(supabase_url, supabase_key)
            logger.info(f"Supabase client created and cached for {supabase_url}")
        except Exception as e:
            logger.error(f"Failed to create Supabase client: {e}")
            return None

    return _supabase_client_cache.get(cache_key)


def to_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a UTC ISO-8601 string with a Z suffix"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a PostgREST timestamptz into an aware UTC datetime"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class SupabaseAttemptStore(AttemptStore):
    """Attempt store backed by two Supabase tables"""

    backend_name = "supabase"

    def __init__(
        self,
        config,
        client: Optional[Client] = None,
        circuit: Optional[CircuitBreaker] = None,
    ):
        """
        Initialize Supabase attempt store with configuration

        Args:
            config: GuardConfig instance
            client: Pre-built Supabase client (defaults to the cached client)
            circuit: Circuit breaker guarding calls (defaults to the shared one)
        """
        self.config = config
        self.tables = {
            AttemptKind.IP: config.ip_table,
            AttemptKind.EMAIL: config.email_table,
        }
        self.circuit = circuit or supabase_circuit

        self.client = client or get_cached_supabase_client(
            config.supabase_url,
            config.supabase_service_key or config.supabase_anon_key,
        )
        if not self.client:
            logger.warning("Supabase client unavailable, every store call will fail open")

        self._with_retry = retry_on_network_error(
            max_attempts=config.store_retry_attempts,
            min_wait=0.25,
            max_wait=2,
        )(lambda query: query())

    # ==================== Helpers ====================

    def _table(self, kind: AttemptKind) -> str:
        return self.tables[kind]

    def _key_column(self, kind: AttemptKind) -> str:
        return SupabaseTables.key_column(self._table(kind))

    def _columns(self, kind: AttemptKind) -> str:
        return ",".join((self._key_column(kind),) + SupabaseTables.RECORD_COLUMNS)

    def _execute(self, operation: str, query: Callable[[], Any]) -> Any:
        """Run a PostgREST query through the circuit breaker and retry policy"""
        if not self.client:
            raise StoreUnavailable(f"Supabase client not configured ({operation})")
        if not self.circuit.can_execute():
            raise StoreUnavailable(f"Supabase circuit open, skipped {operation}")

        try:
            result = self._with_retry(query)
        except Exception as e:
            self.circuit.record_failure()
            raise StoreUnavailable(f"Supabase {operation} failed: {e}") from e

        self.circuit.record_success()
        return result

    def _to_row(self, kind: AttemptKind, record: AttemptRecord) -> Dict[str, Any]:
        return {
            self._key_column(kind): record.key,
            'attempt_count': record.attempt_count,
            'first_attempt': to_timestamp(record.first_attempt),
            'last_attempt': to_timestamp(record.last_attempt),
            'is_locked': record.is_locked,
            'lockout_until': to_timestamp(record.lockout_until),
            'updated_at': to_timestamp(record.updated_at or record.last_attempt),
        }

    def _from_row(self, kind: AttemptKind, row: Dict[str, Any]) -> AttemptRecord:
        last_attempt = parse_timestamp(row.get('last_attempt'))
        return AttemptRecord(
            key=row[self._key_column(kind)],
            attempt_count=int(row.get('attempt_count') or 0),
            first_attempt=parse_timestamp(row.get('first_attempt')) or last_attempt,
            last_attempt=last_attempt,
            is_locked=bool(row.get('is_locked')),
            lockout_until=parse_timestamp(row.get('lockout_until')),
            updated_at=parse_timestamp(row.get('updated_at')),
        )

    # ==================== Record Operations ====================

    def get(self, kind: AttemptKind, key: str) -> Optional[AttemptRecord]:
        table = self._table(kind)
        result = self._execute(
            f"select from {table}",
            lambda: self.client.table(table)
                .select(self._columns(kind))
                .eq(self._key_column(kind), key)
                .limit(1)
                .execute()
        )
        if not result.data:
            return None
        return self._from_row(kind, result.data[0])

    def upsert(self, kind: AttemptKind, record: AttemptRecord) -> None:
        table = self._table(kind)
        row = self._to_row(kind, record)
        self._execute(
            f"upsert into {table}",
            lambda: self.client.table(table)
                .upsert(row, on_conflict=self._key_column(kind))
                .execute()
        )

    def delete(self, kind: AttemptKind, key: str) -> None:
        table = self._table(kind)
        self._execute(
            f"delete from {table}",
            lambda: self.client.table(table)
                .delete()
                .eq(self._key_column(kind), key)
                .execute()
        )

    def update_lockout(
        self,
        kind: AttemptKind,
        key: str,
        is_locked: bool,
        lockout_until: Optional[datetime],
        updated_at: Optional[datetime] = None,
    ) -> None:
        table = self._table(kind)
        patch = {
            'is_locked': is_locked,
            'lockout_until': to_timestamp(lockout_until),
        }
        if updated_at is not None:
            patch['updated_at'] = to_timestamp(updated_at)
        self._execute(
            f"update lockout in {table}",
            lambda: self.client.table(table)
                .update(patch)
                .eq(self._key_column(kind), key)
                .execute()
        )

    # ==================== Admin Operations ====================

    def list_recent(self, kind: AttemptKind, limit: int = 100) -> List[AttemptRecord]:
        table = self._table(kind)
        result = self._execute(
            f"list {table}",
            lambda: self.client.table(table)
                .select(self._columns(kind))
                .order('last_attempt', desc=True)
                .limit(limit)
                .execute()
        )
        return [self._from_row(kind, row) for row in (result.data or [])]

    def delete_stale(self, kind: AttemptKind, cutoff: datetime, now: datetime) -> int:
        table = self._table(kind)
        now_str = to_timestamp(now)
        result = self._execute(
            f"cleanup {table}",
            lambda: self.client.table(table)
                .delete()
                .lt('last_attempt', to_timestamp(cutoff))
                .or_(f"lockout_until.is.null,lockout_until.lte.{now_str}")
                .execute()
        )
        removed = len(result.data or [])
        if removed:
            logger.info(f"Removed {removed} stale rows from {table}")
        return removed

    def is_healthy(self) -> bool:
        """Check if the Supabase tables are reachable"""
        try:
            self._execute(
                "health check",
                lambda: self.client.table(self.tables[AttemptKind.IP])
                    .select("attempt_count")
                    .limit(1)
                    .execute()
            )
            return True
        except StoreUnavailable:
            return False
