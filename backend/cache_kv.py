"""
Key/value cache backed by the ``cache_kv`` table.

Rows are ``(k, v, expires_at)``. Expiry is checked on read: an expired row
is deleted and reported as a miss, so nothing has to sweep the table.
Cache failures never fail the caller; they are logged and treated as a miss.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from db import StorageError, rows

logger = logging.getLogger(__name__)

TABLE = 'cache_kv'


def iso_now() -> str:
    """Returns current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def parse_iso(ts: Optional[str]) -> Optional[datetime]:
    """Parses a Postgres/ISO timestamp into an aware datetime, or None."""
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(str(ts).replace('Z', '+00:00'))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def expires_in(ttl_seconds: float) -> str:
    return (datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)).isoformat()


def is_expired(row: dict, now: Optional[datetime] = None) -> bool:
    expires_at = parse_iso(row.get('expires_at'))
    if expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now > expires_at


def status(row: Optional[dict]) -> str:
    """Returns 'valid', 'expired' or 'missing' for a cache row."""
    if not row:
        return 'missing'
    return 'expired' if is_expired(row) else 'valid'


def get_row(client, key: str) -> Optional[dict]:
    """Raw row read with no expiry handling (diagnostics and news reads)."""
    try:
        found = rows(client.table(TABLE).select('k, v, expires_at').eq('k', key).limit(1))
    except StorageError as e:
        logger.warning('cache.read_error', extra={'event': 'cache_read_error', 'key': key, 'error': str(e)})
        return None
    return found[0] if found else None


def get(client, key: str) -> Any:
    row = get_row(client, key)
    if row is None:
        return None
    if is_expired(row):
        delete(client, key)
        return None
    return row.get('v')


def set(client, key: str, value: Any, ttl_seconds: float) -> None:
    payload = {'k': key, 'v': value, 'expires_at': expires_in(ttl_seconds)}
    try:
        rows(client.table(TABLE).upsert(payload, on_conflict='k'))
    except StorageError as e:
        logger.warning('cache.write_error', extra={'event': 'cache_write_error', 'key': key, 'error': str(e)})


def delete(client, key: str) -> None:
    try:
        rows(client.table(TABLE).delete().eq('k', key))
    except StorageError as e:
        logger.warning('cache.delete_error', extra={'event': 'cache_delete_error', 'key': key, 'error': str(e)})


def increment_counter(client, key: str, ttl_seconds: float = 86400) -> int:
    """Bump a ``{"count": n}`` counter and return the new value.

    Read-then-write: two overlapping invocations may observe the same count,
    which only means one tier rotation step is repeated.
    """
    current = get(client, key) or {}
    count = int(current.get('count', 0)) + 1 if isinstance(current, dict) else 1
    set(client, key, {'count': count}, ttl_seconds)
    return count


def load_cursor(client, key: str) -> dict:
    state = get(client, key)
    return state if isinstance(state, dict) else {}


def save_cursor(client, key: str, state: dict, ttl_seconds: float) -> None:
    set(client, key, {**state, 'updated_at': iso_now()}, ttl_seconds)
