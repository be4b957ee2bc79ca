"""Supabase client access.

Every job and endpoint goes through ``get_client()`` so tests can swap the
process-wide client with ``set_client()``.
"""
import logging
import threading

from postgrest.exceptions import APIError
from supabase import Client, create_client

from config import require

logger = logging.getLogger(__name__)

_client = None
_lock = threading.Lock()


class StorageError(RuntimeError):
    """A database read or write failed."""


def get_client() -> Client:
    global _client
    if _client is None:
        with _lock:
            if _client is None:
                url = require('SUPABASE_URL')
                key = require('SUPABASE_SERVICE_ROLE_KEY')
                _client = create_client(url, key)
                logger.info('db.client_created', extra={'event': 'db_client_created'})
    return _client


def set_client(client):
    global _client
    _client = client


def rows(query) -> list:
    """Execute a query builder and return its rows, raising StorageError."""
    try:
        resp = query.execute()
    except APIError as e:
        raise StorageError(e.message or str(e)) from e
    if resp is None:
        return []
    return resp.data or []


def count(query) -> int:
    """Execute a ``select(..., count='exact', head=True)`` and return the count."""
    try:
        resp = query.execute()
    except APIError as e:
        raise StorageError(e.message or str(e)) from e
    return (resp.count if resp is not None else None) or 0


def fetch_all(build_query, page_size: int = 1000) -> list:
    """Page through a select with ``.range()`` until a short page comes back.

    ``build_query`` is called for each page and must return a fresh builder
    (supabase builders are single use).
    """
    out = []
    offset = 0
    while True:
        page = rows(build_query().range(offset, offset + page_size - 1))
        out.extend(page)
        if len(page) < page_size:
            break
        offset += page_size
    return out
