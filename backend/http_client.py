"""Shared HTTP plumbing for provider handlers.

A pooled ``requests.Session`` with urllib3 retry/backoff, one circuit breaker
per provider and a helper for bounded parallel batches with a pause between
batches (the way every sync job paces its third-party calls).
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import RequestException
from urllib3.util.retry import Retry

from config import CONFIG
from reliability import CircuitBreaker

logger = logging.getLogger(__name__)


class UpstreamError(RuntimeError):
    """A provider call failed (non-2xx, network error or open breaker)."""

    def __init__(self, provider: str, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.provider = provider
        self.status = status
        self.body = body

    @property
    def rate_limited(self) -> bool:
        return self.status == 429


def _build_session(retries: int) -> requests.Session:
    session = requests.Session()
    strategy = Retry(
        total=retries,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(['GET', 'POST']),
        backoff_factor=CONFIG['HTTP_RETRY_BACKOFF'],
        backoff_max=10,
        raise_on_status=False,
    )
    # Bursty batches should not exhaust urllib3's default pool of 10
    adapter = HTTPAdapter(
        pool_connections=16,
        pool_maxsize=CONFIG['HTTP_POOL_MAXSIZE'],
        max_retries=strategy,
        pool_block=True,
    )
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session


_SESSION = _build_session(CONFIG['HTTP_RETRIES'])
# Callers that run their own retry loop (and log each attempt) use this one
_PLAIN_SESSION = _build_session(0)

API_TIMEOUT: Tuple[int, int] = (CONFIG['API_TIMEOUT_CONNECT'], CONFIG['API_TIMEOUT_READ'])

_BREAKERS: Dict[str, CircuitBreaker] = {}
_BREAKERS_LOCK = threading.Lock()


def breaker(provider: str) -> CircuitBreaker:
    with _BREAKERS_LOCK:
        cb = _BREAKERS.get(provider)
        if cb is None:
            cb = CircuitBreaker(provider, CONFIG['CB_FAIL_THRESHOLD'], CONFIG['CB_RESET_SECONDS'])
            _BREAKERS[provider] = cb
        return cb


def breaker_snapshots() -> Dict[str, Dict[str, Any]]:
    with _BREAKERS_LOCK:
        names = list(_BREAKERS)
    return {name: _BREAKERS[name].snapshot() for name in names}


def send(method: str, url: str, *, provider: str, params=None, headers=None, json=None,
         timeout=None, stream: bool = False, retries: bool = True) -> requests.Response:
    """Issue a request through the provider's breaker; raise UpstreamError on non-2xx."""
    cb = breaker(provider)
    if not cb.allow():
        raise UpstreamError(provider, f'{provider} circuit open, retry in {cb.seconds_until_retry()}s')
    session = _SESSION if retries else _PLAIN_SESSION
    try:
        resp = session.request(method, url, params=params, headers=headers, json=json,
                               timeout=timeout or API_TIMEOUT, stream=stream)
    except RequestException as e:
        cb.record(None)
        logger.warning('http.network_error', extra={'event': 'http_network_error', 'provider': provider, 'error': str(e)})
        raise UpstreamError(provider, f'{provider} request failed: {e}') from e
    if resp.status_code >= 400:
        cb.record(resp.status_code)
        body = None if stream else resp.text[:500]
        logger.warning('http.upstream_error', extra={'event': 'http_upstream_error', 'provider': provider, 'status': resp.status_code})
        raise UpstreamError(provider, f'{provider} API error: {resp.status_code}', status=resp.status_code, body=body)
    cb.record(resp.status_code)
    return resp


def request_json(method: str, url: str, *, provider: str, params=None, headers=None, json=None,
                 timeout=None, retries: bool = True) -> Any:
    resp = send(method, url, provider=provider, params=params, headers=headers, json=json,
                timeout=timeout, retries=retries)
    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamError(provider, f'{provider} returned invalid JSON', status=resp.status_code) from e


def get_json(url: str, *, provider: str, params=None, headers=None, timeout=None, retries: bool = True) -> Any:
    return request_json('GET', url, provider=provider, params=params, headers=headers,
                        timeout=timeout, retries=retries)


def chunked(items: Iterable, size: int) -> List[list]:
    items = list(items)
    return [items[i:i + size] for i in range(0, len(items), size)]


def run_in_batches(items: Iterable, fn: Callable, batch_size: int, delay_seconds: float = 0.0,
                   max_workers: Optional[int] = None, sleep: Callable[[float], None] = time.sleep) -> list:
    """Apply ``fn`` to every item, one bounded parallel batch at a time.

    Results keep input order. An item whose call raises yields ``None``.
    """
    batches = chunked(items, batch_size)
    results: list = []
    workers = max(1, min(max_workers or batch_size, batch_size))
    for i, batch in enumerate(batches):
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futures = [ex.submit(fn, item) for item in batch]
            for item, fut in zip(batch, futures):
                try:
                    results.append(fut.result())
                except Exception as e:
                    logger.warning('batch.item_failed', extra={'event': 'batch_item_failed', 'item': str(item)[:80], 'error': str(e)})
                    results.append(None)
        if delay_seconds and i < len(batches) - 1:
            sleep(delay_seconds)
    return results
