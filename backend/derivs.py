"""Derivatives snapshot (funding + liquidations) with a per-client rate limit."""
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import cache_kv
from coinglass_handler import CoinGlassHandler
from config import CONFIG

logger = logging.getLogger(__name__)

MAX_SYMBOLS = 10
SYMBOL_RE = re.compile(r'^[A-Z0-9]{1,10}$')


class DerivsRequestError(ValueError):
    """Bad ``symbols`` input; carries the JSON body for the 400 response."""

    def __init__(self, body: dict):
        super().__init__(body.get('error'))
        self.body = body


def parse_symbols(raw: Optional[str]) -> List[str]:
    if not raw:
        raise DerivsRequestError({'error': 'symbols parameter required'})
    symbols = [s.strip().upper() for s in raw.split(',')]
    if len(symbols) > MAX_SYMBOLS:
        raise DerivsRequestError({
            'error': f'Too many symbols requested. Maximum {MAX_SYMBOLS} allowed.',
            'requested': len(symbols),
            'max': MAX_SYMBOLS,
        })
    invalid = [s for s in symbols if not SYMBOL_RE.match(s)]
    if invalid:
        raise DerivsRequestError({
            'error': 'Invalid symbol format',
            'invalidSymbols': invalid,
            'validFormat': 'Alphanumeric, 1-10 characters',
        })
    return symbols


def check_rate_limit(client, identifier: str, max_requests: int, window_seconds: int,
                     now: Optional[float] = None) -> Tuple[bool, int]:
    """Sliding window of request timestamps (ms) kept in cache_kv.

    Returns ``(allowed, remaining)``. cache_kv already degrades read/write
    failures to a miss, which makes the limiter fail open.
    """
    key = f'ratelimit:derivs:{identifier}'
    now_ms = (now if now is not None else time.time()) * 1000
    state = cache_kv.get(client, key) or {}
    recent = [ts for ts in state.get('requests', []) if now_ms - ts < window_seconds * 1000]
    if len(recent) >= max_requests:
        return False, 0
    recent.append(now_ms)
    cache_kv.set(client, key, {'requests': recent}, window_seconds)
    return True, max_requests - len(recent)


def _placeholder(symbol: str, timestamp: str) -> dict:
    return {
        'symbol': symbol,
        'fundingRate': 0.0,
        'liquidations24h': {'long': 0.0, 'short': 0.0, 'total': 0.0},
        'timestamp': timestamp,
        'source': 'placeholder',
    }


def fetch_derivatives(symbols: List[str]) -> List[dict]:
    timestamp = datetime.now(timezone.utc).isoformat()
    api_key = CONFIG['COINGLASS_API_KEY']
    if not api_key:
        logger.info('No CoinGlass API key found, returning placeholder data')
        return [_placeholder(s, timestamp) for s in symbols]

    handler = CoinGlassHandler(api_key)

    def _one(symbol):
        try:
            row = handler.derivatives(symbol)
        except Exception as e:
            logger.error(f"Error fetching CoinGlass data for {symbol}: {e}")
            row = {**_placeholder(symbol, timestamp), 'source': 'error'}
        row['timestamp'] = timestamp
        return row

    with ThreadPoolExecutor(max_workers=min(len(symbols), MAX_SYMBOLS) or 1) as ex:
        return list(ex.map(_one, symbols))


def get_derivs(client, symbols: List[str]) -> Dict:
    cache_key = f"derivs:{','.join(sorted(symbols))}"
    cached = cache_kv.get(client, cache_key)
    if cached:
        logger.info('Returning cached derivatives data')
        return cached
    result = {
        'derivatives': fetch_derivatives(symbols),
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'cached': False,
    }
    cache_kv.set(client, cache_key, result, CONFIG['DERIVS_CACHE_TTL'])
    return result
