import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

from config import CONFIG, require
from db import StorageError, fetch_all, rows
from http_client import UpstreamError, run_in_batches
from polygon_handler import PolygonHandler

logger = logging.getLogger(__name__)

JOB_NAME = 'sync-forex-cards-polygon'
# Metals are missing from the forex snapshot; previous-day aggregates stand in
METAL_PAIRS = ['XAUUSD', 'XAGUSD', 'XPTUSD', 'XPDUSD']
UPDATE_BATCH = 50


def metal_as_snapshot(pair: str, bar: dict) -> dict:
    return {
        'ticker': f'C:{pair}',
        'day': {k: bar.get(k) for k in ('o', 'h', 'l', 'c', 'v', 'vw')},
        'lastQuote': {'a': bar.get('c'), 'b': bar['c'] * 0.9999 if bar.get('c') else None},
    }


def pip_multiplier(quote_currency: Optional[str]) -> int:
    return 100 if quote_currency == 'JPY' else 10000


def rate_update(card: dict, ticker: dict, now_iso: str) -> Optional[dict]:
    day = ticker.get('day') or {}
    prev = ticker.get('prevDay') or {}
    quote = ticker.get('lastQuote') or {}
    rate = quote.get('a') or quote.get('b') or day.get('c') or (ticker.get('min') or {}).get('c')
    if not rate:
        return None
    open_rate = day.get('o') or prev.get('c')
    change = change_pct = None
    if open_rate:
        change = rate - open_rate
        change_pct = change / open_rate * 100
    spread_pips = None
    if quote.get('a') and quote.get('b'):
        spread_pips = (quote['a'] - quote['b']) * pip_multiplier(card.get('quote_currency'))
    return {
        'rate': rate,
        'bid': quote.get('b') or None,
        'ask': quote.get('a') or None,
        'spread_pips': spread_pips,
        'open_24h': day.get('o') or None,
        'high_24h': day.get('h') or None,
        'low_24h': day.get('l') or None,
        'change_24h': change,
        'change_24h_pct': change_pct,
        'price_updated_at': now_iso,
    }


def _ticker_map(polygon: PolygonHandler, tickers: List[dict]) -> Dict[str, dict]:
    out: Dict[str, dict] = {}
    for pair in METAL_PAIRS:
        try:
            bar = polygon.previous_close(f'C:{pair}')
        except UpstreamError as e:
            logger.warning(f"Failed to fetch {pair}: {e}")
            continue
        if bar and bar.get('c'):
            out[pair] = metal_as_snapshot(pair, bar)
    for t in tickers:
        if t.get('ticker'):
            out[t['ticker']] = t
            out[t['ticker'].replace('C:', '')] = t
    return out


def run(client, params: Optional[Dict] = None) -> dict:
    start = time.time()
    polygon = PolygonHandler(require('POLYGON_API_KEY'))

    if datetime.now(timezone.utc).weekday() >= 5:
        logger.info('Weekend detected - forex markets may be closed')

    cards = fetch_all(lambda: client.table('forex_cards')
                      .select('id, pair, base_currency, quote_currency')
                      .eq('is_active', True))
    if not cards:
        return {'message': 'No forex cards to sync', 'stats': {'updated': 0}}

    try:
        tickers = polygon.forex_snapshot()
    except UpstreamError as e:
        if e.status in (403, 404):
            logger.info('Polygon returned no data - markets may be closed')
            return {'message': 'Markets appear to be closed', 'stats': {'updated': 0, 'market_status': 'closed'}}
        raise

    lookup = _ticker_map(polygon, tickers)
    now_iso = datetime.now(timezone.utc).isoformat()
    updates = []
    not_found = 0
    for card in cards:
        ticker = lookup.get(card['pair']) or lookup.get(f"C:{card['pair']}")
        data = rate_update(card, ticker, now_iso) if ticker else None
        if data is None:
            not_found += 1
            continue
        updates.append((card['id'], data))

    def _update(item):
        card_id, data = item
        try:
            rows(client.table('forex_cards').update(data).eq('id', card_id))
            return True
        except StorageError as e:
            logger.warning(f"forex update failed for {card_id}: {e}")
            return False

    results = run_in_batches(updates, _update, batch_size=UPDATE_BATCH, max_workers=CONFIG['FETCH_MAX_WORKERS'])
    updated = sum(1 for r in results if r)
    return {
        'stats': {
            'forex_cards': len(cards),
            'polygon_tickers': len(tickers),
            'updated': updated,
            'not_found': not_found,
            'market_status': 'open' if tickers else 'closed',
            'duration_ms': int((time.time() - start) * 1000),
        }
    }
