"""Tiered Polygon price sync for ``token_cards``.

Each invocation bumps a call counter in ``cache_kv``; the counter decides
which tiers are refreshed and whether the (slower) indicator pass runs.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

import cache_kv
from config import CONFIG, require
from db import StorageError, rows
from http_client import run_in_batches
from polygon_handler import PolygonHandler
from technical_analysis import MIN_BARS, calculate_all
from tiers import technicals_due, tiers_for_call

logger = logging.getLogger(__name__)

JOB_NAME = 'sync-token-cards-polygon'
COUNTER_KEY = f'{JOB_NAME}:call_count'
OHLCV_BARS = 250


def _get(d: Optional[dict], key: str):
    return (d or {}).get(key)


def price_update(snap: dict, now_iso: str) -> Optional[dict]:
    """Map one Polygon snapshot ticker onto token_cards columns."""
    day = snap.get('day') or {}
    prev = snap.get('prevDay') or {}
    quote = snap.get('lastQuote') or {}
    price = _get(snap.get('lastTrade'), 'p') or day.get('c')
    if not price:
        return None
    open_price = day.get('o') or prev.get('c')
    change_pct = ((price - open_price) / open_price * 100) if open_price else None
    bid = quote.get('p')
    ask = quote.get('P')
    spread_pct = ((ask - bid) / ask * 100) if (ask and bid) else None
    volume = day.get('v')
    volume_usd = volume * (day.get('vw') or price) if volume else None
    return {
        'polygon_price_usd': price,
        'polygon_volume_24h': volume_usd,
        'polygon_change_24h_pct': change_pct,
        'polygon_high_24h': day.get('h'),
        'polygon_low_24h': day.get('l'),
        'polygon_price_updated_at': now_iso,
        'open_24h': open_price,
        'close_24h': day.get('c'),
        'vwap_24h': day.get('vw'),
        'bid_price': bid,
        'ask_price': ask,
        'spread_pct': spread_pct,
        'polygon_supported': True,
    }


def _load_tokens(client, tiers: List[int]) -> List[dict]:
    return rows(
        client.table('token_cards')
        .select('id, canonical_symbol, polygon_ticker, tier')
        .not_.is_('polygon_ticker', 'null')
        .in_('tier', tiers)
        .eq('is_active', True)
    )


def _update_card(client, token_id, data: dict) -> bool:
    try:
        rows(client.table('token_cards').update(data).eq('id', token_id))
        return True
    except StorageError as e:
        logger.warning(f"update failed for token {token_id}: {e}")
        return False


def _sync_technicals(client, polygon: PolygonHandler, tokens: List[dict], stats: dict) -> None:
    candidates = [t for t in tokens if t.get('tier') in (1, 2)][:CONFIG['TECHNICALS_MAX_TOKENS']]
    logger.info(f"Calculating technicals from OHLCV for {len(candidates)} tier 1-2 tokens")

    def _one(token):
        closes = polygon.close_series(token['polygon_ticker'], OHLCV_BARS)
        if not closes or len(closes) < MIN_BARS:
            return None
        data = calculate_all(closes)
        data['technicals_updated_at'] = datetime.now(timezone.utc).isoformat()
        data['technicals_source'] = 'polygon'
        return _update_card(client, token['id'], data)

    results = run_in_batches(candidates, _one,
                             batch_size=CONFIG['TECHNICALS_BATCH_SIZE'],
                             delay_seconds=CONFIG['TECHNICALS_BATCH_DELAY'])
    stats['technicals_updated'] = sum(1 for r in results if r)


def run(client, params: Optional[Dict] = None) -> dict:
    start = time.time()
    api_key = require('POLYGON_API_KEY')
    polygon = PolygonHandler(api_key)

    call_number = cache_kv.increment_counter(client, COUNTER_KEY, 86400)
    tiers = tiers_for_call(call_number)
    logger.info(f"Call #{call_number}: fetching tiers {tiers}")

    stats = {
        'call_number': call_number,
        'tiers_fetched': tiers,
        'tokens_queried': 0,
        'polygon_tickers': 0,
        'prices_updated': 0,
        'technicals_updated': 0,
        'technicals_fetched': False,
        'not_found': 0,
    }

    tokens = _load_tokens(client, tiers)
    stats['tokens_queried'] = len(tokens)
    if not tokens:
        stats['message'] = 'No tokens to sync'
        stats['duration_ms'] = int((time.time() - start) * 1000)
        return stats

    snapshot = polygon.crypto_snapshot()
    stats['polygon_tickers'] = len(snapshot)
    now_iso = datetime.now(timezone.utc).isoformat()

    updates = []
    for token in tokens:
        snap = snapshot.get(token['polygon_ticker'])
        data = price_update(snap, now_iso) if snap else None
        if data is None:
            stats['not_found'] += 1
            continue
        updates.append((token, data))

    results = run_in_batches(updates, lambda u: _update_card(client, u[0]['id'], u[1]),
                             batch_size=CONFIG['FETCH_BATCH_SIZE'])
    stats['prices_updated'] = sum(1 for r in results if r)

    if technicals_due(call_number):
        stats['technicals_fetched'] = True
        # only tokens Polygon actually carries
        _sync_technicals(client, polygon, [token for token, _ in updates], stats)

    stats['duration_ms'] = int((time.time() - start) * 1000)
    logger.info('sync.polygon.complete', extra={'event': 'sync_polygon_complete', 'prices_updated': stats['prices_updated'],
                                                'technicals_updated': stats['technicals_updated'], 'not_found': stats['not_found']})
    return stats
