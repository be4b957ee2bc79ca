"""Admin diagnostics: API quota usage, data freshness and pipeline coverage."""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import api_usage
from cache_kv import parse_iso
from db import count, rows

logger = logging.getLogger(__name__)

# (name, table, sync job, filters, fresh minutes, stale minutes)
FRESHNESS_SOURCES = [
    ('Crypto (All)', 'token_cards', 'sync-token-cards-lunarcrush', {}, 10, 60),
    ('Crypto (Polygon)', 'token_cards', 'sync-token-cards-polygon', {'polygon_supported': True}, 5, 30),
    ('Forex', 'forex_cards', 'sync-forex-cards-polygon', {}, 5, 30),
]

# Coverage label -> column that must be non-null on an active card
COVERAGE_COLUMNS = {
    'withPrice': 'price_usd',
    'withLunarcrushPrice': 'lunarcrush_id',
    'withCoingeckoPrice': 'coingecko_id',
    'withGalaxyScore': 'galaxy_score',
    'withTopPosts': 'top_posts',
    'withAISummary': 'ai_summary',
    'withTechnicals': 'rsi_14',
    'withLogo': 'logo_url',
    'withMarketCap': 'market_cap',
    'withContracts': 'contracts',
}

SOURCE_TIMESTAMPS = [
    ('polygon', 'polygon_price_updated_at', 'polygon_supported', True),
    ('lunarcrush', 'lunarcrush_price_updated_at', 'lunarcrush_id', None),
    ('coingecko', 'coingecko_price_updated_at', 'coingecko_id', None),
]

_SEVERITY = {'fresh': 0, 'stale': 1, 'critical': 2, 'missing': 2}


def freshness_status(age_minutes: Optional[float], fresh: float, stale: float) -> str:
    if age_minutes is None:
        return 'missing'
    if age_minutes < fresh:
        return 'fresh'
    if age_minutes < stale:
        return 'stale'
    return 'critical'


def _latest(client, table: str, column: str, filters: Dict) -> Optional[str]:
    query = client.table(table).select(column)
    for key, value in filters.items():
        query = query.eq(key, value)
    found = rows(query.not_.is_(column, 'null').order(column, desc=True).limit(1))
    return found[0].get(column) if found else None


def data_freshness(client, now: Optional[datetime] = None) -> Dict:
    now = now or datetime.now(timezone.utc)
    sources: List[Dict] = []
    for name, table, job, filters, fresh, stale in FRESHNESS_SOURCES:
        latest = parse_iso(_latest(client, table, 'updated_at', filters))
        age = round((now - latest).total_seconds() / 60, 1) if latest else None
        sources.append({
            'name': name,
            'table': table,
            'sync_function': job,
            'last_update': latest.isoformat() if latest else None,
            'age_minutes': age,
            'status': freshness_status(age, fresh, stale),
            'thresholds': {'fresh': fresh, 'stale': stale},
        })
    overall = max((s['status'] for s in sources), key=lambda s: _SEVERITY[s], default='fresh')
    if overall == 'missing':
        overall = 'critical'
    return {'sources': sources, 'overall': overall, 'checked_at': now.isoformat()}


def pipeline_health(client) -> Dict:
    def _active():
        return client.table('token_cards').select('id', count='exact', head=True).eq('is_active', True)

    coverage = {'total': count(_active())}
    coverage['withPolygonPrice'] = count(_active().eq('polygon_supported', True))
    for label, column in COVERAGE_COLUMNS.items():
        coverage[label] = count(_active().not_.is_(column, 'null'))

    last_sync = {}
    for source, column, flag, value in SOURCE_TIMESTAMPS:
        query = client.table('token_cards').select(column)
        query = query.eq(flag, value) if value is not None else query.not_.is_(flag, 'null')
        found = rows(query.not_.is_(column, 'null').order(column, desc=True).limit(1))
        last_sync[source] = found[0].get(column) if found else None

    total = coverage['total'] or 1
    percentages = {k: round(v / total * 100, 1) for k, v in coverage.items() if k != 'total'}
    return {'coverage': coverage, 'percentages': percentages, 'last_sync': last_sync}


def rate_limits(client) -> Dict:
    return api_usage.usage_report(client)
