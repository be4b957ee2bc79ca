"""
Read-only merged news feed.

Only reads the cache entries populated by the news cron jobs; never calls a
provider. Entries past their expiry are still served; their cache status in
the metadata reads "expired".
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import cache_kv

logger = logging.getLogger(__name__)

POLYGON_CACHE_KEY = 'polygon_news_unified_cache'
LUNARCRUSH_CACHE_KEY = 'lunarcrush_news_cache'
RSS_CACHE_KEY = 'news_fetch:v1:limit=100'
CATEGORIES = ('crypto', 'stocks', 'trump')
MAX_PER_CATEGORY = 50
TRACKING_PARAMS = {'utm_source', 'utm_medium', 'utm_campaign', 'ref'}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def canonicalize_url(url: Optional[str]) -> str:
    url = url or ''
    try:
        parts = urlsplit(url)
    except ValueError:
        return url.lower().strip()
    if not parts.scheme or not parts.netloc:
        return url.lower().strip()
    query = urlencode([(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in TRACKING_PARAMS])
    path = parts.path or '/'
    return urlunsplit((parts.scheme, parts.netloc, path, query, parts.fragment)).lower().rstrip('/')


def normalize(item: dict, default_source_type: Optional[str] = None) -> dict:
    out = dict(item)
    out['publishedAt'] = item.get('publishedAt') or item.get('published_at')
    out['imageUrl'] = item.get('imageUrl') or item.get('image_url')
    out['sourceType'] = item.get('sourceType') or default_source_type
    return out


def dedupe(items: List[dict]) -> List[dict]:
    seen = set()
    out = []
    for item in items:
        key = canonicalize_url(item.get('url'))
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def merge_sources(*sources: List[dict]) -> List[dict]:
    """Earlier sources win on duplicate URLs."""
    merged = dedupe([item for source in sources for item in source])
    merged.sort(key=lambda i: cache_kv.parse_iso(i.get('publishedAt')) or _EPOCH, reverse=True)
    return merged


def _items(payload: Optional[dict], category: str, source_type: Optional[str]) -> List[dict]:
    return dedupe([normalize(i, source_type) for i in (payload or {}).get(category) or []])


def get_cached_news(client) -> Dict:
    entries = {key: cache_kv.get_row(client, key) for key in (POLYGON_CACHE_KEY, LUNARCRUSH_CACHE_KEY, RSS_CACHE_KEY)}
    polygon = (entries[POLYGON_CACHE_KEY] or {}).get('v') or {}
    lunarcrush = (entries[LUNARCRUSH_CACHE_KEY] or {}).get('v') or {}
    rss = (entries[RSS_CACHE_KEY] or {}).get('v') or {}
    statuses = {key: cache_kv.status(row) for key, row in entries.items()}
    logger.info(f"Cache status - polygon_unified: {statuses[POLYGON_CACHE_KEY]}, "
                f"lunarcrush: {statuses[LUNARCRUSH_CACHE_KEY]}, rss: {statuses[RSS_CACHE_KEY]}")

    out = {}
    for category in CATEGORIES:
        # LunarCrush carries no trump feed
        lc = _items(lunarcrush, category, None) if category != 'trump' else []
        merged = merge_sources(lc, _items(polygon, category, 'polygon'), _items(rss, category, 'rss'))
        out[category] = merged[:MAX_PER_CATEGORY]

    out['metadata'] = {
        'source': 'cache_only',
        'polygon_unified_cache': statuses[POLYGON_CACHE_KEY],
        'polygon_fetched_at': polygon.get('fetched_at'),
        'polygon_articles_count': polygon.get('articles_count'),
        'lunarcrush_cache': statuses[LUNARCRUSH_CACHE_KEY],
        'rss_cache': statuses[RSS_CACHE_KEY],
        'rss_articles_count': sum(len(rss.get(c) or []) for c in CATEGORIES),
        'api_calls_made': 0,
    }
    return out
