"""Rule-based token summaries, processed in cursor-driven batches.

No model call is involved: the text is assembled from metrics already on
the card. A ``cache_kv`` cursor lets consecutive cron runs walk the whole
ranked universe one batch at a time.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import cache_kv
from db import StorageError, rows

logger = logging.getLogger(__name__)

JOB_NAME = 'sync-token-cards-lunarcrush-ai'
CURSOR_KEY = 'ai_summary_cursor'
CURSOR_TTL = 7 * 24 * 60 * 60
DEFAULT_BATCH_SIZE = 500
DEFAULT_MAX_RANK = 3000
SHORT_SUMMARY_MAX = 280

_COLUMNS = (
    'canonical_symbol, name, market_cap_rank, tier, sentiment, galaxy_score, galaxy_score_change, '
    'alt_rank, alt_rank_change, social_volume_24h, social_dominance, interactions_24h, '
    'change_24h_pct, change_7d_pct, change_30d_pct, categories, ai_summary_updated_at'
)


def sentiment_label(sentiment: float) -> str:
    if sentiment > 70:
        return 'strongly bullish'
    if sentiment > 55:
        return 'bullish'
    if sentiment < 30:
        return 'strongly bearish'
    if sentiment < 45:
        return 'bearish'
    return 'neutral'


def galaxy_label(score: float) -> str:
    if score > 70:
        return 'exceptional'
    if score > 60:
        return 'strong'
    if score > 50:
        return 'solid'
    if score > 40:
        return 'moderate'
    return 'weak'


def momentum_phrase(change_24h: float) -> str:
    if change_24h > 5:
        return f'surging {change_24h:.1f}% today'
    if change_24h > 2:
        return f'up {change_24h:.1f}% in 24h'
    if change_24h < -5:
        return f'dropping {abs(change_24h):.1f}% today'
    if change_24h < -2:
        return f'down {abs(change_24h):.1f}% in 24h'
    return 'trading sideways'


def trend_phrase(change_7d: float, change_30d: float) -> str:
    if change_7d > 10 and change_30d > 20:
        return 'Strong uptrend across all timeframes.'
    if change_7d < -10 and change_30d < -20:
        return 'Downtrend persisting across timeframes.'
    if change_7d > 0 and change_30d > 0:
        return 'Positive momentum building.'
    if change_7d < 0 and change_30d < 0:
        return 'Negative pressure continues.'
    return 'Mixed signals across timeframes.'


def social_phrase(volume: float) -> str:
    if volume > 100000:
        return f'Extremely high social activity with {volume / 1000:.0f}K+ mentions.'
    if volume > 50000:
        return f'Strong social engagement with {volume / 1000:.0f}K mentions.'
    if volume > 10000:
        return f'Active community discussion with {volume / 1000:.0f}K mentions.'
    if volume > 1000:
        return 'Moderate social volume.'
    return 'Quiet on social channels.'


def alt_rank_phrase(alt_rank: int, change: int) -> str:
    if 0 < alt_rank <= 20:
        return f'Top {alt_rank} AltRank indicates strong relative performance.'
    if change > 10:
        return f'AltRank improving significantly (+{change} positions).'
    if change < -10:
        return f'AltRank declining ({change} positions).'
    return ''


def rank_phrase(rank: int) -> str:
    if rank <= 10:
        return 'Top 10 cryptocurrency'
    if rank <= 50:
        return 'Top 50 asset'
    if rank <= 100:
        return 'Top 100 token'
    return f'Ranked #{rank}'


def generate_summary(token: dict) -> Tuple[str, str, list]:
    """Returns ``(summary, short_summary, themes)`` for one card."""
    symbol = token['canonical_symbol']
    name = token.get('name') or symbol
    sentiment = sentiment_label(token.get('sentiment') or 50)
    galaxy = token.get('galaxy_score') or 0
    momentum = momentum_phrase(token.get('change_24h_pct') or 0)
    trend = trend_phrase(token.get('change_7d_pct') or 0, token.get('change_30d_pct') or 0)
    volume = token.get('social_volume_24h') or 0
    alt = alt_rank_phrase(token.get('alt_rank') or 0, token.get('alt_rank_change') or 0)

    summary = (
        f'{name} ({symbol}) is currently {momentum} with {sentiment} market sentiment. '
        f'{rank_phrase(token.get("market_cap_rank") or 0)} with a {galaxy_label(galaxy)} Galaxy Score of {galaxy}. '
        f'{trend} {social_phrase(volume)}'
    )
    if alt:
        summary += f' {alt}'
    high_social = 'High social activity.' if volume > 10000 else ''
    short = f'{name} is {momentum} with {sentiment} sentiment. Galaxy Score: {galaxy}. {high_social} {trend}'
    themes = list(token.get('categories') or [])[:5]
    return summary, short[:SHORT_SUMMARY_MAX], themes


def _start_offset(client, params: Dict) -> int:
    if params.get('offset') is not None:
        logger.info(f"Using manual offset: {params['offset']}")
        return int(params['offset'])
    if params.get('resetCursor') or params.get('reset_cursor'):
        logger.info('Cursor reset requested, starting from 0')
        return 0
    cursor = cache_kv.load_cursor(client, CURSOR_KEY)
    return int(cursor.get('offset') or 0)


def run(client, params: Optional[Dict] = None) -> dict:
    params = params or {}
    start = time.time()
    batch_size = int(params.get('batchSize') or params.get('batch_size') or DEFAULT_BATCH_SIZE)
    max_rank = int(params.get('maxRank') or params.get('max_rank') or DEFAULT_MAX_RANK)
    offset = _start_offset(client, params)

    tokens = rows(
        client.table('token_cards')
        .select(_COLUMNS)
        .lte('market_cap_rank', max_rank)
        .not_.is_('canonical_symbol', 'null')
        .not_.is_('galaxy_score', 'null')
        .order('market_cap_rank')
        .range(offset, offset + batch_size - 1)
    )

    if not tokens:
        cache_kv.save_cursor(client, CURSOR_KEY, {'offset': 0, 'completedAt': cache_kv.iso_now()}, CURSOR_TTL)
        logger.info('Completed full cycle - cursor reset to 0')
        return {'message': 'Completed full cycle - all tokens processed', 'cycleComplete': True, 'offset': offset}

    updated = 0
    errors = 0
    for token in tokens:
        summary, short, themes = generate_summary(token)
        data = {
            'ai_summary': summary,
            'ai_summary_short': short,
            'key_themes': themes or None,
            'ai_summary_updated_at': datetime.now(timezone.utc).isoformat(),
            'ai_token_cost': 0,
        }
        try:
            rows(client.table('token_cards').update(data).eq('canonical_symbol', token['canonical_symbol']))
            updated += 1
        except StorageError as e:
            logger.warning(f"{token['canonical_symbol']}: Update failed - {e}")
            errors += 1

    has_more = len(tokens) == batch_size
    next_offset = offset + len(tokens) if has_more else 0
    cache_kv.save_cursor(client, CURSOR_KEY, {
        'offset': next_offset,
        'lastBatchSize': len(tokens),
        'totalProcessedThisCycle': offset + len(tokens),
    }, CURSOR_TTL)

    return {
        'processed': len(tokens),
        'updated': updated,
        'errors': errors,
        'durationMs': int((time.time() - start) * 1000),
        'currentOffset': offset,
        'nextOffset': next_offset,
        'hasMore': has_more,
        'cycleComplete': not has_more,
    }
