import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

from api_usage import log_api_call
from coingecko_handler import CoinGeckoHandler
from config import CONFIG
from db import StorageError, rows
from http_client import UpstreamError, chunked

logger = logging.getLogger(__name__)

JOB_NAME = 'sync-token-cards-coingecko-prices'
MAX_TOKENS = 2000


def market_update(token: dict, coin: dict, now_iso: str) -> dict:
    return {
        'id': token['id'],
        # canonical_symbol keeps the row valid should the upsert take the insert path
        'canonical_symbol': token['canonical_symbol'],
        'coingecko_price_usd': coin.get('current_price'),
        'coingecko_volume_24h': coin.get('total_volume'),
        'coingecko_change_24h_pct': coin.get('price_change_percentage_24h'),
        'coingecko_high_24h': coin.get('high_24h'),
        'coingecko_low_24h': coin.get('low_24h'),
        'coingecko_price_updated_at': now_iso,
        'coingecko_market_cap': coin.get('market_cap'),
        'coingecko_market_cap_rank': coin.get('market_cap_rank'),
        'coingecko_circulating_supply': coin.get('circulating_supply'),
        'coingecko_total_supply': coin.get('total_supply'),
        'coingecko_max_supply': coin.get('max_supply'),
        'coingecko_ath_price': coin.get('ath'),
        'coingecko_ath_date': coin.get('ath_date'),
        'coingecko_atl_price': coin.get('atl'),
        'coingecko_atl_date': coin.get('atl_date'),
        'updated_at': now_iso,
    }


def _load_tokens(client) -> List[dict]:
    return rows(
        client.table('token_cards')
        .select('id, canonical_symbol, coingecko_id')
        .not_.is_('coingecko_id', 'null')
        .order('tier')
        .order('market_cap_rank')
        .limit(MAX_TOKENS)
    )


def run(client, params: Optional[Dict] = None) -> dict:
    start = time.time()
    gecko = CoinGeckoHandler(CONFIG['COINGECKO_API_KEY'])

    tokens = _load_tokens(client)
    if not tokens:
        return {'message': 'No tokens with CoinGecko IDs to sync', 'updated': 0}

    by_cg_id = {t['coingecko_id'].lower(): t for t in tokens if t.get('coingecko_id')}
    batches = chunked(list(by_cg_id), CoinGeckoHandler.MAX_IDS)
    logger.info(f"Will fetch {len(batches)} batches ({len(by_cg_id)} total coins)")

    updated = 0
    errors = 0
    for i, batch in enumerate(batches):
        try:
            coins = gecko.markets(batch)
        except UpstreamError as e:
            log_api_call(client, 'coingecko', JOB_NAME, False, f'HTTP {e.status}: {str(e.body or e)[:200]}')
            if e.rate_limited:
                logger.warning('Rate limited, stopping early')
                break
            errors += 1
            continue
        log_api_call(client, 'coingecko', JOB_NAME, True)

        now_iso = datetime.now(timezone.utc).isoformat()
        updates = []
        for coin in coins:
            token = by_cg_id.get(str(coin.get('id', '')).lower())
            if token:
                updates.append(market_update(token, coin, now_iso))

        for chunk in chunked(updates, CONFIG['UPSERT_CHUNK_SIZE']):
            try:
                rows(client.table('token_cards').upsert(chunk, on_conflict='id'))
                updated += len(chunk)
            except StorageError as e:
                logger.error(f"Upsert error: {e}")
                errors += len(chunk)
        logger.info(f"Batch {i + 1}/{len(batches)} complete: {len(updates)} updated")

        if i < len(batches) - 1:
            time.sleep(CONFIG['COINGECKO_BATCH_DELAY'])

    return {
        'updated': updated,
        'errors': errors,
        'totalCoins': len(by_cg_id),
        'batches': len(batches),
        'duration_ms': int((time.time() - start) * 1000),
    }
