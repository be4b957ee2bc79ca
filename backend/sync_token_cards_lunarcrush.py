"""LunarCrush jobs for ``token_cards``.

``run`` pulls the coin universe (identity, market, social and LunarCrush
price columns) and reconciles it against existing cards. ``run_enhanced``
refreshes topic feeds (AI summary, posts, news, creators) for the top 25.
"""
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from api_usage import log_api_call
from config import CONFIG, require
from db import StorageError, fetch_all, rows
from http_client import UpstreamError, chunked
from lunarcrush_handler import TOPIC_ENDPOINTS, LunarCrushHandler
from tiers import tier_for_rank

logger = logging.getLogger(__name__)

JOB_NAME = 'sync-token-cards-lunarcrush'
ENHANCED_JOB_NAME = 'sync-token-cards-lunarcrush-enhanced'
PAGE_SIZE = 1000
BLOCKED_SYMBOLS = {'TPT3'}
CHAIN_PRIORITY = ['ethereum', 'solana', 'binance-smart-chain', 'polygon', 'arbitrum', 'base', 'avalanche']

# Top 25 by market cap; fixed list so selection costs no queries
TOP_25_SYMBOLS = [
    'BTC', 'ETH', 'XRP', 'USDT', 'SOL',
    'BNB', 'DOGE', 'USDC', 'ADA', 'TRX',
    'HYPE', 'AVAX', 'LINK', 'SUI', 'XLM',
    'SHIB', 'TON', 'HBAR', 'BCH', 'DOT',
    'LTC', 'UNI', 'LEO', 'PEPE', 'NEAR',
]


# ---------------------------------------------------------------- contracts

def blockchains_to_contracts(blockchains) -> Dict[str, dict]:
    """``[{network, address, decimals}]`` -> ``{network: {address, decimals}}``."""
    contracts: Dict[str, dict] = {}
    if not isinstance(blockchains, list):
        return contracts
    for chain in blockchains:
        address = (chain or {}).get('address')
        if not address or address in ('0', '<nil>') or len(address) <= 5:
            continue
        network = (chain.get('network') or 'unknown').lower()
        contracts[network] = {'address': address, 'decimals': chain.get('decimals')}
    return contracts


def merge_contracts(existing: Optional[dict], incoming: dict) -> dict:
    """Add networks we have not seen; never overwrite a stored address."""
    merged = dict(existing or {})
    for network, data in incoming.items():
        merged.setdefault(network, data)
    return merged


def contract_addresses(contracts: Optional[dict]) -> List[str]:
    return [c['address'].lower() for c in (contracts or {}).values() if isinstance(c, dict) and c.get('address')]


def primary_chain(contracts: dict) -> Optional[str]:
    if not contracts:
        return None
    for chain in CHAIN_PRIORITY:
        if chain in contracts:
            return chain
    return next(iter(contracts))


def parse_categories(categories) -> Optional[List[str]]:
    if not categories:
        return None
    if isinstance(categories, list):
        return [c for c in categories if isinstance(c, str)]
    if isinstance(categories, str):
        return [c.strip() for c in categories.split(',') if c.strip()]
    return None


def _round(value):
    """Half-up rounding: 2.5 -> 3, -2.5 -> -2."""
    return int(math.floor(value + 0.5)) if value is not None else None


def card_data(coin: dict, now_iso: str) -> dict:
    symbol = (coin.get('symbol') or '').upper()
    rank = coin.get('market_cap_rank')
    galaxy = coin.get('galaxy_score')
    galaxy_prev = coin.get('galaxy_score_previous')
    alt_rank = coin.get('alt_rank')
    alt_prev = coin.get('alt_rank_previous')
    contracts = blockchains_to_contracts(coin.get('blockchains'))
    return {
        'canonical_symbol': symbol,
        'name': coin.get('name'),
        'logo_url': coin.get('logo') or coin.get('image'),
        'lunarcrush_id': int(coin['id']) if coin.get('id') is not None else None,
        'polygon_ticker': f'X:{symbol}USD',
        'categories': parse_categories(coin.get('categories')),
        'primary_chain': primary_chain(contracts),
        'market_cap': coin.get('market_cap'),
        'market_cap_rank': rank,
        'change_1h_pct': coin.get('percent_change_1h'),
        'change_7d_pct': coin.get('percent_change_7d'),
        'change_30d_pct': coin.get('percent_change_30d'),
        'volatility': coin.get('volatility'),
        'market_dominance': coin.get('market_dominance'),
        'circulating_supply': coin.get('circulating_supply'),
        'max_supply': coin.get('max_supply'),
        'galaxy_score': _round(galaxy),
        'galaxy_score_previous': _round(galaxy_prev),
        'galaxy_score_change': _round(galaxy - galaxy_prev) if galaxy is not None and galaxy_prev is not None else None,
        'alt_rank': alt_rank,
        'alt_rank_previous': alt_prev,
        # Positive means the rank improved
        'alt_rank_change': alt_prev - alt_rank if alt_rank is not None and alt_prev is not None else None,
        'sentiment': coin.get('sentiment'),
        'social_volume_24h': coin.get('social_volume_24h'),
        'social_dominance': coin.get('social_dominance'),
        'interactions_24h': coin.get('interactions_24h'),
        'social_updated_at': now_iso,
        'social_source': 'lunarcrush',
        'tier': tier_for_rank(rank),
        'tier_reason': 'market_cap' if rank else None,
        'lunarcrush_price_usd': coin.get('price'),
        'lunarcrush_volume_24h': coin.get('volume_24h'),
        'lunarcrush_change_24h_pct': coin.get('percent_change_24h'),
        'lunarcrush_high_24h': coin.get('high_24h') or None,
        'lunarcrush_low_24h': coin.get('low_24h') or None,
        'lunarcrush_price_updated_at': now_iso,
    }


# ----------------------------------------------------------------- universe

class CardIndex:
    """Lookups over existing cards for the three-step match."""

    def __init__(self, cards: List[dict]):
        self.by_lunarcrush_id: Dict[int, dict] = {}
        self.by_symbol: Dict[str, List[dict]] = {}
        self.by_address: Dict[str, dict] = {}
        for card in cards:
            if card.get('lunarcrush_id') is not None:
                self.by_lunarcrush_id[card['lunarcrush_id']] = card
            if card.get('canonical_symbol'):
                self.by_symbol.setdefault(card['canonical_symbol'].upper(), []).append(card)
            for addr in contract_addresses(card.get('contracts')):
                self.by_address[addr] = card

    def match(self, lunarcrush_id, symbol: str, addresses: List[str]):
        """Returns ``(card, how)``; ``how`` is 'id', 'address', 'symbol' or None."""
        if lunarcrush_id is not None and lunarcrush_id in self.by_lunarcrush_id:
            return self.by_lunarcrush_id[lunarcrush_id], 'id'
        for addr in addresses:
            if addr in self.by_address:
                return self.by_address[addr], 'address'
        for card in self.by_symbol.get(symbol, []):
            if not card.get('lunarcrush_id'):
                return card, 'symbol'
        return None, None


def dedupe_coins(coins: List[dict]) -> List[dict]:
    """First occurrence per symbol wins; pages are ordered by market cap."""
    seen = set()
    out = []
    for coin in coins:
        symbol = (coin.get('symbol') or '').upper()
        if not symbol or symbol in seen or symbol in BLOCKED_SYMBOLS:
            continue
        seen.add(symbol)
        out.append(coin)
    return out


def _fetch_universe(lunar: LunarCrushHandler, start_offset: int, max_rank: int) -> List[dict]:
    coins: List[dict] = []
    offset = start_offset
    while offset < max_rank:
        try:
            page = lunar.coins_page(offset, PAGE_SIZE)
        except UpstreamError as e:
            logger.warning(f"coins page at offset {offset} failed: {e}")
            break
        coins.extend(page)
        logger.info(f"Fetched {len(page)} coins at offset {offset}")
        if len(page) < PAGE_SIZE:
            break
        offset += PAGE_SIZE
        if offset < max_rank:
            time.sleep(CONFIG['LUNARCRUSH_PAGE_DELAY'])
    return coins


def _load_cards(client) -> List[dict]:
    return fetch_all(lambda: client.table('token_cards').select(
        'id, canonical_symbol, lunarcrush_id, contracts, polygon_supported, is_active'), PAGE_SIZE)


def run(client, params: Optional[Dict] = None) -> dict:
    params = params or {}
    start = time.time()
    api_key = require('LUNARCRUSH_API_KEY')
    lunar = LunarCrushHandler(api_key, on_call=lambda ok, err=None: log_api_call(client, 'lunarcrush', JOB_NAME, ok, err))

    start_offset = int(params.get('offset', 0))
    max_rank = int(params.get('max_rank', 3000))
    all_coins = _fetch_universe(lunar, start_offset, max_rank)
    coins = dedupe_coins(all_coins)
    logger.info(f"Total coins fetched: {len(all_coins)} ({len(coins)} after dedupe)")

    index = CardIndex(_load_cards(client))
    stats = {'fetched': len(all_coins), 'matched_by_id': 0, 'matched_by_address': 0,
             'matched_by_symbol': 0, 'updated': 0, 'created': 0, 'errors': 0}

    now_iso = datetime.now(timezone.utc).isoformat()
    updates = []
    inserts = []
    for coin in coins:
        try:
            data = card_data(coin, now_iso)
            incoming = blockchains_to_contracts(coin.get('blockchains'))
            card, how = index.match(data['lunarcrush_id'], data['canonical_symbol'], contract_addresses(incoming))
        except (TypeError, ValueError) as e:
            stats['errors'] += 1
            logger.warning(f"Error processing {coin.get('symbol')}: {e}")
            continue
        if card is not None:
            stats[f'matched_by_{how}'] += 1
            merged = merge_contracts(card.get('contracts'), incoming)
            data['contracts'] = merged or None
            data['primary_chain'] = primary_chain(merged)
            updates.append((card['id'], data))
        else:
            data['contracts'] = incoming or None
            data['is_active'] = True
            inserts.append(data)

    for card_id, data in updates:
        try:
            rows(client.table('token_cards').update(data).eq('id', card_id))
            stats['updated'] += 1
        except StorageError as e:
            logger.error(f"Update error for {data['canonical_symbol']}: {e}")
            stats['errors'] += 1

    for batch in chunked(inserts, CONFIG['UPSERT_CHUNK_SIZE']):
        try:
            rows(client.table('token_cards').upsert(batch, on_conflict='canonical_symbol'))
            stats['created'] += len(batch)
        except StorageError as e:
            logger.error(f"Insert batch error: {e}")
            stats['errors'] += len(batch)

    stats['duration_ms'] = int((time.time() - start) * 1000)
    logger.info('sync.lunarcrush.complete', extra={'event': 'sync_lunarcrush_complete', 'updated': stats['updated'], 'created': stats['created']})
    return {'stats': stats}


# ----------------------------------------------------------------- enhanced

def _top(items: Any, mapper) -> Optional[List[dict]]:
    if not isinstance(items, list):
        return None
    return [mapper(i) for i in items[:5]]


def _post(post: dict) -> dict:
    return {
        'id': post.get('id'),
        'text': post.get('text') or post.get('body'),
        'created_at': post.get('created_at') or post.get('time'),
        'interactions': post.get('interactions') or post.get('engagement'),
        'sentiment': post.get('sentiment'),
        'platform': post.get('network') or post.get('source'),
        'url': post.get('url'),
        'author': (post.get('creator') or {}).get('name') or post.get('author'),
    }


def _news(news: dict) -> dict:
    return {
        'id': news.get('id'),
        'title': news.get('title'),
        'url': news.get('url'),
        'source': news.get('source') or news.get('publisher'),
        'published_at': news.get('created_at') or news.get('time'),
        'sentiment': news.get('sentiment'),
        'image': news.get('image'),
    }


def _creator(creator: dict) -> dict:
    return {
        'id': creator.get('id'),
        'name': creator.get('name') or creator.get('display_name'),
        'handle': creator.get('handle') or creator.get('screen_name'),
        'platform': creator.get('network') or 'twitter',
        'followers': creator.get('followers') or creator.get('follower_count'),
        'engagement': creator.get('engagement') or creator.get('interactions'),
        'influence_score': creator.get('influence_score') or creator.get('rank'),
        'avatar': creator.get('profile_image') or creator.get('avatar'),
    }


def topic_update(feeds: Dict[str, Any], now_iso: str) -> dict:
    """Build the token_cards update from the four topic responses."""
    update: Dict[str, Any] = {}
    whatsup = (feeds.get('whatsup') or {}).get('data')
    if whatsup:
        update['ai_summary'] = whatsup.get('summary') or whatsup.get('whatsup')
        update['key_themes'] = whatsup.get('themes') or whatsup.get('key_themes')
        update['ai_updated_at'] = now_iso
    for feed, column, mapper in (('posts', 'top_posts', _post),
                                 ('news', 'top_news', _news),
                                 ('creators', 'top_creators', _creator)):
        items = _top((feeds.get(feed) or {}).get('data'), mapper)
        if items is not None:
            update[column] = items
            update[f'{feed}_updated_at'] = now_iso
    return update


def run_enhanced(client, params: Optional[Dict] = None) -> dict:
    start = time.time()
    api_key = require('LUNARCRUSH_API_KEY')
    lunar = LunarCrushHandler(api_key, on_call=lambda ok, err=None: log_api_call(client, 'lunarcrush', ENHANCED_JOB_NAME, ok, err))
    symbols = (params or {}).get('symbols') or TOP_25_SYMBOLS
    delay = CONFIG['LUNARCRUSH_TOKEN_DELAY']

    results = {'processed': 0, 'updated': 0, 'skipped': 0, 'errors': []}
    for i, symbol in enumerate(symbols):
        logger.info(f"[{i + 1}/{len(symbols)}] Fetching enhanced data for {symbol}")
        with ThreadPoolExecutor(max_workers=len(TOPIC_ENDPOINTS)) as ex:
            futures = {ep: ex.submit(lunar.topic, symbol, ep) for ep in TOPIC_ENDPOINTS}
            feeds = {ep: f.result() for ep, f in futures.items()}
        update = topic_update(feeds, datetime.now(timezone.utc).isoformat())
        if update:
            try:
                rows(client.table('token_cards').update(update).eq('canonical_symbol', symbol))
                results['updated'] += 1
            except StorageError as e:
                results['errors'].append(f'{symbol}: {e}')
        else:
            results['skipped'] += 1
            logger.info(f"Skipped {symbol} - no data returned")
        results['processed'] += 1
        if i < len(symbols) - 1:
            time.sleep(delay)

    duration = int((time.time() - start) * 1000)
    return {
        'tokensProcessed': results['processed'],
        'tokensUpdated': results['updated'],
        'tokensSkipped': results['skipped'],
        'errors': results['errors'],
        'totalTokens': len(symbols),
        'duration_ms': duration,
    }
