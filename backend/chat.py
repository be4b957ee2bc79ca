"""ZombieDog chat: LLM proxy grounded in a live price snapshot.

The system prompt carries current prices for the market leaders plus any
assets the user mentioned in the last few messages. The upstream SSE stream
is passed through unchanged.
"""
import json
import logging
import re
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from anthropic_handler import AnthropicHandler
from config import CONFIG, require
from db import StorageError, rows

logger = logging.getLogger(__name__)

RECENT_MESSAGES = 10
MAX_ASSETS = 5
LEADERS = 10

FILTER_WORDS = {
    'THE', 'AND', 'FOR', 'NOT', 'YOU', 'ARE', 'BUT', 'HAS', 'HAD', 'WAS', 'HIS', 'HER',
    'CAN', 'NOW', 'HOW', 'WHY', 'WHO', 'ALL', 'GET', 'NEW', 'ONE', 'TWO', 'OUT', 'OUR', 'DAY', 'ANY',
    'IT', 'ITS', 'IS', 'BE', 'AM', 'IF', 'OR', 'AS', 'AT', 'BY', 'TO', 'OF', 'ON', 'IN', 'UP',
    'SO', 'GO', 'NO', 'AN', 'ME', 'MY', 'MINE', 'WE', 'US', 'THEY', 'THEM', 'THEIR',
    'DEX', 'CEX', 'API', 'USD', 'EUR', 'GBP', 'NFT', 'DAO', 'TVL', 'APY', 'APR', 'ATH', 'ATL',
    'THIS', 'THAT', 'WITH', 'FROM', 'YOUR', 'MAKE', 'POST', 'ABOUT', 'WHAT', 'SAFE', 'ADDRESS',
    'OK', 'OKAY', 'ALRIGHT', 'HEY', 'HELLO', 'HI', 'YES', 'YEAH', 'YEP', 'SURE', 'NAH', 'NOP',
    'NEED', 'GIVE', 'GAVE', 'LET', 'LETS', 'COPY', 'PASTE', 'TOKEN', 'TOKENS', 'COIN', 'COINS',
    'CRYPTO', 'PRICE', 'PRICES', 'DATA', 'INFO', 'CHART', 'COMPLETE', 'ANALYSIS', 'ANALYZE',
    'CHECK', 'LOOK', 'SHOW', 'TELL', 'FIND', 'SEARCH', 'SEE', 'WANT', 'WANTS', 'WOULD', 'COULD',
    'SHOULD', 'WILL', 'MIGHT', 'MUST', 'SHALL', 'MAY', 'HAVE', 'BEEN', 'BEING', 'WERE', 'SOME',
    'MANY', 'MUCH', 'MOST', 'MORE', 'LESS', 'FEW', 'JUST', 'ALSO', 'ONLY', 'EVEN', 'VERY',
    'REALLY', 'PLEASE', 'THANKS', 'THANK', 'THX', 'LIKE', 'GOOD', 'WELL', 'BEST', 'GREAT',
    'NICE', 'COOL', 'BAD', 'WORST', 'AWESOME', 'WHEN', 'WHERE', 'THEN', 'THAN', 'HERE', 'THERE',
    'WHICH', 'EACH', 'EVERY', 'BOTH', 'SAID', 'SAYS', 'SAY', 'ASK', 'ASKED', 'TOLD',
    'ASKING', 'MARKET', 'MARKETS', 'TRADE', 'TRADES', 'BUY', 'SELL', 'HOLD', 'LONG', 'SHORT',
    'HELP', 'HELPED', 'DO', 'DOES', 'DID', 'DONE', 'DOING', 'TRY', 'TRIED', 'THINK', 'KNOW',
    'FEEL', 'BELIEVE', 'STILL', 'YET', 'ALREADY', 'AGAIN', 'TOO', 'NEVER', 'ALWAYS', 'OFTEN',
}

TICKER_ALIASES = {
    'ETHE': 'ETH', 'ETHER': 'ETH', 'ETHEREUM': 'ETH', 'ETHERIUM': 'ETH',
    'BITC': 'BTC', 'BITCOIN': 'BTC', 'BITCOINS': 'BTC',
    'SOLA': 'SOL', 'SOLANA': 'SOL',
    'DOGECOIN': 'DOGE', 'DOGEE': 'DOGE',
    'CARDAN': 'ADA', 'CARDANO': 'ADA',
    'RIPPLE': 'XRP', 'RIPL': 'XRP',
    'CHAINLINK': 'LINK', 'CHAINLIN': 'LINK',
    'AVALANCH': 'AVAX', 'AVALANCHE': 'AVAX',
    'POLKADOT': 'DOT', 'POLKA': 'DOT',
    'POLYGON': 'MATIC', 'POLYG': 'MATIC',
    'LITECOIN': 'LTC', 'LITC': 'LTC',
    'UNISWAP': 'UNI', 'UNIS': 'UNI',
    'SHIBA': 'SHIB', 'SHIBAINU': 'SHIB',
    'COSM': 'ATOM', 'COSMOS': 'ATOM',
    'BINANCE': 'BNB', 'BINACE': 'BNB',
    'TETHER': 'USDT', 'STABLECOIN': 'USDT',
}

_WORD_RE = re.compile(r'\$?\b[A-Za-z]{2,10}\b')

PERSONA = """You are ZombieDog, the undead crypto market assistant for XRayCrypto. You are a friendly, knowledgeable zombie dog who helps users understand crypto markets.

Personality:
- Playful and approachable, with the occasional dog or zombie reference ("sniffing out data", "digging up charts")
- Knowledgeable about crypto markets, trading and blockchain technology
- Helpful and educational, explaining concepts clearly

Guidelines:
- Keep responses concise (2-4 paragraphs max)
- Use the live market snapshot below when asked about prices; say when an asset is not in it
- Never give financial advice; remind users to do their own research (DYOR)
- If you don't know something, admit it"""


class ChatRequestError(ValueError):
    pass


def extract_assets(messages: List[Dict[str, str]]) -> List[str]:
    """Tickers mentioned in the last messages, newest first, aliases resolved."""
    seen = set()
    assets: List[str] = []
    for message in reversed(messages[-RECENT_MESSAGES:]):
        for word in _WORD_RE.findall(str(message.get('content') or '')):
            cleaned = word.lstrip('$').upper()
            resolved = TICKER_ALIASES.get(cleaned, cleaned)
            if resolved in FILTER_WORDS or resolved in seen:
                continue
            seen.add(resolved)
            assets.append(resolved)
    return assets[:MAX_ASSETS]


def normalize_messages(messages) -> List[Dict[str, str]]:
    if not isinstance(messages, list) or not messages:
        raise ChatRequestError('messages must be a non-empty list')
    normalized = [{'role': 'assistant' if m.get('role') == 'assistant' else 'user',
                   'content': str(m.get('content') or '')} for m in messages if isinstance(m, dict)]
    if not normalized:
        raise ChatRequestError('messages must contain at least one message object')
    return normalized


def load_price_snapshot(client, symbols: List[str]) -> List[dict]:
    columns = 'canonical_symbol, name, price_usd, change_24h_pct, market_cap_rank, galaxy_score'
    leaders = rows(client.table('token_cards').select(columns).eq('tier', 1)
                   .order('market_cap_rank').limit(LEADERS))
    mentioned = []
    if symbols:
        mentioned = rows(client.table('token_cards').select(columns).in_('canonical_symbol', symbols))
    out, seen = [], set()
    for card in mentioned + leaders:
        if card['canonical_symbol'] not in seen:
            seen.add(card['canonical_symbol'])
            out.append(card)
    return out


def _fmt_price(price) -> str:
    if price is None:
        return 'n/a'
    return f'${price:,.2f}' if price >= 1 else f'${price:.6f}'


def build_system_prompt(snapshot: List[dict], now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    lines = [PERSONA, '', f'Live market snapshot ({now.strftime("%Y-%m-%d %H:%M UTC")}):']
    if not snapshot:
        lines.append('- No live prices available right now.')
    for card in snapshot:
        change = card.get('change_24h_pct')
        change_txt = f'{change:+.2f}% 24h' if change is not None else '24h change n/a'
        lines.append(f"- {card['canonical_symbol']} ({card.get('name') or card['canonical_symbol']}): "
                     f"{_fmt_price(card.get('price_usd'))}, {change_txt}")
    return '\n'.join(lines)


def _session_assets(client, session_id: str) -> List[str]:
    try:
        found = rows(client.table('chat_summaries').select('last_assets').eq('session_id', session_id).limit(1))
    except StorageError as e:
        logger.warning(f"chat context load failed: {e}")
        return []
    return (found[0].get('last_assets') or []) if found else []


def save_message(client, session_id: str, role: str, content: str) -> None:
    try:
        rows(client.table('chat_sessions').upsert(
            {'session_id': session_id, 'last_seen': datetime.now(timezone.utc).isoformat()},
            on_conflict='session_id'))
        rows(client.table('chat_messages').insert({'session_id': session_id, 'role': role, 'content': content}))
    except StorageError as e:
        logger.warning(f"chat message save failed: {e}")


def save_session_assets(client, session_id: str, assets: List[str]) -> None:
    try:
        rows(client.table('chat_summaries').upsert(
            {'session_id': session_id, 'last_assets': assets,
             'updated_at': datetime.now(timezone.utc).isoformat()},
            on_conflict='session_id'))
    except StorageError as e:
        logger.warning(f"chat assets save failed: {e}")


def _text_delta(line: bytes) -> str:
    if not line.startswith(b'data:'):
        return ''
    try:
        event = json.loads(line[5:].strip() or b'{}')
    except ValueError:
        return ''
    if event.get('type') != 'content_block_delta':
        return ''
    return (event.get('delta') or {}).get('text') or ''


def _relay(client, session_id: Optional[str], upstream: Iterator[bytes]) -> Iterator[bytes]:
    reply = []
    for line in upstream:
        reply.append(_text_delta(line.strip()))
        yield line
    if session_id:
        save_message(client, session_id, 'assistant', ''.join(reply))


def start_chat(client, body: dict) -> Iterator[bytes]:
    """Prepare context and open the upstream stream.

    Raises ChatRequestError for bad input and UpstreamError (with status)
    when the model API rejects the call, before anything is streamed.
    """
    messages = normalize_messages(body.get('messages'))
    api_key = require('ANTHROPIC_API_KEY')
    session_id = body.get('session_id') or body.get('sessionId')
    logger.info(f"ZombieDog chat request with {len(messages)} messages")

    assets = extract_assets(messages)
    if session_id:
        assets = list(dict.fromkeys(assets + _session_assets(client, session_id)))[:RECENT_MESSAGES]
    try:
        snapshot = load_price_snapshot(client, assets)
    except StorageError as e:
        logger.warning(f"price snapshot unavailable: {e}")
        snapshot = []

    if session_id:
        last_user = next((m for m in reversed(messages) if m['role'] == 'user'), None)
        if last_user is not None:
            save_message(client, session_id, 'user', last_user['content'])
        save_session_assets(client, session_id, assets)

    upstream = AnthropicHandler(api_key).stream(build_system_prompt(snapshot), messages,
                                                max_tokens=CONFIG['CHAT_MAX_TOKENS'])
    return _relay(client, session_id, upstream)
