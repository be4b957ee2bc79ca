"""Daily market brief written by the LLM from cached news and top movers."""
import json
import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

from anthropic_handler import AnthropicHandler
from config import require
from db import rows
from news_cache import get_cached_news

logger = logging.getLogger(__name__)

JOB_NAME = 'generate-daily-brief'
NEWS_PER_CATEGORY = 10
MOVERS = 10

SYSTEM_PROMPT = ('You are a professional financial analyst creating daily market briefs. '
                 'Be concise, accurate, and focus on actionable insights.')

SECTIONS = ['Executive Summary (2-3 sentences)', 'Key Market Developments', 'Sector Analysis',
            'What to Watch', 'Trading Outlook']


def _slim(item: dict) -> dict:
    return {k: item.get(k) for k in ('title', 'source', 'sentiment', 'publishedAt', 'tickers') if item.get(k)}


def top_movers(client) -> List[dict]:
    cards = rows(client.table('token_cards')
                 .select('canonical_symbol, price_usd, change_24h_pct, market_cap_rank')
                 .eq('tier', 1)
                 .not_.is_('change_24h_pct', 'null')
                 .order('market_cap_rank')
                 .limit(50))
    return sorted(cards, key=lambda c: abs(c.get('change_24h_pct') or 0), reverse=True)[:MOVERS]


def build_prompt(crypto: List[dict], stocks: List[dict], movers: List[dict]) -> str:
    numbered = '\n'.join(f'{i}. {s}' for i, s in enumerate(SECTIONS, 1))
    return (
        'Based on the following financial news data, create a comprehensive daily market brief:\n\n'
        f'Crypto News: {json.dumps([_slim(n) for n in crypto])}\n'
        f'Stock News: {json.dumps([_slim(n) for n in stocks])}\n'
        f'Top Crypto Movers (24h): {json.dumps(movers)}\n\n'
        f'Create a market brief with the following structure:\n{numbered}\n\n'
        'Keep it professional, informative, and actionable for traders and investors. '
        "Focus on the most significant trends and developments from today's news."
    )


def run(client, params: Optional[Dict] = None) -> dict:
    llm = AnthropicHandler(require('ANTHROPIC_API_KEY'))
    news = get_cached_news(client)
    crypto = news['crypto'][:NEWS_PER_CATEGORY]
    stocks = news['stocks'][:NEWS_PER_CATEGORY]
    movers = top_movers(client)

    logger.info('Generating AI analysis...')
    content = llm.complete(SYSTEM_PROMPT, [{'role': 'user', 'content': build_prompt(crypto, stocks, movers)}],
                           max_tokens=1500)

    now = datetime.now(timezone.utc)
    date_str = now.date().isoformat()
    brief = {
        'brief_type': 'daily',
        'title': f"Daily Market Brief - {now.strftime('%B')} {now.day}, {now.year}",
        'slug': f'daily-market-brief-{date_str}-{int(time.time())}',
        'executive_summary': 'Daily analysis of market trends, key developments, and trading opportunities '
                             'across crypto and traditional markets.',
        'content_sections': {
            'ai_generated_content': content,
            'generation_timestamp': now.isoformat(),
            'model_used': llm.model,
            'news_sources': ['crypto_feeds', 'stock_feeds'],
            'data_points': {'crypto_articles': len(news['crypto']), 'stock_articles': len(news['stocks'])},
        },
        'market_data': {
            'session_type': 'daily_analysis',
            'generation_time': date_str,
            'news_volume': {'crypto': len(news['crypto']), 'stocks': len(news['stocks'])},
            'top_movers': movers,
        },
        'is_published': True,
        'published_at': now.isoformat(),
    }
    inserted = rows(client.table('market_briefs').insert(brief))
    logger.info('brief.created', extra={'event': 'brief_created', 'slug': brief['slug']})
    return {'brief': inserted[0] if inserted else brief}
