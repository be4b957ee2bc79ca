"""Per-asset news sentiment snapshots from Polygon articles."""
import logging
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from config import CONFIG
from db import rows
from polygon_handler import PolygonHandler

logger = logging.getLogger(__name__)

JOB_NAME = 'calculate-asset-sentiment'
TOP_ASSETS = 10


def article_sentiment(article: dict, ticker: Optional[str] = None) -> Optional[str]:
    """Explicit ``sentiment`` wins; otherwise Polygon's per-ticker insight."""
    if article.get('sentiment'):
        return article['sentiment']
    for insight in article.get('insights') or []:
        if ticker is None or (insight.get('ticker') or '').upper() == ticker:
            return insight.get('sentiment')
    return None


def score_label(score: float) -> str:
    if score > 20:
        return 'bullish'
    if score < -20:
        return 'bearish'
    return 'neutral'


def trend_direction(change: float) -> str:
    if change > 5:
        return 'up'
    if change < -5:
        return 'down'
    return 'stable'


def group_by_ticker(articles: List[dict]) -> Dict[str, List[dict]]:
    groups: Dict[str, List[dict]] = defaultdict(list)
    for article in articles:
        for ticker in article.get('tickers') or []:
            groups[ticker.upper()].append(article)
    return groups


def _previous_score(client, ticker: str) -> float:
    found = rows(
        client.table('asset_sentiment_snapshots')
        .select('sentiment_score')
        .eq('asset_symbol', ticker)
        .order('timestamp', desc=True)
        .limit(1)
    )
    return (found[0].get('sentiment_score') or 0) if found else 0


def _mapping(client, ticker: str) -> dict:
    found = rows(client.table('ticker_mappings').select('display_name, type').eq('symbol', ticker).limit(1))
    return found[0] if found else {}


def summarize(client, ticker: str, articles: List[dict]) -> dict:
    sentiments = [article_sentiment(a, ticker) for a in articles]
    positive = sentiments.count('positive')
    negative = sentiments.count('negative')
    neutral = sentiments.count('neutral')
    total = len(articles)
    score = (positive - negative) / total * 100 if total else 0
    change = score - _previous_score(client, ticker)
    mapping = _mapping(client, ticker)
    keywords = Counter(k for a in articles for k in (a.get('keywords') or []))
    return {
        'ticker': ticker,
        'name': mapping.get('display_name') or ticker,
        'type': mapping.get('type') or 'unknown',
        'score': score,
        'label': score_label(score),
        'positive': positive,
        'negative': negative,
        'neutral': neutral,
        'total': total,
        'trend': trend_direction(change),
        'change': change,
        'keywords': [k for k, _ in keywords.most_common(5)],
    }


def run(client, params: Optional[Dict] = None) -> dict:
    params = params or {}
    articles = params.get('polygonArticles')
    if articles is None and CONFIG['POLYGON_API_KEY']:
        articles = PolygonHandler(CONFIG['POLYGON_API_KEY']).news(limit=100)
    if not articles:
        logger.info('No Polygon articles provided')
        return {'message': 'No articles to process', 'processed': 0}

    groups = group_by_ticker(articles)
    logger.info(f"Processing {len(articles)} articles across {len(groups)} tickers")
    # Rank by coverage before the per-ticker lookups so only the top assets cost queries
    ranked = sorted(groups.items(), key=lambda kv: len(kv[1]), reverse=True)[:TOP_ASSETS]
    top = [summarize(client, ticker, group) for ticker, group in ranked]

    rows(client.rpc('cleanup_old_asset_sentiments', {}))
    timestamp = datetime.now(timezone.utc).isoformat()
    if top:
        rows(client.table('asset_sentiment_snapshots').insert([{
            'timestamp': timestamp,
            'asset_symbol': a['ticker'],
            'asset_name': a['name'],
            'asset_type': a['type'],
            'sentiment_score': a['score'],
            'sentiment_label': a['label'],
            'positive_count': a['positive'],
            'negative_count': a['negative'],
            'neutral_count': a['neutral'],
            'total_articles': a['total'],
            'trend_direction': a['trend'],
            'score_change': a['change'],
            'polygon_articles_count': a['total'],
            'top_keywords': a['keywords'],
        } for a in top]))

    return {
        'processed': len(top),
        'timestamp': timestamp,
        'assets': [{'symbol': a['ticker'], 'name': a['name'], 'score': a['score'],
                    'label': a['label'], 'articles': a['total']} for a in top],
    }
