from unittest.mock import patch

import pytest

import asset_sentiment as job
from config import CONFIG
from polygon_handler import PolygonHandler


def _article(tickers, sentiment=None, insights=None, keywords=None):
    art = {'tickers': tickers, 'keywords': keywords or []}
    if sentiment:
        art['sentiment'] = sentiment
    if insights:
        art['insights'] = insights
    return art


def test_article_sentiment_prefers_explicit_then_ticker_insight():
    assert job.article_sentiment({'sentiment': 'positive'}, 'BTC') == 'positive'
    art = {'insights': [{'ticker': 'ETH', 'sentiment': 'negative'}, {'ticker': 'btc', 'sentiment': 'neutral'}]}
    assert job.article_sentiment(art, 'BTC') == 'neutral'
    assert job.article_sentiment(art) == 'negative'
    assert job.article_sentiment({}, 'BTC') is None


@pytest.mark.parametrize('score,label', [(21, 'bullish'), (20, 'neutral'), (-20, 'neutral'), (-21, 'bearish')])
def test_score_label(score, label):
    assert job.score_label(score) == label


def test_trend_direction():
    assert job.trend_direction(6) == 'up'
    assert job.trend_direction(-6) == 'down'
    assert job.trend_direction(5) == 'stable'


def test_run_scores_and_stores_snapshots(fake_db):
    fake_db.tables['ticker_mappings'] = [{'symbol': 'BTC', 'display_name': 'Bitcoin', 'type': 'crypto'}]
    fake_db.tables['asset_sentiment_snapshots'] = [
        {'asset_symbol': 'BTC', 'sentiment_score': 10, 'timestamp': '2024-01-01T00:00:00+00:00'},
        {'asset_symbol': 'BTC', 'sentiment_score': 90, 'timestamp': '2023-12-01T00:00:00+00:00'},
    ]
    articles = [
        _article(['BTC'], 'positive', keywords=['etf']),
        _article(['btc', 'ETH'], insights=[{'ticker': 'BTC', 'sentiment': 'positive'},
                                          {'ticker': 'ETH', 'sentiment': 'negative'}], keywords=['etf', 'flows']),
        _article(['BTC'], 'negative'),
        _article(['BTC'], 'neutral'),
    ]
    result = job.run(fake_db, {'polygonArticles': articles})
    assert result['processed'] == 2
    btc = result['assets'][0]
    assert btc == {'symbol': 'BTC', 'name': 'Bitcoin', 'score': 25.0, 'label': 'bullish', 'articles': 4}

    stored = [s for s in fake_db.tables['asset_sentiment_snapshots'] if s.get('total_articles')]
    by_symbol = {s['asset_symbol']: s for s in stored}
    assert by_symbol['BTC']['score_change'] == 15.0
    assert by_symbol['BTC']['trend_direction'] == 'up'
    assert by_symbol['BTC']['top_keywords'] == ['etf', 'flows']
    assert by_symbol['ETH']['sentiment_score'] == -100.0
    assert by_symbol['ETH']['asset_type'] == 'unknown'
    assert fake_db.rpc_calls == [('cleanup_old_asset_sentiments', {})]


def test_only_top_ten_assets_are_scored(fake_db):
    articles = [_article([f'T{i}'], 'positive') for i in range(12)]
    articles += [_article(['BIG'], 'positive')] * 3
    result = job.run(fake_db, {'polygonArticles': articles})
    assert result['processed'] == 10
    assert result['assets'][0]['symbol'] == 'BIG'


def test_no_articles(fake_db):
    assert job.run(fake_db, {}) == {'message': 'No articles to process', 'processed': 0}


@patch.object(PolygonHandler, 'news')
def test_fetches_news_when_key_configured(mock_news, fake_db, monkeypatch):
    monkeypatch.setitem(CONFIG, 'POLYGON_API_KEY', 'pk')
    mock_news.return_value = [_article(['SOL'], 'positive')]
    result = job.run(fake_db, {})
    assert result['processed'] == 1
    mock_news.assert_called_once_with(limit=100)
