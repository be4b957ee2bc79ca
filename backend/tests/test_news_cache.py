from datetime import datetime, timedelta, timezone

import news_cache


def _entry(key, value, expires_in_minutes=30):
    expires = datetime.now(timezone.utc) + timedelta(minutes=expires_in_minutes)
    return {'k': key, 'v': value, 'expires_at': expires.isoformat()}


def test_canonicalize_url_strips_tracking_and_case():
    assert (news_cache.canonicalize_url('https://News.example.com/a/?utm_source=x')
            == news_cache.canonicalize_url('https://news.example.com/a'))
    assert news_cache.canonicalize_url('https://x.com/a?id=2&ref=tw') == 'https://x.com/a?id=2'
    assert news_cache.canonicalize_url(None) == ''


def test_merge_sources_dedupes_and_sorts_newest_first():
    a = [{'url': 'https://x.com/1', 'publishedAt': '2024-05-01T10:00:00Z', 'src': 'a'}]
    b = [{'url': 'https://x.com/1?utm_medium=rss', 'publishedAt': '2024-05-01T10:00:00Z', 'src': 'b'},
         {'url': 'https://x.com/2', 'publishedAt': '2024-05-02T10:00:00Z'},
         {'url': 'https://x.com/3', 'publishedAt': None}]
    merged = news_cache.merge_sources(a, b)
    assert [m['url'] for m in merged] == ['https://x.com/2', 'https://x.com/1', 'https://x.com/3']
    assert merged[1]['src'] == 'a'


def test_get_cached_news_merges_all_caches(fake_db):
    fake_db.tables['cache_kv'] = [
        _entry(news_cache.POLYGON_CACHE_KEY, {
            'crypto': [{'url': 'https://p.com/1', 'published_at': '2024-05-02T00:00:00Z', 'image_url': 'i.png'}],
            'trump': [{'url': 'https://p.com/t', 'publishedAt': '2024-05-01T00:00:00Z'}],
            'fetched_at': '2024-05-02T00:05:00Z', 'articles_count': 2,
        }),
        _entry(news_cache.LUNARCRUSH_CACHE_KEY, {
            'crypto': [{'url': 'https://lc.com/1', 'publishedAt': '2024-05-03T00:00:00Z', 'sourceType': 'lunarcrush'}],
            'trump': [{'url': 'https://lc.com/t', 'publishedAt': '2024-05-03T00:00:00Z'}],
        }, expires_in_minutes=-10),
    ]
    news = news_cache.get_cached_news(fake_db)
    assert [n['url'] for n in news['crypto']] == ['https://lc.com/1', 'https://p.com/1']
    assert news['crypto'][1]['sourceType'] == 'polygon'
    assert news['crypto'][1]['imageUrl'] == 'i.png'
    assert [n['url'] for n in news['trump']] == ['https://p.com/t']
    assert news['stocks'] == []

    meta = news['metadata']
    assert meta['polygon_unified_cache'] == 'valid'
    assert meta['lunarcrush_cache'] == 'expired'
    assert meta['rss_cache'] == 'missing'
    assert meta['polygon_articles_count'] == 2
    assert meta['api_calls_made'] == 0
    # stale entries are served, not deleted
    assert len(fake_db.tables['cache_kv']) == 2


def test_get_cached_news_caps_each_category(fake_db):
    items = [{'url': f'https://r.com/{i}', 'publishedAt': f'2024-05-01T00:{i % 60:02d}:00Z'} for i in range(80)]
    fake_db.tables['cache_kv'] = [_entry(news_cache.RSS_CACHE_KEY, {'stocks': items})]
    news = news_cache.get_cached_news(fake_db)
    assert len(news['stocks']) == news_cache.MAX_PER_CATEGORY
    assert news['metadata']['rss_articles_count'] == 80
