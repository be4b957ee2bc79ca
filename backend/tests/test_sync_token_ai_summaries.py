import cache_kv
import sync_token_ai_summaries as job


def _token(i, **extra):
    token = {'canonical_symbol': f'T{i}', 'name': f'Token {i}', 'market_cap_rank': i, 'galaxy_score': 55}
    token.update(extra)
    return token


def test_generate_summary_phrases():
    summary, short, themes = job.generate_summary({
        'canonical_symbol': 'SOL', 'name': 'Solana', 'market_cap_rank': 5, 'sentiment': 80,
        'galaxy_score': 72, 'change_24h_pct': 7.3, 'change_7d_pct': 12, 'change_30d_pct': 25,
        'social_volume_24h': 150000, 'alt_rank': 3, 'categories': ['a', 'b', 'c', 'd', 'e', 'f'],
    })
    assert summary.startswith('Solana (SOL) is currently surging 7.3% today with strongly bullish market sentiment.')
    assert 'Top 10 cryptocurrency with a exceptional Galaxy Score of 72.' in summary
    assert 'Strong uptrend across all timeframes.' in summary
    assert 'Extremely high social activity with 150K+ mentions.' in summary
    assert summary.endswith('Top 3 AltRank indicates strong relative performance.')
    assert 'High social activity.' in short
    assert len(short) <= job.SHORT_SUMMARY_MAX
    assert themes == ['a', 'b', 'c', 'd', 'e']


def test_generate_summary_defaults_for_sparse_card():
    summary, short, themes = job.generate_summary({'canonical_symbol': 'ZZZ', 'market_cap_rank': 400})
    assert 'trading sideways with neutral market sentiment' in summary
    assert 'Ranked #400' in summary
    assert 'Quiet on social channels.' in summary
    assert themes == []


def test_alt_rank_phrase_moves():
    assert job.alt_rank_phrase(50, 15) == 'AltRank improving significantly (+15 positions).'
    assert job.alt_rank_phrase(50, -12) == 'AltRank declining (-12 positions).'
    assert job.alt_rank_phrase(50, 2) == ''


def test_batches_advance_cursor_then_complete_cycle(fake_db):
    fake_db.tables['token_cards'] = [_token(i) for i in range(1, 6)]
    fake_db.tables['token_cards'].append(_token(99, galaxy_score=None))

    first = job.run(fake_db, {'batchSize': 3})
    assert first['processed'] == 3
    assert first['hasMore'] is True
    assert first['nextOffset'] == 3
    assert cache_kv.load_cursor(fake_db, job.CURSOR_KEY)['offset'] == 3

    second = job.run(fake_db, {'batchSize': 3})
    assert second['currentOffset'] == 3
    assert second['processed'] == 2
    assert second['cycleComplete'] is True
    assert second['nextOffset'] == 0

    card = fake_db.tables['token_cards'][0]
    assert card['ai_summary'].startswith('Token 1 (T1)')
    assert card['ai_token_cost'] == 0
    assert 'ai_summary' not in fake_db.tables['token_cards'][5]


def test_empty_batch_resets_cursor(fake_db):
    result = job.run(fake_db, {'offset': 100})
    assert result['cycleComplete'] is True
    assert cache_kv.load_cursor(fake_db, job.CURSOR_KEY)['offset'] == 0


def test_reset_cursor_param_starts_over(fake_db):
    fake_db.tables['token_cards'] = [_token(i) for i in range(1, 3)]
    cache_kv.save_cursor(fake_db, job.CURSOR_KEY, {'offset': 1}, 60)
    result = job.run(fake_db, {'resetCursor': True})
    assert result['currentOffset'] == 0
    assert result['processed'] == 2
