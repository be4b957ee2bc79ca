import pytest

from tiers import technicals_due, tier_for_rank, tiers_for_call


@pytest.mark.parametrize('rank,tier', [(1, 1), (50, 1), (51, 2), (500, 2), (501, 3), (2000, 3), (2001, 4), (None, 4)])
def test_tier_for_rank_boundaries(rank, tier):
    assert tier_for_rank(rank) == tier


def test_tiers_for_call_rotation():
    assert tiers_for_call(1) == [1, 2]
    assert tiers_for_call(2) == [1, 2, 3]
    assert tiers_for_call(5) == [1, 2, 4]
    assert tiers_for_call(10) == [1, 2, 3, 4]


def test_technicals_every_third_call():
    assert [n for n in range(1, 10) if technicals_due(n)] == [3, 6, 9]
