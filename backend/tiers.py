"""Refresh priority tiers.

Tier 1 is the top of the market-cap table and is refreshed on every call;
deeper tiers ride along on a rotating subset of calls.
"""
from typing import List, Optional


def tier_for_rank(rank: Optional[int]) -> int:
    if rank is None:
        return 4
    if rank <= 50:
        return 1
    if rank <= 500:
        return 2
    if rank <= 2000:
        return 3
    return 4


def tiers_for_call(call_number: int) -> List[int]:
    tiers = [1, 2]
    if call_number % 2 == 0:
        tiers.append(3)
    if call_number % 5 == 0:
        tiers.append(4)
    return tiers


def technicals_due(call_number: int) -> bool:
    return call_number % 3 == 0
