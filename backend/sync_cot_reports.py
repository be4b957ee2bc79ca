"""Weekly CFTC Commitments of Traders positions for gold and silver."""
import logging
import re
import time
from datetime import date, timedelta
from typing import Dict, Optional

from cftc_handler import COMMODITY_CODES, CFTCHandler
from db import StorageError, rows

logger = logging.getLogger(__name__)

JOB_NAME = 'sync-cot-reports'
_LEADING_INT = re.compile(r'\s*([+-]?\d+)')


def parse_num(value) -> Optional[int]:
    """'12,345' -> 12345; blanks and junk -> None."""
    if value is None or value == '':
        return None
    m = _LEADING_INT.match(str(value).replace(',', ''))
    return int(m.group(1)) if m else None


def net(long: Optional[int], short: Optional[int]) -> Optional[int]:
    if long is None or short is None:
        return None
    return long - short


def as_of_date(report_date: str) -> str:
    """Positions are as of the Tuesday before the Friday release."""
    return (date.fromisoformat(report_date[:10]) - timedelta(days=3)).isoformat()


def cot_row(record: dict, commodity: str) -> dict:
    # The CFTC dataset spells two swap columns with a double underscore
    swap_long = parse_num(record.get('swap_positions_long_all'))
    swap_short = parse_num(record.get('swap__positions_short_all'))
    prod_long = parse_num(record.get('prod_merc_positions_long'))
    prod_short = parse_num(record.get('prod_merc_positions_short'))
    managed_long = parse_num(record.get('m_money_positions_long_all'))
    managed_short = parse_num(record.get('m_money_positions_short_all'))
    other_long = parse_num(record.get('other_rept_positions_long'))
    other_short = parse_num(record.get('other_rept_positions_short'))
    nonrept_long = parse_num(record.get('nonrept_positions_long_all'))
    nonrept_short = parse_num(record.get('nonrept_positions_short_all'))
    report_date = record['report_date_as_yyyy_mm_dd'][:10]
    return {
        'commodity': commodity,
        'report_date': report_date,
        'as_of_date': as_of_date(report_date),
        'swap_long': swap_long,
        'swap_short': swap_short,
        'swap_net': net(swap_long, swap_short),
        'swap_spreading': parse_num(record.get('swap__positions_spread_all')),
        'producer_long': prod_long,
        'producer_short': prod_short,
        'producer_net': net(prod_long, prod_short),
        'managed_long': managed_long,
        'managed_short': managed_short,
        'managed_net': net(managed_long, managed_short),
        'managed_spreading': parse_num(record.get('m_money_positions_spread')),
        'other_long': other_long,
        'other_short': other_short,
        'other_net': net(other_long, other_short),
        'other_spreading': parse_num(record.get('other_rept_positions_spread')),
        'nonreportable_long': nonrept_long,
        'nonreportable_short': nonrept_short,
        'nonreportable_net': net(nonrept_long, nonrept_short),
        'open_interest': parse_num(record.get('open_interest_all')),
        'swap_net_change': net(parse_num(record.get('change_in_swap_long_all')),
                               parse_num(record.get('change_in_swap_short_all'))),
        'managed_net_change': net(parse_num(record.get('change_in_m_money_long_all')),
                                  parse_num(record.get('change_in_m_money_short_all'))),
    }


def run(client, params: Optional[Dict] = None) -> dict:
    start = time.time()
    records = CFTCHandler().latest_reports()
    logger.info(f"Received {len(records)} records from CFTC")
    if not records:
        return {'message': 'No records returned from CFTC', 'upserted': 0}

    upserted = 0
    errors = []
    for record in records:
        commodity = COMMODITY_CODES.get(record.get('cftc_contract_market_code'))
        if commodity is None:
            logger.info(f"Unknown commodity code: {record.get('cftc_contract_market_code')}")
            continue
        try:
            row = cot_row(record, commodity)
        except (KeyError, ValueError) as e:
            errors.append(f'Record processing error: {e}')
            continue
        try:
            rows(client.table('cot_reports').upsert(row, on_conflict='commodity,report_date'))
            upserted += 1
        except StorageError as e:
            errors.append(f"{commodity} {row['report_date']}: {e}")

    result = {
        'records_fetched': len(records),
        'upserted': upserted,
        'duration_ms': int((time.time() - start) * 1000),
        'commodities': list(COMMODITY_CODES.values()),
    }
    if errors:
        result['errors'] = errors[:5]
    return result
