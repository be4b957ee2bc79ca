from unittest.mock import patch

import sync_cot_reports as job
from cftc_handler import CFTCHandler

GOLD = {
    'cftc_contract_market_code': '088691',
    'report_date_as_yyyy_mm_dd': '2024-05-31T00:00:00.000',
    'swap_positions_long_all': '12,000',
    'swap__positions_short_all': '20000',
    'm_money_positions_long_all': '150000',
    'm_money_positions_short_all': '40000',
    'open_interest_all': '500,000',
    'change_in_m_money_long_all': '-1500',
    'change_in_m_money_short_all': '500',
}


def test_parse_num():
    assert job.parse_num('12,345') == 12345
    assert job.parse_num(' -42 contracts') == -42
    assert job.parse_num('') is None
    assert job.parse_num('n/a') is None


def test_cot_row_nets_and_dates():
    row = job.cot_row(GOLD, 'GOLD')
    assert row['report_date'] == '2024-05-31'
    assert row['as_of_date'] == '2024-05-28'
    assert row['swap_net'] == -8000
    assert row['managed_net'] == 110000
    assert row['managed_net_change'] == -2000
    assert row['open_interest'] == 500000
    assert row['producer_net'] is None


@patch.object(CFTCHandler, 'latest_reports')
def test_run_upserts_known_commodities(mock_reports, fake_db):
    mock_reports.return_value = [GOLD, dict(GOLD), {**GOLD, 'cftc_contract_market_code': '999999'}]
    result = job.run(fake_db, {})
    assert result['records_fetched'] == 3
    assert result['upserted'] == 2
    # same commodity and report date collapse into one row
    assert len(fake_db.tables['cot_reports']) == 1
    assert 'errors' not in result


@patch.object(CFTCHandler, 'latest_reports')
def test_run_collects_record_errors(mock_reports, fake_db):
    mock_reports.return_value = [{'cftc_contract_market_code': '084691'}]
    result = job.run(fake_db, {})
    assert result['upserted'] == 0
    assert result['errors'][0].startswith('Record processing error')


@patch.object(CFTCHandler, 'latest_reports', return_value=[])
def test_run_with_no_records(mock_reports, fake_db):
    assert job.run(fake_db, {}) == {'message': 'No records returned from CFTC', 'upserted': 0}
