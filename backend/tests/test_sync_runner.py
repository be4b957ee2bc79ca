import json
from unittest.mock import patch

import pytest

import sync_runner


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch('sync_runner.setup_logging'), patch('sync_runner.log_config'):
        yield


def test_parse_params_decodes_json_values():
    assert sync_runner.parse_params(['offset=500', 'resetCursor=true', 'symbols=["BTC"]', 'name=abc']) == {
        'offset': 500, 'resetCursor': True, 'symbols': ['BTC'], 'name': 'abc'}


def test_list_prints_jobs(capsys):
    assert sync_runner.main(['list']) == 0
    out = capsys.readouterr().out.split()
    assert 'sync-cot-reports' in out
    assert out == sorted(out)


@patch('sync_runner.run_job', return_value=({'success': True, 'updated': 2}, 200))
def test_run_prints_result_and_exits_zero(mock_run, capsys):
    assert sync_runner.main(['run', 'sync-cot-reports', '--param', 'offset=1']) == 0
    mock_run.assert_called_once_with('sync-cot-reports', {'offset': 1})
    assert json.loads(capsys.readouterr().out) == {'success': True, 'updated': 2}


@patch('sync_runner.run_job', return_value=({'success': False, 'error': 'boom'}, 500))
def test_run_failure_exits_one(mock_run, capsys):
    assert sync_runner.main(['run', 'generate-daily-brief']) == 1


def test_bad_param_exits_two():
    assert sync_runner.main(['run', 'sync-cot-reports', '--param', 'novalue']) == 2


def test_unknown_job_is_rejected_by_parser():
    with pytest.raises(SystemExit):
        sync_runner.main(['run', 'not-a-job'])
