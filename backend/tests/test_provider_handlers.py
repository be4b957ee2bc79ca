from unittest.mock import MagicMock, patch

import pytest

import http_client
from anthropic_handler import AnthropicHandler
from cftc_handler import CFTCHandler
from coingecko_handler import CoinGeckoHandler
from coinglass_handler import CoinGlassHandler
from conftest import http_response
from http_client import UpstreamError
from lunarcrush_handler import LunarCrushHandler
from polygon_handler import PolygonHandler


# ----------------------------------------------------------------------------
# Polygon
# ----------------------------------------------------------------------------

@patch('polygon_handler.get_json')
def test_polygon_crypto_snapshot_keyed_by_ticker(mock_get):
    mock_get.return_value = {'tickers': [{'ticker': 'X:BTCUSD', 'lastTrade': {'p': 1}}, {'foo': 1}]}
    snap = PolygonHandler('k').crypto_snapshot()
    assert list(snap) == ['X:BTCUSD']
    assert mock_get.call_args.kwargs['params']['apiKey'] == 'k'


@patch('polygon_handler.get_json')
def test_polygon_close_series_prefers_minute_bars(mock_get):
    mock_get.return_value = {'results': [{'c': float(i)} for i in range(60)]}
    closes = PolygonHandler('k').close_series('X:BTCUSD', now_ms=1_000_000_000)
    assert len(closes) == 60
    assert '/range/1/minute/' in mock_get.call_args.args[0]


@patch('polygon_handler.get_json')
def test_polygon_close_series_falls_back_to_hourly(mock_get):
    mock_get.side_effect = [{'results': [{'c': 1.0}] * 10}, {'results': [{'c': 2.0}] * 30}]
    closes = PolygonHandler('k').close_series('X:ABCUSD', now_ms=1_000_000_000)
    assert closes == [2.0] * 30
    assert '/range/1/hour/' in mock_get.call_args.args[0]


@patch('polygon_handler.get_json')
def test_polygon_close_series_too_short_or_failing_is_none(mock_get):
    mock_get.side_effect = [{'results': []}, {'results': [{'c': 1.0}] * 5}]
    assert PolygonHandler('k').close_series('X:ABCUSD') is None
    mock_get.side_effect = UpstreamError('polygon', 'boom', status=500)
    assert PolygonHandler('k').close_series('X:ABCUSD') is None


# ----------------------------------------------------------------------------
# LunarCrush
# ----------------------------------------------------------------------------

@patch('lunarcrush_handler.get_json')
def test_lunarcrush_retries_rate_limit_with_backoff(mock_get):
    mock_get.side_effect = [UpstreamError('lunarcrush', 'slow', status=429),
                            UpstreamError('lunarcrush', 'slow', status=429),
                            {'data': [{'symbol': 'BTC'}]}]
    sleep, on_call = MagicMock(), MagicMock()
    with patch.dict('config.CONFIG', {'LUNARCRUSH_RETRY_BASE': 5}):
        handler = LunarCrushHandler('k', on_call=on_call, sleep=sleep)
        assert handler.coins_page(0) == [{'symbol': 'BTC'}]
    assert [c.args[0] for c in sleep.call_args_list] == [5, 10]
    assert [c.args[0] for c in on_call.call_args_list] == [False, False, True]
    assert mock_get.call_args.kwargs['headers'] == {'Authorization': 'Bearer k'}


@patch('lunarcrush_handler.get_json')
def test_lunarcrush_gives_up_after_three_rate_limits(mock_get):
    mock_get.side_effect = UpstreamError('lunarcrush', 'slow', status=429)
    with pytest.raises(UpstreamError):
        LunarCrushHandler('k', sleep=MagicMock()).coins_page(0)
    assert mock_get.call_count == 3


@patch('lunarcrush_handler.get_json')
def test_lunarcrush_other_errors_are_not_retried(mock_get):
    mock_get.side_effect = UpstreamError('lunarcrush', 'bad', status=500)
    sleep = MagicMock()
    with pytest.raises(UpstreamError):
        LunarCrushHandler('k', sleep=sleep).coins_page(0)
    sleep.assert_not_called()


@patch('lunarcrush_handler.get_json')
def test_lunarcrush_topic_failure_is_none(mock_get):
    mock_get.side_effect = UpstreamError('lunarcrush', 'missing', status=404)
    assert LunarCrushHandler('k').topic('BTC', 'posts') is None
    assert '/topic/btc/posts/v1' in mock_get.call_args.args[0]


# ----------------------------------------------------------------------------
# CoinGecko / CFTC / CoinGlass
# ----------------------------------------------------------------------------

@patch('coingecko_handler.get_json')
def test_coingecko_pro_and_public_endpoints(mock_get):
    mock_get.return_value = [{'id': 'bitcoin'}]
    assert CoinGeckoHandler('key').markets(['bitcoin']) == [{'id': 'bitcoin'}]
    assert mock_get.call_args.args[0].startswith(CoinGeckoHandler.PRO_URL)
    assert mock_get.call_args.kwargs['headers'] == {'x-cg-pro-api-key': 'key'}
    CoinGeckoHandler().markets(['bitcoin'])
    assert mock_get.call_args.args[0].startswith(CoinGeckoHandler.PUBLIC_URL)


def test_coingecko_rejects_oversized_batches():
    with pytest.raises(ValueError):
        CoinGeckoHandler().markets([str(i) for i in range(251)])


@patch('cftc_handler.get_json')
def test_cftc_query_params(mock_get):
    mock_get.return_value = [{'report_date_as_yyyy_mm_dd': '2024-05-28'}]
    CFTCHandler().latest_reports()
    params = mock_get.call_args.kwargs['params']
    assert params['$where'] == "cftc_contract_market_code in ('084691','088691')"
    assert params['$order'] == 'report_date_as_yyyy_mm_dd DESC'
    assert params['$limit'] == 50


@patch('coinglass_handler.get_json')
def test_coinglass_failed_half_reports_zeros(mock_get):
    mock_get.side_effect = [{'success': True, 'data': [{'fundingRate': '0.0001'}]},
                            UpstreamError('coinglass', 'down', status=503)]
    row = CoinGlassHandler('k').derivatives('BTC')
    assert row['fundingRate'] == pytest.approx(0.0001)
    assert row['liquidations24h'] == {'long': 0.0, 'short': 0.0, 'total': 0.0}
    assert row['source'] == 'coinglass'


# ----------------------------------------------------------------------------
# Anthropic
# ----------------------------------------------------------------------------

@patch.object(http_client._SESSION, 'request')
def test_anthropic_complete_joins_text_blocks(mock_req):
    mock_req.return_value = http_response(200, {'content': [{'type': 'text', 'text': 'Hello '},
                                                            {'type': 'tool_use'},
                                                            {'type': 'text', 'text': 'world'}]})
    assert AnthropicHandler('k', model='m').complete('sys', [{'role': 'user', 'content': 'hi'}]) == 'Hello world'
    body = mock_req.call_args.kwargs['json']
    assert body['model'] == 'm'
    assert body['stream'] is False
    assert mock_req.call_args.kwargs['headers']['anthropic-version'] == '2023-06-01'


@patch.object(http_client._PLAIN_SESSION, 'request')
def test_anthropic_stream_passes_lines_through(mock_req):
    resp = http_response(200, lines=[b'event: content_block_delta', b'data: {"type":"ping"}', b''])
    mock_req.return_value = resp
    lines = list(AnthropicHandler('k').stream('sys', [{'role': 'user', 'content': 'hi'}]))
    assert lines == [b'event: content_block_delta\n', b'data: {"type":"ping"}\n', b'\n']
    resp.close.assert_called_once()


@patch.object(http_client._PLAIN_SESSION, 'request')
def test_anthropic_stream_raises_before_streaming(mock_req):
    mock_req.return_value = http_response(401, text='unauthorized')
    with pytest.raises(UpstreamError) as exc:
        AnthropicHandler('k').stream('sys', [])
    assert exc.value.status == 401
