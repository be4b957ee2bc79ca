import logging
import time
from typing import Any, Dict, List, Optional

from http_client import UpstreamError, get_json

logger = logging.getLogger("providers.polygon")

PROVIDER = 'polygon'


class PolygonHandler:
    """
    Thin client for the Polygon.io REST endpoints the sync jobs use:
    crypto/forex snapshots, aggregates and reference news.
    """

    BASE_URL = "https://api.polygon.io"

    def __init__(self, api_key: str):
        self.api_key = api_key

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        query = dict(params or {})
        query['apiKey'] = self.api_key
        return get_json(f"{self.BASE_URL}{path}", provider=PROVIDER, params=query)

    def crypto_snapshot(self) -> Dict[str, dict]:
        """All crypto tickers keyed by Polygon ticker (``X:BTCUSD``)."""
        data = self._get("/v2/snapshot/locale/global/markets/crypto/tickers")
        tickers = data.get('tickers') or []
        return {t['ticker']: t for t in tickers if t.get('ticker')}

    def forex_snapshot(self) -> List[dict]:
        data = self._get("/v2/snapshot/locale/global/markets/forex/tickers")
        return data.get('tickers') or []

    def previous_close(self, ticker: str) -> Optional[dict]:
        data = self._get(f"/v2/aggs/ticker/{ticker}/prev", {'adjusted': 'true'})
        results = data.get('results') or []
        return results[0] if results else None

    def _bars(self, ticker: str, timespan: str, span_ms: int, bars: int, now_ms: int) -> List[dict]:
        data = self._get(
            f"/v2/aggs/ticker/{ticker}/range/1/{timespan}/{now_ms - span_ms}/{now_ms}",
            {'adjusted': 'true', 'sort': 'desc', 'limit': bars},
        )
        return data.get('results') or []

    def close_series(self, ticker: str, bars: int = 250, now_ms: Optional[int] = None) -> Optional[List[float]]:
        """Recent closes, newest first.

        Minute bars are preferred; thinly traded pairs fall back to hourly bars.
        Returns None when even the hourly series is too short to be useful.
        """
        now_ms = now_ms or int(time.time() * 1000)
        try:
            results = self._bars(ticker, 'minute', bars * 60 * 1000, bars, now_ms)
            if len(results) < 50:
                results = self._bars(ticker, 'hour', bars * 60 * 60 * 1000, bars, now_ms)
                if len(results) < 20:
                    return None
        except UpstreamError as e:
            logger.info(f"OHLCV {ticker} failed: {e}")
            return None
        return [r['c'] for r in results if r.get('c') is not None]

    def news(self, limit: int = 100, ticker: Optional[str] = None) -> List[dict]:
        params: Dict[str, Any] = {'limit': limit, 'order': 'desc'}
        if ticker:
            params['ticker'] = ticker
        data = self._get("/v2/reference/news", params)
        return data.get('results') or []
