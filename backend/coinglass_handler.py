import logging
from typing import Any, Dict

from http_client import UpstreamError, get_json

logger = logging.getLogger("providers.coinglass")

PROVIDER = 'coinglass'


def _f(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class CoinGlassHandler:
    """Funding rates and liquidation totals from the CoinGlass public v2 API."""

    BASE_URL = "https://open-api.coinglass.com/public/v2"

    def __init__(self, api_key: str):
        self.api_key = api_key

    @property
    def headers(self):
        return {'coinglassSecret': self.api_key}

    def funding_rate(self, symbol: str) -> float:
        data = get_json(f"{self.BASE_URL}/funding", provider=PROVIDER,
                        params={'symbol': symbol}, headers=self.headers)
        if data.get('success') and data.get('data'):
            return _f(data['data'][0].get('fundingRate'))
        return 0.0

    def liquidations_24h(self, symbol: str) -> Dict[str, float]:
        data = get_json(f"{self.BASE_URL}/liquidation", provider=PROVIDER,
                        params={'symbol': symbol, 'timeType': '24h'}, headers=self.headers)
        liq = data.get('data') if data.get('success') else None
        if not liq:
            return {'long': 0.0, 'short': 0.0, 'total': 0.0}
        return {
            'long': _f(liq.get('longLiquidationUsd')),
            'short': _f(liq.get('shortLiquidationUsd')),
            'total': _f(liq.get('totalLiquidationUsd')),
        }

    def derivatives(self, symbol: str) -> Dict[str, Any]:
        """Funding and liquidations for one symbol; a failed half reports zeros."""
        try:
            funding = self.funding_rate(symbol)
        except UpstreamError as e:
            logger.warning(f"CoinGlass funding API error for {symbol}: {e}")
            funding = 0.0
        try:
            liquidations = self.liquidations_24h(symbol)
        except UpstreamError as e:
            logger.warning(f"CoinGlass liquidation API error for {symbol}: {e}")
            liquidations = {'long': 0.0, 'short': 0.0, 'total': 0.0}
        return {'symbol': symbol, 'fundingRate': funding, 'liquidations24h': liquidations, 'source': 'coinglass'}
