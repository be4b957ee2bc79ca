import logging
from typing import List

from http_client import get_json

logger = logging.getLogger("providers.coingecko")

PROVIDER = 'coingecko'


class CoinGeckoHandler:
    """
    Handler for CoinGecko market data. Uses the pro endpoint when an API key
    is configured and the public endpoint otherwise.
    """

    PRO_URL = "https://pro-api.coingecko.com/api/v3"
    PUBLIC_URL = "https://api.coingecko.com/api/v3"
    MAX_IDS = 250

    def __init__(self, api_key: str = ''):
        self.api_key = api_key

    @property
    def base_url(self) -> str:
        return self.PRO_URL if self.api_key else self.PUBLIC_URL

    @property
    def headers(self):
        return {'x-cg-pro-api-key': self.api_key} if self.api_key else {}

    def markets(self, ids: List[str]) -> List[dict]:
        if len(ids) > self.MAX_IDS:
            raise ValueError(f'at most {self.MAX_IDS} ids per markets call')
        params = {
            'vs_currency': 'usd',
            'ids': ','.join(ids),
            'order': 'market_cap_desc',
            'per_page': self.MAX_IDS,
            'page': 1,
            'sparkline': 'false',
            'price_change_percentage': '24h',
        }
        return get_json(f"{self.base_url}/coins/markets", provider=PROVIDER, params=params, headers=self.headers) or []
