import logging
import time
from typing import Any, Callable, List, Optional

from config import CONFIG
from http_client import UpstreamError, get_json

logger = logging.getLogger("providers.lunarcrush")

PROVIDER = 'lunarcrush'
TOPIC_ENDPOINTS = ('whatsup', 'posts', 'news', 'creators')


class LunarCrushHandler:
    """
    Handler for the LunarCrush v4 public API (coin universe and topic feeds).

    ``on_call(success, error_message)`` is invoked once per HTTP attempt so
    callers can keep the daily usage ledger accurate.
    """

    BASE_URL = "https://lunarcrush.com/api4/public"

    def __init__(self, api_key: str, on_call: Optional[Callable[[bool, Optional[str]], None]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.api_key = api_key
        self.on_call = on_call or (lambda success, error=None: None)
        self.sleep = sleep
        self.max_attempts = 3

    @property
    def headers(self):
        return {'Authorization': f'Bearer {self.api_key}'}

    def _get_with_retry(self, url: str, params=None) -> Any:
        """GET with 5s/10s/20s waits on HTTP 429."""
        for attempt in range(self.max_attempts):
            try:
                data = get_json(url, provider=PROVIDER, params=params, headers=self.headers, retries=False)
            except UpstreamError as e:
                self.on_call(False, str(e.status or e))
                if e.rate_limited and attempt < self.max_attempts - 1:
                    wait = (2 ** attempt) * CONFIG['LUNARCRUSH_RETRY_BASE']
                    logger.info(f"Rate limited (429), waiting {wait}s before retry {attempt + 1}/{self.max_attempts}")
                    self.sleep(wait)
                    continue
                raise
            self.on_call(True, None)
            return data
        raise UpstreamError(PROVIDER, 'LunarCrush rate limit retries exhausted', status=429)

    def coins_page(self, offset: int, limit: int = 1000) -> List[dict]:
        data = self._get_with_retry(
            f"{self.BASE_URL}/coins/list/v1",
            {'limit': limit, 'offset': offset, 'sort': 'market_cap_rank', 'order': 'asc'},
        )
        return data.get('data') or []

    def topic(self, symbol: str, endpoint: str) -> Optional[Any]:
        """One topic feed for a symbol; None when LunarCrush has nothing or errors."""
        url = f"{self.BASE_URL}/topic/{symbol.lower()}/{endpoint}/v1"
        try:
            data = get_json(url, provider=PROVIDER, headers=self.headers, retries=False)
        except UpstreamError as e:
            self.on_call(False, str(e.status or e))
            logger.info(f"LunarCrush {endpoint} for {symbol}: {e.status or e}")
            return None
        self.on_call(True, None)
        return data
