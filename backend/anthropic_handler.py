import logging
from typing import Dict, Iterator, List

from config import CONFIG
from http_client import send, request_json

logger = logging.getLogger("providers.anthropic")

PROVIDER = 'anthropic'


class AnthropicHandler:
    """
    Server-side proxy to the Anthropic Messages API (keeps the key off the
    client). ``stream`` passes SSE lines straight through.
    """

    URL = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"

    def __init__(self, api_key: str, model: str = None):
        self.api_key = api_key
        self.model = model or CONFIG['ANTHROPIC_MODEL']

    @property
    def headers(self):
        return {
            'x-api-key': self.api_key,
            'anthropic-version': self.API_VERSION,
            'content-type': 'application/json',
        }

    def _payload(self, system: str, messages: List[Dict[str, str]], max_tokens: int, stream: bool):
        return {
            'model': self.model,
            'max_tokens': max_tokens,
            'system': system,
            'messages': messages,
            'stream': stream,
        }

    def complete(self, system: str, messages: List[Dict[str, str]], max_tokens: int = 4096) -> str:
        data = request_json('POST', self.URL, provider=PROVIDER, headers=self.headers,
                            json=self._payload(system, messages, max_tokens, False),
                            timeout=(CONFIG['API_TIMEOUT_CONNECT'], 120))
        blocks = data.get('content') or []
        return ''.join(b.get('text', '') for b in blocks if b.get('type') == 'text')

    def stream(self, system: str, messages: List[Dict[str, str]], max_tokens: int = 1024) -> Iterator[bytes]:
        """Open the stream eagerly so HTTP errors surface before any bytes are sent."""
        resp = send('POST', self.URL, provider=PROVIDER, headers=self.headers,
                    json=self._payload(system, messages, max_tokens, True),
                    timeout=(CONFIG['API_TIMEOUT_CONNECT'], 120), stream=True, retries=False)

        def _lines():
            try:
                for line in resp.iter_lines():
                    yield line + b'\n'
            finally:
                resp.close()

        return _lines()
