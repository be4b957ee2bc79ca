import os
from dotenv import load_dotenv

load_dotenv()


class ConfigError(RuntimeError):
    """Raised when a required setting (usually an API secret) is missing."""


def _flag(name, default='false'):
    return str(os.environ.get(name, default)).lower() in {'1', 'true', 'yes'}


CONFIG = {
    # Storage
    'SUPABASE_URL': os.environ.get('SUPABASE_URL', ''),
    'SUPABASE_SERVICE_ROLE_KEY': os.environ.get('SUPABASE_SERVICE_ROLE_KEY', ''),
    # Provider secrets
    'POLYGON_API_KEY': os.environ.get('POLYGON_API_KEY', ''),
    'LUNARCRUSH_API_KEY': os.environ.get('LUNARCRUSH_API_KEY', ''),
    'COINGECKO_API_KEY': os.environ.get('COINGECKO_API_KEY', ''),
    'COINGLASS_API_KEY': os.environ.get('COINGLASS_API_KEY', ''),
    'ANTHROPIC_API_KEY': os.environ.get('ANTHROPIC_API_KEY', ''),
    'ANTHROPIC_MODEL': os.environ.get('ANTHROPIC_MODEL', 'claude-sonnet-4-20250514'),
    # HTTP
    'API_TIMEOUT_CONNECT': int(os.environ.get('API_TIMEOUT_CONNECT', '5')),
    'API_TIMEOUT_READ': int(os.environ.get('API_TIMEOUT_READ', '20')),
    'HTTP_RETRIES': int(os.environ.get('HTTP_RETRIES', '3')),
    'HTTP_RETRY_BACKOFF': float(os.environ.get('HTTP_RETRY_BACKOFF', '1.0')),
    'HTTP_POOL_MAXSIZE': int(os.environ.get('HTTP_POOL_MAXSIZE', '32')),
    'CB_FAIL_THRESHOLD': int(os.environ.get('CB_FAIL_THRESHOLD', '5')),
    'CB_RESET_SECONDS': float(os.environ.get('CB_RESET_SECONDS', '60')),
    # Batching and pacing between provider calls
    'FETCH_BATCH_SIZE': int(os.environ.get('FETCH_BATCH_SIZE', '10')),
    'FETCH_MAX_WORKERS': int(os.environ.get('FETCH_MAX_WORKERS', '10')),
    'TECHNICALS_BATCH_SIZE': int(os.environ.get('TECHNICALS_BATCH_SIZE', '5')),
    'TECHNICALS_BATCH_DELAY': float(os.environ.get('TECHNICALS_BATCH_DELAY', '0.5')),
    'TECHNICALS_MAX_TOKENS': int(os.environ.get('TECHNICALS_MAX_TOKENS', '100')),
    'COINGECKO_BATCH_DELAY': float(os.environ.get('COINGECKO_BATCH_DELAY', '1.5')),
    'LUNARCRUSH_PAGE_DELAY': float(os.environ.get('LUNARCRUSH_PAGE_DELAY', '1.5')),
    'LUNARCRUSH_TOKEN_DELAY': float(os.environ.get('LUNARCRUSH_TOKEN_DELAY', '6')),
    'LUNARCRUSH_RETRY_BASE': float(os.environ.get('LUNARCRUSH_RETRY_BASE', '5')),
    'UPSERT_CHUNK_SIZE': int(os.environ.get('UPSERT_CHUNK_SIZE', '50')),
    # Public API
    'DERIVS_RATE_LIMIT': int(os.environ.get('DERIVS_RATE_LIMIT', '30')),
    'DERIVS_RATE_WINDOW': int(os.environ.get('DERIVS_RATE_WINDOW', '300')),
    'DERIVS_CACHE_TTL': int(os.environ.get('DERIVS_CACHE_TTL', '300')),
    'CHAT_MAX_TOKENS': int(os.environ.get('CHAT_MAX_TOKENS', '1024')),
    # Server
    'HOST': os.environ.get('HOST', '0.0.0.0'),
    'PORT': int(os.environ.get('PORT', '5001')),
    'DEBUG': _flag('DEBUG'),
    'CORS_ALLOWED_ORIGINS': os.environ.get('CORS_ALLOWED_ORIGINS', '*'),
}

_SECRET_KEYS = {
    'SUPABASE_SERVICE_ROLE_KEY', 'POLYGON_API_KEY', 'LUNARCRUSH_API_KEY',
    'COINGECKO_API_KEY', 'COINGLASS_API_KEY', 'ANTHROPIC_API_KEY',
}


def require(key: str) -> str:
    value = CONFIG.get(key)
    if not value:
        raise ConfigError(f'{key} not configured')
    return value


def redacted() -> dict:
    """Copy of CONFIG safe to log."""
    out = {}
    for key, value in CONFIG.items():
        if key in _SECRET_KEYS:
            out[key] = '***' if value else '(unset)'
        else:
            out[key] = value
    return out
