"""Job registry and runner shared by the HTTP surface and the CLI."""
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

import asset_sentiment
import market_brief
import sync_cot_reports
import sync_forex_cards
import sync_token_ai_summaries
import sync_token_cards_coingecko
import sync_token_cards_lunarcrush
import sync_token_cards_polygon
from db import get_client
from logging_config import REQUEST_ID_CTX, new_correlation_id

logger = logging.getLogger(__name__)

JOBS: Dict[str, Callable] = {
    sync_token_cards_polygon.JOB_NAME: sync_token_cards_polygon.run,
    sync_token_cards_coingecko.JOB_NAME: sync_token_cards_coingecko.run,
    sync_token_cards_lunarcrush.JOB_NAME: sync_token_cards_lunarcrush.run,
    sync_token_cards_lunarcrush.ENHANCED_JOB_NAME: sync_token_cards_lunarcrush.run_enhanced,
    sync_token_ai_summaries.JOB_NAME: sync_token_ai_summaries.run,
    sync_forex_cards.JOB_NAME: sync_forex_cards.run,
    sync_cot_reports.JOB_NAME: sync_cot_reports.run,
    asset_sentiment.JOB_NAME: asset_sentiment.run,
    market_brief.JOB_NAME: market_brief.run,
}

_METRICS_LOCK = threading.Lock()
_JOB_METRICS: Dict[str, Dict] = {}


def _record(name: str, ok: bool, duration_ms: int) -> None:
    with _METRICS_LOCK:
        m = _JOB_METRICS.setdefault(name, {'runs': 0, 'failures': 0, 'last_duration_ms': None,
                                           'last_result': None, 'last_run_at': None})
        m['runs'] += 1
        if not ok:
            m['failures'] += 1
        m['last_duration_ms'] = duration_ms
        m['last_result'] = 'success' if ok else 'failure'
        m['last_run_at'] = time.time()


def job_metrics() -> Dict[str, Dict]:
    with _METRICS_LOCK:
        return {name: dict(m) for name, m in _JOB_METRICS.items()}


def reset_metrics() -> None:
    with _METRICS_LOCK:
        _JOB_METRICS.clear()


def run_job(name: str, params: Optional[Dict] = None, client=None) -> Tuple[dict, int]:
    """Run one job and wrap its result as ``(body, http_status)``.

    Any exception the job raises becomes ``{'success': False, 'error': ...}``
    with status 500; the job's own partial writes stay in place.
    """
    fn = JOBS.get(name)
    if fn is None:
        return {'success': False, 'error': f'Unknown job: {name}'}, 404

    token = None
    if REQUEST_ID_CTX.get() is None:
        token = REQUEST_ID_CTX.set(new_correlation_id('job'))
    start = time.time()
    logger.info(f'Starting {name}', extra={'event': 'job_start', 'job': name})
    try:
        result = fn(client if client is not None else get_client(), params or {})
    except Exception as e:
        duration_ms = int((time.time() - start) * 1000)
        _record(name, False, duration_ms)
        logger.exception(f'{name} failed: {e}', extra={'event': 'job_failed', 'job': name})
        return {'success': False, 'error': str(e)}, 500
    finally:
        if token is not None:
            REQUEST_ID_CTX.reset(token)

    duration_ms = int((time.time() - start) * 1000)
    _record(name, True, duration_ms)
    logger.info(f'{name} complete in {duration_ms}ms',
                extra={'event': 'job_complete', 'job': name, 'duration_ms': duration_ms})
    return {'success': True, **(result or {})}, 200
