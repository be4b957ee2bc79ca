"""External API call ledger and daily rate-limit monitor."""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from db import StorageError, rows

logger = logging.getLogger(__name__)


def log_api_call(client, api_name: str, function_name: str, success: bool,
                 error_message: Optional[str] = None, call_count: int = 1) -> None:
    record = {
        'api_name': api_name,
        'function_name': function_name,
        'call_count': call_count,
        'success': success,
        'error_message': error_message,
    }
    try:
        rows(client.table('external_api_calls').insert(record))
    except StorageError as e:
        logger.warning('api_usage.log_failed', extra={'event': 'api_usage_log_failed', 'api_name': api_name, 'error': str(e)})


def _utc_midnight(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _hours_until_reset(now: datetime, reset_hour: int) -> int:
    hours = (reset_hour - now.hour) % 24
    return hours or 24


def _status(percent: float, warning: float, critical: float) -> str:
    if percent >= critical * 100:
        return 'critical'
    if percent >= warning * 100:
        return 'warning'
    return 'ok'


def usage_report(client, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    limits = rows(client.table('api_rate_limits').select('*').order('api_name'))
    calls = rows(
        client.table('external_api_calls')
        .select('api_name, call_count')
        .gte('created_at', _utc_midnight(now).isoformat())
    )
    used = defaultdict(int)
    for call in calls:
        used[call.get('api_name')] += call.get('call_count') or 1

    apis = []
    for limit in limits:
        name = limit.get('api_name')
        daily = limit.get('daily_limit') or 0
        count = used.get(name, 0)
        percent = min(100.0, round(count / daily * 100, 1)) if daily else 0.0
        apis.append({
            'api_name': name,
            'description': limit.get('description'),
            'used': count,
            'daily_limit': daily,
            'remaining': max(0, daily - count),
            'percent': percent,
            'status': _status(percent, limit.get('warning_threshold') or 0.7, limit.get('critical_threshold') or 0.9),
            'hours_until_reset': _hours_until_reset(now, limit.get('reset_hour') or 0),
        })
    worst = 'ok'
    for api in apis:
        if api['status'] == 'critical' or (api['status'] == 'warning' and worst == 'ok'):
            worst = api['status']
    return {'apis': apis, 'status': worst, 'checked_at': now.isoformat()}


def recent_calls(client, api_name: str, limit: int = 15) -> list:
    return rows(
        client.table('external_api_calls')
        .select('function_name, success, error_message, call_count, created_at')
        .eq('api_name', api_name)
        .order('created_at', desc=True)
        .limit(limit)
    )
