"""Metrics exposition helpers for JSON and Prometheus outputs."""
from __future__ import annotations
import re
from typing import Any, Dict


def _metric_name(raw: str) -> str:
    return re.sub(r'[^a-zA-Z0-9_]', '_', raw)


def emit_prometheus(lines: list[str], name: str, value: Any, mtype: str, help_text: str):
    lines.append(f'# HELP {name} {help_text}')
    lines.append(f'# TYPE {name} {mtype}')
    if value is None:
        value = 'NaN'
    elif value is True or value is False:
        value = int(value)
    lines.append(f'{name} {value}')


def emit_job_prometheus(lines: list[str], jobs: Dict[str, Dict[str, Any]]):
    for job, m in sorted(jobs.items()):
        name = _metric_name(job)
        emit_prometheus(lines, f'job_{name}_runs_total', m.get('runs', 0), 'counter', f'Total runs of {job}')
        emit_prometheus(lines, f'job_{name}_failures_total', m.get('failures', 0), 'counter', f'Failed runs of {job}')
        emit_prometheus(lines, f'job_{name}_last_duration_ms', m.get('last_duration_ms'), 'gauge',
                        f'Duration of the last {job} run in milliseconds')
        emit_prometheus(lines, f'job_{name}_last_success', m.get('last_result') == 'success', 'gauge',
                        f'1 if the last {job} run succeeded')


def emit_breaker_prometheus(lines: list[str], breakers: Dict[str, Dict[str, Any]]):
    for provider, snap in sorted(breakers.items()):
        name = _metric_name(provider)
        emit_prometheus(lines, f'circuit_{name}_open', snap.get('is_open', False), 'gauge',
                        f'Circuit breaker open flag for {provider}')
        emit_prometheus(lines, f'circuit_{name}_failures', snap.get('failures', 0), 'gauge',
                        f'Consecutive failures recorded for {provider}')
