"""Per-provider circuit breaker.

One breaker guards each upstream provider (polygon, lunarcrush, ...) so a
dead API stops burning the rate-limit budget of every job that touches it.
Network errors, 429s and 5xx count against the provider; other 4xx are the
caller's fault and leave the breaker closed.
"""
from __future__ import annotations
import logging
import threading
import time
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CLOSED, OPEN, HALF_OPEN = 'CLOSED', 'OPEN', 'HALF_OPEN'


def is_provider_failure(status: Optional[int]) -> bool:
    """``None`` stands for a network error (no response at all)."""
    return status is None or status == 429 or status >= 500


class CircuitBreaker:
    """Opens after ``threshold`` consecutive provider failures.

    While open, calls are refused until ``cooldown`` seconds pass; then one
    trial call is let through (half-open) and its outcome closes or reopens
    the circuit.
    """

    def __init__(self, provider: str, threshold: int, cooldown: float):
        self.provider = provider
        self.threshold = threshold
        self.cooldown = cooldown
        self._lock = threading.Lock()
        self.failures = 0
        self.state = CLOSED
        self.open_until = 0.0
        self._trial_inflight = False

    def allow(self) -> bool:
        with self._lock:
            if self.state == OPEN and time.time() >= self.open_until:
                self.state = HALF_OPEN
                self._trial_inflight = False
            if self.state == OPEN:
                return False
            if self.state == HALF_OPEN:
                if self._trial_inflight:
                    return False
                self._trial_inflight = True
            return True

    def record(self, status: Optional[int]) -> None:
        """Feed the outcome of one call: an HTTP status, or None on network error."""
        if is_provider_failure(status):
            self._failed(status)
        else:
            self._succeeded()

    def _succeeded(self) -> None:
        with self._lock:
            recovered = self.state != CLOSED
            self.failures = 0
            self.state = CLOSED
            self.open_until = 0.0
            self._trial_inflight = False
        if recovered:
            logger.info('circuit_breaker.closed', extra={'event': 'circuit_closed', 'provider': self.provider})

    def _failed(self, status: Optional[int]) -> None:
        with self._lock:
            self.failures += 1
            if self.state == HALF_OPEN or (self.state == CLOSED and self.failures >= self.threshold):
                reopened = self.state == HALF_OPEN
                self.state = OPEN
                self.open_until = time.time() + self.cooldown
                self._trial_inflight = False
            else:
                return
        logger.warning('circuit_breaker.reopen' if reopened else 'circuit_breaker.open',
                       extra={'event': 'circuit_open', 'provider': self.provider, 'status': status,
                              'failures': self.failures, 'open_until': self.open_until})

    def seconds_until_retry(self) -> int:
        with self._lock:
            if self.state != OPEN:
                return 0
            return max(0, int(round(self.open_until - time.time())))

    def snapshot(self) -> Dict[str, Any]:
        retry_in = self.seconds_until_retry()
        with self._lock:
            return {
                'state': self.state,
                'failures': self.failures,
                'open_until': self.open_until,
                'retry_in_seconds': retry_in,
                'is_open': self.state == OPEN,
                'is_half_open': self.state == HALF_OPEN,
            }
