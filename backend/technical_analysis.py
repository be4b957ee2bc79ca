import numpy as np
import pandas as pd
from typing import Dict, List, Optional

MIN_BARS = 30


def _oldest_first(prices: List[float]) -> pd.Series:
    """Polygon aggregates arrive newest first; indicators roll forward in time."""
    return pd.Series(list(reversed([float(p) for p in prices])), dtype='float64')


def _seeded_ewm(series: pd.Series, period: int, alpha: Optional[float] = None) -> pd.Series:
    """EMA whose first value is the SMA of the first ``period`` points.

    Indexed like ``series`` from position ``period - 1`` onward.
    """
    seed = series.iloc[:period].mean()
    head = pd.Series([seed], index=[series.index[period - 1]], dtype='float64')
    rest = series.iloc[period:]
    seeded = pd.concat([head, rest]) if len(rest) else head
    if alpha is None:
        return seeded.ewm(span=period, adjust=False).mean()
    return seeded.ewm(alpha=alpha, adjust=False).mean()


def _r(value, digits: int = 8) -> Optional[float]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    return round(float(value), digits)


class TechnicalAnalysis:
    """Indicator calculations over close prices ordered newest first"""

    @staticmethod
    def calculate_sma(prices: List[float], period: int) -> Optional[float]:
        if len(prices) < period:
            return None
        return _r(np.mean(np.asarray(prices[:period], dtype=float)))

    @staticmethod
    def calculate_ema(prices: List[float], period: int) -> Optional[float]:
        if len(prices) < period:
            return None
        return _r(_seeded_ewm(_oldest_first(prices), period).iloc[-1])

    @staticmethod
    def calculate_rsi(prices: List[float], period: int = 14) -> Optional[float]:
        """Calculate RSI (Relative Strength Index) with Wilder smoothing"""
        if len(prices) < period + 1:
            return None
        deltas = _oldest_first(prices).diff().iloc[1:].reset_index(drop=True)
        gains = deltas.clip(lower=0)
        losses = (-deltas).clip(lower=0)
        avg_gain = _seeded_ewm(gains, period, alpha=1.0 / period).iloc[-1]
        avg_loss = _seeded_ewm(losses, period, alpha=1.0 / period).iloc[-1]
        if avg_loss == 0:
            return 100.0
        rs = avg_gain / avg_loss
        return round(float(100 - (100 / (1 + rs))), 2)

    @staticmethod
    def calculate_macd(prices: List[float], fast: int = 12, slow: int = 26, signal: int = 9) -> Dict:
        """Calculate MACD (Moving Average Convergence Divergence)"""
        if len(prices) < slow:
            return {"macd": None, "signal": None, "histogram": None}
        series = _oldest_first(prices)
        ema_fast = _seeded_ewm(series, fast)
        ema_slow = _seeded_ewm(series, slow)
        macd_line = (ema_fast - ema_slow).dropna().reset_index(drop=True)
        if len(macd_line) >= signal:
            signal_value = _seeded_ewm(macd_line, signal).iloc[-1]
        else:
            # Too few points for a signal EMA yet
            signal_value = macd_line.iloc[-1]
        macd_value = macd_line.iloc[-1]
        return {
            "macd": _r(macd_value),
            "signal": _r(signal_value),
            "histogram": _r(macd_value - signal_value),
        }


def calculate_all(prices: List[float]) -> Dict[str, Optional[float]]:
    """All stored indicator columns for one token."""
    ta = TechnicalAnalysis()
    macd = ta.calculate_macd(prices)
    return {
        'rsi_14': ta.calculate_rsi(prices, 14),
        'macd': macd['macd'],
        'macd_signal': macd['signal'],
        'macd_histogram': macd['histogram'],
        'sma_20': ta.calculate_sma(prices, 20),
        'sma_50': ta.calculate_sma(prices, 50),
        'sma_200': ta.calculate_sma(prices, 200),
        'ema_12': ta.calculate_ema(prices, 12),
        'ema_26': ta.calculate_ema(prices, 26),
    }
