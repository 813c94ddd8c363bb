"""Indicator calculations (Wilder RSI, VWAP) and closed-bar filtering.

All functions are pure. Insufficient data yields a sentinel instead of an
exception: ``None`` for RSI, ``0.0`` for VWAP.
"""
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from option_seller.domain.models import Bar


def _wilder_averages(values: Sequence[float], period: int):
    """Yield (index, avg_gain, avg_loss) for every close from ``period`` on."""
    gains = []
    losses = []
    for i in range(1, len(values)):
        delta = values[i] - values[i - 1]
        gains.append(max(delta, 0.0))
        losses.append(max(-delta, 0.0))

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    yield period, avg_gain, avg_loss
    for i in range(period, len(gains)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        yield i + 1, avg_gain, avg_loss


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))


def rsi(values: Sequence[float], period: int = 14) -> Optional[float]:
    """Wilder-smoothed RSI at the last value, or None below ``period + 1`` values."""
    if period < 1 or not values or len(values) < period + 1:
        return None
    result = None
    for _, avg_gain, avg_loss in _wilder_averages(values, period):
        result = _rsi_value(avg_gain, avg_loss)
    return result


def rsi_series(values: Sequence[float], period: int = 14) -> List[Optional[float]]:
    """RSI aligned with ``values``; entries before the first full window are None."""
    series: List[Optional[float]] = [None] * len(values)
    if period < 1 or len(values) < period + 1:
        return series
    for index, avg_gain, avg_loss in _wilder_averages(values, period):
        series[index] = _rsi_value(avg_gain, avg_loss)
    return series


def vwap(bars: Sequence[Bar], window: Optional[int] = None) -> float:
    """
    Volume-weighted average of the typical price.

    ``window=None`` uses every bar given (session-to-date); an int uses only
    the most recent ``window`` bars. Returns 0.0 when there is no volume.
    """
    if not bars:
        return 0.0
    selected = bars[-window:] if window else bars
    total_volume = sum(bar.volume for bar in selected)
    if total_volume <= 0:
        return 0.0
    return sum(bar.typical_price * bar.volume for bar in selected) / total_volume


def closed_bars(bars: Sequence[Bar], now: datetime, interval: timedelta) -> List[Bar]:
    """Drop bars whose bucket has not finished by ``now`` (the forming bar)."""
    return [bar for bar in bars if bar.timestamp + interval <= now]
