from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


def _check_period(period: int) -> None:
    if period <= 0:
        raise ValueError(f"period must be > 0, got {period}")


def sma(values: Sequence[float], period: int) -> list[float | None]:
    """Trailing simple moving average, ``None`` until ``period`` samples exist."""
    _check_period(period)
    result: list[float | None] = []
    window_sum = 0.0
    for i, value in enumerate(values):
        window_sum += value
        if i >= period:
            window_sum -= values[i - period]
        if i >= period - 1:
            result.append(window_sum / period)
        else:
            result.append(None)
    return result


def ema(values: Sequence[float], period: int) -> list[float]:
    """Exponential moving average seeded with the first value.

    Unlike :func:`sma` there is no warm-up: the series is defined from index 0.
    """
    _check_period(period)
    k = 2.0 / (period + 1)
    result: list[float] = []
    prev: float | None = None
    for value in values:
        prev = value if prev is None else value * k + prev * (1.0 - k)
        result.append(prev)
    return result


@dataclass(frozen=True)
class MacdSeries:
    macd_line: list[float]
    signal_line: list[float]
    histogram: list[float]


def macd(
    values: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MacdSeries:
    fast_ema = ema(values, fast)
    slow_ema = ema(values, slow)
    macd_line = [f - s for f, s in zip(fast_ema, slow_ema)]
    signal_line = ema(macd_line, signal)
    histogram = [m - s for m, s in zip(macd_line, signal_line)]
    return MacdSeries(macd_line=macd_line, signal_line=signal_line, histogram=histogram)
