"""Pure-Python indicator math.

Every function returns a list aligned index-for-index with its input, with
None for bars where the indicator is still warming up. Formulas follow the
charting conventions the strategy editor displays (Wilder smoothing for RSI
and ATR, SMA-seeded EMA, population standard deviation for Bollinger Bands).
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from ..models.data import Candle, ms_to_datetime

Series = list[float | None]


# =============================================================================
# Building blocks
# =============================================================================


def sma(values: Sequence[float | None], period: int) -> Series:
    """Simple moving average. None until `period` consecutive values exist."""
    result: Series = []
    window: list[float] = []
    total = 0.0
    for value in values:
        if value is None:
            window.clear()
            total = 0.0
            result.append(None)
            continue
        window.append(value)
        total += value
        if len(window) > period:
            total -= window.pop(0)
        result.append(total / period if len(window) == period else None)
    return result


def ema(values: Sequence[float | None], period: int) -> Series:
    """Exponential moving average seeded with the SMA of the first `period` values."""
    alpha = 2.0 / (period + 1)
    result: Series = []
    seed: list[float] = []
    prev: float | None = None
    for value in values:
        if value is None:
            result.append(prev)
            continue
        if prev is None:
            seed.append(value)
            if len(seed) == period:
                prev = sum(seed) / period
            result.append(prev)
            continue
        prev = alpha * value + (1 - alpha) * prev
        result.append(prev)
    return result


def rma(values: Sequence[float], period: int) -> Series:
    """Wilder's smoothing (alpha = 1/period), seeded with an SMA."""
    alpha = 1.0 / period
    result: Series = []
    prev: float | None = None
    for i, value in enumerate(values):
        if i < period - 1:
            result.append(None)
        elif i == period - 1:
            prev = sum(values[: period]) / period
            result.append(prev)
        else:
            prev = alpha * value + (1 - alpha) * prev
            result.append(prev)
    return result


def stdev(values: Sequence[float], period: int) -> Series:
    """Population standard deviation over a rolling window."""
    result: Series = []
    for i in range(len(values)):
        if i < period - 1:
            result.append(None)
            continue
        window = values[i - period + 1 : i + 1]
        mean = sum(window) / period
        result.append(math.sqrt(sum((v - mean) ** 2 for v in window) / period))
    return result


def _rolling(values: Sequence[float], period: int, fn) -> Series:
    return [None if i < period - 1 else fn(values[i - period + 1 : i + 1]) for i in range(len(values))]


# =============================================================================
# Indicators
# =============================================================================


def calculate_sma(candles: Sequence[Candle], length: int = 20) -> Series:
    return sma([c.close for c in candles], length)


def calculate_ema(candles: Sequence[Candle], length: int = 20) -> Series:
    return ema([c.close for c in candles], length)


def calculate_rsi(candles: Sequence[Candle], length: int = 14) -> Series:
    """Relative Strength Index using Wilder's smoothing.

    The first bar has no change, so values start at index `length`.
    """
    if len(candles) < 2:
        return [None] * len(candles)
    closes = [c.close for c in candles]
    gains = [max(closes[i] - closes[i - 1], 0.0) for i in range(1, len(closes))]
    losses = [max(closes[i - 1] - closes[i], 0.0) for i in range(1, len(closes))]
    avg_gain = rma(gains, length)
    avg_loss = rma(losses, length)

    result: Series = [None]
    for gain, loss in zip(avg_gain, avg_loss, strict=True):
        if gain is None or loss is None:
            result.append(None)
        elif loss == 0:
            result.append(100.0)
        elif gain == 0:
            result.append(0.0)
        else:
            result.append(100.0 - 100.0 / (1.0 + gain / loss))
    return result


def calculate_macd(
    candles: Sequence[Candle], fast: int = 12, slow: int = 26, signal: int = 9
) -> dict[str, Series]:
    """MACD line, signal line and histogram."""
    closes = [c.close for c in candles]
    fast_ema = ema(closes, fast)
    slow_ema = ema(closes, slow)
    macd_line: Series = [
        f - s if f is not None and s is not None else None
        for f, s in zip(fast_ema, slow_ema, strict=True)
    ]
    signal_line = ema(macd_line, signal)
    histogram: Series = [
        m - s if m is not None and s is not None else None
        for m, s in zip(macd_line, signal_line, strict=True)
    ]
    # The signal line is only defined once it is seeded
    macd_out = [m if s is not None else None for m, s in zip(macd_line, signal_line, strict=True)]
    return {"macd": macd_out, "signal": signal_line, "histogram": histogram}


def calculate_bollinger(
    candles: Sequence[Candle], length: int = 20, std_dev: float = 2.0
) -> dict[str, Series]:
    closes = [c.close for c in candles]
    basis = sma(closes, length)
    dev = stdev(closes, length)
    upper: Series = []
    lower: Series = []
    for b, d in zip(basis, dev, strict=True):
        if b is None or d is None:
            upper.append(None)
            lower.append(None)
        else:
            upper.append(b + std_dev * d)
            lower.append(b - std_dev * d)
    return {"upper": upper, "middle": basis, "lower": lower}


def calculate_stochastic(
    candles: Sequence[Candle], k: int = 14, smooth_k: int = 1, d: int = 3
) -> dict[str, Series]:
    """Stochastic oscillator. A flat high/low range reads as 50."""
    highest = _rolling([c.high for c in candles], k, max)
    lowest = _rolling([c.low for c in candles], k, min)
    raw_k: Series = []
    for candle, hi, lo in zip(candles, highest, lowest, strict=True):
        if hi is None or lo is None:
            raw_k.append(None)
        elif hi == lo:
            raw_k.append(50.0)
        else:
            raw_k.append(100.0 * (candle.close - lo) / (hi - lo))
    k_line = sma(raw_k, smooth_k) if smooth_k > 1 else raw_k
    d_line = sma(k_line, d)
    return {"k": k_line, "d": d_line}


def calculate_atr(candles: Sequence[Candle], length: int = 14) -> Series:
    """Average True Range (Wilder's smoothing of the true range)."""
    if not candles:
        return []
    true_range = [candles[0].high - candles[0].low]
    for prev, curr in zip(candles, candles[1:]):
        true_range.append(
            max(curr.high - curr.low, abs(curr.high - prev.close), abs(curr.low - prev.close))
        )
    return rma(true_range, length)


def calculate_vwap(candles: Sequence[Candle], reset_daily: bool = True) -> Series:
    """Volume-weighted average of the typical price, reset each UTC day.

    Bars without volume count with a weight of one.
    """
    result: Series = []
    cum_pv = 0.0
    cum_volume = 0.0
    last_day = None
    for candle in candles:
        day = ms_to_datetime(candle.timestamp).date()
        if reset_daily and last_day is not None and day != last_day:
            cum_pv = 0.0
            cum_volume = 0.0
        last_day = day
        typical = (candle.high + candle.low + candle.close) / 3
        volume = candle.volume or 1.0
        cum_pv += typical * volume
        cum_volume += volume
        result.append(cum_pv / cum_volume)
    return result


def calculate_rolling_up_pct(candles: Sequence[Candle], length: int = 50) -> Series:
    """Share of the last `length` bars that closed at or above their open, in percent."""
    is_up = [1.0 if c.close >= c.open else 0.0 for c in candles]
    return _rolling(is_up, length, lambda window: sum(window) / length * 100.0)


# =============================================================================
# Cross-timeframe alignment
# =============================================================================


def align_series(
    values: Sequence[float | None],
    source_candles: Sequence[Candle],
    source_interval_ms: int,
    target_candles: Sequence[Candle],
    target_interval_ms: int,
) -> Series:
    """Align an indicator series onto another timeframe's bars.

    Each target bar takes the latest source value whose bar had closed by the
    time the target bar closed. Target bars before any closed source bar get None.
    """
    result: Series = []
    j = -1
    for target in target_candles:
        close_time = target.timestamp + target_interval_ms
        while (
            j + 1 < len(source_candles)
            and source_candles[j + 1].timestamp + source_interval_ms <= close_time
        ):
            j += 1
        result.append(values[j] if j >= 0 else None)
    return result
