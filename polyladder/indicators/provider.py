"""Indicator value provider.

The simulator only sees indicators through the `IndicatorProvider` protocol:
given a declared indicator and a candle series, return one value per candle
(None during warmup), or a named map of such series for multi-output
indicators.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from ..models.data import Candle
from ..models.strategy import Indicator, IndicatorType
from . import calculator

logger = logging.getLogger(__name__)

# Named outputs of each indicator type; the first is read when no subfield is given
OUTPUT_FIELDS: dict[IndicatorType, tuple[str, ...]] = {
    IndicatorType.MACD: ("histogram", "macd", "signal"),
    IndicatorType.BOLLINGER_BANDS: ("middle", "upper", "lower"),
    IndicatorType.STOCHASTIC: ("k", "d"),
}
SINGLE_OUTPUT = "value"


def output_fields(indicator_type: IndicatorType) -> tuple[str, ...]:
    return OUTPUT_FIELDS.get(indicator_type, (SINGLE_OUTPUT,))


def default_output(indicator_type: IndicatorType) -> str:
    return output_fields(indicator_type)[0]


@dataclass
class IndicatorSeries:
    """Per-candle outputs of one indicator, aligned with its input candles."""

    outputs: dict[str, list[float | None]]

    def field(self, name: str) -> list[float | None]:
        return self.outputs[name]

    def __len__(self) -> int:
        return len(next(iter(self.outputs.values()), []))


class IndicatorProvider(Protocol):
    """Computes indicator values for a candle series."""

    def compute(self, indicator: Indicator, candles: list[Candle]) -> IndicatorSeries:
        """Return the indicator's outputs, one value per candle.

        Args:
            indicator: Declared indicator (type and parameters)
            candles: Candles of the indicator's own timeframe, oldest first

        Returns:
            IndicatorSeries keyed by output name (see `output_fields`)
        """
        ...


def _param(params: dict[str, float], *names: str, default: float) -> float:
    for name in names:
        value = params.get(name)
        if value:
            return value
    return default


def warmup_bars(indicator: Indicator) -> int:
    """Bars needed before an indicator produces its first value."""
    p = indicator.parameters
    match indicator.type:
        case IndicatorType.MACD:
            return int(_param(p, "slow", default=26) + _param(p, "signal", default=9))
        case IndicatorType.STOCHASTIC:
            return int(
                _param(p, "k", "length", "period", default=14)
                + _param(p, "smoothK", "smoothing", default=1)
                + _param(p, "d", default=3)
            )
        case IndicatorType.RSI | IndicatorType.ATR:
            return int(_param(p, "length", "period", default=14)) + 1
        case IndicatorType.ROLLING_UP_PCT:
            return int(_param(p, "length", "period", default=50))
        case IndicatorType.VWAP:
            return 1
        case _:
            return int(_param(p, "length", "period", default=20))


class BuiltinIndicatorProvider:
    """IndicatorProvider backed by the pure-Python calculator."""

    def compute(self, indicator: Indicator, candles: list[Candle]) -> IndicatorSeries:
        p = indicator.parameters
        length = int(_param(p, "length", "period", default=20))
        logger.debug(f"Computing {indicator.type.value} '{indicator.id}' over {len(candles)} candles")

        match indicator.type:
            case IndicatorType.SMA:
                return IndicatorSeries({SINGLE_OUTPUT: calculator.calculate_sma(candles, length)})
            case IndicatorType.EMA:
                return IndicatorSeries({SINGLE_OUTPUT: calculator.calculate_ema(candles, length)})
            case IndicatorType.RSI:
                rsi_length = int(_param(p, "length", "period", default=14))
                return IndicatorSeries({SINGLE_OUTPUT: calculator.calculate_rsi(candles, rsi_length)})
            case IndicatorType.ATR:
                atr_length = int(_param(p, "length", "period", default=14))
                return IndicatorSeries({SINGLE_OUTPUT: calculator.calculate_atr(candles, atr_length)})
            case IndicatorType.MACD:
                return IndicatorSeries(
                    calculator.calculate_macd(
                        candles,
                        fast=int(_param(p, "fast", default=12)),
                        slow=int(_param(p, "slow", default=26)),
                        signal=int(_param(p, "signal", default=9)),
                    )
                )
            case IndicatorType.BOLLINGER_BANDS:
                return IndicatorSeries(
                    calculator.calculate_bollinger(
                        candles, length=length, std_dev=_param(p, "stdDev", "mult", default=2.0)
                    )
                )
            case IndicatorType.STOCHASTIC:
                return IndicatorSeries(
                    calculator.calculate_stochastic(
                        candles,
                        k=int(_param(p, "k", "length", "period", default=14)),
                        smooth_k=int(_param(p, "smoothK", "smoothing", default=1)),
                        d=int(_param(p, "d", default=3)),
                    )
                )
            case IndicatorType.VWAP:
                reset_daily = p.get("resetDaily", 1) != 0
                return IndicatorSeries({SINGLE_OUTPUT: calculator.calculate_vwap(candles, reset_daily)})
            case IndicatorType.ROLLING_UP_PCT:
                up_length = int(_param(p, "length", "period", default=50))
                return IndicatorSeries(
                    {SINGLE_OUTPUT: calculator.calculate_rolling_up_pct(candles, up_length)}
                )
            case _:
                raise ValueError(f"Unsupported indicator type: {indicator.type}")
