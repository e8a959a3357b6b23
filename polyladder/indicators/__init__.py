"""Indicator value provider and built-in calculator."""

from .provider import (
    BuiltinIndicatorProvider,
    IndicatorProvider,
    IndicatorSeries,
    default_output,
    output_fields,
    warmup_bars,
)

__all__ = [
    "BuiltinIndicatorProvider",
    "IndicatorProvider",
    "IndicatorSeries",
    "default_output",
    "output_fields",
    "warmup_bars",
]
