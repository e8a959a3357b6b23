"""Named presets: construction-time macros for common indicator setups.

A preset such as "macd_bullish" expands into concrete indicators, one
condition and one open-position action appended to a strategy. The expanded
indicators keep the preset name as a tag for display; evaluation never reads it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..models.strategy import (
    Action,
    ActionKind,
    Condition,
    Direction,
    Indicator,
    IndicatorType,
    Operator,
    OrderType,
    Strategy,
)


@dataclass(frozen=True)
class PresetIndicator:
    suffix: str
    type: IndicatorType
    parameters: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class PresetTemplate:
    """Indicators plus a single condition comparing them.

    `source_a`/`source_b` name either a price field or one of the template's
    indicators by suffix, optionally with an output (e.g. "bb.upper").
    """

    label: str
    indicators: tuple[PresetIndicator, ...]
    source_a: str
    operator: Operator
    direction: Direction
    source_b: str | None = None
    value: float | None = None


_MACD = PresetIndicator("macd", IndicatorType.MACD, {"fast": 12, "slow": 26, "signal": 9})
_RSI = PresetIndicator("rsi", IndicatorType.RSI, {"length": 14})
_BB = PresetIndicator("bb", IndicatorType.BOLLINGER_BANDS, {"length": 20, "stdDev": 2})
_UP_PCT = PresetIndicator("uppct", IndicatorType.ROLLING_UP_PCT, {"length": 50})

PRESETS: dict[str, PresetTemplate] = {
    "macd_bullish": PresetTemplate(
        "MACD Bullish Crossover", (_MACD,), "macd", Operator.CROSSES_ABOVE, Direction.UP, value=0
    ),
    "macd_bearish": PresetTemplate(
        "MACD Bearish Crossover", (_MACD,), "macd", Operator.CROSSES_BELOW, Direction.DOWN, value=0
    ),
    "rsi_oversold": PresetTemplate(
        "RSI Oversold Bounce", (_RSI,), "rsi", Operator.CROSSES_ABOVE, Direction.UP, value=30
    ),
    "rsi_overbought": PresetTemplate(
        "RSI Overbought Reversal", (_RSI,), "rsi", Operator.CROSSES_BELOW, Direction.DOWN, value=70
    ),
    "ema_short": PresetTemplate(
        "EMA Trend Flip (9/21)",
        (
            PresetIndicator("ema9", IndicatorType.EMA, {"length": 9}),
            PresetIndicator("ema21", IndicatorType.EMA, {"length": 21}),
        ),
        "ema9",
        Operator.CROSSES_ABOVE,
        Direction.UP,
        source_b="ema21",
    ),
    "ema_long": PresetTemplate(
        "EMA Trend Flip (20/50)",
        (
            PresetIndicator("ema20", IndicatorType.EMA, {"length": 20}),
            PresetIndicator("ema50", IndicatorType.EMA, {"length": 50}),
        ),
        "ema20",
        Operator.CROSSES_BELOW,
        Direction.DOWN,
        source_b="ema50",
    ),
    "bb_upper": PresetTemplate(
        "BB Breakout (Upper)", (_BB,), "Close", Operator.GT, Direction.UP, source_b="bb.upper"
    ),
    "bb_lower": PresetTemplate(
        "BB Breakout (Lower)", (_BB,), "Close", Operator.LT, Direction.DOWN, source_b="bb.lower"
    ),
    "up_pct_bullish": PresetTemplate(
        "Rolling Up % High", (_UP_PCT,), "uppct", Operator.GTE, Direction.UP, value=58
    ),
    "up_pct_bearish": PresetTemplate(
        "Rolling Up % Low", (_UP_PCT,), "uppct", Operator.LTE, Direction.DOWN, value=42
    ),
}


class UnknownPresetError(KeyError):
    """Raised for a preset name that has no template."""


class PresetExpander:
    """Appends preset expansions to a strategy."""

    def __init__(self, templates: dict[str, PresetTemplate] | None = None):
        self._templates = templates if templates is not None else PRESETS

    def names(self) -> list[str]:
        return sorted(self._templates)

    def expand(self, strategy: Strategy, preset: str, prefix: str | None = None) -> Strategy:
        """Return a copy of `strategy` with the preset's indicators, condition and action added.

        Args:
            strategy: Strategy to extend (not modified)
            preset: Preset name, e.g. "rsi_oversold"
            prefix: Id prefix for the generated entities; defaults to the preset name

        Raises:
            UnknownPresetError: If no template exists for `preset`
        """
        template = self._templates.get(preset)
        if template is None:
            raise UnknownPresetError(preset)

        prefix = prefix or preset
        expanded = strategy.snapshot()
        ids = {ind.suffix: f"{prefix}_{ind.suffix}" for ind in template.indicators}
        for ind in template.indicators:
            expanded.indicators.append(
                Indicator(id=ids[ind.suffix], type=ind.type, parameters=dict(ind.parameters), preset=preset)
            )

        condition_id = f"{prefix}_cond"
        expanded.conditions.append(
            Condition(
                id=condition_id,
                source_a=self._source(template.source_a, ids),
                operator=template.operator,
                source_b=self._source(template.source_b, ids) if template.source_b else None,
                value=template.value,
            )
        )
        expanded.actions.append(
            Action(
                id=f"{prefix}_open",
                condition_id=condition_id,
                action=ActionKind.OPEN,
                direction=template.direction,
                order_type=OrderType.MARKET,
            )
        )
        return expanded

    @staticmethod
    def _source(ref: str, ids: dict[str, str]) -> str:
        name, dot, output = ref.partition(".")
        if name not in ids:
            return ref
        return f"indicator_{ids[name]}{dot}{output}"


def expand_presets(strategy: Strategy, presets: list[str]) -> Strategy:
    """Apply several presets in order."""
    expander = PresetExpander()
    for preset in presets:
        strategy = expander.expand(strategy, preset)
    return strategy
