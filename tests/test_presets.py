"""Tests for preset expansion."""

import pytest

from polyladder.engine.compiler import compile_strategy
from polyladder.engine.presets import PRESETS, PresetExpander, UnknownPresetError, expand_presets
from polyladder.models.strategy import Direction, IndicatorType, Operator, OrderType
from tests.conftest import make_strategy


@pytest.fixture
def base():
    return make_strategy(conditions=[], conditionLogic="any")


class TestPresetExpander:
    def test_all_presets_compile(self, base):
        """Every preset expands into a strategy that compiles."""
        for name in PRESETS:
            compiled = compile_strategy(PresetExpander().expand(base, name))
            assert len(compiled.conditions) == 1, name

    def test_macd_bullish(self, base):
        """MACD histogram crossing above zero, buying UP."""
        expanded = PresetExpander().expand(base, "macd_bullish")
        indicator = expanded.indicators[0]
        assert indicator.id == "macd_bullish_macd"
        assert indicator.type == IndicatorType.MACD
        assert indicator.preset == "macd_bullish"
        assert indicator.parameters == {"fast": 12, "slow": 26, "signal": 9}

        condition = expanded.conditions[0]
        assert condition.id == "macd_bullish_cond"
        assert condition.source_a == "indicator_macd_bullish_macd"
        assert condition.operator == Operator.CROSSES_ABOVE
        assert condition.value == 0

        action = expanded.actions[0]
        assert action.condition_id == "macd_bullish_cond"
        assert action.direction == Direction.UP
        assert action.order_type == OrderType.MARKET

    def test_bearish_presets_buy_down(self, base):
        for name in ("macd_bearish", "rsi_overbought", "ema_long", "bb_lower", "up_pct_bearish"):
            assert PresetExpander().expand(base, name).actions[0].direction == Direction.DOWN, name

    def test_two_indicator_preset(self, base):
        """EMA presets compare the fast EMA against the slow one."""
        expanded = PresetExpander().expand(base, "ema_short", prefix="trend")
        assert [i.id for i in expanded.indicators] == ["trend_ema9", "trend_ema21"]
        condition = expanded.conditions[0]
        assert condition.source_a == "indicator_trend_ema9"
        assert condition.source_b == "indicator_trend_ema21"

    def test_band_output_reference(self, base):
        """Bollinger presets compare the close against a named band."""
        condition = PresetExpander().expand(base, "bb_upper").conditions[0]
        assert condition.source_a == "Close"
        assert condition.source_b == "indicator_bb_upper_bb.upper"
        assert condition.operator == Operator.GT

    def test_up_pct_thresholds(self, base):
        assert PresetExpander().expand(base, "up_pct_bullish").conditions[0].value == 58
        assert PresetExpander().expand(base, "up_pct_bearish").conditions[0].value == 42

    def test_input_not_modified(self, base):
        PresetExpander().expand(base, "rsi_oversold")
        assert base.indicators == []
        assert base.conditions == []

    def test_unknown_preset(self, base):
        with pytest.raises(UnknownPresetError):
            PresetExpander().expand(base, "moon_phase")

    def test_expand_several(self, base):
        """Presets stack without id collisions."""
        expanded = expand_presets(base, ["rsi_oversold", "rsi_overbought"])
        assert [c.id for c in expanded.conditions] == ["rsi_oversold_cond", "rsi_overbought_cond"]
        assert len(compile_strategy(expanded).sources) == 2

    def test_names(self):
        assert "bb_lower" in PresetExpander().names()
        assert len(PRESETS) == 10
