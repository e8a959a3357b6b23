"""Tests for order ladder fill simulation and sizing."""

import pytest

from polyladder.engine.compiler import Rung
from polyladder.engine.ladder import Fill, OrderLadder, OrderStatus, size_order, weighted_entry
from polyladder.models.strategy import SizingRule, UnfilledOrderBehavior
from tests.conftest import MINUTE, T0, make_candle


def band(ts, low, high):
    return make_candle(ts, open=round((low + high) / 2, 4), high=high, low=low)


class TestFills:
    def test_touch_fills_at_rung_price(self):
        """A 40-60c candle fills a 55c rung but not a 65c one."""
        ladder = OrderLadder([Rung(0.55, 10), Rung(0.65, 10)], armed_at=T0)
        step = ladder.step(band(T0, 0.40, 0.60))
        assert [f.price for f in step.fills] == [0.55]
        assert step.fills[0].timestamp == T0
        assert len(ladder.open_orders) == 1

    def test_touch_is_inclusive(self):
        """A rung exactly at the low or high fills."""
        ladder = OrderLadder([Rung(0.40, 1), Rung(0.60, 1)], armed_at=T0)
        assert len(ladder.step(band(T0, 0.40, 0.60)).fills) == 2
        assert ladder.is_done

    def test_rungs_fill_on_later_candles(self):
        ladder = OrderLadder([Rung(0.40, 10), Rung(0.50, 20)], armed_at=T0)
        first = ladder.step(band(T0, 0.45, 0.55))
        second = ladder.step(band(T0 + MINUTE, 0.38, 0.44))
        assert [f.price for f in first.fills] == [0.50]
        assert [f.timestamp for f in second.fills] == [T0 + MINUTE]
        assert ladder.filled_shares == 30

    def test_fill_never_repeats(self):
        ladder = OrderLadder([Rung(0.50, 10)], armed_at=T0)
        ladder.step(band(T0, 0.45, 0.55))
        assert ladder.step(band(T0 + MINUTE, 0.45, 0.55)).fills == []
        assert ladder.orders[0].status == OrderStatus.FILLED

    def test_budget_skips_unaffordable_rungs(self):
        """A rung costing more than the remaining cash is skipped, cheaper ones still fill."""
        ladder = OrderLadder([Rung(0.50, 100), Rung(0.50, 10)], armed_at=T0)
        step = ladder.step(band(T0, 0.45, 0.55), budget=20.0)
        assert [r.shares for r in step.skipped] == [100]
        assert [f.shares for f in step.fills] == [10]
        assert ladder.orders[0].status == OrderStatus.SKIPPED

    def test_budget_is_consumed_across_rungs(self):
        ladder = OrderLadder([Rung(0.50, 20), Rung(0.50, 20)], armed_at=T0)
        step = ladder.step(band(T0, 0.45, 0.55), budget=15.0)
        assert len(step.fills) == 1
        assert len(step.skipped) == 1


class TestUnfilledBehavior:
    def test_keep_open(self):
        ladder = OrderLadder([Rung(0.30, 10)], armed_at=T0)
        for i in range(5):
            ladder.step(band(T0 + i * MINUTE, 0.45, 0.55))
        assert len(ladder.open_orders) == 1

    def test_cancel_at_candle(self):
        """Rungs not filled by the first candle are cancelled."""
        ladder = OrderLadder([Rung(0.50, 10), Rung(0.30, 10)], armed_at=T0,
                             behavior=UnfilledOrderBehavior.CANCEL_AT_CANDLE)
        step = ladder.step(band(T0, 0.45, 0.55))
        assert len(step.fills) == 1
        assert step.cancelled == 1
        assert ladder.is_done

    def test_cancel_after_seconds(self):
        """Rungs still open once the delay has passed are cancelled before matching."""
        ladder = OrderLadder([Rung(0.30, 10)], armed_at=T0,
                             behavior=UnfilledOrderBehavior.CANCEL_AFTER_SECONDS, cancel_after_seconds=120)
        assert ladder.step(band(T0 + 2 * MINUTE, 0.45, 0.55)).cancelled == 0
        step = ladder.step(band(T0 + 3 * MINUTE, 0.25, 0.35))
        assert step.cancelled == 1
        assert step.fills == []

    def test_replace_market(self):
        """Untouched rungs fill at the first candle's close instead."""
        ladder = OrderLadder([Rung(0.30, 10)], armed_at=T0, behavior=UnfilledOrderBehavior.REPLACE_MARKET)
        candle = make_candle(T0, open=0.5, high=0.55, low=0.45, close=0.52)
        fill = ladder.step(candle).fills[0]
        assert fill.price == 0.52
        assert fill.replaced

    def test_cancel_open(self):
        ladder = OrderLadder([Rung(0.30, 10), Rung(0.20, 10)], armed_at=T0)
        assert ladder.cancel_open() == 2
        assert all(o.status == OrderStatus.CANCELLED for o in ladder.orders)


class TestSizing:
    def test_weighted_entry(self):
        """10 @ 40c and 5 @ 60c average to 46.67c."""
        fills = [Fill(0.40, 10, T0), Fill(0.60, 5, T0)]
        assert weighted_entry(fills) == pytest.approx(0.4667, abs=1e-4)

    def test_weighted_entry_requires_fills(self):
        with pytest.raises(ValueError):
            weighted_entry([])

    def test_size_order(self):
        assert size_order(SizingRule.FIXED_SHARES, 25, 0.5, 1000) == 25
        assert size_order(SizingRule.FIXED_DOLLAR, 30, 0.3, 1000) == 100
        assert size_order(SizingRule.PERCENTAGE, 10, 0.4, 1000) == 250

    def test_size_order_rounds_down(self):
        assert size_order(SizingRule.FIXED_DOLLAR, 10, 0.3, 1000) == 33

    def test_size_order_without_value(self):
        assert size_order(SizingRule.FIXED_SHARES, None, 0.5, 1000) == 0
        assert size_order(SizingRule.FIXED_DOLLAR, 10, 0.0, 1000) == 0
