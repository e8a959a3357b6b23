"""Shared test fixtures and helpers."""

import pytest

from polyladder.models.data import Candle, MarketInstance
from polyladder.models.strategy import Strategy
from polyladder.service.data_service import MockDataService

# 2024-01-01 00:00:00 UTC (a Monday)
T0 = 1704067200000
MINUTE = 60_000
M15 = 15 * MINUTE


def make_candle(
    timestamp: int,
    open: float = 0.5,
    high: float | None = None,
    low: float | None = None,
    close: float | None = None,
    volume: float = 0.0,
) -> Candle:
    """Build a candle; unspecified high/low/close collapse onto the open."""
    close = open if close is None else close
    return Candle(
        timestamp=timestamp,
        open=open,
        high=max(open, close) if high is None else high,
        low=min(open, close) if low is None else low,
        close=close,
        volume=volume,
    )


def make_closes(closes: list[float], start: int = T0, interval: int = M15) -> list[Candle]:
    """Candles whose open equals the previous close, one per interval."""
    candles = []
    prev = closes[0]
    for i, close in enumerate(closes):
        candles.append(make_candle(start + i * interval, open=prev, close=close, volume=1.0))
        prev = close
    return candles


def make_path(start: int, bars: list[tuple[float, float]], interval: int = MINUTE) -> list[Candle]:
    """Market price path from (low, high) pairs; open and close sit at the midpoint."""
    candles = []
    for i, (low, high) in enumerate(bars):
        mid = round((low + high) / 2, 4)
        candles.append(make_candle(start + i * interval, open=mid, high=high, low=low, close=mid))
    return candles


def make_market(
    market_id: str,
    start: int,
    bars: list[tuple[float, float]],
    outcome: str | None = "UP",
    duration: int = M15,
) -> MarketInstance:
    return MarketInstance(
        market_id=market_id,
        start_time=start,
        end_time=start + duration,
        outcome=outcome,
        candles=make_path(start, bars),
    )


def make_strategy(**overrides) -> Strategy:
    """A strategy that triggers on every candle (Close > 0) with one 50c x 100 rung.

    Keyword overrides use the camelCase wire names.
    """
    data = {
        "id": "test-strategy",
        "name": "Test Strategy",
        "asset": "BTC",
        "direction": "UP",
        "timeframe": "15m",
        "conditions": [{"id": "c1", "sourceA": "Close", "operator": ">", "value": 0}],
        "conditionLogic": "all",
        "orderLadder": [{"price": 50, "shares": 100}],
    }
    data.update(overrides)
    return Strategy.model_validate(data)


def signal_candles(count: int, start: int = T0 - 2 * M15, price: float = 100.0) -> list[Candle]:
    """Flat asset candles on the 15m timeframe."""
    return [make_candle(start + i * M15, open=price, close=price, volume=1.0) for i in range(count)]


@pytest.fixture
def strategy() -> Strategy:
    return make_strategy()


@pytest.fixture
def winning_market() -> MarketInstance:
    """Touches 50c on its first minute, never reaches an exit, resolves UP."""
    return make_market("m1", T0, [(0.45, 0.55), (0.5, 0.6), (0.55, 0.65)], outcome="UP")


@pytest.fixture
def losing_market() -> MarketInstance:
    return make_market("m1", T0, [(0.45, 0.55), (0.4, 0.5), (0.3, 0.45)], outcome="DOWN")


@pytest.fixture
def data_service(winning_market) -> MockDataService:
    ds = MockDataService()
    ds.seed("BTC", "15m", signal_candles(62, start=T0 - 60 * M15))
    ds.seed_markets("BTC", "15m", [winning_market])
    return ds
