"""Market data models.

Candles carry millisecond timestamps (candle open time). Market instance
candles are priced as decimals in [0, 1]; asset candles are in the asset's
quote currency.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, Field

from .strategy import CamelModel, Direction

# Supported timeframes, in minutes
TIMEFRAME_MINUTES: dict[str, int] = {
    "1m": 1,
    "5m": 5,
    "15m": 15,
    "1h": 60,
    "4h": 240,
    "1d": 1440,
}


def is_known_timeframe(timeframe: str) -> bool:
    return timeframe.lower() in TIMEFRAME_MINUTES


def timeframe_to_timedelta(timeframe: str) -> timedelta:
    """Convert a timeframe string ("1m", "15m", "1h", ...) to a timedelta.

    Raises:
        ValueError: If the timeframe is not supported
    """
    minutes = TIMEFRAME_MINUTES.get(timeframe.lower())
    if minutes is None:
        raise ValueError(f"Unsupported timeframe: {timeframe}")
    return timedelta(minutes=minutes)


def timeframe_to_ms(timeframe: str) -> int:
    return int(timeframe_to_timedelta(timeframe).total_seconds() * 1000)


def ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def datetime_to_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


class Candle(BaseModel):
    """One OHLCV bar. `timestamp` is the bar open time in ms."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def contains(self, price: float) -> bool:
        """Inclusive range check used for limit-order fills."""
        return self.low <= price <= self.high

    def complement(self) -> Candle:
        """Price of the opposite outcome token (1 - price)."""
        return Candle(
            timestamp=self.timestamp,
            open=1.0 - self.open,
            high=1.0 - self.low,
            low=1.0 - self.high,
            close=1.0 - self.close,
            volume=self.volume,
        )


class PricePoint(BaseModel):
    """Raw order-book top of a market at one instant, in cents."""

    t: int = Field(..., description="Timestamp in ms")
    yb: float = Field(..., description="YES bid (cents)")
    ya: float = Field(default=0.0, description="YES ask (cents)")
    nb: float = Field(..., description="NO bid (cents)")
    na: float = Field(default=0.0, description="NO ask (cents)")


class MarketInstance(CamelModel):
    """One binary UP/DOWN prediction market with its price path and outcome.

    `candles` price the UP (YES) token. `down_candles` price the DOWN (NO)
    token when the provider has them; otherwise the complement is used.
    `outcome` is None when the resolution could not be determined.
    """

    market_id: str
    start_time: int
    end_time: int
    outcome: Direction | None = None
    candles: list[Candle] = Field(default_factory=list)
    down_candles: list[Candle] | None = None

    def path(self, direction: Direction) -> list[Candle]:
        """Price path of the token the strategy buys."""
        if direction == Direction.UP:
            return self.candles
        if self.down_candles is not None:
            return self.down_candles
        return [c.complement() for c in self.candles]
