"""Order ladder fill simulation.

Each rung is a resting limit order. It fills, in full, on the first candle
after arming whose [low, high] range contains its price (both ends
inclusive), at exactly its price and at that candle's timestamp. What happens
to rungs that never touch depends on the unfilled-order behavior.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from ..models.data import Candle
from ..models.strategy import SizingRule, UnfilledOrderBehavior
from .compiler import Rung


class OrderStatus(str, Enum):
    OPEN = "open"
    FILLED = "filled"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"  # Would have overdrawn the account


@dataclass(frozen=True)
class Fill:
    price: float
    shares: int
    timestamp: int
    rung_id: str | None = None
    replaced: bool = False  # Filled as a market order at the candle close

    @property
    def cost(self) -> float:
        return self.price * self.shares


@dataclass
class LadderOrder:
    rung: Rung
    status: OrderStatus = OrderStatus.OPEN
    fill: Fill | None = None


@dataclass
class LadderStep:
    fills: list[Fill] = field(default_factory=list)
    skipped: list[Rung] = field(default_factory=list)
    cancelled: int = 0


def size_order(sizing: SizingRule, sizing_value: float | None, price: float, balance: float) -> int:
    """Whole shares for a single order at `price`."""
    value = sizing_value or 0.0
    if price <= 0 or value <= 0:
        return 0
    match sizing:
        case SizingRule.FIXED_SHARES:
            return int(value)
        case SizingRule.FIXED_DOLLAR:
            return math.floor(value / price + 1e-9)
        case SizingRule.PERCENTAGE:
            return math.floor(balance * value / 100 / price + 1e-9)
        case _:
            raise ValueError(f"Unknown sizing rule: {sizing}")


def weighted_entry(fills: Sequence[Fill]) -> float:
    """Σ(price·shares) / Σ(shares) over the given fills."""
    shares = sum(f.shares for f in fills)
    if shares == 0:
        raise ValueError("No filled shares")
    return sum(f.cost for f in fills) / shares


class OrderLadder:
    """Resting rungs for one armed market instance."""

    def __init__(
        self,
        rungs: Sequence[Rung],
        armed_at: int,
        behavior: UnfilledOrderBehavior = UnfilledOrderBehavior.KEEP_OPEN,
        cancel_after_seconds: int | None = None,
    ):
        self.orders = [LadderOrder(rung) for rung in rungs]
        self.armed_at = armed_at
        self.behavior = behavior
        self.cancel_after_ms = (cancel_after_seconds or 0) * 1000
        self._candles_seen = 0

    @property
    def open_orders(self) -> list[LadderOrder]:
        return [o for o in self.orders if o.status == OrderStatus.OPEN]

    @property
    def fills(self) -> list[Fill]:
        return [o.fill for o in self.orders if o.fill is not None]

    @property
    def filled_shares(self) -> int:
        return sum(f.shares for f in self.fills)

    @property
    def is_done(self) -> bool:
        return not self.open_orders

    def step(self, candle: Candle, budget: float | None = None) -> LadderStep:
        """Test every open rung against one candle.

        Args:
            candle: Next candle of the market's price path
            budget: Cash available for new fills; rungs that would exceed it are skipped

        Returns:
            Fills made on this candle, rungs skipped for lack of funds, and
            the number of rungs cancelled by the unfilled-order behavior
        """
        first = self._candles_seen == 0
        self._candles_seen += 1
        result = LadderStep()
        remaining = budget

        if (
            self.behavior == UnfilledOrderBehavior.CANCEL_AFTER_SECONDS
            and candle.timestamp - self.armed_at > self.cancel_after_ms
        ):
            result.cancelled = self.cancel_open()
            return result
        for order in self.open_orders:
            price = order.rung.price
            replaced = False
            if not candle.contains(price):
                if self.behavior == UnfilledOrderBehavior.REPLACE_MARKET and first:
                    price = candle.close
                    replaced = True
                else:
                    continue
            fill = Fill(
                price=price,
                shares=order.rung.shares,
                timestamp=candle.timestamp,
                rung_id=order.rung.rung_id,
                replaced=replaced,
            )
            if remaining is not None and fill.cost > remaining:
                order.status = OrderStatus.SKIPPED
                result.skipped.append(order.rung)
                continue
            if remaining is not None:
                remaining -= fill.cost
            order.status = OrderStatus.FILLED
            order.fill = fill
            result.fills.append(fill)

        if self.behavior == UnfilledOrderBehavior.CANCEL_AT_CANDLE and first:
            result.cancelled = self.cancel_open()
        return result

    def cancel_open(self) -> int:
        """Cancel every rung still resting. Returns how many were cancelled."""
        count = 0
        for order in self.open_orders:
            order.status = OrderStatus.CANCELLED
            count += 1
        return count
