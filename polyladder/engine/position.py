"""Position and exit resolution for one market instance.

NoPosition -> Open -> Closed. Once open, each later candle is checked for
exits in priority order: the fixed exit price, then stop-loss and
take-profit off the weighted entry (stop-loss first when one candle touches
both), then a close-action signal. A position still open when the market
ends is settled at 1.0 per share if the market resolved in the favored
direction, else 0.0.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ..models.backtest import TradeSide
from ..models.data import Candle
from ..models.strategy import Direction
from .compiler import ExitRules
from .ladder import Fill, weighted_entry

WIN_PAYOUT = 1.0
LOSS_PAYOUT = 0.0


class PositionState(str, Enum):
    NO_POSITION = "no_position"
    OPEN = "open"
    CLOSED = "closed"


class ExitReason(str, Enum):
    EXIT_PRICE = "exit_price"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    CLOSE_SIGNAL = "close_signal"
    SETTLEMENT = "settlement"


@dataclass(frozen=True)
class ExitDecision:
    reason: ExitReason
    price: float
    timestamp: int


def closing_side(pnl: float) -> TradeSide:
    """SELL for a profitable close, LOSS otherwise (including break-even)."""
    return TradeSide.SELL if pnl > 0 else TradeSide.LOSS


def settlement_price(outcome: Direction, direction: Direction) -> float:
    return WIN_PAYOUT if outcome == direction else LOSS_PAYOUT


@dataclass
class Position:
    """The position built from one armed ladder."""

    rules: ExitRules
    direction: Direction
    state: PositionState = PositionState.NO_POSITION
    fills: list[Fill] = field(default_factory=list)
    exit: ExitDecision | None = None

    @property
    def is_open(self) -> bool:
        return self.state == PositionState.OPEN

    @property
    def opened_at(self) -> int | None:
        return self.fills[0].timestamp if self.fills else None

    @property
    def shares(self) -> int:
        return sum(f.shares for f in self.fills)

    @property
    def cost(self) -> float:
        return sum(f.cost for f in self.fills)

    @property
    def entry_price(self) -> float:
        return weighted_entry(self.fills)

    @property
    def proceeds(self) -> float:
        if self.exit is None:
            return 0.0
        return self.exit.price * self.shares

    @property
    def pnl(self) -> float | None:
        if self.exit is None:
            return None
        return self.proceeds - self.cost

    def add_fill(self, fill: Fill) -> None:
        if self.state == PositionState.CLOSED:
            raise ValueError("Cannot add fills to a closed position")
        self.fills.append(fill)
        self.state = PositionState.OPEN

    def check_exit(self, candle: Candle, close_signal: bool = False) -> ExitDecision | None:
        """First exit triggered on this candle, if any.

        Only candles after the first fill's candle are considered.
        """
        if not self.is_open or candle.timestamp <= self.opened_at:
            return None

        rules = self.rules
        if rules.exit_price is not None and candle.high >= rules.exit_price:
            return ExitDecision(ExitReason.EXIT_PRICE, rules.exit_price, candle.timestamp)

        entry = self.entry_price
        if rules.stop_loss_percent is not None:
            stop = entry * (1 - rules.stop_loss_percent / 100)
            if candle.low <= stop:
                return ExitDecision(ExitReason.STOP_LOSS, max(stop, 0.0), candle.timestamp)
        if rules.take_profit_percent is not None:
            target = min(entry * (1 + rules.take_profit_percent / 100), WIN_PAYOUT)
            if candle.high >= target:
                return ExitDecision(ExitReason.TAKE_PROFIT, target, candle.timestamp)

        if close_signal:
            return ExitDecision(ExitReason.CLOSE_SIGNAL, candle.close, candle.timestamp)
        return None

    def settle(self, outcome: Direction, timestamp: int) -> ExitDecision:
        return ExitDecision(ExitReason.SETTLEMENT, settlement_price(outcome, self.direction), timestamp)

    def close(self, decision: ExitDecision) -> float:
        """Close the position. Returns realized P&L."""
        if not self.is_open:
            raise ValueError(f"Cannot close a position in state {self.state.value}")
        self.exit = decision
        self.state = PositionState.CLOSED
        return self.pnl
