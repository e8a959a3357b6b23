"""Risk governor: admission checks for newly armed entries.

All checks are made as of the entry's admission time. A blocked entry is not
an error; the caller records the returned reason as a diagnostic.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import date

from ..models.data import ms_to_datetime
from ..models.strategy import RiskLimits


@dataclass
class ExposureRecord:
    opened_at: int
    closed_at: int | None
    shares: int
    cost: float

    def is_open_at(self, at: int) -> bool:
        return self.opened_at <= at and (self.closed_at is None or self.closed_at > at)


@dataclass(frozen=True)
class RiskDecision:
    allowed: bool
    reason: str | None = None


ALLOWED = RiskDecision(allowed=True)


@dataclass
class RiskState:
    realized: list[tuple[int, float]] = field(default_factory=list)  # (close time, pnl)
    entries: dict[date, int] = field(default_factory=dict)
    positions: list[ExposureRecord] = field(default_factory=list)


def _day(ms: int) -> date:
    return ms_to_datetime(ms).date()


class RiskGovernor:
    """Tracks realized losses, admitted entries and open exposure."""

    def __init__(self, limits: RiskLimits | None = None):
        self.limits = limits or RiskLimits()
        self.state = RiskState()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def daily_loss(self, at: int) -> float:
        """Gross realized losses on `at`'s UTC day, up to `at`."""
        day = _day(at)
        return sum(-pnl for ts, pnl in self.state.realized if pnl < 0 and ts <= at and _day(ts) == day)

    def entries_on(self, at: int) -> int:
        return self.state.entries.get(_day(at), 0)

    def open_positions(self, at: int) -> list[ExposureRecord]:
        return [p for p in self.state.positions if p.is_open_at(at)]

    def check(self, at: int, shares: int, dollars: float) -> RiskDecision:
        """Decide whether an entry of `shares` costing up to `dollars` may start at `at`."""
        limits = self.limits

        if limits.max_daily_loss is not None:
            loss = self.daily_loss(at)
            if loss >= limits.max_daily_loss:
                return RiskDecision(False, f"Daily loss {loss:.2f} reached limit {limits.max_daily_loss:.2f}")

        if limits.daily_trade_cap is not None and self.entries_on(at) >= limits.daily_trade_cap:
            return RiskDecision(False, f"Daily trade cap of {limits.daily_trade_cap} reached")

        open_now = self.open_positions(at)
        if limits.max_open_positions is not None and len(open_now) >= limits.max_open_positions:
            return RiskDecision(False, f"{len(open_now)} open positions at limit {limits.max_open_positions}")

        if limits.max_position_shares is not None:
            exposure = sum(p.shares for p in open_now) + shares
            if exposure > limits.max_position_shares:
                return RiskDecision(
                    False, f"Exposure of {exposure} shares would exceed {limits.max_position_shares}"
                )

        if limits.max_position_dollar is not None:
            exposure_dollars = sum(p.cost for p in open_now) + dollars
            if exposure_dollars > limits.max_position_dollar:
                return RiskDecision(
                    False,
                    f"Exposure of ${exposure_dollars:.2f} would exceed ${limits.max_position_dollar:.2f}",
                )
        return ALLOWED

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def record_entry(self, at: int) -> None:
        day = _day(at)
        self.state.entries[day] = self.state.entries.get(day, 0) + 1

    def record_position(self, opened_at: int, closed_at: int | None, shares: int, cost: float) -> None:
        self.state.positions.append(ExposureRecord(opened_at, closed_at, shares, cost))

    def record_close(self, at: int, pnl: float) -> None:
        self.state.realized.append((at, pnl))

    def checkpoint(self) -> RiskState:
        return copy.deepcopy(self.state)

    def restore(self, state: RiskState) -> None:
        self.state = state
