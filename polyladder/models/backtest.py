"""Backtest request and response models.

These define the JSON contract of the backtest API. Prices on trade records
are decimals in [0, 1]; the request's exitPrice is in cents.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Self

from pydantic import Field, model_validator

from .strategy import CamelModel, Strategy


class TradeSide(str, Enum):
    """Trade log leg type."""

    BUY = "BUY"
    SELL = "SELL"
    LOSS = "LOSS"


class DiagnosticCategory(str, Enum):
    """Failure and warning categories reported with a run."""

    CONFIG_ERROR = "ConfigError"
    DATA_GAP_WARNING = "DataGapWarning"
    RISK_BLOCKED = "RiskBlocked"
    RESOLUTION_UNAVAILABLE = "ResolutionUnavailable"


class BacktestTrade(CamelModel):
    """One leg in the trade log."""

    timestamp: int = Field(..., description="Fill time in ms")
    market_id: str | None = None
    side: TradeSide
    price: float = Field(..., description="Fill price as a decimal in [0, 1]")
    shares: int
    value: float
    pnl: float | None = Field(default=None, description="Realized P&L, closing legs only")
    balance: float = Field(..., description="Running account balance after this leg")
    trigger_reason: str = ""

    @property
    def is_closing(self) -> bool:
        return self.pnl is not None


class Diagnostic(CamelModel):
    """A categorized, non-fatal event recorded during a run."""

    category: DiagnosticCategory
    message: str
    market_id: str | None = None
    timestamp: int | None = None


class MarketFailure(CamelModel):
    """A market instance excluded from the run."""

    market_id: str
    category: DiagnosticCategory
    message: str


class BacktestRequest(CamelModel):
    """Request to run a backtest.

    Either an inline strategy or a stored strategy id, and either a number of
    most recent markets or an explicit time window.
    """

    strategy_id: str | None = None
    strategy: Strategy | None = None
    number_of_markets: int | None = Field(default=None, ge=1)
    start_time: datetime | None = None
    end_time: datetime | None = None
    initial_balance: float = Field(default=1000.0, gt=0)
    exit_price: int | None = Field(default=None, description="Take-profit price in cents (1-99)")

    @model_validator(mode="after")
    def validate_request(self) -> Self:
        if self.strategy is None and not self.strategy_id:
            raise ValueError("Must provide either 'strategy' or 'strategyId'")
        if self.number_of_markets is None:
            if self.start_time is None or self.end_time is None:
                raise ValueError("Must provide 'numberOfMarkets' or both 'startTime' and 'endTime'")
            if self.start_time >= self.end_time:
                raise ValueError("'startTime' must be before 'endTime'")
        return self


class BacktestResult(CamelModel):
    """Complete result of one backtest run."""

    strategy_id: str
    strategy_name: str
    start_time: datetime | None = None
    end_time: datetime | None = None
    initial_balance: float
    final_balance: float
    total_pnl: float
    total_pnl_percent: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    avg_win: float
    avg_loss: float
    profit_factor: float
    max_drawdown: float
    max_drawdown_percent: float
    sharpe_ratio: float
    trades: list[BacktestTrade] = Field(default_factory=list)
    candles_processed: int = 0
    conditions_triggered: int = 0
    markets_processed: int = 0
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    market_failures: list[MarketFailure] = Field(default_factory=list)
    timed_out: bool = False


class QuickCheckRequest(CamelModel):
    """Request for a quick profitability check over recent history."""

    strategy_id: str | None = None
    strategy: Strategy | None = None
    lookback_days: int = Field(default=7, ge=1, le=90)

    @model_validator(mode="after")
    def validate_request(self) -> Self:
        if self.strategy is None and not self.strategy_id:
            raise ValueError("Must provide either 'strategy' or 'strategyId'")
        return self


class QuickCheckResult(CamelModel):
    """Outcome of a quick profitability check."""

    profitable: bool
    pnl_percent: float
    win_rate: float
