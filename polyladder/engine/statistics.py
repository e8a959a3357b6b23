"""Backtest aggregator.

`aggregate` is a pure function of a trade log and the initial balance, so
re-aggregating the same log always reproduces the same summary.

Conventions:
- A closing leg is any trade carrying a pnl. Winners have pnl > 0; every
  other closing leg (including break-even) counts as a loser.
- profitFactor is Σ(positive pnl) / |Σ(negative pnl)|. With no negative
  legs it is PROFIT_FACTOR_SENTINEL when there is any profit, else 0.0.
- Drawdown is measured on the realized balance curve: the initial balance
  plus cumulative pnl, stepping at each closing leg. Cash tied up in an open
  position is not a drawdown; when flat this equals the running balance.
- Sharpe ratio is per trade: mean / sample stdev of each closing leg's
  return on its cost basis, scaled by sqrt(252). It is 0.0 with fewer than
  two returns or zero dispersion.
"""

from __future__ import annotations

import math
import statistics
from collections.abc import Sequence
from dataclasses import dataclass

from ..models.backtest import BacktestTrade

PROFIT_FACTOR_SENTINEL = 999.0
ANNUALIZATION_FACTOR = math.sqrt(252)


@dataclass(frozen=True)
class Summary:
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


def profit_factor(pnls: Sequence[float]) -> float:
    gross_profit = sum(p for p in pnls if p > 0)
    gross_loss = -sum(p for p in pnls if p < 0)
    if gross_loss == 0:
        return PROFIT_FACTOR_SENTINEL if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


def max_drawdown(initial_balance: float, balances: Sequence[float]) -> tuple[float, float]:
    """Largest peak-to-trough decline as (amount, percent of the peak)."""
    peak = initial_balance
    worst = 0.0
    worst_pct = 0.0
    for balance in balances:
        if balance > peak:
            peak = balance
        drawdown = peak - balance
        if drawdown > worst:
            worst = drawdown
            worst_pct = drawdown / peak * 100 if peak > 0 else 0.0
    return worst, worst_pct


def balance_curve(trades: Sequence[BacktestTrade], initial_balance: float) -> list[float]:
    """Realized balance after each closing leg."""
    curve = []
    balance = initial_balance
    for trade in trades:
        if trade.pnl is not None:
            balance += trade.pnl
            curve.append(balance)
    return curve


def trade_return(trade: BacktestTrade) -> float | None:
    """Return of a closing leg on its cost basis (proceeds minus pnl)."""
    if trade.pnl is None:
        return None
    cost = trade.value - trade.pnl
    if cost <= 0:
        return None
    return trade.pnl / cost


def sharpe_ratio(returns: Sequence[float]) -> float:
    if len(returns) < 2:
        return 0.0
    sd = statistics.stdev(returns)
    if sd == 0:
        return 0.0
    return statistics.fmean(returns) / sd * ANNUALIZATION_FACTOR


def aggregate(trades: Sequence[BacktestTrade], initial_balance: float) -> Summary:
    closing = [t for t in trades if t.pnl is not None]
    pnls = [t.pnl for t in closing]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p <= 0]

    total_pnl = sum(pnls)
    dd, dd_pct = max_drawdown(initial_balance, balance_curve(trades, initial_balance))
    returns = [r for r in (trade_return(t) for t in closing) if r is not None]

    return Summary(
        initial_balance=initial_balance,
        final_balance=initial_balance + total_pnl,
        total_pnl=total_pnl,
        total_pnl_percent=total_pnl / initial_balance * 100 if initial_balance else 0.0,
        total_trades=len(closing),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / len(closing) * 100 if closing else 0.0,
        avg_win=statistics.fmean(wins) if wins else 0.0,
        avg_loss=statistics.fmean(losses) if losses else 0.0,
        profit_factor=profit_factor(pnls),
        max_drawdown=dd,
        max_drawdown_percent=dd_pct,
        sharpe_ratio=sharpe_ratio(returns),
    )
