"""Backtest service - orchestrates strategy backtesting.

This service:
1. Resolves the strategy (inline or from the strategy store)
2. Compiles it, rejecting configuration errors before any data is fetched
3. Fetches market instances and signal candles via DataService
4. Runs the simulator and returns a BacktestResult

Data Flow:
    StrategyStore.get() / inline strategy → Strategy snapshot
    compile_strategy(strategy) → CompiledStrategy (or ConfigError)
    DataService.get_markets() + get_candles() (with warmup) → inputs
    BacktestSimulator.run() → trades, diagnostics, summary
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from ..engine.compiler import CompiledStrategy, compile_strategy
from ..engine.simulator import BacktestSimulator
from ..indicators.provider import IndicatorProvider, warmup_bars
from ..models.backtest import (
    BacktestRequest,
    BacktestResult,
    QuickCheckRequest,
    QuickCheckResult,
)
from ..models.data import Candle, MarketInstance, ms_to_datetime, timeframe_to_timedelta
from ..models.strategy import Strategy
from .data_service import DataService
from .strategy_store import StrategyStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
QUICK_CHECK_BALANCE = 1000.0


def _timeout_from_env() -> float:
    return float(os.environ.get("BACKTEST_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))


def _calculate_warmup_bars(strategy: Strategy) -> int:
    """Calculate the number of warmup bars needed for indicator initialization.

    Takes the longest warmup among the strategy's indicators plus a safety
    buffer, so indicators are ready when the first market starts.

    Returns:
        Number of warmup bars needed (minimum 50 for safety)
    """
    longest = max((warmup_bars(ind) for ind in strategy.indicators), default=0)
    return max(longest + 10, 50)


class BacktestService:
    """Service for running strategy backtests.

    Orchestrates the full backtest flow:
    1. Resolve and compile the strategy
    2. Fetch markets and candles via DataService (HTTP or mock)
    3. Simulate
    4. Return structured results
    """

    def __init__(
        self,
        data_service: DataService,
        store: StrategyStore | None = None,
        provider: IndicatorProvider | None = None,
        timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize backtest service.

        Args:
            data_service: Service for fetching candles and market instances
            store: Strategy store used to resolve strategyId
            provider: Indicator provider; defaults to the built-in calculator
            timeout_seconds: Run budget; defaults to BACKTEST_TIMEOUT_SECONDS or 60
            clock: Monotonic clock used for the timeout
        """
        self.data_service = data_service
        self.store = store or StrategyStore()
        self.provider = provider
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else _timeout_from_env()
        self.clock = clock

    def resolve_strategy(self, strategy: Strategy | None, strategy_id: str | None) -> Strategy:
        """Snapshot of the inline strategy, or of the stored one.

        Raises:
            StrategyNotFoundError: If strategy_id is not stored
        """
        if strategy is not None:
            return strategy.snapshot()
        return self.store.get(strategy_id)

    def run_backtest(self, request: BacktestRequest) -> BacktestResult:
        """Run a backtest.

        Raises:
            ConfigError: If the strategy is misconfigured
            StrategyNotFoundError: If request.strategy_id is unknown
            DataFetchError: If market data cannot be fetched
        """
        strategy = self.resolve_strategy(request.strategy, request.strategy_id)
        if request.exit_price is not None:
            strategy.exit_policy.exit_price = request.exit_price
        strategy_id = strategy.id or "inline"
        logger.info(f"Starting backtest for strategy {strategy_id} ({strategy.name})")

        compiled = compile_strategy(strategy)

        markets = self.data_service.get_markets(
            strategy.asset,
            strategy.timeframe,
            start=request.start_time,
            end=request.end_time,
            count=request.number_of_markets,
        )
        logger.info(f"Fetched {len(markets)} markets for {strategy.asset} {strategy.timeframe}")
        signal_candles = self._fetch_signal_candles(compiled, markets)

        simulator = BacktestSimulator(
            compiled,
            provider=self.provider,
            timeout_seconds=self.timeout_seconds,
            clock=self.clock,
        )
        sim = simulator.run(markets, signal_candles, request.initial_balance)
        summary = sim.summary

        start_time = request.start_time or (ms_to_datetime(markets[0].start_time) if markets else None)
        end_time = request.end_time or (ms_to_datetime(markets[-1].end_time) if markets else None)

        result = BacktestResult(
            strategy_id=strategy_id,
            strategy_name=strategy.name,
            start_time=start_time,
            end_time=end_time,
            initial_balance=summary.initial_balance,
            final_balance=summary.final_balance,
            total_pnl=summary.total_pnl,
            total_pnl_percent=summary.total_pnl_percent,
            total_trades=summary.total_trades,
            winning_trades=summary.winning_trades,
            losing_trades=summary.losing_trades,
            win_rate=summary.win_rate,
            avg_win=summary.avg_win,
            avg_loss=summary.avg_loss,
            profit_factor=summary.profit_factor,
            max_drawdown=summary.max_drawdown,
            max_drawdown_percent=summary.max_drawdown_percent,
            sharpe_ratio=summary.sharpe_ratio,
            trades=sim.trades,
            candles_processed=sim.candles_processed,
            conditions_triggered=sim.conditions_triggered,
            markets_processed=sim.markets_processed,
            diagnostics=sim.diagnostics,
            market_failures=sim.market_failures,
            timed_out=sim.timed_out,
        )
        logger.info(
            f"Backtest completed: {result.total_trades} trades, {result.total_pnl_percent:.2f}% return"
        )
        return result

    def quick_check(self, request: QuickCheckRequest, now: datetime | None = None) -> QuickCheckResult:
        """Is the strategy profitable over the last `lookbackDays` days?"""
        end = now or datetime.now(timezone.utc)
        start = end - timedelta(days=request.lookback_days)
        result = self.run_backtest(
            BacktestRequest(
                strategy=request.strategy,
                strategy_id=request.strategy_id,
                start_time=start,
                end_time=end,
                initial_balance=QUICK_CHECK_BALANCE,
            )
        )
        return QuickCheckResult(
            profitable=result.total_pnl > 0,
            pnl_percent=result.total_pnl_percent,
            win_rate=result.win_rate,
        )

    def _fetch_signal_candles(
        self, compiled: CompiledStrategy, markets: list[MarketInstance]
    ) -> dict[str, list[Candle]]:
        """Fetch candles for every timeframe the strategy reads, warmup included."""
        if not markets:
            return {}
        strategy = compiled.strategy
        timeframes = {strategy.timeframe} | {
            ind.effective_timeframe(strategy.timeframe) for ind in strategy.indicators
        }
        warmup = _calculate_warmup_bars(strategy)
        first_start = ms_to_datetime(min(m.start_time for m in markets))
        last_end = ms_to_datetime(max(m.end_time for m in markets))

        candles: dict[str, list[Candle]] = {}
        for timeframe in sorted(timeframes):
            start = first_start - timeframe_to_timedelta(timeframe) * warmup
            logger.info(
                f"Fetching {strategy.asset} {timeframe} candles from {start} to {last_end} ({warmup} warmup bars)"
            )
            candles[timeframe] = self.data_service.get_candles(strategy.asset, timeframe, start, last_end)
        return candles
