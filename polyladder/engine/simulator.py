"""Backtest simulation driver.

Walks a compiled strategy over eagerly fetched data in two passes:

1. Signal pass: every signal candle (strategy timeframe) is pushed through the
   trigger aggregator, producing entry triggers and close-action signals.
2. Market pass: market instances are processed in chronological order against
   one ledger. An armed instance gets the order ladder, fills are simulated on
   its price path, and the resulting position is exited or settled.

A cooperative timeout is checked between market instances.
"""

from __future__ import annotations

import bisect
import logging
import time
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace

from ..indicators.calculator import align_series
from ..indicators.provider import BuiltinIndicatorProvider, IndicatorProvider, IndicatorSeries
from ..models.backtest import BacktestTrade, Diagnostic, DiagnosticCategory, MarketFailure, TradeSide
from ..models.data import Candle, MarketInstance, timeframe_to_ms
from ..models.strategy import OrderType, TargetMarket
from .compiler import CompiledStrategy, EntryAction, Rung
from .ladder import Fill, OrderLadder, size_order
from .position import ExitDecision, Position, closing_side
from .risk import RiskGovernor
from .sources import SourceKind
from .statistics import Summary, aggregate
from .trigger import ArmingWindow, TriggerAggregator, TriggerEvent

logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    summary: Summary
    trades: list[BacktestTrade]
    diagnostics: list[Diagnostic] = field(default_factory=list)
    market_failures: list[MarketFailure] = field(default_factory=list)
    candles_processed: int = 0
    conditions_triggered: int = 0
    markets_processed: int = 0
    timed_out: bool = False


@dataclass
class SignalScan:
    entries: list[TriggerEvent] = field(default_factory=list)
    close_signals: list[int] = field(default_factory=list)  # Candle close times, ascending
    candles_processed: int = 0
    conditions_triggered: int = 0


# =============================================================================
# Ledger
# =============================================================================


class Ledger:
    """Account balance and append-only trade log for one run."""

    def __init__(self, initial_balance: float):
        self.initial_balance = initial_balance
        self.balance = initial_balance
        self.trades: list[BacktestTrade] = []

    def buy(self, fill: Fill, market_id: str, reason: str) -> BacktestTrade:
        self.balance -= fill.cost
        trade = BacktestTrade(
            timestamp=fill.timestamp,
            market_id=market_id,
            side=TradeSide.BUY,
            price=fill.price,
            shares=fill.shares,
            value=fill.cost,
            balance=self.balance,
            trigger_reason=f"{reason} (market replace)" if fill.replaced else reason,
        )
        self.trades.append(trade)
        return trade

    def close(self, position: Position, decision: ExitDecision, market_id: str, reason: str) -> BacktestTrade:
        pnl = position.close(decision)
        proceeds = position.proceeds
        self.balance += proceeds
        trade = BacktestTrade(
            timestamp=decision.timestamp,
            market_id=market_id,
            side=closing_side(pnl),
            price=decision.price,
            shares=position.shares,
            value=proceeds,
            pnl=pnl,
            balance=self.balance,
            trigger_reason=reason,
        )
        self.trades.append(trade)
        return trade

    def available_at(self, timestamp: int) -> float:
        """Cash that can fund a fill at `timestamp`.

        Every buy recorded so far is spent, but only closing legs at or before
        `timestamp` have returned cash. Market instances overlap in time, so a
        settlement booked for an earlier-processed market may lie after a fill
        in a later one.
        """
        available = self.initial_balance
        for trade in self.trades:
            if trade.side == TradeSide.BUY:
                available -= trade.value
            elif trade.timestamp <= timestamp:
                available += trade.value
        return available

    def checkpoint(self) -> tuple[float, int]:
        return self.balance, len(self.trades)

    def rollback(self, checkpoint: tuple[float, int]) -> None:
        self.balance, count = checkpoint
        del self.trades[count:]

    def finalized_trades(self) -> list[BacktestTrade]:
        """Trades ordered by time with running balances recomputed in that order."""
        ordered = sorted(self.trades, key=lambda t: t.timestamp)
        balance = self.initial_balance
        result = []
        for trade in ordered:
            balance += -trade.value if trade.side == TradeSide.BUY else trade.value
            result.append(trade.model_copy(update={"balance": balance}))
        return result


# =============================================================================
# Simulator
# =============================================================================


class BacktestSimulator:
    """Runs one compiled strategy over market instances and signal candles."""

    def __init__(
        self,
        compiled: CompiledStrategy,
        provider: IndicatorProvider | None = None,
        timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.compiled = compiled
        self.provider = provider or BuiltinIndicatorProvider()
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self.diagnostics: list[Diagnostic] = []
        self.market_failures: list[MarketFailure] = []

    def _diag(
        self,
        category: DiagnosticCategory,
        message: str,
        market_id: str | None = None,
        timestamp: int | None = None,
    ) -> None:
        self.diagnostics.append(
            Diagnostic(category=category, message=message, market_id=market_id, timestamp=timestamp)
        )
        if category == DiagnosticCategory.RISK_BLOCKED:
            logger.info(f"{category.value}: {message}")
        else:
            logger.warning(f"{category.value}: {message}")

    def run(
        self,
        markets: Sequence[MarketInstance],
        signal_candles: dict[str, list[Candle]],
        initial_balance: float,
    ) -> SimulationResult:
        """Simulate the strategy.

        Args:
            markets: Market instances to trade (any order; sorted by start time)
            signal_candles: Asset candles keyed by timeframe, including warmup.
                Must contain the strategy timeframe and every indicator timeframe.
            initial_balance: Starting account balance

        Returns:
            SimulationResult with the time-ordered trade log and its summary
        """
        self.diagnostics = []
        self.market_failures = []
        ordered = sorted(markets, key=lambda m: m.start_time)
        first_start = ordered[0].start_time if ordered else 0
        logger.info(
            f"Simulating {len(ordered)} markets with {len(signal_candles.get(self.compiled.timeframe, []))} "
            f"{self.compiled.timeframe} signal candles"
        )

        scan = self._scan_signals(signal_candles, first_start)

        ledger = Ledger(initial_balance)
        risk = RiskGovernor(self.compiled.risk)
        window = ArmingWindow(self.compiled.events_count)
        pending = deque(scan.entries)
        started = self.clock()
        processed = 0
        timed_out = False

        for market in ordered:
            if self.timeout_seconds is not None and self.clock() - started > self.timeout_seconds:
                timed_out = True
                logger.warning(
                    f"Backtest timed out after {self.timeout_seconds}s; {processed}/{len(ordered)} markets processed"
                )
                break

            entry = replace(window.event, timestamp=market.start_time) if window.is_armed else None
            deferred = []
            while pending and pending[0].timestamp < market.end_time:
                event = pending.popleft()
                if event.timestamp < first_start:
                    continue
                if event.market == TargetMarket.NEXT and event.timestamp >= market.start_time:
                    deferred.append(replace(event, timestamp=market.end_time, market=TargetMarket.CURRENT))
                    continue
                window.trigger(event)
                if entry is None:
                    entry = replace(event, timestamp=max(event.timestamp, market.start_time))
            pending.extendleft(reversed(deferred))

            if entry is not None:
                self._simulate_market(market, entry, ledger, risk, scan.close_signals)
            window.complete_market()
            processed += 1

        trades = ledger.finalized_trades()
        summary = aggregate(trades, initial_balance)
        logger.info(
            f"Simulation complete: {summary.total_trades} closed trades, "
            f"P&L {summary.total_pnl:.2f} ({summary.total_pnl_percent:.2f}%)"
        )
        return SimulationResult(
            summary=summary,
            trades=trades,
            diagnostics=self.diagnostics,
            market_failures=self.market_failures,
            candles_processed=scan.candles_processed,
            conditions_triggered=scan.conditions_triggered,
            markets_processed=processed,
            timed_out=timed_out,
        )

    # -------------------------------------------------------------------------
    # Signal pass
    # -------------------------------------------------------------------------

    def _source_frame(self, signal_candles: dict[str, list[Candle]]) -> list[list[float | None]]:
        """Per-source value series aligned with the strategy-timeframe candles."""
        timeframe = self.compiled.timeframe
        base = signal_candles.get(timeframe, [])
        base_ms = timeframe_to_ms(timeframe)
        computed: dict[str, tuple[IndicatorSeries, list[Candle], str]] = {}
        frame = []
        for source in self.compiled.sources.sources:
            if source.kind == SourceKind.PRICE:
                frame.append([getattr(c, source.field) for c in base])
                continue

            if source.indicator_id not in computed:
                indicator = self.compiled.sources.indicators[source.indicator_id]
                ind_timeframe = indicator.effective_timeframe(timeframe)
                candles = signal_candles.get(ind_timeframe)
                if candles is None:
                    raise ValueError(f"No {ind_timeframe} candles for indicator '{indicator.id}'")
                computed[source.indicator_id] = (
                    self.provider.compute(indicator, candles),
                    candles,
                    ind_timeframe,
                )
            series, candles, ind_timeframe = computed[source.indicator_id]
            values = series.field(source.field)
            if ind_timeframe != timeframe:
                values = align_series(values, candles, timeframe_to_ms(ind_timeframe), base, base_ms)
            frame.append(values)
        return frame

    def _scan_signals(self, signal_candles: dict[str, list[Candle]], first_start: int) -> SignalScan:
        timeframe = self.compiled.timeframe
        candles = signal_candles.get(timeframe, [])
        interval = timeframe_to_ms(timeframe)
        frame = self._source_frame(signal_candles)
        aggregator = TriggerAggregator(self.compiled)
        scan = SignalScan()
        null_candles = 0
        prev_ts: int | None = None

        for i, candle in enumerate(candles):
            evaluate = True
            if prev_ts is not None and candle.timestamp - prev_ts > interval:
                self._diag(
                    DiagnosticCategory.DATA_GAP_WARNING,
                    f"Gap of {(candle.timestamp - prev_ts) // 1000}s in {timeframe} candles; "
                    "crossing history reset",
                    timestamp=candle.timestamp,
                )
                aggregator.reset_history()
                evaluate = False
            prev_ts = candle.timestamp

            close_time = candle.timestamp + interval
            samples = [column[i] for column in frame]
            step = aggregator.step(close_time, samples, evaluate=evaluate)
            if step is None or close_time < first_start:
                continue

            scan.candles_processed += 1
            if any(s is None for s in samples):
                null_candles += 1
            if step.triggered:
                scan.conditions_triggered += 1
                scan.entries.append(step.event)
            if step.closing:
                scan.close_signals.append(close_time)

        if null_candles:
            self._diag(
                DiagnosticCategory.DATA_GAP_WARNING,
                f"{null_candles} candles had null source values (indicator warmup); conditions read false",
            )
        logger.info(
            f"Evaluated {scan.candles_processed} candles, {scan.conditions_triggered} triggers"
        )
        return scan

    # -------------------------------------------------------------------------
    # Market pass
    # -------------------------------------------------------------------------

    def _single_order_action(self, entry: TriggerEvent) -> EntryAction | None:
        if entry.action is not None and (
            entry.action.order_price is not None or entry.action.order_type == OrderType.MARKET
        ):
            return entry.action
        for action in self.compiled.entry_actions:
            if action.order_price is not None or action.order_type == OrderType.MARKET:
                return action
        return None

    def _entry_rungs(self, entry: TriggerEvent, path: list[Candle], balance: float) -> list[Rung]:
        if self.compiled.use_order_ladder:
            return list(self.compiled.ladder)
        action = self._single_order_action(entry)
        if action is None or not path:
            return []
        if action.order_type == OrderType.MARKET or action.order_price is None:
            price = path[0].open
        else:
            price = action.order_price
        shares = size_order(action.sizing, action.sizing_value, price, balance)
        return [Rung(price=price, shares=shares, rung_id=action.label)] if shares > 0 else []

    def _simulate_market(
        self,
        market: MarketInstance,
        entry: TriggerEvent,
        ledger: Ledger,
        risk: RiskGovernor,
        close_signals: list[int],
    ) -> None:
        mid = market.market_id
        path = [c for c in market.path(entry.direction) if entry.timestamp <= c.timestamp < market.end_time]
        rungs = self._entry_rungs(entry, path, ledger.available_at(entry.timestamp))
        if not rungs:
            logger.debug(f"Market {mid}: nothing to order")
            return

        decision = risk.check(entry.timestamp, sum(r.shares for r in rungs), sum(r.price * r.shares for r in rungs))
        if not decision.allowed:
            self._diag(DiagnosticCategory.RISK_BLOCKED, decision.reason, mid, entry.timestamp)
            return

        ledger_cp = ledger.checkpoint()
        risk_cp = risk.checkpoint()
        risk.record_entry(entry.timestamp)
        rules = self.compiled.exit
        ladder = OrderLadder(rungs, entry.timestamp, rules.unfilled_order_behavior, rules.cancel_after_seconds)
        position = Position(rules=rules, direction=entry.direction)
        logger.debug(f"Market {mid}: armed at {entry.timestamp} ({entry.reason}), {len(rungs)} rungs")

        prev_ts = entry.timestamp - 1
        for candle in path:
            signal = _signal_between(close_signals, prev_ts, candle.timestamp)
            prev_ts = candle.timestamp
            exit_decision = position.check_exit(candle, close_signal=signal)
            if exit_decision is not None:
                self._close(position, exit_decision, ledger, risk, mid)
                ladder.cancel_open()
                break
            if ladder.is_done:
                continue
            step = ladder.step(candle, budget=ledger.available_at(candle.timestamp))
            for fill in step.fills:
                position.add_fill(fill)
                ledger.buy(fill, mid, entry.reason)
            for rung in step.skipped:
                self._diag(
                    DiagnosticCategory.RISK_BLOCKED,
                    f"Rung {rung.shares}@{rung.price:.2f} skipped: insufficient balance",
                    mid,
                    candle.timestamp,
                )

        ladder.cancel_open()
        if position.is_open:
            if market.outcome is None:
                ledger.rollback(ledger_cp)
                risk.restore(risk_cp)
                message = f"Market {mid} has no resolved outcome; its trades were excluded"
                self.market_failures.append(
                    MarketFailure(
                        market_id=mid,
                        category=DiagnosticCategory.RESOLUTION_UNAVAILABLE,
                        message=message,
                    )
                )
                self._diag(DiagnosticCategory.RESOLUTION_UNAVAILABLE, message, mid, market.end_time)
                return
            self._close(position, position.settle(market.outcome, market.end_time), ledger, risk, mid)

        if position.fills:
            closed_at = position.exit.timestamp if position.exit else None
            risk.record_position(position.opened_at, closed_at, position.shares, position.cost)

    def _close(
        self,
        position: Position,
        decision: ExitDecision,
        ledger: Ledger,
        risk: RiskGovernor,
        market_id: str,
    ) -> None:
        reason = decision.reason.value
        trade = ledger.close(position, decision, market_id, reason)
        risk.record_close(trade.timestamp, trade.pnl)
        logger.debug(f"Market {market_id}: closed by {reason} at {decision.price:.4f}, pnl {trade.pnl:.2f}")


def _signal_between(signals: list[int], after: int, until: int) -> bool:
    """Whether any signal time falls in (after, until]."""
    i = bisect.bisect_right(signals, after)
    return i < len(signals) and signals[i] <= until
