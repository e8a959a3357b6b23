"""Strategy compiler.

Validates a strategy definition and lowers it into the form the simulator
runs: sources resolved into a `SourceTable`, prices converted from cents,
schedule strings parsed. All configuration problems are collected and raised
together as a `ConfigError` before any candle is touched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..models.data import is_known_timeframe, ms_to_datetime
from ..models.strategy import (
    STRATEGY_TIMEFRAME,
    ActionKind,
    CandleRef,
    ConditionLogic,
    Direction,
    Operator,
    OrderType,
    RiskLimits,
    SizingRule,
    Strategy,
    TargetMarket,
    UnfilledOrderBehavior,
)
from ..models.units import cents_to_price, is_valid_cents
from .sources import SourceResolutionError, SourceTable

# Constant operand marker accepted in sourceB
VALUE_OPERAND = "value"

DAY_NAMES: dict[str, int] = {
    "mon": 0,
    "tue": 1,
    "wed": 2,
    "thu": 3,
    "fri": 4,
    "sat": 5,
    "sun": 6,
}

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


# =============================================================================
# Validation results
# =============================================================================


@dataclass
class ValidationError:
    """A single validation error."""

    path: str  # Where in the strategy the error occurred
    message: str  # What's wrong

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass
class ValidationResult:
    """Result of validating a strategy."""

    errors: list[ValidationError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, path: str, message: str) -> None:
        self.errors.append(ValidationError(path=path, message=message))


class ConfigError(Exception):
    """Raised when a strategy cannot be run as configured."""

    def __init__(self, errors: list[ValidationError]):
        self.errors = errors
        super().__init__("; ".join(str(e) for e in errors))


# =============================================================================
# Compiled form
# =============================================================================


@dataclass(frozen=True)
class CompiledCondition:
    """A condition with its sources resolved to table indexes."""

    id: str
    operator: Operator
    source_a: int
    source_b: int | None  # None when comparing against `value`
    value: float | None
    value2: float | None
    offset: int  # 0 = current candle, 1 = previous candle


@dataclass(frozen=True)
class Rung:
    """One ladder rung with its price as a decimal."""

    price: float
    shares: int
    rung_id: str | None = None


@dataclass(frozen=True)
class EntryAction:
    """An open-position action bound to the condition that fires it."""

    condition_index: int
    direction: Direction
    market: TargetMarket
    order_type: OrderType
    order_price: float | None
    sizing: SizingRule
    sizing_value: float | None
    label: str


@dataclass(frozen=True)
class ExitRules:
    exit_price: float | None = None
    take_profit_percent: float | None = None
    stop_loss_percent: float | None = None
    unfilled_order_behavior: UnfilledOrderBehavior = UnfilledOrderBehavior.KEEP_OPEN
    cancel_after_seconds: int | None = None


@dataclass(frozen=True)
class ScheduleGate:
    """Day-of-week and UTC time-of-day window in which triggers may arm."""

    days: frozenset[int] = frozenset()  # Empty = every day
    start_minute: int | None = None
    end_minute: int | None = None

    def allows(self, timestamp_ms: int) -> bool:
        moment = ms_to_datetime(timestamp_ms)
        if self.days and moment.weekday() not in self.days:
            return False
        if self.start_minute is None or self.end_minute is None:
            return True
        minute = moment.hour * 60 + moment.minute
        if self.start_minute <= self.end_minute:
            return self.start_minute <= minute <= self.end_minute
        # Window wraps past midnight
        return minute >= self.start_minute or minute <= self.end_minute


@dataclass
class CompiledStrategy:
    """A validated strategy in the form the simulator runs."""

    strategy: Strategy
    sources: SourceTable
    conditions: list[CompiledCondition]
    logic: ConditionLogic
    entry_actions: list[EntryAction]
    entry_conditions: list[int]  # Conditions combined by `logic` to arm entries
    close_conditions: list[int]
    ladder: list[Rung]
    use_order_ladder: bool
    exit: ExitRules
    risk: RiskLimits
    schedule: ScheduleGate
    run_on_new_candle: bool
    events_count: int

    @property
    def timeframe(self) -> str:
        return self.strategy.timeframe

    @property
    def direction(self) -> Direction:
        return self.strategy.direction

    @property
    def history_depth(self) -> int:
        """Samples each source must keep: two, or three when a condition reads the previous candle."""
        return 3 if any(c.offset for c in self.conditions) else 2


# =============================================================================
# Compiler
# =============================================================================


def parse_hhmm(value: str) -> int | None:
    """Minutes after midnight for "HH:MM", or None if malformed."""
    match = _HHMM.match(value.strip())
    if match is None:
        return None
    return int(match.group(1)) * 60 + int(match.group(2))


def parse_day(name: str) -> int | None:
    return DAY_NAMES.get(name.strip().lower()[:3])


class StrategyCompiler:
    """Validates a strategy and builds its CompiledStrategy."""

    def __init__(self, strategy: Strategy):
        self.strategy = strategy.snapshot()
        self.result = ValidationResult()
        self.sources = SourceTable(indicators={ind.id: ind for ind in self.strategy.indicators})

    def validate(self) -> ValidationResult:
        """Run every check without building anything."""
        self._compile()
        return self.result

    def compile(self) -> CompiledStrategy:
        """Build the compiled strategy.

        Raises:
            ConfigError: Listing every problem found
        """
        compiled = self._compile()
        if not self.result.is_valid:
            raise ConfigError(self.result.errors)
        return compiled

    def _compile(self) -> CompiledStrategy:
        s = self.strategy
        self._check_timeframes()
        self._check_unique_ids()
        conditions = self._compile_conditions()
        condition_index = {c.id: i for i, c in enumerate(s.conditions)}
        entry_actions, close_conditions = self._compile_actions(condition_index)
        ladder = self._compile_ladder(entry_actions)
        exit_rules = self._compile_exit()
        schedule = self._compile_schedule()
        self._check_risk_limits()

        # Conditions wired only to close actions do not take part in entry logic
        close_only = set(close_conditions) - {a.condition_index for a in entry_actions}
        entry_conditions = [i for i in range(len(conditions)) if i not in close_only]

        return CompiledStrategy(
            strategy=s,
            sources=self.sources,
            conditions=conditions,
            logic=s.condition_logic,
            entry_actions=entry_actions,
            entry_conditions=entry_conditions,
            close_conditions=close_conditions,
            ladder=ladder,
            use_order_ladder=s.use_order_ladder,
            exit=exit_rules,
            risk=s.risk_limits,
            schedule=schedule,
            run_on_new_candle=s.schedule.run_on_new_candle,
            events_count=s.trade_on_events_count,
        )

    def _check_timeframes(self) -> None:
        if not is_known_timeframe(self.strategy.timeframe):
            self.result.add_error("timeframe", f"Unsupported timeframe '{self.strategy.timeframe}'")
        for i, ind in enumerate(self.strategy.indicators):
            if ind.timeframe and ind.timeframe != STRATEGY_TIMEFRAME and not is_known_timeframe(ind.timeframe):
                self.result.add_error(
                    f"indicators[{i}].timeframe", f"Unsupported timeframe '{ind.timeframe}'"
                )

    def _check_unique_ids(self) -> None:
        groups = {
            "indicators": [ind.id for ind in self.strategy.indicators],
            "conditions": [c.id for c in self.strategy.conditions],
            "actions": [a.id for a in self.strategy.actions if a.id],
            "orderLadder": [r.id for r in self.strategy.order_ladder if r.id],
        }
        for group, ids in groups.items():
            seen: set[str] = set()
            for i, item_id in enumerate(ids):
                if item_id in seen:
                    self.result.add_error(f"{group}[{i}].id", f"Duplicate id '{item_id}'")
                seen.add(item_id)

    def _resolve(self, ref: str, path: str) -> int | None:
        try:
            return self.sources.resolve(ref)
        except SourceResolutionError as e:
            self.result.add_error(path, str(e))
            return None

    def _compile_conditions(self) -> list[CompiledCondition]:
        compiled = []
        for i, cond in enumerate(self.strategy.conditions):
            path = f"conditions[{i}]"
            source_a = self._resolve(cond.source_a, f"{path}.sourceA")

            source_b = None
            ref_b = (cond.source_b or "").strip()
            uses_value = not ref_b or ref_b.lower() == VALUE_OPERAND
            if cond.operator == Operator.BETWEEN:
                if cond.value is None or cond.value2 is None:
                    self.result.add_error(path, "'between' requires both value and value2")
                elif cond.value > cond.value2:
                    self.result.add_error(path, "'between' requires value <= value2")
            elif uses_value:
                if cond.value is None:
                    self.result.add_error(path, "Condition needs a sourceB or a value to compare against")
            else:
                source_b = self._resolve(ref_b, f"{path}.sourceB")

            if source_a is None:
                continue
            compiled.append(
                CompiledCondition(
                    id=cond.id,
                    operator=cond.operator,
                    source_a=source_a,
                    source_b=source_b,
                    value=cond.value,
                    value2=cond.value2,
                    offset=1 if cond.candle == CandleRef.PREVIOUS else 0,
                )
            )
        return compiled

    def _compile_actions(
        self, condition_index: dict[str, int]
    ) -> tuple[list[EntryAction], list[int]]:
        entries: list[EntryAction] = []
        closes: list[int] = []
        for i, action in enumerate(self.strategy.actions):
            path = f"actions[{i}]"
            index = condition_index.get(action.condition_id)
            if index is None:
                self.result.add_error(
                    f"{path}.conditionId", f"Unknown condition '{action.condition_id}'"
                )
                continue
            if action.action == ActionKind.CLOSE:
                closes.append(index)
                continue
            order_price = None
            if action.order_price is not None:
                if not is_valid_cents(action.order_price):
                    self.result.add_error(
                        f"{path}.orderPrice", f"Order price {action.order_price} outside 1-99 cents"
                    )
                else:
                    order_price = cents_to_price(action.order_price)
            if action.sizing_value is not None and action.sizing_value < 0:
                self.result.add_error(f"{path}.sizingValue", "Sizing value must not be negative")
            entries.append(
                EntryAction(
                    condition_index=index,
                    direction=action.direction or self.strategy.direction,
                    market=action.market,
                    order_type=action.order_type,
                    order_price=order_price,
                    sizing=action.sizing,
                    sizing_value=action.sizing_value,
                    label=action.id or action.condition_id,
                )
            )
        return entries, closes

    def _compile_ladder(self, entry_actions: list[EntryAction]) -> list[Rung]:
        s = self.strategy
        if not s.use_order_ladder:
            single_order = any(
                (a.order_price is not None or a.order_type == OrderType.MARKET)
                and (a.sizing_value or 0) > 0
                for a in entry_actions
            )
            if not single_order:
                self.result.add_error(
                    "actions",
                    "Order ladder is disabled but no open action has an order price and sizing value",
                )
            return []

        if not s.order_ladder:
            self.result.add_error("orderLadder", "Order ladder is empty")
        rungs = []
        for i, item in enumerate(s.order_ladder):
            ok = True
            if not is_valid_cents(item.price):
                self.result.add_error(f"orderLadder[{i}].price", f"Price {item.price} outside 1-99 cents")
                ok = False
            if item.shares <= 0:
                self.result.add_error(f"orderLadder[{i}].shares", "Shares must be a positive integer")
                ok = False
            if ok:
                rungs.append(Rung(price=cents_to_price(item.price), shares=item.shares, rung_id=item.id))
        return rungs

    def _compile_exit(self) -> ExitRules:
        policy = self.strategy.exit_policy
        exit_price = None
        if policy.exit_price is not None:
            if is_valid_cents(policy.exit_price):
                exit_price = cents_to_price(policy.exit_price)
            else:
                self.result.add_error("exitPolicy.exitPrice", f"Exit price {policy.exit_price} outside 1-99 cents")

        take_profit = None
        if policy.use_take_profit:
            if policy.take_profit_percent is None or policy.take_profit_percent <= 0:
                self.result.add_error("exitPolicy.takeProfitPercent", "Take profit percent must be positive")
            else:
                take_profit = policy.take_profit_percent

        stop_loss = None
        if policy.use_stop_loss:
            if policy.stop_loss_percent is None or policy.stop_loss_percent <= 0:
                self.result.add_error("exitPolicy.stopLossPercent", "Stop loss percent must be positive")
            else:
                stop_loss = policy.stop_loss_percent

        if policy.unfilled_order_behavior == UnfilledOrderBehavior.CANCEL_AFTER_SECONDS:
            if policy.cancel_after_seconds is None or policy.cancel_after_seconds <= 0:
                self.result.add_error(
                    "exitPolicy.cancelAfterSeconds",
                    "cancel_after_seconds behavior needs a positive cancelAfterSeconds",
                )

        return ExitRules(
            exit_price=exit_price,
            take_profit_percent=take_profit,
            stop_loss_percent=stop_loss,
            unfilled_order_behavior=policy.unfilled_order_behavior,
            cancel_after_seconds=policy.cancel_after_seconds,
        )

    def _compile_schedule(self) -> ScheduleGate:
        schedule = self.strategy.schedule
        days = set()
        for i, name in enumerate(schedule.selected_days):
            day = parse_day(name)
            if day is None:
                self.result.add_error(f"schedule.selectedDays[{i}]", f"Unknown day '{name}'")
            else:
                days.add(day)

        start = end = None
        if schedule.time_range is not None:
            start = parse_hhmm(schedule.time_range.start)
            end = parse_hhmm(schedule.time_range.end)
            if start is None:
                self.result.add_error("schedule.timeRange.start", f"Expected HH:MM, got '{schedule.time_range.start}'")
            if end is None:
                self.result.add_error("schedule.timeRange.end", f"Expected HH:MM, got '{schedule.time_range.end}'")
        return ScheduleGate(days=frozenset(days), start_minute=start, end_minute=end)

    def _check_risk_limits(self) -> None:
        for name, value in self.strategy.risk_limits.model_dump(by_alias=True).items():
            if value is not None and value <= 0:
                self.result.add_error(f"riskLimits.{name}", "Limit must be positive when set")


def compile_strategy(strategy: Strategy) -> CompiledStrategy:
    """Validate and compile a strategy. Raises ConfigError."""
    return StrategyCompiler(strategy).compile()


def validate_strategy(strategy: Strategy) -> ValidationResult:
    """Collect configuration errors without raising."""
    return StrategyCompiler(strategy).validate()
