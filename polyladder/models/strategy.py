"""Strategy definition models.

A strategy is authored once (in the UI or as JSON) and evaluated against
historical prediction markets. The models accept the camelCase wire format
used by the strategy editor, plus the legacy flat layout where exit, risk and
schedule settings sit at the top level of the strategy document.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Indicators may declare this instead of a concrete timeframe
STRATEGY_TIMEFRAME = "Use strategy timeframe"


class CamelModel(BaseModel):
    """Base model serializing to camelCase while accepting snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _match_alias(cls: type[Enum], value: Any, aliases: dict[str, str]) -> Enum | None:
    """Resolve a case-insensitive enum value or alias."""
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    for member in cls:
        if member.value.lower() == key or member.name.lower() == key:
            return member
    if key in aliases:
        return cls(aliases[key])
    return None


# =============================================================================
# Enums
# =============================================================================


class Direction(str, Enum):
    """Favored market direction (which outcome token the strategy buys)."""

    UP = "UP"
    DOWN = "DOWN"

    @classmethod
    def _missing_(cls, value: object) -> Direction | None:
        return _match_alias(cls, value, {"yes": "UP", "long": "UP", "no": "DOWN", "short": "DOWN"})


class ConditionLogic(str, Enum):
    """How condition results are combined."""

    ALL = "all"
    ANY = "any"

    @classmethod
    def _missing_(cls, value: object) -> ConditionLogic | None:
        return _match_alias(cls, value, {"and": "all", "or": "any"})


class IndicatorType(str, Enum):
    """Supported indicator types."""

    RSI = "RSI"
    MACD = "MACD"
    SMA = "SMA"
    EMA = "EMA"
    BOLLINGER_BANDS = "BollingerBands"
    STOCHASTIC = "Stochastic"
    ATR = "ATR"
    VWAP = "VWAP"
    ROLLING_UP_PCT = "RollingUpPct"

    @classmethod
    def _missing_(cls, value: object) -> IndicatorType | None:
        return _match_alias(
            cls,
            value,
            {
                "bollinger bands": "BollingerBands",
                "bb": "BollingerBands",
                "rolling up %": "RollingUpPct",
                "rolling_up_pct": "RollingUpPct",
                "up_pct": "RollingUpPct",
            },
        )


class Operator(str, Enum):
    """Condition operators."""

    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQUAL = "equal to"
    CROSSES_ABOVE = "crosses above"
    CROSSES_BELOW = "crosses below"
    BETWEEN = "between"

    @property
    def is_crossing(self) -> bool:
        return self in (Operator.CROSSES_ABOVE, Operator.CROSSES_BELOW)

    @classmethod
    def _missing_(cls, value: object) -> Operator | None:
        return _match_alias(
            cls,
            value,
            {
                "greater than": ">",
                "greater_than": ">",
                "less than": "<",
                "less_than": "<",
                "greater than or equal": ">=",
                "greater_equal": ">=",
                "less than or equal": "<=",
                "less_equal": "<=",
                "==": "equal to",
                "equals": "equal to",
                "equal": "equal to",
                "crosses_above": "crosses above",
                "crosses_below": "crosses below",
            },
        )


class CandleRef(str, Enum):
    """Which candle a condition reads."""

    CURRENT = "current"
    PREVIOUS = "previous"


class ActionKind(str, Enum):
    """Action kinds."""

    OPEN = "open"
    CLOSE = "close"

    @classmethod
    def _missing_(cls, value: object) -> ActionKind | None:
        return _match_alias(cls, value, {"open position": "open", "close position": "close"})


class TargetMarket(str, Enum):
    """Which market instance an action targets."""

    CURRENT = "current"
    NEXT = "next"


class OrderType(str, Enum):
    """Order types."""

    LIMIT = "limit"
    MARKET = "market"


class SizingRule(str, Enum):
    """How an action sizes its order."""

    FIXED_SHARES = "fixed_shares"
    FIXED_DOLLAR = "fixed_dollar"
    PERCENTAGE = "percentage"


class UnfilledOrderBehavior(str, Enum):
    """What happens to ladder rungs that have not filled."""

    KEEP_OPEN = "keep_open"
    CANCEL_AFTER_SECONDS = "cancel_after_seconds"
    CANCEL_AT_CANDLE = "cancel_at_candle"
    REPLACE_MARKET = "replace_market"


# =============================================================================
# Strategy components
# =============================================================================


class Indicator(CamelModel):
    """An indicator declared by a strategy."""

    id: str
    type: IndicatorType
    timeframe: str = STRATEGY_TIMEFRAME
    parameters: dict[str, float] = Field(default_factory=dict)
    # Construction-time tag only; evaluation never reads it
    preset: str | None = None

    def effective_timeframe(self, strategy_timeframe: str) -> str:
        if not self.timeframe or self.timeframe == STRATEGY_TIMEFRAME:
            return strategy_timeframe
        return self.timeframe


class Condition(CamelModel):
    """Compare two sources (or a source and a constant) on each candle."""

    id: str
    source_a: str
    operator: Operator
    source_b: str | None = None
    value: float | None = None
    value2: float | None = None
    candle: CandleRef = CandleRef.CURRENT


class Action(CamelModel):
    """What to do when a condition fires."""

    id: str | None = None
    condition_id: str
    action: ActionKind = ActionKind.OPEN
    direction: Direction | None = None
    market: TargetMarket = TargetMarket.CURRENT
    order_type: OrderType = OrderType.LIMIT
    order_price: int | None = Field(default=None, description="Limit price in cents (1-99)")
    sizing: SizingRule = SizingRule.FIXED_SHARES
    sizing_value: float | None = None


class OrderLadderItem(CamelModel):
    """One limit-order rung: price in cents and a share count."""

    id: str | None = None
    price: int
    shares: int


class RiskLimits(CamelModel):
    """Entry limits. Absent values are unconstrained."""

    max_daily_loss: float | None = None
    daily_trade_cap: int | None = None
    max_open_positions: int | None = None
    max_position_shares: int | None = None
    max_position_dollar: float | None = None


class ExitPolicy(CamelModel):
    """Exit and unfilled-order settings."""

    exit_price: int | None = Field(default=None, description="Take-profit price in cents (1-99)")
    use_take_profit: bool = False
    take_profit_percent: float | None = None
    use_stop_loss: bool = False
    stop_loss_percent: float | None = None
    unfilled_order_behavior: UnfilledOrderBehavior = UnfilledOrderBehavior.KEEP_OPEN
    cancel_after_seconds: int | None = None


class TimeRange(CamelModel):
    """Daily UTC time window, "HH:MM" to "HH:MM" inclusive."""

    start: str = "00:00"
    end: str = "23:59"


class Schedule(CamelModel):
    """When triggers may be evaluated."""

    run_on_new_candle: bool = True
    selected_days: list[str] = Field(default_factory=list)
    time_range: TimeRange | None = None


# Flat top-level keys from the legacy strategy document, mapped to their group
_FLAT_GROUPS: dict[str, tuple[str, ...]] = {
    "exitPolicy": (
        "exitPrice",
        "useTakeProfit",
        "takeProfitPercent",
        "useStopLoss",
        "stopLossPercent",
        "unfilledOrderBehavior",
        "cancelAfterSeconds",
    ),
    "riskLimits": (
        "maxDailyLoss",
        "dailyTradeCap",
        "maxOpenPositions",
        "maxPositionShares",
        "maxPositionDollar",
    ),
    "schedule": ("runOnNewCandle", "selectedDays", "timeRange"),
}


class Strategy(CamelModel):
    """Complete strategy definition."""

    id: str | None = None
    name: str = "Untitled strategy"
    asset: str
    direction: Direction = Direction.UP
    timeframe: str = "15m"

    indicators: list[Indicator] = Field(default_factory=list)
    conditions: list[Condition] = Field(default_factory=list)
    condition_logic: ConditionLogic = ConditionLogic.ALL
    actions: list[Action] = Field(default_factory=list)

    order_ladder: list[OrderLadderItem] = Field(default_factory=list)
    use_order_ladder: bool = True

    risk_limits: RiskLimits = Field(default_factory=RiskLimits)
    exit_policy: ExitPolicy = Field(default_factory=ExitPolicy)
    schedule: Schedule = Field(default_factory=Schedule)
    trade_on_events_count: int = Field(default=1, ge=1)

    @model_validator(mode="before")
    @classmethod
    def _nest_flat_fields(cls, data: Any) -> Any:
        """Lift legacy flat keys (useStopLoss, maxDailyLoss, ...) into their groups."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for group, keys in _FLAT_GROUPS.items():
            lifted = {key: data.pop(key) for key in keys if key in data}
            if not lifted:
                continue
            nested = data.get(group)
            if isinstance(nested, BaseModel):
                nested = nested.model_dump(by_alias=True)
            data[group] = {**lifted, **(nested or {})}
        return data

    def snapshot(self) -> Strategy:
        """Deep copy used for a single run."""
        return self.model_copy(deep=True)

    def to_json(self, indent: int = 2) -> str:
        """Serialize to camelCase JSON."""
        return self.model_dump_json(indent=indent, by_alias=True)

    @classmethod
    def from_json(cls, json_str: str) -> Strategy:
        """Deserialize from JSON string."""
        return cls.model_validate_json(json_str)
