"""Strategy, market data and backtest contract models."""

from .backtest import (
    BacktestRequest,
    BacktestResult,
    BacktestTrade,
    Diagnostic,
    DiagnosticCategory,
    MarketFailure,
    QuickCheckRequest,
    QuickCheckResult,
    TradeSide,
)
from .data import Candle, MarketInstance, PricePoint
from .strategy import (
    Action,
    Condition,
    ConditionLogic,
    Direction,
    ExitPolicy,
    Indicator,
    IndicatorType,
    Operator,
    OrderLadderItem,
    RiskLimits,
    Schedule,
    Strategy,
    UnfilledOrderBehavior,
)

__all__ = [
    "Action",
    "BacktestRequest",
    "BacktestResult",
    "BacktestTrade",
    "Candle",
    "Condition",
    "ConditionLogic",
    "Diagnostic",
    "DiagnosticCategory",
    "Direction",
    "ExitPolicy",
    "Indicator",
    "IndicatorType",
    "MarketFailure",
    "MarketInstance",
    "Operator",
    "OrderLadderItem",
    "PricePoint",
    "QuickCheckRequest",
    "QuickCheckResult",
    "RiskLimits",
    "Schedule",
    "Strategy",
    "TradeSide",
    "UnfilledOrderBehavior",
]
