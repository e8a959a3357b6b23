"""Backtest service API."""

from .backtest_service import BacktestService
from .data_service import DataFetchError, DataService, HttpDataService, MockDataService
from .strategy_store import StrategyNotFoundError, StrategyStore

__all__ = [
    "BacktestService",
    "DataFetchError",
    "DataService",
    "HttpDataService",
    "MockDataService",
    "StrategyNotFoundError",
    "StrategyStore",
]
