"""Strategy evaluation and backtest simulation engine."""

from .compiler import (
    CompiledStrategy,
    ConfigError,
    StrategyCompiler,
    ValidationError,
    ValidationResult,
    compile_strategy,
    validate_strategy,
)
from .presets import PRESETS, PresetExpander, expand_presets
from .simulator import BacktestSimulator, SimulationResult
from .statistics import PROFIT_FACTOR_SENTINEL, Summary, aggregate

__all__ = [
    "PRESETS",
    "PROFIT_FACTOR_SENTINEL",
    "BacktestSimulator",
    "CompiledStrategy",
    "ConfigError",
    "PresetExpander",
    "SimulationResult",
    "StrategyCompiler",
    "Summary",
    "ValidationError",
    "ValidationResult",
    "aggregate",
    "compile_strategy",
    "expand_presets",
    "validate_strategy",
]
