"""Polyladder - strategy backtesting for binary UP/DOWN prediction markets."""

__version__ = "0.1.0"
