"""Condition evaluator.

Applies each condition's operator to resolved source values. History needed
for crossings lives here, as one small ring buffer per resolved source; the
caller pushes one sample per candle and resets across data gaps.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence

from ..models.strategy import Operator
from .compiler import CompiledCondition

# Absolute tolerance for "equal to"
EQUALITY_TOLERANCE = 1e-4

Sample = float | None


def compare(operator: Operator, a: float, b: float, value2: float | None = None) -> bool:
    """Apply a non-crossing operator to current values."""
    match operator:
        case Operator.GT:
            return a > b
        case Operator.LT:
            return a < b
        case Operator.GTE:
            return a >= b
        case Operator.LTE:
            return a <= b
        case Operator.EQUAL:
            return abs(a - b) < EQUALITY_TOLERANCE
        case Operator.BETWEEN:
            return value2 is not None and b <= a <= value2
        case _:
            raise ValueError(f"Not a point-in-time operator: {operator}")


def crossed(operator: Operator, prev_a: float, prev_b: float, curr_a: float, curr_b: float) -> bool:
    """Crossing test between two consecutive samples."""
    match operator:
        case Operator.CROSSES_ABOVE:
            return prev_a <= prev_b and curr_a > curr_b
        case Operator.CROSSES_BELOW:
            return prev_a >= prev_b and curr_a < curr_b
        case _:
            raise ValueError(f"Not a crossing operator: {operator}")


class ConditionEvaluator:
    """Evaluates compiled conditions against per-source sample history."""

    def __init__(self, conditions: Sequence[CompiledCondition], source_count: int, depth: int = 2):
        self.conditions = list(conditions)
        self.depth = depth
        self._history: list[deque[Sample]] = [deque(maxlen=depth) for _ in range(source_count)]

    def push(self, samples: Sequence[Sample]) -> None:
        """Record the current candle's value for every source."""
        for buffer, sample in zip(self._history, samples, strict=True):
            buffer.append(sample)

    def reset(self) -> None:
        """Forget all history, e.g. after a gap in the candle series."""
        for buffer in self._history:
            buffer.clear()

    def _sample(self, source: int, back: int) -> Sample:
        buffer = self._history[source]
        if back >= len(buffer):
            return None
        return buffer[-1 - back]

    def _operand(self, cond: CompiledCondition, back: int) -> Sample:
        if cond.source_b is None:
            return cond.value
        return self._sample(cond.source_b, back)

    def evaluate(self, cond: CompiledCondition) -> bool:
        """Evaluate one condition. Missing or null values make it false."""
        curr_a = self._sample(cond.source_a, cond.offset)
        if cond.operator == Operator.BETWEEN:
            if curr_a is None or cond.value is None:
                return False
            return compare(cond.operator, curr_a, cond.value, cond.value2)

        curr_b = self._operand(cond, cond.offset)
        if curr_a is None or curr_b is None:
            return False
        if not cond.operator.is_crossing:
            return compare(cond.operator, curr_a, curr_b)

        prev_a = self._sample(cond.source_a, cond.offset + 1)
        prev_b = self._operand(cond, cond.offset + 1)
        if prev_a is None or prev_b is None:
            return False
        return crossed(cond.operator, prev_a, prev_b, curr_a, curr_b)

    def evaluate_all(self) -> list[bool]:
        return [self.evaluate(cond) for cond in self.conditions]
