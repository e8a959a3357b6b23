"""Trigger aggregation and the arming window.

`TriggerAggregator` turns per-candle condition results into entry triggers
(ALL/ANY logic, gated by the schedule). `ArmingWindow` is the small state
machine that keeps entries eligible for the current market instance and the
next `tradeOnEventsCount - 1` instances.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from ..models.strategy import ConditionLogic, Direction, TargetMarket
from .compiler import CompiledStrategy, EntryAction
from .evaluator import ConditionEvaluator, Sample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerEvent:
    """An armed entry signal at a candle close."""

    timestamp: int  # Candle close time in ms
    reason: str
    direction: Direction
    market: TargetMarket = TargetMarket.CURRENT
    action: EntryAction | None = None


@dataclass(frozen=True)
class CandleStep:
    """What one evaluated candle produced."""

    results: list[bool]
    triggered: bool
    closing: bool
    event: TriggerEvent | None = None


def combine(logic: ConditionLogic, results: Sequence[bool]) -> bool:
    """ALL / ANY over condition results. No conditions never triggers."""
    if not results:
        return False
    if logic == ConditionLogic.ALL:
        return all(results)
    return any(results)


class TriggerAggregator:
    """Evaluates a compiled strategy's conditions candle by candle."""

    def __init__(self, compiled: CompiledStrategy):
        self.compiled = compiled
        self.evaluator = ConditionEvaluator(
            compiled.conditions, len(compiled.sources), depth=compiled.history_depth
        )
        self._last_timestamp: int | None = None

    def reset_history(self) -> None:
        self.evaluator.reset()

    def step(self, timestamp: int, samples: Sequence[Sample], evaluate: bool = True) -> CandleStep | None:
        """Advance one candle.

        Args:
            timestamp: Candle close time in ms
            samples: Current value of every resolved source
            evaluate: False to only record history (e.g. the candle after a gap)

        Returns:
            The candle's outcome, or None when the candle was not evaluated
        """
        if (
            self.compiled.run_on_new_candle
            and self._last_timestamp is not None
            and timestamp <= self._last_timestamp
        ):
            logger.debug(f"Skipping already-seen candle at {timestamp}")
            return None
        self._last_timestamp = timestamp
        self.evaluator.push(samples)
        if not evaluate:
            return None

        results = self.evaluator.evaluate_all()
        entry_results = [results[i] for i in self.compiled.entry_conditions]
        aggregate = combine(self.compiled.logic, entry_results)
        closing = any(results[i] for i in self.compiled.close_conditions)

        if not aggregate or not self.compiled.schedule.allows(timestamp):
            return CandleStep(results=results, triggered=False, closing=closing)
        return CandleStep(
            results=results,
            triggered=True,
            closing=closing,
            event=self._event(timestamp, results),
        )

    def _event(self, timestamp: int, results: list[bool]) -> TriggerEvent:
        fired = [
            self.compiled.conditions[i].id for i in self.compiled.entry_conditions if results[i]
        ]
        reason = f"{self.compiled.logic.value.upper()}({', '.join(fired)})"
        for action in self.compiled.entry_actions:
            if results[action.condition_index]:
                return TriggerEvent(
                    timestamp=timestamp,
                    reason=reason,
                    direction=action.direction,
                    market=action.market,
                    action=action,
                )
        return TriggerEvent(timestamp=timestamp, reason=reason, direction=self.compiled.direction)


# =============================================================================
# Arming window
# =============================================================================


class ArmState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"


class ArmingWindow:
    """Idle -> Armed(remaining) -> Idle.

    A trigger arms the window for `events_count` market instances, counting
    the one it fired in. Triggering again while armed refreshes the count
    instead of stacking another window.
    """

    def __init__(self, events_count: int = 1):
        if events_count < 1:
            raise ValueError("events_count must be at least 1")
        self.events_count = events_count
        self.state = ArmState.IDLE
        self.remaining = 0
        self.event: TriggerEvent | None = None

    @property
    def is_armed(self) -> bool:
        return self.state == ArmState.ARMED

    def trigger(self, event: TriggerEvent) -> None:
        self.state = ArmState.ARMED
        self.remaining = self.events_count
        self.event = event

    def complete_market(self) -> None:
        """Count one market instance against the window."""
        if self.state != ArmState.ARMED:
            return
        self.remaining -= 1
        if self.remaining <= 0:
            self.state = ArmState.IDLE
            self.remaining = 0
            self.event = None
