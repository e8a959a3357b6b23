"""Strategy repository used to resolve `strategyId` for a run."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from ..models.strategy import Strategy

logger = logging.getLogger(__name__)


class StrategyNotFoundError(KeyError):
    """Raised when a strategy id is not in the store."""


class StrategyStore:
    """In-memory strategy store, optionally loaded from a directory of JSON files.

    Each `*.json` file holds one strategy; a file without an "id" uses its
    file stem.
    """

    def __init__(self, directory: str | Path | None = None):
        self._strategies: dict[str, Strategy] = {}
        if directory is not None:
            self.load_directory(Path(directory))

    @classmethod
    def from_env(cls) -> StrategyStore:
        path = os.environ.get("STRATEGY_STORE_PATH")
        return cls(path) if path else cls()

    def load_directory(self, directory: Path) -> int:
        """Load every strategy file in `directory`. Returns how many were loaded."""
        if not directory.is_dir():
            logger.warning(f"Strategy directory {directory} does not exist")
            return 0
        loaded = 0
        for path in sorted(directory.glob("*.json")):
            try:
                strategy = Strategy.from_json(path.read_text())
            except PydanticValidationError as e:
                logger.error(f"Skipping invalid strategy file {path.name}: {e}")
                continue
            if not strategy.id:
                strategy.id = path.stem
            self.save(strategy)
            loaded += 1
        logger.info(f"Loaded {loaded} strategies from {directory}")
        return loaded

    def save(self, strategy: Strategy) -> None:
        if not strategy.id:
            raise ValueError("Strategy must have an id to be stored")
        self._strategies[strategy.id] = strategy

    def get(self, strategy_id: str) -> Strategy:
        """Return a snapshot of the stored strategy.

        Raises:
            StrategyNotFoundError: If no strategy has this id
        """
        strategy = self._strategies.get(strategy_id)
        if strategy is None:
            raise StrategyNotFoundError(strategy_id)
        return strategy.snapshot()

    def list_ids(self) -> list[str]:
        return sorted(self._strategies)
