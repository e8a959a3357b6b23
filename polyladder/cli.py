"""
CLI for running backtests from local JSON files.

The data file holds the candles and market instances a run needs:

    {
      "candles": {"15m": [{"timestamp": ..., "open": ..., ...}, ...]},
      "markets": [{"marketId": ..., "startTime": ..., "endTime": ...,
                   "outcome": "UP", "candles": [...]}, ...]
    }
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from .engine.compiler import ConfigError, validate_strategy
from .engine.presets import PRESETS, UnknownPresetError, expand_presets
from .models.backtest import BacktestRequest
from .models.data import Candle, MarketInstance
from .models.strategy import Strategy
from .service.backtest_service import BacktestService
from .service.data_service import DataFetchError, MockDataService

logger = logging.getLogger(__name__)


def _load_strategy(path: str, presets: list[str] | None = None) -> Strategy:
    """Read a strategy file and append any requested presets."""
    strategy = Strategy.from_json(Path(path).read_text())
    return expand_presets(strategy, presets or [])


def _load_data(path: str, strategy: Strategy) -> tuple[MockDataService, list[MarketInstance]]:
    """Seed an in-memory data service from a data file."""
    raw = json.loads(Path(path).read_text())
    ds = MockDataService()
    for timeframe, candles in raw.get("candles", {}).items():
        ds.seed(strategy.asset, timeframe, [Candle.model_validate(c) for c in candles])
    markets = [MarketInstance.model_validate(m) for m in raw.get("markets", [])]
    ds.seed_markets(strategy.asset, strategy.timeframe, markets)
    return ds, markets


def cmd_run(args) -> int:
    """Run a backtest and print the result as JSON."""
    try:
        strategy = _load_strategy(args.strategy, args.preset)
        ds, markets = _load_data(args.data, strategy)
    except UnknownPresetError as e:
        print(f"❌ Unknown preset {e}")
        return 1
    except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
        logger.error(f"Failed to load input: {e}")
        return 2

    if not markets:
        logger.error("Data file contains no markets")
        return 2

    service = BacktestService(data_service=ds, timeout_seconds=args.timeout)
    try:
        result = service.run_backtest(
            BacktestRequest(
                strategy=strategy,
                number_of_markets=args.markets or len(markets),
                initial_balance=args.initial_balance,
                exit_price=args.exit_price,
            )
        )
    except ConfigError as e:
        for error in e.errors:
            print(f"❌ {error}")
        return 1
    except DataFetchError as e:
        logger.error(f"Failed to load data: {e}")
        return 2

    output = result.model_dump_json(indent=2, by_alias=True)
    if args.output:
        Path(args.output).write_text(output)
        print(f"✅ Wrote result to {args.output}")
    else:
        print(output)
    print(
        f"\n{result.total_trades} trades | P&L {result.total_pnl:+.2f} ({result.total_pnl_percent:+.2f}%) "
        f"| win rate {result.win_rate:.1f}% | final balance {result.final_balance:.2f}",
        file=sys.stderr,
    )
    return 0


def cmd_validate(args) -> int:
    """Validate a strategy file."""
    try:
        strategy = _load_strategy(args.strategy, args.preset)
    except UnknownPresetError as e:
        print(f"❌ Unknown preset {e}")
        return 1
    except (OSError, PydanticValidationError) as e:
        print(f"❌ Could not parse strategy: {e}")
        return 2

    result = validate_strategy(strategy)
    if result.is_valid:
        print(f"✅ Strategy '{strategy.name}' is valid")
        return 0
    for error in result.errors:
        print(f"❌ {error}")
    return 1


def cmd_presets(args) -> int:
    """List available presets."""
    for name, template in sorted(PRESETS.items()):
        print(f"{name:<16} {template.label}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    parser = argparse.ArgumentParser(description="Backtest prediction-market strategies")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run a backtest")
    run_parser.add_argument("--strategy", required=True, help="Strategy JSON file")
    run_parser.add_argument("--data", required=True, help="Candles and markets JSON file")
    run_parser.add_argument("--initial-balance", type=float, default=1000.0, help="Starting balance")
    run_parser.add_argument("--exit-price", type=int, help="Take-profit price in cents (1-99)")
    run_parser.add_argument("--markets", type=int, help="Use only the most recent N markets")
    run_parser.add_argument("--timeout", type=float, help="Run budget in seconds")
    run_parser.add_argument("--output", help="Write the result JSON here instead of stdout")
    run_parser.add_argument(
        "--preset", action="append", help="Append a preset entry rule (repeatable, see `presets`)"
    )

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a strategy file")
    validate_parser.add_argument("--strategy", required=True, help="Strategy JSON file")
    validate_parser.add_argument("--preset", action="append", help="Append a preset entry rule (repeatable)")

    # Presets command
    subparsers.add_parser("presets", help="List available presets")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "run": cmd_run,
        "validate": cmd_validate,
        "presets": cmd_presets,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
