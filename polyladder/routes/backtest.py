"""Backtest routes."""

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException

from ..engine.compiler import ConfigError
from ..models.backtest import BacktestRequest, BacktestResult, QuickCheckRequest, QuickCheckResult
from ..service.backtest_service import BacktestService
from ..service.data_service import DataFetchError, HttpDataService
from ..service.strategy_store import StrategyNotFoundError, StrategyStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/backtest", tags=["backtest"])


@lru_cache
def get_backtest_service() -> BacktestService:
    """Service wired from the environment (cached)."""
    return BacktestService(data_service=HttpDataService(), store=StrategyStore.from_env())


def _config_error_detail(error: ConfigError) -> dict:
    return {
        "message": "Invalid strategy configuration",
        "errors": [{"path": e.path, "message": e.message} for e in error.errors],
    }


@router.post("", response_model=BacktestResult)
async def run_backtest(
    request: BacktestRequest,
    service: BacktestService = Depends(get_backtest_service),
) -> BacktestResult:
    """Run a backtest for an inline or stored strategy."""
    try:
        return service.run_backtest(request)
    except ConfigError as e:
        logger.info(f"Rejected backtest: {e}")
        raise HTTPException(status_code=400, detail=_config_error_detail(e))
    except StrategyNotFoundError:
        raise HTTPException(status_code=404, detail=f"Strategy not found: {request.strategy_id}")
    except DataFetchError as e:
        logger.error(f"Backtest data fetch failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to fetch market data: {e}")
    except Exception as e:
        logger.error(f"Backtest failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Backtest failed: {e}")


@router.post("/quick", response_model=QuickCheckResult)
async def quick_check(
    request: QuickCheckRequest,
    service: BacktestService = Depends(get_backtest_service),
) -> QuickCheckResult:
    """Check whether a strategy was profitable over the last few days."""
    try:
        return service.quick_check(request)
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=_config_error_detail(e))
    except StrategyNotFoundError:
        raise HTTPException(status_code=404, detail=f"Strategy not found: {request.strategy_id}")
    except DataFetchError as e:
        logger.error(f"Quick check data fetch failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to fetch market data: {e}")
    except Exception as e:
        logger.error(f"Quick check failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Quick check failed: {e}")
