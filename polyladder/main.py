"""FastAPI application for strategy backtesting."""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .engine.presets import PRESETS
from .routes import backtest

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Load environment variables
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the backtest service once and report what it was wired with."""
    factory = app.dependency_overrides.get(backtest.get_backtest_service, backtest.get_backtest_service)
    service = factory()
    data_source = getattr(service.data_service, "base_url", type(service.data_service).__name__)
    logger.info(f"Polyladder listening on port {os.getenv('PORT', '8080')}")
    logger.info(f"Market data from {data_source}, run timeout {service.timeout_seconds:g}s")
    logger.info(f"{len(service.store.list_ids())} stored strategies, {len(PRESETS)} presets")
    yield
    logger.info("Polyladder stopped")


# Create FastAPI app
app = FastAPI(
    title="Polyladder",
    description="Prediction-market strategy backtesting service",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS
cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(backtest.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
