"""Data service protocol for candles and market instances.

This module defines the interface for fetching backtest inputs.
The protocol allows different implementations:
- HttpDataService: Production, fetches from the price-history service
- MockDataService: Testing, returns seeded data
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..models.data import (
    Candle,
    MarketInstance,
    PricePoint,
    datetime_to_ms,
    timeframe_to_ms,
)
from ..models.strategy import Direction

logger = logging.getLogger(__name__)

DEFAULT_PRICE_SERVICE_URL = "http://localhost:8081"
DEFAULT_PRICE_SERVICE_TIMEOUT = 30.0
# Resolution of market price paths built from raw price points
PATH_TIMEFRAME = "1m"


class DataService(Protocol):
    """Protocol for fetching backtest data.

    Implementations should handle:
    - Connection to the data source (HTTP, mock, etc.)
    - Timeframe mapping ("1m", "15m", "1h", ...)
    - Date range filtering
    - Returning data as Pydantic models
    """

    def get_candles(
        self,
        asset: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        """Fetch asset candles for a date range.

        Args:
            asset: Asset symbol (e.g., "BTC")
            timeframe: Candle timeframe ("1m", "15m", "1h", ...)
            start: Start datetime (inclusive)
            end: End datetime (inclusive)

        Returns:
            Candles sorted by timestamp ascending

        Raises:
            DataFetchError: If data cannot be fetched
        """
        ...

    def get_markets(
        self,
        asset: str,
        timeframe: str,
        start: datetime | None = None,
        end: datetime | None = None,
        count: int | None = None,
    ) -> list[MarketInstance]:
        """Fetch resolved UP/DOWN market instances.

        Args:
            asset: Asset symbol the markets are written on
            timeframe: Market duration series ("15m", "1h", ...)
            start: Earliest market start (inclusive), if windowed
            end: Latest market end (inclusive), if windowed
            count: Return only the most recent `count` markets

        Returns:
            Market instances sorted by start time ascending

        Raises:
            DataFetchError: If data cannot be fetched
        """
        ...


class DataFetchError(Exception):
    """Raised when data fetching fails."""

    pass


def price_points_to_candles(
    points: Iterable[PricePoint], timeframe: str, direction: Direction
) -> list[Candle]:
    """Bucket raw bid snapshots into candles.

    UP candles use the YES bid, DOWN candles the NO bid, both converted from
    cents. Zero prices are skipped. Volume counts the snapshots in a bucket.
    Buckets without any snapshot produce no candle.
    """
    interval = timeframe_to_ms(timeframe)
    candles: list[Candle] = []
    current: Candle | None = None
    for point in sorted(points, key=lambda p: p.t):
        cents = point.yb if direction == Direction.UP else point.nb
        if cents == 0:
            continue
        price = cents / 100
        bucket = point.t // interval * interval
        if current is not None and current.timestamp == bucket:
            current.high = max(current.high, price)
            current.low = min(current.low, price)
            current.close = price
            current.volume += 1
            continue
        if current is not None:
            candles.append(current)
        current = Candle(timestamp=bucket, open=price, high=price, low=price, close=price, volume=1)
    if current is not None:
        candles.append(current)
    return candles


def _select_markets(
    markets: list[MarketInstance],
    start: datetime | None,
    end: datetime | None,
    count: int | None,
) -> list[MarketInstance]:
    selected = sorted(markets, key=lambda m: m.start_time)
    if start is not None:
        start_ms = datetime_to_ms(start)
        selected = [m for m in selected if m.start_time >= start_ms]
    if end is not None:
        end_ms = datetime_to_ms(end)
        selected = [m for m in selected if m.end_time <= end_ms]
    if count is not None:
        selected = selected[-count:]
    return selected


class MockDataService:
    """In-memory DataService for testing.

    Seed with test data, then pass to BacktestService like production
    uses HttpDataService.

    Usage:
        ds = MockDataService()
        ds.seed("BTC", "15m", candles)
        ds.seed_markets("BTC", "15m", markets)
        service = BacktestService(data_service=ds)
    """

    def __init__(self) -> None:
        self._candles: dict[tuple[str, str], list[Candle]] = {}
        self._markets: dict[tuple[str, str], list[MarketInstance]] = {}

    def seed(self, asset: str, timeframe: str, candles: list[Candle]) -> None:
        """Seed candles for an asset/timeframe pair."""
        self._candles[(asset, timeframe)] = candles

    def seed_markets(self, asset: str, timeframe: str, markets: list[MarketInstance]) -> None:
        """Seed market instances for an asset/timeframe series."""
        self._markets[(asset, timeframe)] = markets

    def get_candles(
        self,
        asset: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        """Return seeded candles within [start, end]. Raises DataFetchError if not seeded."""
        key = (asset, timeframe)
        if key not in self._candles:
            raise DataFetchError(
                f"No test data seeded for {asset}/{timeframe}. "
                f"Call ds.seed('{asset}', '{timeframe}', candles) first."
            )
        start_ms, end_ms = datetime_to_ms(start), datetime_to_ms(end)
        return [c for c in self._candles[key] if start_ms <= c.timestamp <= end_ms]

    def get_markets(
        self,
        asset: str,
        timeframe: str,
        start: datetime | None = None,
        end: datetime | None = None,
        count: int | None = None,
    ) -> list[MarketInstance]:
        """Return seeded markets. Raises DataFetchError if not seeded."""
        key = (asset, timeframe)
        if key not in self._markets:
            raise DataFetchError(
                f"No test markets seeded for {asset}/{timeframe}. "
                f"Call ds.seed_markets('{asset}', '{timeframe}', markets) first."
            )
        return _select_markets(self._markets[key], start, end, count)


class HttpDataService:
    """DataService backed by the price-history HTTP service.

    Endpoints:
        GET {base}/api/crypto/candles  -> {"candles": [Candle, ...]}
        GET {base}/api/markets         -> {"markets": [{marketId, startTime,
                                           endTime, outcome, prices: [PricePoint]}]}
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ):
        self.base_url = (
            base_url or os.environ.get("PRICE_SERVICE_URL", DEFAULT_PRICE_SERVICE_URL)
        ).rstrip("/")
        self.timeout = timeout or float(
            os.environ.get("PRICE_SERVICE_TIMEOUT", DEFAULT_PRICE_SERVICE_TIMEOUT)
        )
        self._client = client

    def _get(self, path: str, params: dict[str, Any], _max_retries: int = 2) -> dict[str, Any]:
        """GET a JSON document, retrying when the server drops a keep-alive connection."""
        url = f"{self.base_url}{path}"
        last_error: Exception | None = None
        for attempt in range(_max_retries + 1):
            try:
                if self._client is not None:
                    response = self._client.get(url, params=params, timeout=self.timeout)
                else:
                    with httpx.Client(timeout=self.timeout) as client:
                        response = client.get(url, params=params)
                if response.status_code != 200:
                    raise DataFetchError(f"HTTP {response.status_code} from {path}: {response.text}")
                return response.json()
            except httpx.TimeoutException as e:
                raise DataFetchError(f"Request to {path} timed out after {self.timeout}s") from e
            except httpx.RemoteProtocolError as e:
                last_error = e
                if attempt < _max_retries:
                    logger.warning(
                        f"Price service connection reset (attempt {attempt + 1}/{_max_retries + 1}), retrying: {e}"
                    )
                    continue
            except httpx.HTTPError as e:
                raise DataFetchError(f"Failed to call price service: {e}") from e
        raise DataFetchError(
            f"Failed to call price service after {_max_retries + 1} attempts: {last_error}"
        )

    def get_candles(
        self,
        asset: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        payload = self._get(
            "/api/crypto/candles",
            {
                "symbol": asset,
                "timeframe": timeframe,
                "startTime": datetime_to_ms(start),
                "endTime": datetime_to_ms(end),
            },
        )
        try:
            candles = [Candle.model_validate(c) for c in payload.get("candles", [])]
        except PydanticValidationError as e:
            raise DataFetchError(f"Malformed candle payload: {e}") from e
        candles.sort(key=lambda c: c.timestamp)
        logger.info(f"Fetched {len(candles)} {asset} {timeframe} candles")
        return candles

    def get_markets(
        self,
        asset: str,
        timeframe: str,
        start: datetime | None = None,
        end: datetime | None = None,
        count: int | None = None,
    ) -> list[MarketInstance]:
        params: dict[str, Any] = {"asset": asset, "timeframe": timeframe}
        if start is not None:
            params["startTime"] = datetime_to_ms(start)
        if end is not None:
            params["endTime"] = datetime_to_ms(end)
        if count is not None:
            params["count"] = count
        payload = self._get("/api/markets", params)

        markets = []
        try:
            for raw in payload.get("markets", []):
                points = [PricePoint.model_validate(p) for p in raw.get("prices", [])]
                markets.append(
                    MarketInstance(
                        market_id=str(raw["marketId"]),
                        start_time=int(raw["startTime"]),
                        end_time=int(raw["endTime"]),
                        outcome=raw.get("outcome"),
                        candles=price_points_to_candles(points, PATH_TIMEFRAME, Direction.UP),
                        down_candles=price_points_to_candles(points, PATH_TIMEFRAME, Direction.DOWN),
                    )
                )
        except (KeyError, TypeError, ValueError) as e:
            raise DataFetchError(f"Malformed market payload: {e}") from e
        logger.info(f"Fetched {len(markets)} {asset} {timeframe} markets")
        return _select_markets(markets, start, end, count)
