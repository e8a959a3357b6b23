"""Tests for the data services."""

from datetime import datetime, timezone

import httpx
import pytest

from polyladder.models.data import PricePoint, ms_to_datetime
from polyladder.models.strategy import Direction
from polyladder.service.data_service import (
    DataFetchError,
    HttpDataService,
    MockDataService,
    price_points_to_candles,
)
from tests.conftest import M15, MINUTE, T0, make_market, signal_candles


def http_service(handler) -> HttpDataService:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpDataService(base_url="http://prices.test/", timeout=5, client=client)


class TestMockDataService:
    def test_returns_seeded_candles_in_range(self):
        candles = signal_candles(4, start=T0)
        ds = MockDataService()
        ds.seed("BTC", "15m", candles)
        result = ds.get_candles("BTC", "15m", ms_to_datetime(T0 + M15), ms_to_datetime(T0 + 2 * M15))
        assert result == candles[1:3]

    def test_raises_on_missing(self):
        ds = MockDataService()
        with pytest.raises(DataFetchError, match="ETH"):
            ds.get_candles("ETH", "15m", datetime(2024, 1, 1, tzinfo=timezone.utc), datetime(2024, 1, 2, tzinfo=timezone.utc))
        with pytest.raises(DataFetchError):
            ds.get_markets("ETH", "15m", count=1)

    def test_market_selection(self):
        """Markets are filtered by window and trimmed to the most recent count."""
        markets = [make_market(f"m{i}", T0 + i * M15, []) for i in range(5)]
        ds = MockDataService()
        ds.seed_markets("BTC", "15m", list(reversed(markets)))
        assert [m.market_id for m in ds.get_markets("BTC", "15m", count=2)] == ["m3", "m4"]
        window = ds.get_markets("BTC", "15m", start=ms_to_datetime(T0 + M15), end=ms_to_datetime(T0 + 3 * M15))
        assert [m.market_id for m in window] == ["m1", "m2"]


class TestPricePoints:
    def test_bucketing(self):
        """Snapshots in the same minute form one candle; volume counts snapshots."""
        points = [
            PricePoint(t=T0 + 1_000, yb=50, nb=48),
            PricePoint(t=T0 + 20_000, yb=55, nb=43),
            PricePoint(t=T0 + 40_000, yb=45, nb=53),
            PricePoint(t=T0 + MINUTE + 5_000, yb=52, nb=46),
        ]
        candles = price_points_to_candles(points, "1m", Direction.UP)
        assert len(candles) == 2
        first = candles[0]
        assert first.timestamp == T0
        assert (first.open, first.high, first.low, first.close) == (0.5, 0.55, 0.45, 0.45)
        assert first.volume == 3
        assert candles[1].timestamp == T0 + MINUTE

    def test_down_uses_no_bid(self):
        points = [PricePoint(t=T0, yb=60, nb=38)]
        assert price_points_to_candles(points, "1m", Direction.DOWN)[0].close == 0.38

    def test_zero_prices_skipped(self):
        points = [PricePoint(t=T0, yb=0, nb=0), PricePoint(t=T0 + 1, yb=51, nb=47)]
        candles = price_points_to_candles(points, "1m", Direction.UP)
        assert candles[0].open == 0.51
        assert candles[0].volume == 1


class TestHttpDataService:
    def test_get_candles(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/crypto/candles"
            assert request.url.params["symbol"] == "BTC"
            assert request.url.params["startTime"] == str(T0)
            return httpx.Response(
                200,
                json={"candles": [
                    {"timestamp": T0 + M15, "open": 2, "high": 3, "low": 1, "close": 2},
                    {"timestamp": T0, "open": 1, "high": 2, "low": 1, "close": 2},
                ]},
            )

        candles = http_service(handler).get_candles("BTC", "15m", ms_to_datetime(T0), ms_to_datetime(T0 + M15))
        assert [c.timestamp for c in candles] == [T0, T0 + M15]

    def test_get_markets_builds_paths(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["count"] == "1"
            return httpx.Response(
                200,
                json={"markets": [{
                    "marketId": 42,
                    "startTime": T0,
                    "endTime": T0 + M15,
                    "outcome": "UP",
                    "prices": [{"t": T0, "yb": 50, "nb": 48}, {"t": T0 + MINUTE, "yb": 60, "nb": 38}],
                }]},
            )

        (market,) = http_service(handler).get_markets("BTC", "15m", count=1)
        assert market.market_id == "42"
        assert market.outcome == Direction.UP
        assert [c.close for c in market.candles] == [0.5, 0.6]
        assert [c.close for c in market.path(Direction.DOWN)] == [0.48, 0.38]

    def test_http_error(self):
        service = http_service(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(DataFetchError, match="503"):
            service.get_markets("BTC", "15m")

    def test_malformed_market(self):
        service = http_service(lambda request: httpx.Response(200, json={"markets": [{"startTime": T0}]}))
        with pytest.raises(DataFetchError, match="Malformed"):
            service.get_markets("BTC", "15m")

    def test_retries_dropped_connection(self):
        """A reset keep-alive connection is retried."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.RemoteProtocolError("Server disconnected", request=request)
            return httpx.Response(200, json={"candles": []})

        assert http_service(handler).get_candles("BTC", "15m", ms_to_datetime(T0), ms_to_datetime(T0)) == []
        assert len(calls) == 2

    def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(DataFetchError, match="timed out"):
            http_service(handler).get_candles("BTC", "15m", ms_to_datetime(T0), ms_to_datetime(T0))

    def test_base_url_from_env(self, monkeypatch):
        monkeypatch.setenv("PRICE_SERVICE_URL", "http://elsewhere:9000/")
        assert HttpDataService().base_url == "http://elsewhere:9000"
