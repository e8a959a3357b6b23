"""Tests for the HTTP API."""

import logging

import pytest
from fastapi.testclient import TestClient

from polyladder.main import app
from polyladder.routes.backtest import get_backtest_service
from polyladder.service.backtest_service import BacktestService
from polyladder.service.data_service import DataFetchError, MockDataService
from polyladder.service.strategy_store import StrategyStore


@pytest.fixture
def client(data_service, strategy):
    store = StrategyStore()
    store.save(strategy)
    service = BacktestService(data_service=data_service, store=store, timeout_seconds=30)
    app.dependency_overrides[get_backtest_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestBacktestRoutes:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_run_backtest(self, client, strategy):
        response = client.post(
            "/backtest",
            json={"strategy": strategy.model_dump(mode="json", by_alias=True), "numberOfMarkets": 1},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["finalBalance"] == pytest.approx(1050.0)
        assert body["winRate"] == 100.0
        assert [t["side"] for t in body["trades"]] == ["BUY", "SELL"]
        assert body["trades"][0]["triggerReason"] == "ALL(c1)"
        assert body["diagnostics"] == []

    def test_stored_strategy(self, client):
        response = client.post("/backtest", json={"strategyId": "test-strategy", "numberOfMarkets": 1})
        assert response.status_code == 200
        assert response.json()["totalTrades"] == 1

    def test_unknown_strategy(self, client):
        response = client.post("/backtest", json={"strategyId": "ghost", "numberOfMarkets": 1})
        assert response.status_code == 404

    def test_invalid_request(self, client):
        """Contract violations are rejected by request validation."""
        response = client.post("/backtest", json={"strategyId": "test-strategy"})
        assert response.status_code == 422

    def test_config_error(self, client, strategy):
        payload = strategy.model_dump(mode="json", by_alias=True)
        payload["orderLadder"] = [{"price": 120, "shares": 10}]
        response = client.post("/backtest", json={"strategy": payload, "numberOfMarkets": 1})
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["errors"] == [{"path": "orderLadder[0].price", "message": "Price 120 outside 1-99 cents"}]

    def test_data_fetch_error(self, strategy):
        class FailingDataService(MockDataService):
            def get_markets(self, *args, **kwargs):
                raise DataFetchError("price service down")

        service = BacktestService(data_service=FailingDataService())
        app.dependency_overrides[get_backtest_service] = lambda: service
        try:
            response = TestClient(app).post(
                "/backtest", json={"strategy": strategy.model_dump(mode="json", by_alias=True), "numberOfMarkets": 1}
            )
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 502
        assert "price service down" in response.json()["detail"]

    def test_quick_check(self, client):
        response = client.post("/backtest/quick", json={"strategyId": "test-strategy", "lookbackDays": 90})
        assert response.status_code == 200
        assert set(response.json()) == {"profitable", "pnlPercent", "winRate"}


class TestLifespan:
    def test_startup_reports_wiring(self, client, caplog):
        """Startup builds the service and logs its data source and store."""
        caplog.set_level(logging.INFO, logger="polyladder.main")
        with client:
            pass
        messages = [r.getMessage() for r in caplog.records if r.name == "polyladder.main"]
        assert "Market data from MockDataService, run timeout 30s" in messages
        assert any(m.startswith("1 stored strategies") for m in messages)
        assert messages[-1] == "Polyladder stopped"
