"""Tests for the command-line interface."""

import json

import pytest

from polyladder.cli import main
from tests.conftest import make_strategy, signal_candles


@pytest.fixture
def strategy_file(tmp_path, strategy):
    path = tmp_path / "strategy.json"
    path.write_text(strategy.to_json())
    return path


@pytest.fixture
def data_file(tmp_path, winning_market):
    path = tmp_path / "data.json"
    path.write_text(
        json.dumps(
            {
                "candles": {"15m": [c.model_dump() for c in signal_candles(3)]},
                "markets": [winning_market.model_dump(mode="json", by_alias=True)],
            }
        )
    )
    return path


class TestCli:
    def test_run_writes_result(self, strategy_file, data_file, tmp_path):
        output = tmp_path / "result.json"
        code = main(["run", "--strategy", str(strategy_file), "--data", str(data_file), "--output", str(output)])
        assert code == 0
        result = json.loads(output.read_text())
        assert result["finalBalance"] == pytest.approx(1050.0)
        assert result["totalTrades"] == 1

    def test_run_prints_json(self, strategy_file, data_file, capsys):
        assert main(["run", "--strategy", str(strategy_file), "--data", str(data_file), "--exit-price", "52"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result["trades"][-1]["price"] == pytest.approx(0.52)

    def test_run_rejects_bad_config(self, tmp_path, data_file, capsys):
        path = tmp_path / "bad.json"
        path.write_text(make_strategy(orderLadder=[]).to_json())
        assert main(["run", "--strategy", str(path), "--data", str(data_file)]) == 1
        assert "orderLadder" in capsys.readouterr().out

    def test_run_missing_file(self, tmp_path, data_file):
        assert main(["run", "--strategy", str(tmp_path / "none.json"), "--data", str(data_file)]) == 2

    def test_validate(self, strategy_file, capsys):
        assert main(["validate", "--strategy", str(strategy_file)]) == 0
        assert "is valid" in capsys.readouterr().out

    def test_validate_reports_errors(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text(make_strategy(timeframe="2m", exitPolicy={"exitPrice": 0}).to_json())
        assert main(["validate", "--strategy", str(path)]) == 1
        out = capsys.readouterr().out
        assert "timeframe: Unsupported timeframe '2m'" in out
        assert "exitPolicy.exitPrice" in out

    def test_run_with_preset(self, strategy_file, data_file, capsys):
        """A preset condition joins the ALL rule, so warming-up RSI blocks the entry."""
        code = main(["run", "--strategy", str(strategy_file), "--data", str(data_file), "--preset", "rsi_oversold"])
        assert code == 0
        result = json.loads(capsys.readouterr().out)
        assert result["totalTrades"] == 0
        assert any("null" in d["message"] for d in result["diagnostics"])

    def test_run_unknown_preset(self, strategy_file, data_file, capsys):
        code = main(["run", "--strategy", str(strategy_file), "--data", str(data_file), "--preset", "moon"])
        assert code == 1
        assert "Unknown preset 'moon'" in capsys.readouterr().out

    def test_validate_with_presets(self, strategy_file, capsys):
        args = ["validate", "--strategy", str(strategy_file), "--preset", "macd_bullish", "--preset", "bb_upper"]
        assert main(args) == 0
        assert "is valid" in capsys.readouterr().out

    def test_presets(self, capsys):
        assert main(["presets"]) == 0
        assert "macd_bullish" in capsys.readouterr().out

    def test_no_command(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out
