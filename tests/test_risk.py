"""Tests for the risk governor."""

from polyladder.engine.risk import RiskGovernor
from polyladder.models.strategy import RiskLimits
from tests.conftest import M15, T0

DAY = 24 * 60 * 60_000


class TestRiskGovernor:
    def test_no_limits_allows_everything(self):
        governor = RiskGovernor()
        assert governor.check(T0, 10_000, 10_000.0).allowed

    def test_daily_loss(self):
        """Realized losses earlier the same UTC day block new entries."""
        governor = RiskGovernor(RiskLimits(max_daily_loss=50))
        governor.record_close(T0 + M15, -30.0)
        governor.record_close(T0 + 2 * M15, 10.0)
        assert governor.check(T0 + 3 * M15, 1, 1.0).allowed
        governor.record_close(T0 + 3 * M15, -20.0)
        decision = governor.check(T0 + 4 * M15, 1, 1.0)
        assert not decision.allowed
        assert "Daily loss" in decision.reason

    def test_daily_loss_resets_next_day(self):
        governor = RiskGovernor(RiskLimits(max_daily_loss=50))
        governor.record_close(T0 + M15, -80.0)
        assert governor.check(T0 + DAY, 1, 1.0).allowed

    def test_daily_loss_ignores_later_closes(self):
        """Only losses realized up to the admission time count."""
        governor = RiskGovernor(RiskLimits(max_daily_loss=50))
        governor.record_close(T0 + 4 * M15, -80.0)
        assert governor.check(T0 + M15, 1, 1.0).allowed

    def test_daily_trade_cap(self):
        governor = RiskGovernor(RiskLimits(daily_trade_cap=2))
        governor.record_entry(T0)
        governor.record_entry(T0 + M15)
        assert not governor.check(T0 + 2 * M15, 1, 1.0).allowed
        assert governor.check(T0 + DAY, 1, 1.0).allowed

    def test_max_open_positions(self):
        """Positions open at the admission time count; closed ones do not."""
        governor = RiskGovernor(RiskLimits(max_open_positions=1))
        governor.record_position(T0, T0 + M15, 10, 5.0)
        assert not governor.check(T0 + M15 // 2, 1, 1.0).allowed
        assert governor.check(T0 + M15, 1, 1.0).allowed

    def test_unclosed_position_stays_open(self):
        governor = RiskGovernor(RiskLimits(max_open_positions=1))
        governor.record_position(T0, None, 10, 5.0)
        assert not governor.check(T0 + DAY, 1, 1.0).allowed

    def test_max_position_shares(self):
        governor = RiskGovernor(RiskLimits(max_position_shares=100))
        assert governor.check(T0, 100, 50.0).allowed
        governor.record_position(T0, T0 + M15, 60, 30.0)
        decision = governor.check(T0 + 1, 50, 25.0)
        assert not decision.allowed
        assert "110 shares" in decision.reason

    def test_max_position_dollar(self):
        governor = RiskGovernor(RiskLimits(max_position_dollar=50))
        assert not governor.check(T0, 200, 60.0).allowed
        assert governor.check(T0, 100, 50.0).allowed

    def test_checkpoint_restore(self):
        """Restoring a checkpoint discards updates made after it."""
        governor = RiskGovernor(RiskLimits(daily_trade_cap=1))
        saved = governor.checkpoint()
        governor.record_entry(T0)
        governor.record_close(T0, -10.0)
        assert not governor.check(T0, 1, 1.0).allowed
        governor.restore(saved)
        assert governor.check(T0, 1, 1.0).allowed
        assert governor.daily_loss(T0) == 0
