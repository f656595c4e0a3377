"""
Tests for walk-forward validation, Monte Carlo and robustness scoring.
"""

import numpy as np
import pytest

from backtest.metrics import BacktestMetrics
from backtest.validation import (
    Distribution,
    MonteCarloResult,
    ValidationResult,
    ValidationWarning,
    check_robustness,
    detect_overfitting,
    run_monte_carlo,
    walk_forward_validation,
)
from tests.helpers import make_trade


def _validation(train_pnl=50.0, test_pnl=20.0, warnings=None) -> ValidationResult:
    return ValidationResult(
        train_metrics=BacktestMetrics(total_pnl=train_pnl),
        test_metrics=BacktestMetrics(total_pnl=test_pnl),
        train_trades=[],
        test_trades=[],
        split_ratio=0.7,
        warnings=warnings or [],
    )


def _monte_carlo(mean=100.0, std=10.0, lower=80.0, worst=20.0) -> MonteCarloResult:
    return MonteCarloResult(
        simulations=1000,
        pnl=Distribution(mean=mean, median=mean, std_dev=std, percentile_5=lower, percentile_95=mean + 20),
        worst_drawdown=worst,
    )


class TestWalkForward:
    def test_invalid_split(self):
        with pytest.raises(ValueError):
            walk_forward_validation([make_trade(1.0)] * 20, split=1.0)

    def test_too_few_trades(self):
        result = walk_forward_validation([make_trade(1.0)] * 9)
        assert result.train_trades == []
        assert result.test_trades == []
        assert [w.type for w in result.warnings] == ["low_trade_count"]
        assert result.warnings[0].severity == "high"

    def test_chronological_split(self):
        trades = [make_trade(float(i + 1), market_id=f"m{i}") for i in range(10)]
        result = walk_forward_validation(trades, split=0.7)
        assert [t.market_id for t in result.train_trades] == [f"m{i}" for i in range(7)]
        assert [t.market_id for t in result.test_trades] == ["m7", "m8", "m9"]
        assert result.train_metrics.total_pnl == pytest.approx(28.0)
        assert result.test_metrics.total_pnl == pytest.approx(27.0)
        # only 3 test trades
        assert any(w.type == "low_trade_count" and w.severity == "high" for w in result.warnings)

    def test_to_dict(self):
        trades = [make_trade(1.0)] * 10
        data = walk_forward_validation(trades).to_dict()
        assert data["train_count"] == 7
        assert data["test_count"] == 3


class TestDetectOverfitting:
    def test_clean_result(self):
        train = BacktestMetrics(total_pnl=50.0, win_rate=0.55, sharpe_ratio=0.5)
        test = BacktestMetrics(total_pnl=20.0, win_rate=0.5, sharpe_ratio=0.4)
        assert detect_overfitting(train, test, 30, 25) == []

    def test_sharpe_too_high(self):
        train = BacktestMetrics(total_pnl=10.0, win_rate=0.5, sharpe_ratio=6.0)
        test = BacktestMetrics(total_pnl=10.0, win_rate=0.5, sharpe_ratio=6.0)
        warnings = detect_overfitting(train, test, 100, 40)
        assert [(w.type, w.severity) for w in warnings] == [("sharpe_too_high", "high")]

    def test_losing_test_period(self):
        train = BacktestMetrics(total_pnl=100.0, win_rate=0.6)
        test = BacktestMetrics(total_pnl=-10.0, win_rate=0.55)
        warnings = detect_overfitting(train, test, 100, 40)
        assert warnings[0].type == "train_test_divergence"
        assert warnings[0].severity == "high"

    def test_win_rate_divergence(self):
        train = BacktestMetrics(total_pnl=10.0, win_rate=0.8)
        test = BacktestMetrics(total_pnl=10.0, win_rate=0.5)
        warnings = detect_overfitting(train, test, 100, 40)
        assert [w.severity for w in warnings if w.type == "train_test_divergence"] == ["high"]

    def test_sharpe_divergence(self):
        train = BacktestMetrics(total_pnl=10.0, win_rate=0.5, sharpe_ratio=2.0)
        test = BacktestMetrics(total_pnl=10.0, win_rate=0.5, sharpe_ratio=0.6)
        warnings = detect_overfitting(train, test, 100, 40)
        assert [w.severity for w in warnings] == ["medium"]

    def test_unrealistic_returns(self):
        train = BacktestMetrics(total_pnl=500.0, win_rate=0.5)
        test = BacktestMetrics(total_pnl=500.0, win_rate=0.5)
        warnings = detect_overfitting(train, test, 10, 40)
        assert [(w.type, w.severity) for w in warnings] == [("unrealistic_returns", "high")]

    def test_warning_serialises(self):
        warning = ValidationWarning("low_trade_count", "medium", "few", {"n": 1})
        assert warning.to_dict() == {"type": "low_trade_count", "severity": "medium", "message": "few", "details": {"n": 1}}


class TestDistribution:
    def test_percentiles(self):
        dist = Distribution.from_values(np.arange(1.0, 11.0))
        assert dist.mean == pytest.approx(5.5)
        assert dist.median == pytest.approx(5.5)
        assert dist.percentile_5 == 1.0
        assert dist.percentile_25 == 3.0
        assert dist.percentile_75 == 8.0
        assert dist.percentile_95 == 10.0

    def test_single_value(self):
        dist = Distribution.from_values(np.array([4.0]))
        assert dist.std_dev == 0.0
        assert dist.percentile_95 == 4.0


class TestMonteCarlo:
    def test_too_few_trades(self):
        result = run_monte_carlo([make_trade(1.0)] * 4)
        assert result.simulations == 0
        assert result.ci95 == (0.0, 0.0)

    def test_ci95_spans_fifth_to_ninety_fifth_percentile(self):
        result = MonteCarloResult(
            simulations=100,
            pnl=Distribution(percentile_5=-3.0, percentile_25=1.0, percentile_75=6.0, percentile_95=9.0),
        )
        assert result.ci95 == (-3.0, 9.0)

    def test_invalid_simulations(self):
        with pytest.raises(ValueError):
            run_monte_carlo([make_trade(1.0)] * 5, simulations=0)

    def test_reproducible_with_seed(self):
        trades = [make_trade(p) for p in (10.0, -5.0, 8.0, -12.0, 3.0, 7.0)]
        first = run_monte_carlo(trades, simulations=200, seed=42)
        second = run_monte_carlo(trades, simulations=200, seed=42)
        assert first == second

    def test_constant_pnl(self):
        result = run_monte_carlo([make_trade(10.0)] * 5, simulations=50, seed=1)
        assert result.pnl.mean == pytest.approx(50.0)
        assert result.pnl.std_dev == pytest.approx(0.0)
        assert result.win_rate.median == 1.0
        assert result.worst_drawdown == 0.0

    def test_distribution_is_ordered(self):
        trades = [make_trade(p) for p in (10.0, -5.0, 8.0, -12.0, 3.0, 7.0, -2.0, 15.0)]
        result = run_monte_carlo(trades, simulations=500, seed=7)
        lower, upper = result.ci95
        assert lower <= result.pnl.median <= upper
        assert 0.0 <= result.win_rate.percentile_5 <= result.win_rate.percentile_95 <= 1.0
        assert result.worst_drawdown >= result.max_drawdown.percentile_95
        assert result.to_dict()["ci95"] == {"pnl_lower": lower, "pnl_upper": upper}


class TestRobustness:
    def test_clean_strategy_is_robust(self):
        result = check_robustness(_validation(), _monte_carlo())
        assert result.score == 100
        assert result.is_robust
        assert result.issues == []

    def test_high_warning_blocks_robustness(self):
        warning = ValidationWarning("sharpe_too_high", "high", "too good")
        result = check_robustness(_validation(warnings=[warning]), _monte_carlo())
        assert result.score == 80
        assert not result.is_robust

    def test_losses_in_confidence_interval(self):
        result = check_robustness(_validation(), _monte_carlo(lower=-5.0))
        assert result.score == 75
        assert "95% confidence interval includes losses" in result.issues

    def test_out_of_sample_loss(self):
        result = check_robustness(_validation(train_pnl=50.0, test_pnl=-1.0), _monte_carlo())
        assert result.score == 70
        assert any("overfitting likely" in r for r in result.recommendations)

    def test_skipped_monte_carlo_is_ignored(self):
        result = check_robustness(_validation(), MonteCarloResult())
        assert result.score == 100

    def test_score_floor(self):
        warnings = [ValidationWarning("x", "high", "m")] * 6
        result = check_robustness(_validation(train_pnl=10.0, test_pnl=-10.0, warnings=warnings), _monte_carlo(lower=-1.0))
        assert result.score == 0
