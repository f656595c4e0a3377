"""
Tests for backtest performance metrics.
"""

import math

import numpy as np
import pytest

from backtest.metrics import (
    BacktestMetrics,
    calculate_edge_capture,
    calculate_max_drawdown,
    calculate_metrics,
    calculate_profit_factor,
    calculate_sharpe_ratio,
    calculate_win_rate,
    equity_curve,
    trades_to_frame,
)
from tests.helpers import make_trade


@pytest.fixture
def mixed_trades():
    return [make_trade(10.0), make_trade(-5.0), make_trade(20.0), make_trade(-10.0)]


class TestCoreMetrics:
    def test_equity_curve(self, mixed_trades):
        curve = equity_curve(mixed_trades, 1000.0)
        np.testing.assert_allclose(curve, [1000, 1010, 1005, 1025, 1015])

    def test_max_drawdown(self, mixed_trades):
        assert calculate_max_drawdown(mixed_trades, 1000.0) == pytest.approx(10.0)

    def test_max_drawdown_from_start(self):
        trades = [make_trade(-30.0), make_trade(10.0)]
        assert calculate_max_drawdown(trades, 1000.0) == pytest.approx(30.0)

    def test_win_rate(self, mixed_trades):
        assert calculate_win_rate(mixed_trades) == 0.5
        assert calculate_win_rate([]) == 0.0

    def test_sharpe_is_per_trade(self, mixed_trades):
        returns = np.array([1.0, -0.5, 2.0, -1.0])
        expected = returns.mean() / returns.std(ddof=1)
        assert calculate_sharpe_ratio(mixed_trades) == pytest.approx(expected)

    def test_sharpe_edge_cases(self):
        assert calculate_sharpe_ratio([make_trade(5.0)]) == 0.0
        assert calculate_sharpe_ratio([make_trade(5.0), make_trade(5.0)]) == math.inf
        assert calculate_sharpe_ratio([make_trade(-5.0), make_trade(-5.0)]) == 0.0

    def test_profit_factor(self, mixed_trades):
        assert calculate_profit_factor(mixed_trades) == pytest.approx(2.0)
        assert calculate_profit_factor([make_trade(1.0)]) == math.inf
        assert calculate_profit_factor([]) == 0.0

    def test_edge_capture(self):
        assert calculate_edge_capture([make_trade(5.0, edge=0.05)]) == pytest.approx(10.0)
        assert calculate_edge_capture([make_trade(5.0), make_trade(-5.0)]) == pytest.approx(0.0)


class TestCalculateMetrics:
    def test_full_summary(self, mixed_trades):
        metrics = calculate_metrics(mixed_trades, initial_bankroll=1000.0, period_days=365.0)
        assert metrics.total_pnl == pytest.approx(15.0)
        assert metrics.trade_count == 4
        assert metrics.win_rate == 0.5
        assert metrics.max_drawdown == pytest.approx(10.0)
        assert metrics.avg_win == pytest.approx(15.0)
        assert metrics.avg_loss == pytest.approx(-7.5)
        assert metrics.avg_slippage == pytest.approx(0.005)
        # 1.5% return over a 1% drawdown
        assert metrics.calmar_ratio == pytest.approx(1.5)

    def test_empty(self):
        assert calculate_metrics([]) == BacktestMetrics()
        assert BacktestMetrics().brier_score == 0.25

    def test_unresolved_trades_ignored(self, mixed_trades):
        open_trade = make_trade(1.0).with_updates(pnl=None, actual_edge=None, exit_price=None)
        metrics = calculate_metrics(mixed_trades + [open_trade])
        assert metrics.trade_count == 4
        assert metrics.total_pnl == pytest.approx(15.0)

    def test_all_winners_have_no_drawdown(self):
        metrics = calculate_metrics([make_trade(5.0), make_trade(7.0)])
        assert metrics.max_drawdown == 0.0
        assert metrics.calmar_ratio == math.inf
        assert metrics.profit_factor == math.inf

    def test_to_dict(self, mixed_trades):
        data = calculate_metrics(mixed_trades).to_dict()
        assert data["trade_count"] == 4
        assert "brier_score" in data


class TestTradesToFrame:
    def test_columns(self, mixed_trades):
        frame = trades_to_frame(mixed_trades)
        assert len(frame) == 4
        assert frame["pnl"].sum() == pytest.approx(15.0)
        assert list(frame["direction"].unique()) == ["yes"]

    def test_empty_frame(self):
        frame = trades_to_frame([])
        assert frame.empty
        assert "pnl" in frame.columns
