"""
Unit tests for position_sizer module.

Tests for fractional Kelly sizing of binary contracts and its adaptive
scaling factors.
"""

import math

import pytest

from config.settings import SizingConfig
from execution.models import MarketQuality
from execution.position_sizer import (
    AdaptiveState,
    KellyPositionSizer,
    PositionSizeResult,
    additive_edge_policy,
    effective_edge,
    estimate_slippage,
    is_trade_viable,
    shrunk_edge_policy,
)


class TestKellyFraction:
    """Tests for the raw Kelly formula."""

    def test_fair_price_has_no_edge(self):
        sizer = KellyPositionSizer()
        assert sizer.compute_kelly_fraction(0.5, 0.5) == 0.0

    def test_known_value(self):
        # b = 1/0.6 - 1 = 2/3, f* = 0.75 - 0.25 / (2/3) = 0.375
        sizer = KellyPositionSizer()
        assert sizer.compute_kelly_fraction(0.75, 0.6) == pytest.approx(0.375)

    def test_negative_kelly_clipped_to_zero(self):
        sizer = KellyPositionSizer()
        assert sizer.compute_kelly_fraction(0.3, 0.6) == 0.0

    def test_non_finite_inputs(self):
        sizer = KellyPositionSizer()
        assert sizer.compute_kelly_fraction(float("nan"), 0.5) == 0.0


class TestInit:
    def test_invalid_kelly_fraction(self):
        with pytest.raises(ValueError):
            KellyPositionSizer(kelly_fraction=0.0)
        with pytest.raises(ValueError):
            KellyPositionSizer(kelly_fraction=1.5)

    def test_min_above_max(self):
        with pytest.raises(ValueError):
            KellyPositionSizer(min_size=200.0, max_size_per_trade=100.0)

    def test_drawdown_band_order(self):
        with pytest.raises(ValueError):
            KellyPositionSizer(drawdown_start=0.3, drawdown_stop=0.1)

    def test_from_config(self):
        config = SizingConfig(kelly_fraction=0.5, max_size_per_trade=40.0)
        sizer = KellyPositionSizer.from_config(config, max_per_market=30.0)
        assert sizer.kelly_fraction == 0.5
        assert sizer.max_size_per_trade == 40.0
        assert sizer.max_per_market == 30.0


class TestComputeSize:
    """Tests for compute_size."""

    def test_reference_scenario(self, quality):
        """edge 0.15, confidence 0.8, price 0.60, bankroll 1000, quarter Kelly."""
        sizer = KellyPositionSizer(kelly_fraction=0.25, max_size_per_trade=100.0)
        result = sizer.compute_size(edge=0.15, confidence=0.8, price=0.60, bankroll=1000.0, quality=quality)

        assert isinstance(result, PositionSizeResult)
        assert 0 < result.size <= 100.0
        # 0.375 * 0.25 * 0.8 * 1000
        assert result.size == pytest.approx(75.0)
        assert result.kelly_raw == pytest.approx(0.375)

    def test_zero_or_negative_edge_rejects(self, quality):
        sizer = KellyPositionSizer()
        for edge in (0.0, -0.1):
            result = sizer.compute_size(edge=edge, confidence=0.9, price=0.5, bankroll=1000.0, quality=quality)
            assert result.size == 0.0
            assert "Non-positive edge" in result.reasons[0]

    def test_per_trade_cap(self, quality):
        sizer = KellyPositionSizer(kelly_fraction=1.0, max_size_per_trade=20.0)
        result = sizer.compute_size(edge=0.3, confidence=1.0, price=0.5, bankroll=10_000.0, quality=quality)
        assert result.size == 20.0
        assert any("per-trade max" in r for r in result.reasons)

    def test_per_market_room(self, quality):
        sizer = KellyPositionSizer(kelly_fraction=1.0, max_size_per_trade=100.0, max_per_market=50.0)
        result = sizer.compute_size(
            edge=0.3, confidence=1.0, price=0.5, bankroll=10_000.0, quality=quality, existing_exposure=45.0
        )
        assert result.size == 5.0

    def test_per_market_full(self, quality):
        sizer = KellyPositionSizer(max_per_market=50.0)
        result = sizer.compute_size(
            edge=0.3, confidence=1.0, price=0.5, bankroll=10_000.0, quality=quality, existing_exposure=50.0
        )
        assert result.size == 0.0

    def test_below_minimum_rejected(self, quality):
        sizer = KellyPositionSizer(min_size=5.0)
        result = sizer.compute_size(edge=0.02, confidence=0.5, price=0.5, bankroll=100.0, quality=quality)
        assert result.size == 0.0
        assert any("below minimum" in r for r in result.reasons)

    def test_kelly_override(self, quality):
        sizer = KellyPositionSizer(kelly_fraction=0.25, max_size_per_trade=1000.0)
        quarter = sizer.compute_size(edge=0.15, confidence=0.8, price=0.6, bankroll=1000.0, quality=quality)
        half = sizer.compute_size(
            edge=0.15, confidence=0.8, price=0.6, bankroll=1000.0, quality=quality, kelly_fraction=0.5
        )
        assert half.size == pytest.approx(2 * quarter.size)

    def test_invalid_kelly_override(self, quality):
        sizer = KellyPositionSizer()
        with pytest.raises(ValueError):
            sizer.compute_size(edge=0.1, confidence=0.5, price=0.5, bankroll=100.0, quality=quality, kelly_fraction=2.0)

    def test_non_finite_bankroll(self, quality):
        sizer = KellyPositionSizer()
        result = sizer.compute_size(edge=0.1, confidence=0.5, price=0.5, bankroll=math.inf, quality=quality)
        assert result.size == 0.0

    def test_size_is_rounded_to_cents(self, quality):
        sizer = KellyPositionSizer(max_size_per_trade=1000.0)
        result = sizer.compute_size(edge=0.123, confidence=0.77, price=0.41, bankroll=987.65, quality=quality)
        assert result.size == round(result.size, 2)


class TestAdaptiveScaling:
    def test_drawdown_fade(self):
        sizer = KellyPositionSizer(drawdown_start=0.1, drawdown_stop=0.3)
        assert sizer.drawdown_factor(0.05) == 1.0
        assert sizer.drawdown_factor(0.2) == pytest.approx(0.5)
        assert sizer.drawdown_factor(0.3) == 0.0

    def test_streak_steps(self):
        sizer = KellyPositionSizer(streak_free_losses=2, streak_step=0.25)
        assert sizer.streak_factor(2) == 1.0
        assert sizer.streak_factor(3) == pytest.approx(0.75)
        assert sizer.streak_factor(10) == 0.0

    def test_volatility_floor(self):
        sizer = KellyPositionSizer(target_volatility=0.3, volatility_floor=0.25)
        assert sizer.volatility_factor(0.2) == 1.0
        assert sizer.volatility_factor(0.6) == pytest.approx(0.5)
        assert sizer.volatility_factor(10.0) == 0.25

    def test_regime_clip(self):
        sizer = KellyPositionSizer(regime_baseline=0.5, regime_floor=0.5)
        assert sizer.regime_factor(None) == 1.0
        assert sizer.regime_factor(0.4) == pytest.approx(0.8)
        assert sizer.regime_factor(0.1) == 0.5
        assert sizer.regime_factor(0.9) == 1.0

    def test_drawdown_stop_zeroes_size(self, quality):
        sizer = KellyPositionSizer()
        result = sizer.compute_size(
            edge=0.15, confidence=0.8, price=0.6, bankroll=1000.0, quality=quality,
            adaptive=AdaptiveState(drawdown_pct=0.5),
        )
        assert result.size == 0.0
        assert result.scaling_factors["drawdown"] == 0.0

    def test_composite_factor(self, quality):
        sizer = KellyPositionSizer(max_size_per_trade=1000.0)
        volatile = MarketQuality(liquidity=5000.0, spread=0.02, volatility_30d=0.6, days_to_expiry=10.0)
        result = sizer.compute_size(
            edge=0.15, confidence=0.8, price=0.6, bankroll=1000.0, quality=volatile,
            adaptive=AdaptiveState(consecutive_losses=3, recent_win_rate=0.4),
        )
        assert result.composite_factor == pytest.approx(0.75 * 0.5 * 0.8)
        assert result.to_dict()["composite_factor"] == pytest.approx(result.composite_factor)


class TestProbabilityPolicies:
    def test_additive(self):
        assert additive_edge_policy(0.6, 0.15, 0.8) == pytest.approx(0.75)
        assert additive_edge_policy(0.95, 0.2, 0.8) == 0.99

    def test_shrunk(self):
        assert shrunk_edge_policy(0.6, 0.15, 0.8) == pytest.approx(0.72)

    def test_shrunk_policy_sizes_smaller(self, quality):
        plain = KellyPositionSizer(max_size_per_trade=1000.0)
        shrunk = KellyPositionSizer(max_size_per_trade=1000.0, probability_policy=shrunk_edge_policy)
        kwargs = dict(edge=0.15, confidence=0.8, price=0.6, bankroll=1000.0, quality=quality)
        assert shrunk.compute_size(**kwargs).size < plain.compute_size(**kwargs).size


class TestCostHelpers:
    def test_slippage_is_capped(self):
        thin = MarketQuality(liquidity=0.0, spread=0.5, volatility_30d=5.0, days_to_expiry=1.0)
        assert estimate_slippage(1_000_000.0, thin) == 0.10

    def test_effective_edge_floor(self):
        assert effective_edge(0.01, 0.02) == 0.0
        assert effective_edge(0.05, 0.01, 0.002) == pytest.approx(0.038)

    def test_viability(self):
        ok, _ = is_trade_viable(0.05, 0.005)
        assert ok
        ok, reason = is_trade_viable(0.01, 0.005)
        assert not ok
        assert "Net edge too small" in reason
