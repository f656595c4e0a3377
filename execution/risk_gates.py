"""
Risk gate evaluation.

Six independent, pure checks against a RiskStateSnapshot. The same function
gates live, shadow and backtest decisions, so a gate that passes in a
backtest passes for the same inputs in production.

Gate failures are returned as values; nothing here raises for a rejected
trade.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from config.settings import RiskLimitsConfig
from execution.models import MarketQuality, RiskChecks, RiskStateSnapshot
from utils.numerical_validation import ensure_finite

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskGateResult:
    """Outcome of evaluating all six gates for one proposed order."""

    passed: bool
    checks: RiskChecks
    failed_reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "checks": self.checks.to_dict(),
            "failed_reasons": list(self.failed_reasons),
        }


def evaluate_risk_gates(
    size: float,
    market_id: str,
    quality: MarketQuality,
    state: RiskStateSnapshot,
    limits: RiskLimitsConfig,
) -> RiskGateResult:
    """
    Evaluate every gate for a proposed order of ``size`` USDC.

    All gates are evaluated even when an earlier one fails, so the caller
    always sees the complete list of reasons.
    """
    size = float(ensure_finite(size, "size", 0.0))
    existing = state.exposure_for(market_id)
    reasons: list[str] = []

    daily_loss_ok = state.daily_pnl > -limits.max_daily_loss
    if not daily_loss_ok:
        reasons.append(
            f"Daily loss limit reached: pnl {state.daily_pnl:.2f} <= -{limits.max_daily_loss:.2f}"
        )

    max_positions_ok = state.open_positions < limits.max_positions
    if not max_positions_ok:
        reasons.append(
            f"Max positions reached: {state.open_positions}/{limits.max_positions}"
        )

    per_market_cap_ok = existing + size <= limits.max_per_market
    if not per_market_cap_ok:
        reasons.append(
            f"Per-market cap exceeded for {market_id}: "
            f"{existing:.2f} + {size:.2f} > {limits.max_per_market:.2f}"
        )

    max_by_liquidity = quality.liquidity * limits.max_liquidity_fraction
    liquidity_ok = size <= max_by_liquidity
    if not liquidity_ok:
        reasons.append(
            f"Insufficient liquidity: size {size:.2f} > {max_by_liquidity:.2f} "
            f"({limits.max_liquidity_fraction:.0%} of {quality.liquidity:.2f})"
        )

    spread_ok = quality.spread <= limits.max_spread
    if not spread_ok:
        reasons.append(f"Spread too wide: {quality.spread:.4f} > {limits.max_spread:.4f}")

    kill_switch_ok = not state.kill_switch_active
    if not kill_switch_ok:
        reasons.append(f"Kill switch active: {state.kill_switch_reason or 'no reason given'}")

    checks = RiskChecks(
        daily_loss_ok=daily_loss_ok,
        max_positions_ok=max_positions_ok,
        per_market_cap_ok=per_market_cap_ok,
        liquidity_ok=liquidity_ok,
        spread_ok=spread_ok,
        kill_switch_ok=kill_switch_ok,
    )
    passed = checks.all_passed()
    if not passed:
        logger.info(f"[RISK] Gates rejected {market_id} size={size:.2f}: {'; '.join(reasons)}")
    return RiskGateResult(passed=passed, checks=checks, failed_reasons=reasons)


def available_risk_budget(state: RiskStateSnapshot, limits: RiskLimitsConfig) -> float:
    """Loss still allowed today before the daily-loss gate closes."""
    return max(0.0, limits.max_daily_loss + state.daily_pnl)
