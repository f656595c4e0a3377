"""
Trade simulator for backtesting.

Replays one candidate signal per market through the same sizer and risk
gates as live trading:

    1. features and sizing inputs come from ticks at or before the decision
    2. fill = VWAP of the first ``fill_window`` ticks strictly after it
    3. illiquidity-aware slippage moves the entry against us
    4. PnL settles against the market resolution, minus fees

Each market is independent (no shared bankroll or positions), so markets can
be simulated in parallel.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

import numpy as np

from config.constants import DIRECTIONS
from config.settings import RiskLimitsConfig
from execution.models import BacktestTrade, MarketQuality, RiskStateSnapshot, Tick
from execution.position_sizer import KellyPositionSizer
from execution.risk_gates import evaluate_risk_gates
from backtest.signals import CandidateSignal, SignalSource, visible_window
from utils.numerical_validation import clamp_contract_price

logger = logging.getLogger(__name__)

BASE_SLIPPAGE = 0.005
SIZE_IMPACT_PER_1000 = 0.002
FULL_LIQUIDITY_VOLUME = 1000.0
MAX_SIMULATED_SLIPPAGE = 0.05
# Tick exports carry no order book, so the spread gate sees a fixed value
SIMULATED_SPREAD = 0.02


@dataclass(frozen=True)
class SimulatorConfig:
    initial_bankroll: float = 1000.0
    slippage_enabled: bool = True
    fees_percent: float = 0.001
    fill_window: int = 10


def simulated_slippage(size: float, avg_tick_volume: float) -> float:
    """Base + size impact, scaled up to 3x in thin markets, capped at 5%."""
    liquidity = min(1.0, avg_tick_volume / FULL_LIQUIDITY_VOLUME)
    slippage = BASE_SLIPPAGE + (size / 1000.0) * SIZE_IMPACT_PER_1000
    slippage *= 1 + (1 - liquidity) * 2
    return min(slippage, MAX_SIMULATED_SLIPPAGE)


def settle_pnl(entry_price: float, size: float, won: bool) -> float:
    """Gross PnL of buying ``size`` USDC of contracts at ``entry_price``."""
    if won:
        return size / entry_price - size
    return -size


class TradeSimulator:
    """
    Simulates one trade per candidate signal.

    Args:
        sizer: The live KellyPositionSizer
        limits: Risk limits for the gate check (None skips gating)
        config: Simulator settings
    """

    def __init__(
        self,
        sizer: KellyPositionSizer,
        limits: RiskLimitsConfig | None = None,
        config: SimulatorConfig | None = None,
    ):
        self.sizer = sizer
        self.limits = limits
        self.config = config or SimulatorConfig()

    def estimate_quality(
        self,
        visible: Sequence[Tick],
        decision_time: datetime,
        closed_at: datetime | None,
    ) -> MarketQuality:
        """Market snapshot from observable ticks only."""
        prices = np.array([t.price for t in visible], dtype=float)
        volatility = 0.0
        if len(prices) > 2:
            # per-tick move scaled to the whole visible window
            volatility = float(np.std(np.diff(prices), ddof=1) * np.sqrt(len(prices) - 1))
        days = (closed_at - decision_time).total_seconds() / 86400 if closed_at else 0.0
        return MarketQuality(
            liquidity=float(sum(t.size for t in visible)),
            spread=SIMULATED_SPREAD,
            volatility_30d=volatility,
            days_to_expiry=max(0.0, days),
        )

    def fill_price(
        self,
        ticks_after: Sequence[Tick],
        direction: DIRECTIONS,
        size: float,
    ) -> tuple[float, float] | None:
        """
        (base price of the traded side, slippage) from the post-decision ticks.

        Returns None when no tick follows the decision.
        """
        window = list(ticks_after[: self.config.fill_window])
        if not window:
            return None

        volume = sum(t.size for t in window)
        if volume > 0:
            vwap = sum(t.price * t.size for t in window) / volume
        else:
            vwap = window[0].price

        slippage = simulated_slippage(size, volume / len(window))
        base = vwap if direction == DIRECTIONS.YES else 1 - vwap
        return base, slippage

    def simulate(
        self,
        signal: CandidateSignal,
        ticks: Sequence[Tick],
        resolution: DIRECTIONS | None,
        closed_at: datetime | None = None,
        bankroll: float | None = None,
    ) -> BacktestTrade | None:
        """
        Simulate ``signal`` against a market's time-ordered ``ticks``.

        Returns None when the candidate is skipped (unresolved market, zero
        size, failed gate, no ticks after the decision).
        """
        if resolution is None:
            logger.debug(f"[BACKTEST] {signal.market_id}: unresolved, skipped")
            return None

        bankroll = self.config.initial_bankroll if bankroll is None else bankroll
        visible = visible_window(ticks, signal.decision_time)
        if not visible:
            return None

        # 1. Size from what was observable at decision time
        last_price = visible[-1].price
        quote = last_price if signal.direction == DIRECTIONS.YES else 1 - last_price
        quality = self.estimate_quality(visible, signal.decision_time, closed_at)
        sizing = self.sizer.compute_size(
            edge=signal.edge,
            confidence=signal.confidence,
            price=clamp_contract_price(quote),
            bankroll=bankroll,
            quality=quality,
        )
        size = sizing.size
        if size <= 0:
            logger.debug(f"[BACKTEST] {signal.market_id}: zero size ({'; '.join(sizing.reasons)})")
            return None

        if self.limits is not None:
            gates = evaluate_risk_gates(size, signal.market_id, quality, RiskStateSnapshot(), self.limits)
            if not gates.passed:
                logger.debug(f"[BACKTEST] {signal.market_id}: gates failed {gates.failed_reasons}")
                return None

        # 2. Fill strictly after the decision
        ticks_after = [t for t in ticks if t.timestamp > signal.decision_time]
        fill = self.fill_price(ticks_after, signal.direction, size)
        if fill is None:
            logger.debug(f"[BACKTEST] {signal.market_id}: no ticks after decision, skipped")
            return None
        base_price, slippage = fill

        # 3. Entry with adverse slippage
        if not self.config.slippage_enabled:
            slippage = 0.0
        entry = clamp_contract_price(base_price + slippage)

        # 4. Settle
        won = signal.direction == resolution
        pnl = settle_pnl(entry, size, won) - size * self.config.fees_percent
        actual_edge = (1 - entry) if won else -entry

        trade = BacktestTrade(
            signal_id=signal.signal_id,
            market_id=signal.market_id,
            direction=signal.direction,
            entry_price=entry,
            exit_price=1.0 if won else 0.0,
            size=size,
            pnl=pnl,
            predicted_edge=signal.edge,
            actual_edge=actual_edge,
            slippage=slippage,
            created_at=signal.decision_time,
        )
        logger.debug(
            f"[BACKTEST] {signal.market_id[:8]} {signal.direction.value.upper()} @ {entry:.3f} "
            f"size=${size:.2f} pnl=${pnl:.2f}"
        )
        return trade

    def simulate_market(
        self,
        market_id: str,
        ticks: Sequence[Tick],
        resolution: DIRECTIONS | None,
        source: SignalSource,
        closed_at: datetime | None = None,
    ) -> BacktestTrade | None:
        """Generate the candidate for one market and simulate it."""
        ordered = sorted(ticks, key=lambda t: t.timestamp)
        signal = source.generate(market_id, ordered)
        if signal is None:
            return None
        return self.simulate(signal, ordered, resolution, closed_at)
