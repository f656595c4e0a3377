"""
Position Sizing Module.

Turns an edge/confidence estimate for a binary contract into a stake using
fractional Kelly, scaled down by drawdown, losing streaks, volatility and
recent win-rate regime, and capped by per-trade and per-market ceilings.

ARCHITECTURAL PRINCIPLE:
Sizing is a pure function of its inputs. The same sizer backs live sizing
and backtest replay, so it must not read clocks, state stores or the venue.

Reference: Kelly, J.L. "A New Interpretation of Information Rate" (1956)

Example:
    >>> from execution.position_sizer import KellyPositionSizer
    >>> sizer = KellyPositionSizer(kelly_fraction=0.25, max_size_per_trade=100.0)
    >>> result = sizer.compute_size(
    ...     edge=0.15, confidence=0.8, price=0.60, bankroll=1000.0,
    ...     quality=MarketQuality(liquidity=5000, spread=0.02,
    ...                           volatility_30d=0.2, days_to_expiry=10),
    ... )
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from config.constants import MAX_CONTRACT_PRICE, MIN_CONTRACT_PRICE
from config.settings import SizingConfig
from execution.models import MarketQuality
from utils.numerical_validation import clamp, ensure_finite

logger = logging.getLogger(__name__)

# (price, edge, confidence) -> model win probability
ProbabilityPolicy = Callable[[float, float, float], float]


def additive_edge_policy(price: float, edge: float, confidence: float) -> float:
    """Model probability is the market-implied probability plus the edge."""
    return clamp(price + edge, MIN_CONTRACT_PRICE, MAX_CONTRACT_PRICE)


def shrunk_edge_policy(price: float, edge: float, confidence: float) -> float:
    """Like ``additive_edge_policy`` but the edge is shrunk by confidence."""
    return clamp(price + edge * confidence, MIN_CONTRACT_PRICE, MAX_CONTRACT_PRICE)


@dataclass(frozen=True)
class AdaptiveState:
    """Portfolio condition used for adaptive scaling.

    Attributes:
        consecutive_losses: Current losing streak
        drawdown_pct: Current drawdown from peak (0.15 = 15%)
        recent_win_rate: Win rate over the recent window, None if unknown
    """

    consecutive_losses: int = 0
    drawdown_pct: float = 0.0
    recent_win_rate: float | None = None


@dataclass
class PositionSizeResult:
    """Result of a sizing calculation.

    Attributes:
        size: Final stake in USDC (0 means reject)
        kelly_raw: Full-Kelly fraction f* after clipping to [0, 1]
        kelly_adjusted: Fraction after kelly_fraction, confidence and scaling
        scaling_factors: Individual multipliers by name
        reasons: Human-readable trail of the sizing decision
    """

    size: float
    kelly_raw: float
    kelly_adjusted: float
    scaling_factors: dict[str, float] = field(default_factory=dict)
    reasons: list[str] = field(default_factory=list)

    @property
    def composite_factor(self) -> float:
        product = 1.0
        for value in self.scaling_factors.values():
            product *= value
        return product

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "size": self.size,
            "kelly_raw": self.kelly_raw,
            "kelly_adjusted": self.kelly_adjusted,
            "scaling_factors": dict(self.scaling_factors),
            "composite_factor": self.composite_factor,
            "reasons": list(self.reasons),
        }


class KellyPositionSizer:
    """
    Fractional Kelly sizing for binary prediction-market contracts.

    A contract bought at ``price`` pays 1.0 on a win, so the net odds are
        b = 1/price - 1
    and the Kelly fraction is
        f* = p - q/b
    where p is the model win probability and q = 1 - p.

    Adjustments applied, all multiplicative:
        1. kelly_fraction (0.25 = quarter-Kelly)
        2. confidence
        3. drawdown fade (100% below drawdown_start, 0% at drawdown_stop)
        4. streak step-down per loss beyond streak_free_losses
        5. volatility scaling (target_volatility / volatility_30d, floored)
        6. regime scaling (recent_win_rate / regime_baseline, clipped)
    """

    def __init__(
        self,
        kelly_fraction: float = 0.25,
        min_size: float = 1.0,
        max_size_per_trade: float = 100.0,
        max_per_market: float | None = None,
        drawdown_start: float = 0.10,
        drawdown_stop: float = 0.30,
        streak_free_losses: int = 2,
        streak_step: float = 0.25,
        target_volatility: float = 0.30,
        volatility_floor: float = 0.25,
        regime_baseline: float = 0.5,
        regime_floor: float = 0.5,
        probability_policy: ProbabilityPolicy = additive_edge_policy,
    ):
        if not 0 < kelly_fraction <= 1:
            raise ValueError(f"kelly_fraction must be in (0, 1], got {kelly_fraction}")
        if max_size_per_trade <= 0:
            raise ValueError(f"max_size_per_trade must be positive, got {max_size_per_trade}")
        if min_size > max_size_per_trade:
            raise ValueError(f"min_size ({min_size}) must be <= max_size_per_trade ({max_size_per_trade})")
        if drawdown_stop <= drawdown_start:
            raise ValueError(f"drawdown_stop ({drawdown_stop}) must be > drawdown_start ({drawdown_start})")

        self.kelly_fraction = kelly_fraction
        self.min_size = min_size
        self.max_size_per_trade = max_size_per_trade
        self.max_per_market = max_per_market
        self.drawdown_start = drawdown_start
        self.drawdown_stop = drawdown_stop
        self.streak_free_losses = streak_free_losses
        self.streak_step = streak_step
        self.target_volatility = target_volatility
        self.volatility_floor = volatility_floor
        self.regime_baseline = regime_baseline
        self.regime_floor = regime_floor
        self.probability_policy = probability_policy

        logger.info(
            f"KellyPositionSizer initialized: kelly={kelly_fraction}, "
            f"max=${max_size_per_trade}, per_market={max_per_market}, min=${min_size}"
        )

    @classmethod
    def from_config(
        cls,
        config: SizingConfig,
        max_per_market: float | None = None,
        probability_policy: ProbabilityPolicy = additive_edge_policy,
    ) -> "KellyPositionSizer":
        return cls(
            kelly_fraction=config.kelly_fraction,
            min_size=config.min_size,
            max_size_per_trade=config.max_size_per_trade,
            max_per_market=max_per_market,
            drawdown_start=config.drawdown_start,
            drawdown_stop=config.drawdown_stop,
            streak_free_losses=config.streak_free_losses,
            streak_step=config.streak_step,
            target_volatility=config.target_volatility,
            volatility_floor=config.volatility_floor,
            regime_baseline=config.regime_baseline,
            regime_floor=config.regime_floor,
            probability_policy=probability_policy,
        )

    def compute_kelly_fraction(self, probability: float, price: float) -> float:
        """
        Full-Kelly fraction for buying a binary contract at ``price``.

        Returns:
            f* clipped to [0, 1]
        """
        price = clamp(ensure_finite(price, "price", 0.5), MIN_CONTRACT_PRICE, MAX_CONTRACT_PRICE)
        probability = clamp(ensure_finite(probability, "probability", 0.0), 0.0, 1.0)

        b = 1.0 / price - 1.0
        if b <= 1e-9:
            return 0.0

        kelly = probability - (1.0 - probability) / b
        return clamp(kelly, 0.0, 1.0)

    def drawdown_factor(self, drawdown_pct: float) -> float:
        if drawdown_pct <= self.drawdown_start:
            return 1.0
        if drawdown_pct >= self.drawdown_stop:
            return 0.0
        span = self.drawdown_stop - self.drawdown_start
        return 1.0 - (drawdown_pct - self.drawdown_start) / span

    def streak_factor(self, consecutive_losses: int) -> float:
        excess = consecutive_losses - self.streak_free_losses
        if excess <= 0:
            return 1.0
        return max(0.0, 1.0 - self.streak_step * excess)

    def volatility_factor(self, volatility_30d: float) -> float:
        if volatility_30d <= self.target_volatility:
            return 1.0
        return max(self.volatility_floor, self.target_volatility / volatility_30d)

    def regime_factor(self, recent_win_rate: float | None) -> float:
        if recent_win_rate is None:
            return 1.0
        return clamp(recent_win_rate / self.regime_baseline, self.regime_floor, 1.0)

    def compute_size(
        self,
        edge: float,
        confidence: float,
        price: float,
        bankroll: float,
        quality: MarketQuality,
        kelly_fraction: float | None = None,
        adaptive: AdaptiveState | None = None,
        existing_exposure: float = 0.0,
    ) -> PositionSizeResult:
        """
        Compute the stake with all adjustments applied.

        Args:
            edge: Signed probability advantage over the market price
            confidence: Signal confidence (0 to 1)
            price: Current price of the contract being bought
            bankroll: Capital available for sizing
            quality: Market snapshot (volatility is read from here)
            kelly_fraction: Override of the configured fractional Kelly
            adaptive: Portfolio condition for adaptive scaling
            existing_exposure: Exposure already held in this market

        Returns:
            PositionSizeResult (size 0 means reject)
        """
        reasons: list[str] = []
        fraction = self.kelly_fraction if kelly_fraction is None else kelly_fraction
        if not 0 < fraction <= 1:
            raise ValueError(f"kelly_fraction must be in (0, 1], got {fraction}")

        edge = float(ensure_finite(edge, "edge", 0.0))
        confidence = clamp(ensure_finite(confidence, "confidence", 0.0), 0.0, 1.0)
        bankroll = max(0.0, float(ensure_finite(bankroll, "bankroll", 0.0)))

        if edge <= 0:
            reasons.append(f"Non-positive edge {edge:.4f}")
            return PositionSizeResult(0.0, 0.0, 0.0, {}, reasons)

        # 1. Raw Kelly from the model probability
        probability = self.probability_policy(price, edge, confidence)
        kelly_raw = self.compute_kelly_fraction(probability, price)
        reasons.append(f"p={probability:.3f} price={price:.3f} f*={kelly_raw:.4f}")

        # 2. Adaptive scaling
        adaptive = adaptive or AdaptiveState()
        factors = {
            "drawdown": self.drawdown_factor(adaptive.drawdown_pct),
            "streak": self.streak_factor(adaptive.consecutive_losses),
            "volatility": self.volatility_factor(quality.volatility_30d),
            "regime": self.regime_factor(adaptive.recent_win_rate),
        }
        composite = 1.0
        for name, value in factors.items():
            composite *= value
            if value < 1.0:
                reasons.append(f"{name} scaling {value:.2f}")

        kelly_adjusted = kelly_raw * fraction * confidence * composite
        size = bankroll * kelly_adjusted

        # 3. Ceilings
        if size > self.max_size_per_trade:
            reasons.append(f"Capped at per-trade max {self.max_size_per_trade:.2f}")
            size = self.max_size_per_trade
        if self.max_per_market is not None:
            room = max(0.0, self.max_per_market - existing_exposure)
            if size > room:
                reasons.append(f"Capped at per-market room {room:.2f}")
                size = room

        # 4. Floors
        if 0 < size < self.min_size:
            reasons.append(f"Size {size:.2f} below minimum {self.min_size:.2f}")
            size = 0.0

        if edge * size <= 0:
            size = 0.0

        size = round(size, 2)
        if size > 0:
            reasons.append(f"Final size {size:.2f} USDC")

        result = PositionSizeResult(
            size=size,
            kelly_raw=kelly_raw,
            kelly_adjusted=kelly_adjusted,
            scaling_factors=factors,
            reasons=reasons,
        )
        logger.debug(f"Sizing: {result.to_dict()}")
        return result


# ---------------------------------------------------------------------------
# Cost model helpers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SlippageModel:
    base_slippage: float = 0.001
    size_impact: float = 0.0001  # per 1000 USDC
    liquidity_factor: float = 0.005
    volatility_factor: float = 0.002
    reference_liquidity: float = 10_000.0
    max_slippage: float = 0.10


DEFAULT_SLIPPAGE_MODEL = SlippageModel()


def estimate_slippage(
    size: float,
    quality: MarketQuality,
    model: SlippageModel = DEFAULT_SLIPPAGE_MODEL,
) -> float:
    """Expected slippage as a price fraction for an order of ``size`` USDC."""
    slippage = model.base_slippage
    slippage += (size / 1000.0) * model.size_impact

    liquidity_score = clamp(quality.liquidity / model.reference_liquidity, 0.0, 1.0)
    slippage += model.liquidity_factor * (1.0 - liquidity_score)
    slippage += quality.volatility_30d * model.volatility_factor
    slippage += quality.spread / 2.0

    return min(slippage, model.max_slippage)


def effective_edge(raw_edge: float, slippage: float, fees: float = 0.002) -> float:
    """Edge left after slippage and fees (never negative)."""
    return max(0.0, raw_edge - slippage - fees)


def is_trade_viable(
    edge: float,
    slippage: float,
    fees: float = 0.002,
    min_net_edge: float = 0.01,
) -> tuple[bool, str]:
    net = effective_edge(edge, slippage, fees)
    if net < min_net_edge:
        return False, (
            f"Net edge too small: {net:.2%} < {min_net_edge:.2%} "
            f"(slippage {slippage:.2%}, fees {fees:.2%})"
        )
    return True, f"Trade viable: net edge {net:.2%}"
