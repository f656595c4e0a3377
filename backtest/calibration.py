"""
Calibration analysis of predicted win probabilities.

A trade's predicted probability for the side it bought is
``clamp(entry_price + predicted_edge, 0.01, 0.99)``. To compare YES and NO
trades on one scale, both the prediction and the realised outcome are
expressed for the YES side:

    YES trade: p_yes = p,     yes_won = trade won
    NO trade:  p_yes = 1 - p, yes_won = trade lost

The squared error is identical in either framing, so the Brier score does
not depend on this choice; the buckets do.

Score interpretation (Brier):
    0.00 perfect, <= 0.10 excellent, <= 0.15 good, <= 0.20 acceptable,
    <= 0.25 marginal (coin flip), above that worse than chance.
"""

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from config.constants import (
    CALIBRATION_BUCKETS,
    CALIBRATION_DEVIATION_THRESHOLD,
    CALIBRATION_MIN_BUCKET_COUNT,
    DIRECTIONS,
    MAX_CONTRACT_PRICE,
    MIN_CONTRACT_PRICE,
)
from execution.models import BacktestTrade, CalibrationBucket

logger = logging.getLogger(__name__)

NO_SKILL_BRIER = 0.25
WELL_CALIBRATED_DEVIATION = 0.02
WORST_BUCKET_ALERT = 0.1


def predicted_probability(trade: BacktestTrade) -> float:
    """Predicted win probability of the traded side."""
    return float(np.clip(trade.entry_price + trade.predicted_edge, MIN_CONTRACT_PRICE, MAX_CONTRACT_PRICE))


def yes_side_pairs(trades: list[BacktestTrade]) -> tuple[np.ndarray, np.ndarray]:
    """(p_yes, yes_won) arrays for trades with a realised outcome."""
    probs: list[float] = []
    outcomes: list[float] = []
    for trade in trades:
        if trade.actual_edge is None:
            continue
        p = predicted_probability(trade)
        won = trade.actual_edge > 0
        if trade.direction == DIRECTIONS.YES:
            probs.append(p)
            outcomes.append(1.0 if won else 0.0)
        else:
            probs.append(1 - p)
            outcomes.append(0.0 if won else 1.0)
    return np.array(probs, dtype=float), np.array(outcomes, dtype=float)


def brier_score(probabilities: np.ndarray, outcomes: np.ndarray) -> float:
    if len(probabilities) == 0:
        return NO_SKILL_BRIER
    return float(np.mean((probabilities - outcomes) ** 2))


def calculate_brier_score(trades: list[BacktestTrade]) -> float:
    probs, outcomes = yes_side_pairs(trades)
    return brier_score(probs, outcomes)


def bucketize(
    probabilities: np.ndarray,
    outcomes: np.ndarray,
    n_buckets: int = CALIBRATION_BUCKETS,
) -> list[CalibrationBucket]:
    """Non-empty fixed-width buckets ``[i/n, (i+1)/n)``."""
    buckets: list[CalibrationBucket] = []
    for i in range(n_buckets):
        lower, upper = i / n_buckets, (i + 1) / n_buckets
        mask = (probabilities >= lower) & (probabilities < upper)
        if i == n_buckets - 1:
            mask |= probabilities == upper
        count = int(mask.sum())
        if count == 0:
            continue
        buckets.append(
            CalibrationBucket(
                range=(lower, upper),
                predicted_avg=float(probabilities[mask].mean()),
                actual_avg=float(outcomes[mask].mean()),
                count=count,
            )
        )
    return buckets


def calculate_calibration_buckets(trades: list[BacktestTrade]) -> list[CalibrationBucket]:
    probs, outcomes = yes_side_pairs(trades)
    return bucketize(probs, outcomes)


def calculate_ece(buckets: list[CalibrationBucket]) -> float:
    """Expected calibration error: count-weighted mean |predicted - actual|."""
    total = sum(b.count for b in buckets)
    if total == 0:
        return 0.0
    return sum(abs(b.deviation) * b.count for b in buckets) / total


@dataclass(frozen=True)
class CalibrationAnalysis:
    is_overconfident: bool
    is_underconfident: bool
    avg_deviation: float
    worst_bucket: CalibrationBucket | None
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_overconfident": self.is_overconfident,
            "is_underconfident": self.is_underconfident,
            "avg_deviation": self.avg_deviation,
            "worst_bucket": self.worst_bucket.to_dict() if self.worst_bucket else None,
            "recommendation": self.recommendation,
        }


def analyze_calibration(buckets: list[CalibrationBucket]) -> CalibrationAnalysis:
    """
    Over/under-confidence verdict from bucket deviations.

    Positive deviation (predicted > actual) means overconfident.
    """
    if not buckets:
        return CalibrationAnalysis(False, False, 0.0, None, "Not enough data for calibration analysis.")

    total = sum(b.count for b in buckets)
    avg_deviation = sum(b.deviation * b.count for b in buckets) / total

    worst: CalibrationBucket | None = None
    for bucket in buckets:
        if bucket.count < CALIBRATION_MIN_BUCKET_COUNT:
            continue
        if worst is None or abs(bucket.deviation) > abs(worst.deviation):
            worst = bucket

    over = avg_deviation > CALIBRATION_DEVIATION_THRESHOLD
    under = avg_deviation < -CALIBRATION_DEVIATION_THRESHOLD

    if abs(avg_deviation) <= WELL_CALIBRATED_DEVIATION:
        recommendation = "Calibration is good. No adjustment needed."
    elif over:
        recommendation = (
            f"Overconfident by {avg_deviation:.1%}. Edge estimates should be more "
            f"conservative; consider reducing the Kelly fraction."
        )
    elif under:
        recommendation = (
            f"Underconfident by {abs(avg_deviation):.1%}. Edge estimates could be more "
            f"aggressive, but beware of overfitting."
        )
    else:
        recommendation = "Marginal deviations. Keep monitoring."

    if worst is not None and abs(worst.deviation) > WORST_BUCKET_ALERT:
        lo, hi = worst.range
        recommendation += (
            f" Warning: bucket {lo:.0%}-{hi:.0%} deviates by {abs(worst.deviation):.1%}."
        )

    return CalibrationAnalysis(over, under, avg_deviation, worst, recommendation)


def interpret_brier_score(score: float) -> str:
    if score <= 0.1:
        return "excellent"
    if score <= 0.15:
        return "good"
    if score <= 0.2:
        return "acceptable"
    if score <= 0.25:
        return "marginal"
    return "poor"


def interpret_ece(ece: float) -> str:
    if ece <= 0.02:
        return "excellent"
    if ece <= 0.05:
        return "good"
    if ece <= 0.1:
        return "acceptable"
    if ece <= 0.15:
        return "marginal"
    return "poor"


def reliability_diagram_data(buckets: list[CalibrationBucket]) -> dict[str, list[float]]:
    """Bucket midpoints against realised frequency, for plotting."""
    return {
        "x": [(b.range[0] + b.range[1]) / 2 for b in buckets],
        "y": [b.actual_avg for b in buckets],
        "counts": [b.count for b in buckets],
    }


def format_bucket(bucket: CalibrationBucket) -> str:
    lo, hi = bucket.range
    return (
        f"{f'{lo:.0%}-{hi:.0%}':<8} | {bucket.predicted_avg:>6.1%} | {bucket.actual_avg:>6.1%} | "
        f"{bucket.deviation:>+7.1%} | n={bucket.count}"
    )
