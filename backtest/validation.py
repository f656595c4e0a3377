"""
Overfitting checks for backtest results.

- walk_forward_validation: chronological train/test split with divergence
  warnings
- run_monte_carlo: bootstrap of completed trade PnLs (with replacement)
- check_robustness: 0-100 score combining both
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any

import numpy as np

from execution.models import BacktestTrade
from backtest.metrics import BacktestMetrics, calculate_metrics, completed

logger = logging.getLogger(__name__)

MIN_VALIDATION_TRADES = 10
MIN_MONTE_CARLO_TRADES = 5
MIN_TEST_TRADES = 20
ROBUST_SCORE = 60


@dataclass(frozen=True)
class ValidationWarning:
    type: str  # sharpe_too_high, train_test_divergence, unrealistic_returns, low_trade_count
    severity: str  # "high" or "medium"
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationResult:
    train_metrics: BacktestMetrics
    test_metrics: BacktestMetrics
    train_trades: list[BacktestTrade]
    test_trades: list[BacktestTrade]
    split_ratio: float
    warnings: list[ValidationWarning] = field(default_factory=list)

    def count(self, severity: str) -> int:
        return sum(1 for w in self.warnings if w.severity == severity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "train_metrics": self.train_metrics.to_dict(),
            "test_metrics": self.test_metrics.to_dict(),
            "train_count": len(self.train_trades),
            "test_count": len(self.test_trades),
            "split_ratio": self.split_ratio,
            "warnings": [w.to_dict() for w in self.warnings],
        }


def walk_forward_validation(trades: list[BacktestTrade], split: float = 0.7) -> ValidationResult:
    """
    Train on the first ``split`` share of trades, test on the rest.

    Trades must already be in decision-time order.
    """
    if not 0 < split < 1:
        raise ValueError(f"split must be in (0, 1), got {split}")

    if len(trades) < MIN_VALIDATION_TRADES:
        logger.warning(f"[BACKTEST] Only {len(trades)} trades, walk-forward validation skipped")
        empty = calculate_metrics([])
        return ValidationResult(
            train_metrics=empty,
            test_metrics=empty,
            train_trades=[],
            test_trades=[],
            split_ratio=split,
            warnings=[
                ValidationWarning(
                    type="low_trade_count",
                    severity="high",
                    message=f"Only {len(trades)} trades, not enough for reliable validation",
                    details={"trade_count": len(trades), "min_required": MIN_VALIDATION_TRADES},
                )
            ],
        )

    split_index = int(math.floor(len(trades) * split))
    train_trades = trades[:split_index]
    test_trades = trades[split_index:]

    train_metrics = calculate_metrics(train_trades)
    test_metrics = calculate_metrics(test_trades)
    warnings = detect_overfitting(train_metrics, test_metrics, len(train_trades), len(test_trades))

    logger.info(f"[BACKTEST] Walk-forward: {len(train_trades)} train / {len(test_trades)} test trades")
    logger.info(
        f"[BACKTEST]   Train PnL ${train_metrics.total_pnl:.2f}, win rate {train_metrics.win_rate:.1%}"
    )
    logger.info(
        f"[BACKTEST]   Test PnL ${test_metrics.total_pnl:.2f}, win rate {test_metrics.win_rate:.1%}"
    )
    for w in warnings:
        logger.warning(f"[BACKTEST] [{w.severity.upper()}] {w.message}")

    return ValidationResult(
        train_metrics=train_metrics,
        test_metrics=test_metrics,
        train_trades=train_trades,
        test_trades=test_trades,
        split_ratio=split,
        warnings=warnings,
    )


def detect_overfitting(
    train: BacktestMetrics,
    test: BacktestMetrics,
    train_count: int,
    test_count: int,
) -> list[ValidationWarning]:
    warnings: list[ValidationWarning] = []

    # 1. Implausible in-sample Sharpe
    if train.sharpe_ratio > 3:
        warnings.append(
            ValidationWarning(
                type="sharpe_too_high",
                severity="high" if train.sharpe_ratio > 5 else "medium",
                message=f"Train Sharpe {train.sharpe_ratio:.2f} is implausibly high (>3)",
                details={"train_sharpe": train.sharpe_ratio, "test_sharpe": test.sharpe_ratio},
            )
        )

    # 2. Train/test divergence
    pnl_ratio = test.total_pnl / (train.total_pnl or 1)
    win_rate_diff = abs(train.win_rate - test.win_rate)
    sharpe_ratio = test.sharpe_ratio / (train.sharpe_ratio or 0.01)

    if train.total_pnl > 0 and pnl_ratio < 0.3:
        warnings.append(
            ValidationWarning(
                type="train_test_divergence",
                severity="high" if pnl_ratio < 0 else "medium",
                message=f"Test PnL is only {pnl_ratio:.1%} of train PnL",
                details={"train_pnl": train.total_pnl, "test_pnl": test.total_pnl, "ratio": pnl_ratio},
            )
        )

    if win_rate_diff > 0.15:
        warnings.append(
            ValidationWarning(
                type="train_test_divergence",
                severity="high" if win_rate_diff > 0.25 else "medium",
                message=f"Win rate differs by {win_rate_diff:.1%} between train and test",
                details={
                    "train_win_rate": train.win_rate,
                    "test_win_rate": test.win_rate,
                    "difference": win_rate_diff,
                },
            )
        )

    if train.sharpe_ratio > 1 and sharpe_ratio < 0.4:
        warnings.append(
            ValidationWarning(
                type="train_test_divergence",
                severity="high" if sharpe_ratio < 0.2 else "medium",
                message=f"Test Sharpe is only {sharpe_ratio:.1%} of train Sharpe",
                details={
                    "train_sharpe": train.sharpe_ratio,
                    "test_sharpe": test.sharpe_ratio,
                    "ratio": sharpe_ratio,
                },
            )
        )

    # 3. Rough annualised return on a 1000 USDC bankroll
    annualized = train.total_pnl / 1000 * (365 / max(train_count, 1) * 0.5)
    if annualized > 2:
        warnings.append(
            ValidationWarning(
                type="unrealistic_returns",
                severity="high" if annualized > 5 else "medium",
                message=f"Estimated annualised return of {annualized:.0%} is unrealistic",
                details={"total_pnl": train.total_pnl, "estimated_annual_return": annualized},
            )
        )

    # 4. Too few out-of-sample trades
    if test_count < MIN_TEST_TRADES:
        warnings.append(
            ValidationWarning(
                type="low_trade_count",
                severity="high" if test_count < 10 else "medium",
                message=f"Only {test_count} test trades, not statistically significant",
                details={"test_count": test_count, "recommended_min": 30},
            )
        )

    return warnings


@dataclass(frozen=True)
class Distribution:
    mean: float = 0.0
    median: float = 0.0
    std_dev: float = 0.0
    percentile_5: float = 0.0
    percentile_25: float = 0.0
    percentile_75: float = 0.0
    percentile_95: float = 0.0

    @classmethod
    def from_values(cls, values: np.ndarray) -> "Distribution":
        ordered = np.sort(values)
        n = len(ordered)

        def pct(q: float) -> float:
            return float(ordered[min(n - 1, int(math.floor(n * q)))])

        return cls(
            mean=float(ordered.mean()),
            median=float(np.median(ordered)),
            std_dev=float(ordered.std(ddof=1)) if n > 1 else 0.0,
            percentile_5=pct(0.05),
            percentile_25=pct(0.25),
            percentile_75=pct(0.75),
            percentile_95=pct(0.95),
        )


@dataclass(frozen=True)
class MonteCarloResult:
    simulations: int = 0
    pnl: Distribution = field(default_factory=Distribution)
    win_rate: Distribution = field(default_factory=Distribution)
    max_drawdown: Distribution = field(default_factory=Distribution)
    worst_drawdown: float = 0.0

    @property
    def ci95(self) -> tuple[float, float]:
        """
        (lower, upper) PnL bounds from the 5th and 95th percentiles.

        The name is kept for report compatibility; the range covers the
        central 90% of simulated outcomes.
        """
        return self.pnl.percentile_5, self.pnl.percentile_95

    def to_dict(self) -> dict[str, Any]:
        lower, upper = self.ci95
        return {
            "simulations": self.simulations,
            "pnl": asdict(self.pnl),
            "win_rate": asdict(self.win_rate),
            "max_drawdown": asdict(self.max_drawdown),
            "worst_drawdown": self.worst_drawdown,
            "ci95": {"pnl_lower": lower, "pnl_upper": upper},
        }


def run_monte_carlo(
    trades: list[BacktestTrade],
    simulations: int = 1000,
    initial_bankroll: float = 1000.0,
    seed: int | None = None,
) -> MonteCarloResult:
    """
    Bootstrap the completed trade PnLs ``simulations`` times.

    Each path draws len(completed) PnLs with replacement, so outcomes vary in
    total PnL and win rate as well as in drawdown.
    """
    done = completed(trades)
    if len(done) < MIN_MONTE_CARLO_TRADES:
        logger.warning(f"[BACKTEST] Only {len(done)} completed trades, Monte Carlo skipped")
        return MonteCarloResult()
    if simulations < 1:
        raise ValueError(f"simulations must be >= 1, got {simulations}")

    logger.info(f"[BACKTEST] Monte Carlo: {simulations} paths x {len(done)} trades")

    rng = np.random.default_rng(seed)
    pnls = np.array([t.pnl for t in done], dtype=float)
    paths = rng.choice(pnls, size=(simulations, len(pnls)), replace=True)

    equity = initial_bankroll + np.cumsum(paths, axis=1)
    equity = np.hstack([np.full((simulations, 1), initial_bankroll), equity])
    drawdowns = np.max(np.maximum.accumulate(equity, axis=1) - equity, axis=1)

    result = MonteCarloResult(
        simulations=simulations,
        pnl=Distribution.from_values(paths.sum(axis=1)),
        win_rate=Distribution.from_values((paths > 0).mean(axis=1)),
        max_drawdown=Distribution.from_values(drawdowns),
        worst_drawdown=float(drawdowns.max()),
    )

    lower, upper = result.ci95
    logger.info(f"[BACKTEST] Monte Carlo PnL 95% CI: {lower:.2f} .. {upper:.2f}")
    logger.info(
        f"[BACKTEST]   Median PnL ${result.pnl.median:.2f}, worst drawdown ${result.worst_drawdown:.2f}"
    )
    return result


@dataclass(frozen=True)
class RobustnessResult:
    is_robust: bool
    score: int
    issues: list[str]
    recommendations: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def check_robustness(validation: ValidationResult, monte_carlo: MonteCarloResult) -> RobustnessResult:
    issues: list[str] = []
    recommendations: list[str] = []
    score = 100

    high = validation.count("high")
    medium = validation.count("medium")

    if high:
        score -= high * 20
        issues.append(f"{high} high-severity overfitting warnings")
        recommendations.append("Simplify strategy parameters or collect more data")
    if medium:
        score -= medium * 10
        issues.append(f"{medium} medium-severity overfitting warnings")

    if monte_carlo.simulations > 0:
        lower, _ = monte_carlo.ci95
        if lower < 0:
            score -= 25
            issues.append("95% confidence interval includes losses")
            recommendations.append("Variance is too high, reduce risk")

        cv = monte_carlo.pnl.std_dev / abs(monte_carlo.pnl.mean or 1)
        if cv > 1.5:
            score -= 15
            issues.append(f"High variance (CV: {cv:.2f})")

        if monte_carlo.worst_drawdown > monte_carlo.pnl.mean * 0.5:
            score -= 10
            issues.append("Worst-case drawdown exceeds half the expected profit")

    if validation.train_metrics.total_pnl > 0 and validation.test_metrics.total_pnl <= 0:
        score -= 30
        issues.append("Test period loses money despite a profitable train period")
        recommendations.append("Strategy does not hold out of sample, overfitting likely")

    score = max(0, min(100, score))
    return RobustnessResult(
        is_robust=score >= ROBUST_SCORE and high == 0,
        score=score,
        issues=issues,
        recommendations=recommendations,
    )
