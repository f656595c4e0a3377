"""
Backtest engine.

Loads resolved markets closed within a period, simulates one candidate trade
per market through the live sizer and risk gates, then computes metrics,
calibration and (optionally) walk-forward and Monte Carlo validation.

Markets are independent, so they are simulated concurrently in the default
executor. Trades are returned in decision-time order.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from config.settings import BacktestConfig, RiskLimitsConfig, SizingConfig
from execution.models import BacktestTrade, CalibrationBucket
from execution.position_sizer import KellyPositionSizer
from backtest.calibration import calculate_calibration_buckets
from backtest.historical_store import HistoricalDataStore, HistoricalMarket
from backtest.metrics import BacktestMetrics, calculate_metrics
from backtest.signals import MomentumSignalSource, SignalSource
from backtest.simulator import SimulatorConfig, TradeSimulator
from backtest.validation import (
    MonteCarloResult,
    RobustnessResult,
    ValidationResult,
    check_robustness,
    run_monte_carlo,
    walk_forward_validation,
)

logger = logging.getLogger(__name__)

SECTION_RULE = "=" * 63


@dataclass
class BacktestOptions:
    from_date: datetime
    to_date: datetime
    initial_bankroll: float = 1000.0
    slippage_enabled: bool = True
    fees_percent: float = 0.001
    fill_window: int = 10
    enable_validation: bool = True
    train_test_split: float = 0.7
    enable_monte_carlo: bool = True
    monte_carlo_simulations: int = 1000
    min_trades_for_validation: int = 10
    min_edge: float = 0.02
    seed: int | None = None
    verbose: bool = False

    def __post_init__(self):
        if self.to_date < self.from_date:
            raise ValueError(f"to_date ({self.to_date}) is before from_date ({self.from_date})")

    @classmethod
    def from_config(
        cls,
        config: BacktestConfig,
        from_date: datetime,
        to_date: datetime,
        seed: int | None = None,
    ) -> "BacktestOptions":
        return cls(
            from_date=from_date,
            to_date=to_date,
            initial_bankroll=config.initial_bankroll,
            slippage_enabled=config.slippage_enabled,
            fees_percent=config.fees_percent,
            fill_window=config.fill_window,
            enable_validation=config.enable_validation,
            train_test_split=config.train_test_split,
            enable_monte_carlo=config.enable_monte_carlo,
            monte_carlo_simulations=config.monte_carlo_simulations,
            min_trades_for_validation=config.min_trades_for_validation,
            min_edge=config.min_edge,
            seed=seed,
        )

    @property
    def period_days(self) -> float:
        return max(1.0, (self.to_date - self.from_date).total_seconds() / 86400)


@dataclass
class BacktestResult:
    period: tuple[datetime, datetime]
    trades: list[BacktestTrade]
    metrics: BacktestMetrics
    calibration: list[CalibrationBucket]
    initial_bankroll: float = 1000.0
    validation: ValidationResult | None = None
    monte_carlo: MonteCarloResult | None = None
    robustness: RobustnessResult | None = None
    markets_evaluated: int = 0


def _section(title: str) -> None:
    logger.info(SECTION_RULE)
    logger.info(title)
    logger.info(SECTION_RULE)


def _simulate_one(
    simulator: TradeSimulator,
    store: HistoricalDataStore,
    market: HistoricalMarket,
    source: SignalSource,
) -> BacktestTrade | None:
    ticks = [t.to_tick() for t in store.get_trades_by_market(market.market_id)]
    if not ticks:
        return None
    return simulator.simulate_market(
        market.market_id, ticks, market.resolution, source, closed_at=market.closed_at
    )


async def simulate_markets(
    store: HistoricalDataStore,
    markets: list[HistoricalMarket],
    simulator: TradeSimulator,
    source: SignalSource,
) -> list[BacktestTrade]:
    """Simulate every market concurrently; trades sorted by decision time."""
    loop = asyncio.get_running_loop()
    results = await asyncio.gather(
        *(
            loop.run_in_executor(None, _simulate_one, simulator, store, market, source)
            for market in markets
        )
    )
    trades = [t for t in results if t is not None]
    trades.sort(key=lambda t: (t.created_at, t.market_id))
    return trades


async def run_backtest(
    store: HistoricalDataStore,
    options: BacktestOptions,
    sizer: KellyPositionSizer | None = None,
    limits: RiskLimitsConfig | None = None,
    source: SignalSource | None = None,
) -> BacktestResult:
    """
    Run a backtest over markets resolved within the options' period.

    Args:
        store: Historical data repository
        options: Period, bankroll and validation switches
        sizer: Position sizer (defaults built from SizingConfig)
        limits: Risk limits for gating (defaults from RiskLimitsConfig)
        source: Candidate signal source (defaults to MomentumSignalSource)
    """
    limits = limits or RiskLimitsConfig()
    sizer = sizer or KellyPositionSizer.from_config(SizingConfig(), max_per_market=limits.max_per_market)
    source = source or MomentumSignalSource(min_edge=options.min_edge)

    logger.info(
        f"[BACKTEST] Starting: {options.from_date.date()} to {options.to_date.date()}, "
        f"bankroll=${options.initial_bankroll:.2f}, "
        f"validation={'on' if options.enable_validation else 'off'}, "
        f"monte_carlo={options.monte_carlo_simulations if options.enable_monte_carlo else 'off'}"
    )

    stats = store.get_stats()
    logger.info(
        f"[DATA] Historical data: {stats['trade_count']} trades, "
        f"{stats['market_count']} markets, {stats['resolved_count']} resolved"
    )
    if stats["resolved_count"] == 0:
        logger.warning("[BACKTEST] No resolved markets in store, result will be empty")

    markets = store.get_resolved_markets(options.from_date, options.to_date)
    logger.info(f"[BACKTEST] {len(markets)} resolved markets in period")

    simulator = TradeSimulator(
        sizer,
        limits=limits,
        config=SimulatorConfig(
            initial_bankroll=options.initial_bankroll,
            slippage_enabled=options.slippage_enabled,
            fees_percent=options.fees_percent,
            fill_window=options.fill_window,
        ),
    )
    trades = await simulate_markets(store, markets, simulator, source)

    metrics = calculate_metrics(trades, options.initial_bankroll, options.period_days)
    calibration = calculate_calibration_buckets(trades)

    result = BacktestResult(
        period=(options.from_date, options.to_date),
        trades=trades,
        metrics=metrics,
        calibration=calibration,
        initial_bankroll=options.initial_bankroll,
        markets_evaluated=len(markets),
    )

    enough = len(trades) >= options.min_trades_for_validation
    if options.enable_validation and enough:
        _section("WALK-FORWARD VALIDATION")
        result.validation = walk_forward_validation(trades, options.train_test_split)

    if options.enable_monte_carlo and enough:
        _section("MONTE CARLO SIMULATION")
        result.monte_carlo = run_monte_carlo(
            trades,
            simulations=options.monte_carlo_simulations,
            initial_bankroll=options.initial_bankroll,
            seed=options.seed,
        )

    if result.validation is not None and result.monte_carlo is not None:
        _section("ROBUSTNESS CHECK")
        robustness = check_robustness(result.validation, result.monte_carlo)
        result.robustness = robustness
        logger.info(
            f"[BACKTEST] Robustness score: {robustness.score}/100 "
            f"({'ROBUST' if robustness.is_robust else 'NOT ROBUST'})"
        )
        for issue in robustness.issues:
            logger.warning(f"[BACKTEST]   - {issue}")
        for rec in robustness.recommendations:
            logger.info(f"[BACKTEST]   > {rec}")

    logger.info(
        f"[BACKTEST] Complete: {len(trades)} trades, PnL=${metrics.total_pnl:.2f}, "
        f"win rate={metrics.win_rate:.1%}"
    )
    return result
