"""
Integration tests for the backtest engine against a temporary SQLite store.
"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from config.settings import BacktestConfig
from backtest.engine import BacktestOptions, run_backtest
from backtest.historical_store import (
    OUTCOME_NO,
    OUTCOME_YES,
    HistoricalDataStore,
    HistoricalMarket,
    HistoricalTrade,
)

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
# rising first half, flat after the decision tick
PRICES = [0.40] * 6 + [0.45] * 5 + [0.50] * 10


def _seed_market(store: HistoricalDataStore, index: int, outcome: str | None, closed_days: int = 10) -> None:
    market_id = f"market-{index:02d}"
    begin = START + timedelta(hours=index)
    store.bulk_insert_trades([
        HistoricalTrade(
            timestamp=begin + timedelta(minutes=i),
            market_id=market_id,
            price=price,
            usd_amount=100.0,
            tx_hash=f"{market_id}-{i}",
        )
        for i, price in enumerate(PRICES)
    ])
    store.insert_market(
        HistoricalMarket(
            market_id=market_id,
            question=f"Question {index}?",
            closed_at=START + timedelta(days=closed_days),
            outcome=outcome,
        )
    )


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = HistoricalDataStore(Path(tmpdir) / "historical.db")
        # 12 resolved markets, YES wins two out of three
        for i in range(12):
            _seed_market(store, i, OUTCOME_NO if i % 3 == 2 else OUTCOME_YES)
        _seed_market(store, 90, None)
        _seed_market(store, 91, OUTCOME_YES, closed_days=120)
        yield store
        store.close()


def _options(**overrides) -> BacktestOptions:
    values = dict(
        from_date=START,
        to_date=START + timedelta(days=30),
        monte_carlo_simulations=200,
        seed=42,
    )
    values.update(overrides)
    return BacktestOptions(**values)


class TestBacktestOptions:
    def test_reversed_period_rejected(self):
        with pytest.raises(ValueError):
            BacktestOptions(from_date=START, to_date=START - timedelta(days=1))

    def test_period_days(self):
        assert _options().period_days == pytest.approx(30.0)
        assert BacktestOptions(from_date=START, to_date=START).period_days == 1.0

    def test_from_config(self):
        config = BacktestConfig(initial_bankroll=500.0, enable_monte_carlo=False, fill_window=5)
        options = BacktestOptions.from_config(config, START, START + timedelta(days=1), seed=7)
        assert options.initial_bankroll == 500.0
        assert not options.enable_monte_carlo
        assert options.fill_window == 5
        assert options.seed == 7


class TestRunBacktest:
    @pytest.mark.asyncio
    async def test_full_run(self, store):
        result = await run_backtest(store, _options())

        # unresolved and out-of-period markets are excluded
        assert result.markets_evaluated == 12
        assert len(result.trades) == 12
        assert result.metrics.trade_count == 12
        assert result.metrics.win_rate == pytest.approx(8 / 12)
        assert result.calibration

        created = [t.created_at for t in result.trades]
        assert created == sorted(created)

        assert result.validation is not None
        assert len(result.validation.train_trades) == 8
        assert result.monte_carlo is not None
        assert result.monte_carlo.simulations == 200
        assert result.robustness is not None
        assert 0 <= result.robustness.score <= 100

    @pytest.mark.asyncio
    async def test_trades_use_live_sizer_limits(self, store):
        result = await run_backtest(store, _options(enable_validation=False, enable_monte_carlo=False))
        for trade in result.trades:
            assert 0 < trade.size <= 50.0
            assert trade.entry_price > 0.5
            assert trade.exit_price in (0.0, 1.0)

    @pytest.mark.asyncio
    async def test_seed_makes_monte_carlo_reproducible(self, store):
        first = await run_backtest(store, _options())
        second = await run_backtest(store, _options())
        assert first.monte_carlo == second.monte_carlo

    @pytest.mark.asyncio
    async def test_validation_switches(self, store):
        result = await run_backtest(store, _options(enable_validation=False, enable_monte_carlo=False))
        assert result.validation is None
        assert result.monte_carlo is None
        assert result.robustness is None

    @pytest.mark.asyncio
    async def test_too_few_trades_skips_validation(self, store):
        result = await run_backtest(store, _options(min_trades_for_validation=50))
        assert len(result.trades) == 12
        assert result.validation is None
        assert result.monte_carlo is None

    @pytest.mark.asyncio
    async def test_empty_period(self, store):
        result = await run_backtest(
            store, _options(from_date=START + timedelta(days=200), to_date=START + timedelta(days=210))
        )
        assert result.trades == []
        assert result.metrics.trade_count == 0
        assert result.calibration == []
        assert result.validation is None
