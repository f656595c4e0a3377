"""
Historical replay of the sizing and risk-gating pipeline.

Modules:
    - historical_store: SQLite repository of historical trades and markets
    - signals: Look-ahead-free candidate signals (MomentumSignalSource)
    - simulator: TradeSimulator (VWAP fill, slippage, settlement)
    - metrics: PnL, win rate, drawdown, Sharpe, profit factor, Calmar
    - calibration: Brier score, reliability buckets, ECE
    - validation: Walk-forward split, Monte Carlo bootstrap, robustness score
    - engine: run_backtest orchestration
    - report: Markdown, JSON and console reports

Example:
    >>> import asyncio
    >>> from datetime import datetime, timezone
    >>> from backtest.engine import BacktestOptions, run_backtest
    >>> from backtest.historical_store import HistoricalDataStore
    >>> from backtest.report import save_reports
    >>>
    >>> store = HistoricalDataStore("data/historical.db")
    >>> options = BacktestOptions(
    ...     from_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
    ...     to_date=datetime(2024, 6, 30, tzinfo=timezone.utc),
    ... )
    >>> result = asyncio.run(run_backtest(store, options))
    >>> save_reports(result, "reports")
"""
