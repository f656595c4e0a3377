#!/usr/bin/env python3
"""
Backtest CLI.

Replays stored historical markets through the sizer and risk gates and
writes Markdown/JSON reports.

Usage:
    python scripts/backtest.py import --trades data/trades.csv --markets data/markets.csv
    python scripts/backtest.py stats
    python scripts/backtest.py run --from 2024-01-01 --to 2024-06-30 --output reports/
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd
from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

load_dotenv()

from config.logging_config import setup_logging
from config.settings import load_settings
from execution.position_sizer import KellyPositionSizer
from backtest.engine import BacktestOptions, run_backtest
from backtest.historical_store import HistoricalDataStore, markets_from_frame, trades_from_frame
from backtest.report import generate_console_output, save_reports

logger = logging.getLogger(__name__)


def parse_date(value: str) -> datetime:
    """YYYY-MM-DD (or full ISO) as an aware UTC datetime."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid date: {value}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def cmd_import(args, store: HistoricalDataStore) -> int:
    if args.markets:
        markets = markets_from_frame(pd.read_csv(args.markets))
        store.bulk_insert_markets(markets)
    if args.trades:
        trades = trades_from_frame(pd.read_csv(args.trades))
        store.bulk_insert_trades(trades)
    return 0


def cmd_stats(args, store: HistoricalDataStore) -> int:
    stats = store.get_stats()
    date_range = stats["date_range"]
    print(f"Trades:   {stats['trade_count']}")
    print(f"Markets:  {stats['market_count']} ({stats['resolved_count']} resolved)")
    print(f"Range:    {date_range['from'] or '-'} .. {date_range['to'] or '-'}")
    return 0


async def cmd_run(args, store: HistoricalDataStore, settings) -> int:
    config = settings.backtest
    options = BacktestOptions.from_config(config, args.from_date, args.to_date, seed=settings.seed)
    if args.bankroll is not None:
        options.initial_bankroll = args.bankroll
    if args.no_slippage:
        options.slippage_enabled = False
    if args.no_validation:
        options.enable_validation = False
    if args.no_monte_carlo:
        options.enable_monte_carlo = False
    if args.simulations is not None:
        options.monte_carlo_simulations = args.simulations

    sizer = KellyPositionSizer.from_config(
        settings.sizing, max_per_market=settings.risk_limits.max_per_market
    )
    result = await run_backtest(store, options, sizer=sizer, limits=settings.risk_limits)

    print(generate_console_output(result))
    output_dir = Path(args.output or settings.storage.report_dir)
    paths = save_reports(result, output_dir)
    print(f"Reports: {paths['markdown']}, {paths['json']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Backtest the sizing and risk pipeline")
    parser.add_argument("--db", help="Historical database (default: settings.storage.historical_db)")
    parser.add_argument("--log-level", default=None, help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="Import trade/market CSV exports")
    p_import.add_argument("--trades", help="Trades CSV")
    p_import.add_argument("--markets", help="Markets CSV")

    sub.add_parser("stats", help="Show historical data statistics")

    p_run = sub.add_parser("run", help="Run a backtest")
    p_run.add_argument("--from", dest="from_date", type=parse_date, required=True, help="Start date")
    p_run.add_argument("--to", dest="to_date", type=parse_date, required=True, help="End date")
    p_run.add_argument("--bankroll", type=float, default=None, help="Initial bankroll (USDC)")
    p_run.add_argument("--simulations", type=int, default=None, help="Monte Carlo runs")
    p_run.add_argument("--no-slippage", action="store_true", help="Disable slippage model")
    p_run.add_argument("--no-validation", action="store_true", help="Skip walk-forward validation")
    p_run.add_argument("--no-monte-carlo", action="store_true", help="Skip Monte Carlo")
    p_run.add_argument("--output", help="Report directory (default: settings.storage.report_dir)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    setup_logging(
        level=args.log_level or settings.log_level,
        json_format=settings.log_json,
        script_name="backtest",
    )

    db_path = Path(args.db or settings.storage.historical_db)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = HistoricalDataStore(db_path)
    try:
        if args.command == "import":
            return cmd_import(args, store)
        elif args.command == "stats":
            return cmd_stats(args, store)
        elif args.command == "run":
            return asyncio.run(cmd_run(args, store, settings))
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        store.close()


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
