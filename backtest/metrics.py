"""
Backtest performance metrics.

All metrics are computed over completed trades (pnl is not None) in the
order given, which the engine guarantees is decision-time order.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any

import numpy as np
import pandas as pd

from execution.models import BacktestTrade
from backtest.calibration import calculate_brier_score

logger = logging.getLogger(__name__)

DEFAULT_BANKROLL = 1000.0


@dataclass(frozen=True)
class BacktestMetrics:
    total_pnl: float = 0.0
    trade_count: int = 0
    win_rate: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0
    brier_score: float = 0.25
    avg_edge_capture: float = 0.0
    avg_slippage: float = 0.0
    profit_factor: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    calmar_ratio: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def trades_to_frame(trades: list[BacktestTrade]) -> pd.DataFrame:
    """One row per trade, columns as in BacktestTrade.to_dict()."""
    columns = [
        "signal_id", "market_id", "direction", "entry_price", "exit_price", "size",
        "pnl", "predicted_edge", "actual_edge", "slippage", "created_at",
    ]
    if not trades:
        return pd.DataFrame(columns=columns)
    frame = pd.DataFrame([t.to_dict() for t in trades], columns=columns)
    for col in ("entry_price", "exit_price", "size", "pnl", "predicted_edge", "actual_edge", "slippage"):
        frame[col] = pd.to_numeric(frame[col], errors="coerce")
    return frame


def completed(trades: list[BacktestTrade]) -> list[BacktestTrade]:
    return [t for t in trades if t.pnl is not None]


def calculate_total_pnl(trades: list[BacktestTrade]) -> float:
    return float(sum(t.pnl for t in completed(trades)))


def calculate_win_rate(trades: list[BacktestTrade]) -> float:
    done = completed(trades)
    if not done:
        return 0.0
    return sum(1 for t in done if t.pnl > 0) / len(done)


def equity_curve(trades: list[BacktestTrade], initial_bankroll: float = DEFAULT_BANKROLL) -> np.ndarray:
    pnls = np.array([t.pnl for t in completed(trades)], dtype=float)
    return initial_bankroll + np.concatenate([[0.0], np.cumsum(pnls)])


def calculate_max_drawdown(trades: list[BacktestTrade], initial_bankroll: float = DEFAULT_BANKROLL) -> float:
    """Largest peak-to-trough fall of the equity curve, in USDC."""
    curve = equity_curve(trades, initial_bankroll)
    peaks = np.maximum.accumulate(curve)
    return float(np.max(peaks - curve))


def calculate_sharpe_ratio(trades: list[BacktestTrade]) -> float:
    """
    Per-trade Sharpe ratio of returns pnl/size, not annualised.

    Fewer than two returns gives 0. Zero dispersion gives inf for a positive
    mean and 0 otherwise.
    """
    returns = np.array([t.pnl / t.size for t in completed(trades) if t.size > 0], dtype=float)
    if len(returns) < 2:
        return 0.0
    mean = float(returns.mean())
    std = float(returns.std(ddof=1))
    if std == 0:
        return math.inf if mean > 0 else 0.0
    return mean / std


def calculate_edge_capture(trades: list[BacktestTrade]) -> float:
    """Average realised edge over average predicted edge."""
    with_edge = [t for t in trades if t.actual_edge is not None and t.predicted_edge > 0]
    if not with_edge:
        return 0.0
    avg_predicted = float(np.mean([t.predicted_edge for t in with_edge]))
    if avg_predicted == 0:
        return 0.0
    return float(np.mean([t.actual_edge for t in with_edge])) / avg_predicted


def calculate_avg_slippage(trades: list[BacktestTrade]) -> float:
    if not trades:
        return 0.0
    return float(np.mean([t.slippage for t in trades]))


def calculate_profit_factor(trades: list[BacktestTrade]) -> float:
    pnls = [t.pnl for t in completed(trades)]
    gross_profit = sum(p for p in pnls if p > 0)
    gross_loss = abs(sum(p for p in pnls if p < 0))
    if gross_loss == 0:
        return math.inf if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


def calculate_avg_win_loss(trades: list[BacktestTrade]) -> tuple[float, float]:
    pnls = [t.pnl for t in completed(trades)]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    return (
        float(np.mean(wins)) if wins else 0.0,
        float(np.mean(losses)) if losses else 0.0,
    )


def calculate_calmar_ratio(
    trades: list[BacktestTrade],
    initial_bankroll: float = DEFAULT_BANKROLL,
    period_days: float = 365.0,
) -> float:
    """Annualised return over max drawdown, both relative to the bankroll."""
    total = calculate_total_pnl(trades)
    drawdown = calculate_max_drawdown(trades, initial_bankroll)
    if drawdown == 0:
        return math.inf if total > 0 else 0.0
    annualised = (total / initial_bankroll) * (365.0 / max(period_days, 1.0))
    return annualised / (drawdown / initial_bankroll)


def calculate_metrics(
    trades: list[BacktestTrade],
    initial_bankroll: float = DEFAULT_BANKROLL,
    period_days: float = 365.0,
) -> BacktestMetrics:
    done = completed(trades)
    if not done:
        return BacktestMetrics()

    avg_win, avg_loss = calculate_avg_win_loss(trades)
    return BacktestMetrics(
        total_pnl=calculate_total_pnl(trades),
        trade_count=len(done),
        win_rate=calculate_win_rate(trades),
        max_drawdown=calculate_max_drawdown(trades, initial_bankroll),
        sharpe_ratio=calculate_sharpe_ratio(trades),
        brier_score=calculate_brier_score(trades),
        avg_edge_capture=calculate_edge_capture(trades),
        avg_slippage=calculate_avg_slippage(trades),
        profit_factor=calculate_profit_factor(trades),
        avg_win=avg_win,
        avg_loss=avg_loss,
        calmar_ratio=calculate_calmar_ratio(trades, initial_bankroll, period_days),
    )
