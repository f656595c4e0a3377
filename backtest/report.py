"""
Backtest report generation: Markdown, JSON and console text.

Reports are built from a BacktestResult only; nothing is recomputed from
the database.
"""

import json
import logging
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np

from backtest.calibration import (
    analyze_calibration,
    calculate_ece,
    format_bucket,
    interpret_brier_score,
    interpret_ece,
    reliability_diagram_data,
)
from backtest.engine import BacktestResult
from backtest.metrics import trades_to_frame

logger = logging.getLogger(__name__)

TOP_N = 10


def _money(value: float) -> str:
    return f"-${abs(value):,.2f}" if value < 0 else f"${value:,.2f}"


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def _ratio(value: float) -> str:
    return "Inf" if math.isinf(value) else f"{value:.2f}"


def _json_safe(obj: Any) -> Any:
    """Replace non-finite floats with None; JSON has no infinity."""
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, dict):
        return {k: _json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_json_safe(v) for v in obj]
    return obj


def _period_days(result: BacktestResult) -> int:
    start, end = result.period
    return max(0, round((end - start).total_seconds() / 86400))


def _edge_summary(result: BacktestResult) -> dict[str, float]:
    with_edge = [t for t in result.trades if t.actual_edge is not None]
    return {
        "avg_predicted_edge": float(np.mean([t.predicted_edge for t in with_edge])) if with_edge else 0.0,
        "avg_actual_edge": float(np.mean([t.actual_edge for t in with_edge])) if with_edge else 0.0,
        "edge_capture_rate": result.metrics.avg_edge_capture,
        "avg_slippage": result.metrics.avg_slippage,
    }


def _ranked_trades(result: BacktestResult) -> tuple[list[dict], list[dict]]:
    """(best, worst) completed trades by PnL, at most TOP_N each."""
    frame = trades_to_frame(result.trades)
    frame = frame[frame["pnl"].notna()]
    if frame.empty:
        return [], []
    ordered = frame.sort_values("pnl", ascending=False, kind="stable")
    best = ordered.head(TOP_N).to_dict("records")
    worst = ordered.tail(TOP_N).iloc[::-1].to_dict("records")
    return best, worst


def _trade_rows(rows: list[dict]) -> list[str]:
    lines = [
        "| Market | Direction | Entry | PnL | Pred. Edge | Act. Edge |",
        "|--------|-----------|-------|-----|------------|-----------|",
    ]
    for row in rows:
        actual = row["actual_edge"]
        lines.append(
            f"| {row['market_id'][:12]}... | {str(row['direction']).upper()} | "
            f"{row['entry_price']:.3f} | {_money(row['pnl'])} | {_pct(row['predicted_edge'])} | "
            f"{'N/A' if actual is None or math.isnan(actual) else _pct(actual)} |"
        )
    return lines


def generate_markdown_report(result: BacktestResult, generated_at: datetime | None = None) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    start, end = result.period
    m = result.metrics
    edge = _edge_summary(result)
    ece = calculate_ece(result.calibration)
    analysis = analyze_calibration(result.calibration)

    lines = [
        "# Backtest Report",
        "",
        f"**Generated:** {generated_at.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}",
        "",
        "## Summary",
        "",
        "| Parameter | Value |",
        "|-----------|-------|",
        f"| Period | {start.date()} to {end.date()} |",
        f"| Days | {_period_days(result)} |",
        f"| Markets evaluated | {result.markets_evaluated} |",
        f"| Trades | {m.trade_count} |",
        f"| Initial bankroll | {_money(result.initial_bankroll)} |",
        "",
        "## Performance",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Total PnL | {_money(m.total_pnl)} |",
        f"| Win Rate | {_pct(m.win_rate)} |",
        f"| Max Drawdown | {_money(m.max_drawdown)} |",
        f"| Sharpe Ratio | {_ratio(m.sharpe_ratio)} |",
        f"| Profit Factor | {_ratio(m.profit_factor)} |",
        f"| Avg Win | {_money(m.avg_win)} |",
        f"| Avg Loss | {_money(m.avg_loss)} |",
        f"| Calmar Ratio | {_ratio(m.calmar_ratio)} |",
        "",
        "## Edge",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Avg Predicted Edge | {_pct(edge['avg_predicted_edge'])} |",
        f"| Avg Actual Edge | {_pct(edge['avg_actual_edge'])} |",
        f"| Edge Capture Rate | {_pct(edge['edge_capture_rate'])} |",
        f"| Avg Slippage | {_pct(edge['avg_slippage'])} |",
        "",
        "## Calibration",
        "",
        "| Metric | Value | Interpretation |",
        "|--------|-------|----------------|",
        f"| Brier Score | {m.brier_score:.3f} | {interpret_brier_score(m.brier_score)} |",
        f"| ECE | {ece:.3f} | {interpret_ece(ece)} |",
        "",
        f"- **Overconfident:** {'yes' if analysis.is_overconfident else 'no'}",
        f"- **Underconfident:** {'yes' if analysis.is_underconfident else 'no'}",
        f"- **Avg deviation:** {_pct(analysis.avg_deviation)}",
        f"- **Recommendation:** {analysis.recommendation}",
        "",
    ]

    if result.calibration:
        lines += [
            "### Reliability Buckets",
            "",
            "| Bucket | Predicted | Actual | Deviation | Count |",
            "|--------|-----------|--------|-----------|-------|",
        ]
        for b in result.calibration:
            lo, hi = b.range
            sign = "+" if b.deviation >= 0 else ""
            lines.append(
                f"| {lo:.0%}-{hi:.0%} | {_pct(b.predicted_avg)} | {_pct(b.actual_avg)} | "
                f"{sign}{_pct(b.deviation)} | {b.count} |"
            )
        lines.append("")

    if result.robustness is not None:
        r = result.robustness
        lines += [
            "## Robustness",
            "",
            f"**Score:** {r.score}/100 ({'robust' if r.is_robust else 'not robust'})",
            "",
        ]
        lines += [f"- {issue}" for issue in r.issues]
        lines += [f"- _{rec}_" for rec in r.recommendations]
        lines.append("")

    best, worst = _ranked_trades(result)
    lines += [f"## Top {TOP_N} Trades (by PnL)", ""] + _trade_rows(best) + [""]
    lines += [f"## Worst {TOP_N} Trades (by PnL)", ""] + _trade_rows(worst) + [""]

    return "\n".join(lines)


def build_json_report(result: BacktestResult, generated_at: datetime | None = None) -> dict[str, Any]:
    generated_at = generated_at or datetime.now(timezone.utc)
    start, end = result.period
    m = result.metrics
    edge = _edge_summary(result)
    ece = calculate_ece(result.calibration)
    analysis = analyze_calibration(result.calibration)

    report: dict[str, Any] = {
        "generatedAt": generated_at.isoformat(),
        "period": {"from": start.isoformat(), "to": end.isoformat(), "days": _period_days(result)},
        "summary": {
            "tradeCount": m.trade_count,
            "marketsEvaluated": result.markets_evaluated,
            "totalPnl": m.total_pnl,
            "winRate": m.win_rate,
            "maxDrawdown": m.max_drawdown,
            "sharpeRatio": m.sharpe_ratio,
            "profitFactor": m.profit_factor,
            "avgWin": m.avg_win,
            "avgLoss": m.avg_loss,
            "calmarRatio": m.calmar_ratio,
        },
        "edge": {
            "avgPredictedEdge": edge["avg_predicted_edge"],
            "avgActualEdge": edge["avg_actual_edge"],
            "edgeCaptureRate": edge["edge_capture_rate"],
            "avgSlippage": edge["avg_slippage"],
        },
        "calibration": {
            "brierScore": m.brier_score,
            "brierInterpretation": interpret_brier_score(m.brier_score),
            "ece": ece,
            "eceInterpretation": interpret_ece(ece),
            "isOverconfident": analysis.is_overconfident,
            "isUnderconfident": analysis.is_underconfident,
            "avgDeviation": analysis.avg_deviation,
            "recommendation": analysis.recommendation,
            "buckets": [b.to_dict() for b in result.calibration],
            "reliabilityDiagram": reliability_diagram_data(result.calibration),
        },
        "trades": [t.to_dict() for t in result.trades],
    }
    if result.validation is not None:
        report["validation"] = result.validation.to_dict()
    if result.monte_carlo is not None:
        report["monteCarlo"] = result.monte_carlo.to_dict()
    if result.robustness is not None:
        report["robustness"] = result.robustness.to_dict()
    return _json_safe(report)


def generate_json_report(result: BacktestResult, generated_at: datetime | None = None) -> str:
    return json.dumps(build_json_report(result, generated_at), indent=2, default=str, allow_nan=False)


def generate_console_output(result: BacktestResult) -> str:
    start, end = result.period
    m = result.metrics
    edge = _edge_summary(result)
    ece = calculate_ece(result.calibration)
    analysis = analyze_calibration(result.calibration)
    rule = "=" * 50

    lines = [
        "",
        "  BACKTEST RESULT",
        rule,
        f"  Period:     {start.date()} to {end.date()}",
        f"  Markets:    {result.markets_evaluated}",
        f"  Trades:     {m.trade_count}",
        rule,
        "",
        "  PERFORMANCE",
        f"     Total PnL:     {_money(m.total_pnl)}",
        f"     Win Rate:      {_pct(m.win_rate)}",
        f"     Max Drawdown:  {_money(m.max_drawdown)}",
        f"     Sharpe Ratio:  {_ratio(m.sharpe_ratio)}",
        f"     Profit Factor: {_ratio(m.profit_factor)}",
        "",
        "  EDGE",
        f"     Avg Predicted: {_pct(edge['avg_predicted_edge'])}",
        f"     Avg Actual:    {_pct(edge['avg_actual_edge'])}",
        f"     Capture Rate:  {_pct(edge['edge_capture_rate'])}",
        f"     Avg Slippage:  {_pct(edge['avg_slippage'])}",
        "",
        "  CALIBRATION",
        f"     Brier Score:   {m.brier_score:.3f} ({interpret_brier_score(m.brier_score)})",
        f"     ECE:           {ece:.3f} ({interpret_ece(ece)})",
        f"     {analysis.recommendation}",
    ]
    if result.calibration:
        lines.append("")
        lines += [f"     {format_bucket(b)}" for b in result.calibration]

    if result.validation is not None:
        v = result.validation
        lines += [
            "",
            "  WALK-FORWARD",
            f"     Train: {len(v.train_trades)} trades, PnL {_money(v.train_metrics.total_pnl)}, "
            f"win rate {_pct(v.train_metrics.win_rate)}",
            f"     Test:  {len(v.test_trades)} trades, PnL {_money(v.test_metrics.total_pnl)}, "
            f"win rate {_pct(v.test_metrics.win_rate)}",
        ]
        lines += [f"     [{w.severity.upper()}] {w.message}" for w in v.warnings]

    if result.monte_carlo is not None and result.monte_carlo.simulations > 0:
        mc = result.monte_carlo
        lower, upper = mc.ci95
        lines += [
            "",
            "  MONTE CARLO",
            f"     Simulations:   {mc.simulations}",
            f"     PnL 95% CI:    {_money(lower)} .. {_money(upper)}",
            f"     Median PnL:    {_money(mc.pnl.median)}",
            f"     Worst DD:      {_money(mc.worst_drawdown)}",
        ]

    if result.robustness is not None:
        r = result.robustness
        lines += [
            "",
            f"  ROBUSTNESS: {r.score}/100 ({'ROBUST' if r.is_robust else 'NOT ROBUST'})",
        ]
        lines += [f"     - {issue}" for issue in r.issues]

    lines += [rule, ""]
    return "\n".join(lines)


def save_reports(
    result: BacktestResult,
    output_dir: str | Path,
    generated_at: datetime | None = None,
) -> dict[str, Path]:
    """Write ``backtest-<timestamp>.json`` and ``.md``; returns both paths."""
    generated_at = generated_at or datetime.now(timezone.utc)
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    stamp = generated_at.strftime("%Y-%m-%dT%H-%M-%S")
    json_path = out / f"backtest-{stamp}.json"
    md_path = out / f"backtest-{stamp}.md"

    json_path.write_text(generate_json_report(result, generated_at), encoding="utf-8")
    md_path.write_text(generate_markdown_report(result, generated_at), encoding="utf-8")

    logger.info(f"[BACKTEST] Reports saved: {json_path}, {md_path}")
    return {"json": json_path, "markdown": md_path}
