"""
Command-line scripts.

Scripts:
    - backtest.py: Run a backtest over stored historical data and write reports
    - risk_control.py: Inspect and operate the runtime risk state (kill switch,
      daily reset, audit log)
"""
