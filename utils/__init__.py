"""
Utility modules shared by execution and backtesting.

Public API:
    - ensure_finite: Replace NaN/Inf with a default and log it
    - clamp, clamp_probability, clamp_contract_price: Range guards
    - validate_size, validate_pnl: Guards for values written to risk state
"""

from utils.numerical_validation import (
    clamp,
    clamp_contract_price,
    clamp_probability,
    ensure_finite,
    validate_pnl,
    validate_size,
)

__all__ = [
    "ensure_finite",
    "clamp",
    "clamp_probability",
    "clamp_contract_price",
    "validate_size",
    "validate_pnl",
]
