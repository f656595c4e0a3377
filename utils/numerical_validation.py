"""
Numerical guards for values that feed risk state and reports.

PnL, exposure and sizing values pass through these helpers before they are
persisted or compared against limits, so a NaN/Inf never silently disables
a risk gate.
"""

import logging
import math
from typing import Any, Union

from config.constants import MAX_CONTRACT_PRICE, MIN_CONTRACT_PRICE

logger = logging.getLogger(__name__)

Numeric = Union[float, int]


def ensure_finite(
    value: Any,
    name: str,
    default: Numeric = 0.0,
    log_level: int = logging.WARNING,
) -> Numeric:
    """
    Return ``value`` if it is a finite number, otherwise ``default``.

    Args:
        value: Candidate numeric value.
        name: Variable name used in the log message.
        default: Replacement for non-numeric or non-finite input.
        log_level: Level used when a replacement happens.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.log(log_level, f"Non-numeric value for {name}: {type(value).__name__}. Using {default}")
        return default

    if not math.isfinite(value):
        logger.log(log_level, f"Non-finite value for {name}: {value}. Using {default}")
        return default

    return value


def clamp(value: Numeric, low: Numeric, high: Numeric) -> float:
    """Clamp into ``[low, high]``."""
    return float(max(low, min(high, value)))


def clamp_probability(prob: Numeric, name: str = "probability") -> float:
    """Finite probability clipped to [0, 1]."""
    return clamp(ensure_finite(prob, name, default=0.0), 0.0, 1.0)


def clamp_contract_price(price: Numeric, name: str = "price") -> float:
    """Binary contract price clipped to the tradable range."""
    return clamp(ensure_finite(price, name, default=0.5), MIN_CONTRACT_PRICE, MAX_CONTRACT_PRICE)


def validate_size(size: Numeric, max_size: float) -> float:
    """Order size is finite, non-negative and at most ``max_size``."""
    val = float(ensure_finite(size, "size_usdc", default=0.0))
    if val < 0:
        logger.warning(f"Negative size {val} clamped to 0.0")
        return 0.0
    if val > max_size:
        logger.warning(f"Size {val} exceeds limit {max_size}, clamped.")
        return float(max_size)
    return val


def validate_pnl(pnl: Numeric) -> float:
    """PnL is finite (non-finite values are treated as zero)."""
    return float(ensure_finite(pnl, "pnl", default=0.0))
