"""
Configuration constants for the staged execution system.

This module defines core constants used throughout the application including:
- Execution modes and order lifecycle states
- Decision actions produced by the decision pipeline
- Error categories for venue failures
- Fixed numeric constants for sizing, execution and backtesting

Example:
    >>> from config.constants import EXECUTION_MODES, EXECUTION_STATUS
    >>> mode = EXECUTION_MODES.PAPER
    >>> assert EXECUTION_STATUS.PARTIAL.is_terminal is False
"""

from enum import Enum
from typing import Final

# Type aliases for better type safety
MarketId = str
TokenId = str


class EXECUTION_MODES(str, Enum):
    """
    Execution fidelity modes.

    Attributes:
        PAPER: Fully simulated fill, no external call
        SHADOW: Real quote when available, simulated fill, no capital moves
        LIVE: Real order on the venue
    """

    PAPER = "paper"
    SHADOW = "shadow"
    LIVE = "live"


class EXECUTION_STATUS(str, Enum):
    """
    Order lifecycle states.

    PENDING and PARTIAL are the only non-terminal states. PARTIAL may still
    move to FILLED (or be cancelled on timeout).
    """

    PENDING = "pending"
    PARTIAL = "partial"
    FILLED = "filled"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            EXECUTION_STATUS.FILLED,
            EXECUTION_STATUS.CANCELLED,
            EXECUTION_STATUS.FAILED,
        )


class DECISION_ACTIONS(str, Enum):
    """Classification of a sized, gate-checked decision."""

    SHOW = "show"
    WATCH = "watch"
    TRADE = "trade"
    HIGH_CONVICTION = "high_conviction"
    REJECT = "reject"


class DIRECTIONS(str, Enum):
    """Side of a binary market."""

    YES = "yes"
    NO = "no"


class ERROR_TYPES(str, Enum):
    """
    Venue failure categories.

    Only PRICE_MOVED, RATE_LIMITED and NETWORK_ERROR are retryable.
    """

    INSUFFICIENT_BALANCE = "insufficient_balance"
    MARKET_CLOSED = "market_closed"
    PRICE_MOVED = "price_moved"
    ORDER_NOT_FOUND = "order_not_found"
    RATE_LIMITED = "rate_limited"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"

    @property
    def is_retryable(self) -> bool:
        return self in RETRYABLE_ERROR_TYPES


RETRYABLE_ERROR_TYPES: Final[frozenset] = frozenset([
    ERROR_TYPES.PRICE_MOVED,
    ERROR_TYPES.RATE_LIMITED,
    ERROR_TYPES.NETWORK_ERROR,
])


class AUDIT_EVENTS(str, Enum):
    """Event types written to the append-only audit log."""

    FILL = "fill"
    OUTCOME = "outcome"
    KILL_SWITCH = "kill_switch"
    DAILY_RESET = "daily_reset"
    MODE_CHANGE = "mode_change"
    EXECUTION_FAILURE = "execution_failure"
    EXECUTION_SUCCESS = "execution_success"


# Binary contract price bounds
MIN_CONTRACT_PRICE: Final[float] = 0.01
MAX_CONTRACT_PRICE: Final[float] = 0.99

# Number of fixed-width calibration buckets over [0, 1)
CALIBRATION_BUCKETS: Final[int] = 10

# Calibration deviation beyond which a model is flagged over/under-confident
CALIBRATION_DEVIATION_THRESHOLD: Final[float] = 0.05

# Minimum bucket size considered when reporting the worst bucket
CALIBRATION_MIN_BUCKET_COUNT: Final[int] = 3

# UTC date format used for daily reset detection
UTC_DATE_FORMAT: Final[str] = "%Y-%m-%d"

# Default random seed for Monte Carlo resampling
DEFAULT_SEED: Final[int] = 42
