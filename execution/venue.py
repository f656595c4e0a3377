"""
Venue boundary and error taxonomy.

The controller talks to an exchange only through ``VenueClient``. Any
exception raised by a client is classified into ``ERROR_TYPES`` so retry
policy is decided in one place.
"""

import asyncio
import logging
from typing import Protocol, runtime_checkable

from config.constants import DIRECTIONS, ERROR_TYPES
from execution.models import OrderStatusResult, Quote

logger = logging.getLogger(__name__)


class ExecutionError(Exception):
    """Base class for execution errors."""


class LiveModeNoCredentialsError(ExecutionError):
    """Live mode requested but signer, provider or funding-token contract is missing."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(
            f"Live mode requires credentials; missing: {', '.join(self.missing) or 'unknown'}"
        )


class VenueError(ExecutionError):
    """A classified venue or transport failure."""

    def __init__(
        self,
        message: str,
        error_type: ERROR_TYPES = ERROR_TYPES.UNKNOWN,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.retryable = error_type.is_retryable if retryable is None else retryable


# Checked in order; the first group with a matching keyword wins.
_KEYWORD_RULES: tuple[tuple[tuple[str, ...], ERROR_TYPES], ...] = (
    (("insufficient", "balance", "not enough"), ERROR_TYPES.INSUFFICIENT_BALANCE),
    (("closed", "not active", "market not found"), ERROR_TYPES.MARKET_CLOSED),
    (("price", "slippage", "stale"), ERROR_TYPES.PRICE_MOVED),
    (("not found", "order"), ERROR_TYPES.ORDER_NOT_FOUND),
    (("rate", "limit", "429", "too many"), ERROR_TYPES.RATE_LIMITED),
    (("network", "timeout", "econnreset", "socket"), ERROR_TYPES.NETWORK_ERROR),
)


def classify_error(exc: BaseException) -> VenueError:
    """
    Map any exception onto a VenueError.

    A VenueError is returned unchanged. Timeouts and connection errors are
    network errors regardless of their message.
    """
    if isinstance(exc, VenueError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return VenueError(str(exc) or type(exc).__name__, ERROR_TYPES.NETWORK_ERROR)

    message = str(exc)
    lowered = message.lower()
    for keywords, error_type in _KEYWORD_RULES:
        if any(keyword in lowered for keyword in keywords):
            return VenueError(message, error_type)
    return VenueError(message or type(exc).__name__, ERROR_TYPES.UNKNOWN)


@runtime_checkable
class VenueClient(Protocol):
    """Minimal exchange surface used by live and shadow execution."""

    def has_credentials(self) -> bool:
        ...

    def missing_credentials(self) -> list[str]:
        ...

    async def get_balance(self) -> float:
        ...

    async def resolve_token_id(self, market_id: str, direction: DIRECTIONS) -> str:
        ...

    async def get_quote(self, token_id: str) -> Quote:
        ...

    async def submit_order(self, token_id: str, side: str, price: float, size: float) -> str:
        ...

    async def get_order_status(self, order_id: str) -> OrderStatusResult | None:
        ...

    async def cancel_order(self, order_id: str) -> bool:
        ...


class CredentialSet:
    """
    Credential presence check shared by concrete clients.

    Live trading needs a signer (wallet), a network handle (provider) and
    the funding-token contract.
    """

    REQUIRED = ("wallet", "provider", "usdc_contract")

    def __init__(self, wallet: object = None, provider: object = None, usdc_contract: object = None):
        self.wallet = wallet
        self.provider = provider
        self.usdc_contract = usdc_contract

    def missing(self) -> list[str]:
        return [name for name in self.REQUIRED if getattr(self, name) is None]

    def complete(self) -> bool:
        return not self.missing()
