"""
Builders shared by the test modules.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from config.constants import DECISION_ACTIONS, DIRECTIONS, EXECUTION_STATUS
from execution.models import (
    BacktestTrade,
    Decision,
    OrderStatusResult,
    Quote,
    Rationale,
    RiskChecks,
    Tick,
)


class FixedClock:
    """Mutable clock for date-sensitive tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def all_passed_checks() -> RiskChecks:
    return RiskChecks(True, True, True, True, True, True)


def make_decision(
    market_id: str = "market-1",
    size: float = 25.0,
    direction: DIRECTIONS = DIRECTIONS.YES,
    checks: RiskChecks | None = None,
) -> Decision:
    return Decision(
        signal_id="sig-1",
        market_id=market_id,
        direction=direction,
        action=DECISION_ACTIONS.TRADE,
        size_usdc=size,
        risk_checks=checks or all_passed_checks(),
        rationale=Rationale(alpha_type="test", edge=0.1, confidence=0.7),
    )


def make_venue(
    balance: float = 1000.0,
    best_price: float = 0.5,
    status: EXECUTION_STATUS = EXECUTION_STATUS.FILLED,
    size_matched: float = 50.0,
) -> MagicMock:
    """AsyncMock-backed VenueClient that fills every order by default."""
    venue = MagicMock()
    venue.has_credentials.return_value = True
    venue.missing_credentials.return_value = []
    venue.get_balance = AsyncMock(return_value=balance)
    venue.resolve_token_id = AsyncMock(return_value="token-yes")
    venue.get_quote = AsyncMock(return_value=Quote(best_price=best_price, liquidity=10_000.0))
    venue.submit_order = AsyncMock(return_value="order-1")
    venue.get_order_status = AsyncMock(
        return_value=OrderStatusResult(
            order_id="order-1",
            status=status,
            size_matched=size_matched,
            original_size=50.0,
            price=best_price,
        )
    )
    venue.cancel_order = AsyncMock(return_value=True)
    return venue


def make_trade(
    pnl: float,
    size: float = 10.0,
    entry: float = 0.5,
    edge: float = 0.05,
    direction: DIRECTIONS = DIRECTIONS.YES,
    created_at: datetime | None = None,
    market_id: str = "m",
) -> BacktestTrade:
    won = pnl > 0
    return BacktestTrade(
        signal_id=f"sig-{market_id}",
        market_id=market_id,
        direction=direction,
        entry_price=entry,
        exit_price=1.0 if won else 0.0,
        size=size,
        pnl=pnl,
        predicted_edge=edge,
        actual_edge=(1 - entry) if won else -entry,
        slippage=0.005,
        created_at=created_at,
    )


def make_ticks(prices: list[float], start: datetime | None = None, size: float = 100.0) -> list[Tick]:
    start = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [Tick(start + timedelta(minutes=i), p, size) for i, p in enumerate(prices)]
