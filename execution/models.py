"""
Shared data model for sizing, risk gating, execution and backtesting.

The live pipeline and the backtest simulator exchange the same records:
a Decision is produced once per qualifying signal and never mutated; an
Execution tracks one Decision through the order lifecycle; BacktestTrade is
the offline analogue of an Execution plus its resolved outcome.
"""

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from config.constants import (
    DECISION_ACTIONS,
    DIRECTIONS,
    EXECUTION_MODES,
    EXECUTION_STATUS,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class InvalidTransitionError(ValueError):
    """Raised when an Execution would leave a terminal status or move backwards."""


@dataclass(frozen=True)
class MarketQuality:
    """
    Read-only market snapshot shared by sizing and risk gates.

    Attributes:
        liquidity: Visible liquidity in USDC
        spread: Bid/ask spread as a price fraction
        volatility_30d: 30 day realised volatility
        days_to_expiry: Days until the market resolves
    """

    liquidity: float
    spread: float
    volatility_30d: float
    days_to_expiry: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RiskChecks:
    """Six independent gate results. A Decision is tradeable only if all pass."""

    daily_loss_ok: bool
    max_positions_ok: bool
    per_market_cap_ok: bool
    liquidity_ok: bool
    spread_ok: bool
    kill_switch_ok: bool

    def all_passed(self) -> bool:
        return all(asdict(self).values())

    def failed_names(self) -> list[str]:
        return [name for name, ok in asdict(self).items() if not ok]

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass(frozen=True)
class Rationale:
    alpha_type: str
    edge: float
    confidence: float
    top_features: tuple[str, ...] = ()
    rejection_reasons: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "alpha_type": self.alpha_type,
            "edge": self.edge,
            "confidence": self.confidence,
            "top_features": list(self.top_features),
            "rejection_reasons": list(self.rejection_reasons),
        }


@dataclass(frozen=True)
class Decision:
    """
    A sized and gate-checked trading decision.

    Attributes:
        decision_id: Unique id
        signal_id: Id of the upstream signal
        market_id: Market the decision refers to
        direction: Side to buy
        action: Classification (trade, reject, ...)
        size_usdc: Stake in USDC (0 for rejected decisions)
        risk_checks: Gate results at decision time
        rationale: Edge, confidence and reasons
        created_at: Decision timestamp (UTC)
    """

    signal_id: str
    market_id: str
    direction: DIRECTIONS
    action: DECISION_ACTIONS
    size_usdc: float
    risk_checks: RiskChecks
    rationale: Rationale
    decision_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_tradeable(self) -> bool:
        return (
            self.action in (DECISION_ACTIONS.TRADE, DECISION_ACTIONS.HIGH_CONVICTION)
            and self.size_usdc > 0
            and self.risk_checks.all_passed()
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "signal_id": self.signal_id,
            "market_id": self.market_id,
            "direction": self.direction.value,
            "action": self.action.value,
            "size_usdc": self.size_usdc,
            "risk_checks": self.risk_checks.to_dict(),
            "rationale": self.rationale.to_dict(),
            "created_at": self.created_at.isoformat(),
        }


# Allowed lifecycle moves. Terminal states have no outgoing edges.
_TRANSITIONS: dict[EXECUTION_STATUS, frozenset] = {
    EXECUTION_STATUS.PENDING: frozenset([
        EXECUTION_STATUS.PARTIAL,
        EXECUTION_STATUS.FILLED,
        EXECUTION_STATUS.CANCELLED,
        EXECUTION_STATUS.FAILED,
    ]),
    EXECUTION_STATUS.PARTIAL: frozenset([
        EXECUTION_STATUS.PARTIAL,
        EXECUTION_STATUS.FILLED,
        EXECUTION_STATUS.CANCELLED,
        EXECUTION_STATUS.FAILED,
    ]),
    EXECUTION_STATUS.FILLED: frozenset(),
    EXECUTION_STATUS.CANCELLED: frozenset(),
    EXECUTION_STATUS.FAILED: frozenset(),
}


@dataclass
class Execution:
    """
    One Decision travelling through the order lifecycle.

    ``status`` only changes through ``transition``; fields describing the fill
    are set alongside the terminal transition.
    """

    decision_id: str
    mode: EXECUTION_MODES
    execution_id: str = field(default_factory=new_id)
    status: EXECUTION_STATUS = EXECUTION_STATUS.PENDING
    fill_price: float | None = None
    fill_size: float | None = None
    slippage: float | None = None
    fees: float | None = None
    tx_hash: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    filled_at: datetime | None = None
    error_type: str | None = None
    error: str | None = None
    attempts: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.status == EXECUTION_STATUS.FILLED

    def transition(self, new_status: EXECUTION_STATUS, **fields: Any) -> "Execution":
        """Move to ``new_status`` and set any fill fields in one step."""
        if new_status not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Execution {self.execution_id}: {self.status.value} -> {new_status.value} not allowed"
            )
        self.status = new_status
        for name, value in fields.items():
            if not hasattr(self, name):
                raise AttributeError(f"Execution has no field {name!r}")
            setattr(self, name, value)
        if new_status == EXECUTION_STATUS.FILLED and self.filled_at is None:
            self.filled_at = utc_now()
        return self

    def fail(self, error_type: str, error: str) -> "Execution":
        return self.transition(EXECUTION_STATUS.FAILED, error_type=error_type, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "decision_id": self.decision_id,
            "mode": self.mode.value,
            "status": self.status.value,
            "fill_price": self.fill_price,
            "fill_size": self.fill_size,
            "slippage": self.slippage,
            "fees": self.fees,
            "tx_hash": self.tx_hash,
            "created_at": self.created_at.isoformat(),
            "filled_at": self.filled_at.isoformat() if self.filled_at else None,
            "error_type": self.error_type,
            "error": self.error,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class Position:
    size: float
    entry_price: float
    direction: DIRECTIONS

    def to_dict(self) -> dict[str, Any]:
        return {"size": self.size, "entry_price": self.entry_price, "direction": self.direction.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Position":
        return cls(
            size=float(data["size"]),
            entry_price=float(data.get("entry_price", 0.0)),
            direction=DIRECTIONS(data.get("direction", DIRECTIONS.YES.value)),
        )


@dataclass(frozen=True)
class AuditLogEntry:
    """Append-only record of one risk state mutation."""

    event_type: str
    actor: str
    action: str
    timestamp: datetime = field(default_factory=utc_now)
    details: dict[str, Any] = field(default_factory=dict)
    market_id: str | None = None
    decision_id: str | None = None
    pnl_impact: float | None = None
    state_before: dict[str, Any] | None = None
    state_after: dict[str, Any] | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True)
class Quote:
    best_price: float
    liquidity: float
    token_id: str | None = None


@dataclass(frozen=True)
class OrderStatusResult:
    """Venue-reported order state, already mapped onto EXECUTION_STATUS."""

    order_id: str
    status: EXECUTION_STATUS
    size_matched: float
    original_size: float
    price: float

    @property
    def fill_fraction(self) -> float:
        if self.original_size <= 0:
            return 0.0
        return self.size_matched / self.original_size


@dataclass(frozen=True)
class Tick:
    """One historical trade print."""

    timestamp: datetime
    price: float
    size: float


@dataclass(frozen=True)
class BacktestTrade:
    """
    Offline analogue of Execution plus outcome. Immutable once simulated.

    ``pnl``/``actual_edge``/``exit_price`` are None until the market resolves.
    """

    signal_id: str
    market_id: str
    direction: DIRECTIONS
    entry_price: float
    exit_price: float | None
    size: float
    pnl: float | None
    predicted_edge: float
    actual_edge: float | None
    slippage: float
    created_at: datetime | None = None

    @property
    def is_resolved(self) -> bool:
        return self.pnl is not None

    def with_updates(self, **changes: Any) -> "BacktestTrade":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal_id": self.signal_id,
            "market_id": self.market_id,
            "direction": self.direction.value,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "size": self.size,
            "pnl": self.pnl,
            "predicted_edge": self.predicted_edge,
            "actual_edge": self.actual_edge,
            "slippage": self.slippage,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class CalibrationBucket:
    """Fixed-width probability bucket over ``[lo, hi)``."""

    range: tuple[float, float]
    predicted_avg: float
    actual_avg: float
    count: int

    @property
    def deviation(self) -> float:
        return self.predicted_avg - self.actual_avg

    def to_dict(self) -> dict[str, Any]:
        return {
            "range": list(self.range),
            "predicted_avg": self.predicted_avg,
            "actual_avg": self.actual_avg,
            "deviation": self.deviation,
            "count": self.count,
        }


@dataclass
class RiskStateSnapshot:
    """
    Point-in-time copy of the runtime risk state.

    ``positions`` maps market id to Position. Snapshots handed out by
    RuntimeRiskState are copies; mutating one never affects the live state.
    """

    execution_mode: EXECUTION_MODES = EXECUTION_MODES.PAPER
    kill_switch_active: bool = False
    kill_switch_reason: str | None = None
    kill_switch_activated_at: datetime | None = None
    daily_pnl: float = 0.0
    daily_trades: int = 0
    daily_wins: int = 0
    daily_losses: int = 0
    daily_date: str = ""
    positions: dict[str, Position] = field(default_factory=dict)
    consecutive_failures: int = 0

    @property
    def open_positions(self) -> int:
        return len(self.positions)

    @property
    def total_exposure(self) -> float:
        return sum(p.size for p in self.positions.values())

    @property
    def win_rate(self) -> float:
        decided = self.daily_wins + self.daily_losses
        return self.daily_wins / decided if decided else 0.0

    def exposure_for(self, market_id: str) -> float:
        position = self.positions.get(market_id)
        return position.size if position else 0.0

    def copy(self) -> "RiskStateSnapshot":
        # Position is frozen, so a shallow dict copy is enough
        return replace(self, positions=dict(self.positions))

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_mode": self.execution_mode.value,
            "kill_switch_active": self.kill_switch_active,
            "kill_switch_reason": self.kill_switch_reason,
            "kill_switch_activated_at": (
                self.kill_switch_activated_at.isoformat() if self.kill_switch_activated_at else None
            ),
            "daily_pnl": self.daily_pnl,
            "daily_trades": self.daily_trades,
            "daily_wins": self.daily_wins,
            "daily_losses": self.daily_losses,
            "daily_date": self.daily_date,
            "positions": {k: v.to_dict() for k, v in self.positions.items()},
            "consecutive_failures": self.consecutive_failures,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RiskStateSnapshot":
        activated = data.get("kill_switch_activated_at")
        return cls(
            execution_mode=EXECUTION_MODES(data.get("execution_mode", EXECUTION_MODES.PAPER.value)),
            kill_switch_active=bool(data.get("kill_switch_active", False)),
            kill_switch_reason=data.get("kill_switch_reason"),
            kill_switch_activated_at=datetime.fromisoformat(activated) if activated else None,
            daily_pnl=float(data.get("daily_pnl", 0.0)),
            daily_trades=int(data.get("daily_trades", 0)),
            daily_wins=int(data.get("daily_wins", 0)),
            daily_losses=int(data.get("daily_losses", 0)),
            daily_date=data.get("daily_date", ""),
            positions={k: Position.from_dict(v) for k, v in data.get("positions", {}).items()},
            consecutive_failures=int(data.get("consecutive_failures", 0)),
        )
