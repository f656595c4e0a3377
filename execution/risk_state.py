"""
Runtime risk state.

Single-writer ledger of execution mode, kill switch, daily counters and open
positions. Live, shadow and backtest paths all read it through snapshots;
only the named operations below write it.

Every operation:
    1. takes the one asyncio.Lock owned by the instance,
    2. applies a missed UTC-day reset first (lazily, never skipped),
    3. mutates a copy of the state,
    4. persists the copy together with an audit entry carrying the
       before/after snapshots,
    5. swaps the copy in.

A failed persist leaves the in-memory state untouched.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from config.constants import AUDIT_EVENTS, DIRECTIONS, EXECUTION_MODES, UTC_DATE_FORMAT
from config.settings import RiskLimitsConfig
from execution.models import AuditLogEntry, Position, RiskStateSnapshot, utc_now
from execution.risk_gates import available_risk_budget
from execution.risk_state_store import SQLiteRiskStateStore
from observability.execution_logging import execution_logger
from observability.metrics import ExecutionMetrics
from utils.numerical_validation import ensure_finite, validate_pnl

logger = logging.getLogger(__name__)

CIRCUIT_BREAKER_ACTOR = "circuit_breaker"

Mutator = Callable[[RiskStateSnapshot], None]


class RuntimeRiskState:
    """
    Owner of the process-wide risk state.

    Args:
        store: Optional persistent store. Without one, state and audit log
            live in memory only (backtests, tests).
        limits: Risk limits used for the dashboard and budget views.
        failure_threshold: Consecutive live failures that trip the kill switch.
        clock: Returns the current UTC datetime.
        metrics: Optional Prometheus metrics to keep gauges current.
    """

    def __init__(
        self,
        store: SQLiteRiskStateStore | None = None,
        limits: RiskLimitsConfig | None = None,
        failure_threshold: int = 3,
        initial_mode: EXECUTION_MODES = EXECUTION_MODES.PAPER,
        clock: Callable[[], datetime] = utc_now,
        metrics: ExecutionMetrics | None = None,
    ):
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")

        self.store = store
        self.limits = limits or RiskLimitsConfig()
        self.failure_threshold = failure_threshold
        self._clock = clock
        self._metrics = metrics
        self._lock = asyncio.Lock()
        self._memory_audit: list[AuditLogEntry] = []

        persisted = store.load_state() if store is not None else None
        if persisted is not None:
            self._state = persisted
            logger.info(
                f"[RISK] Restored risk state: date={persisted.daily_date}, "
                f"pnl={persisted.daily_pnl:.2f}, positions={persisted.open_positions}, "
                f"kill_switch={persisted.kill_switch_active}"
            )
        else:
            self._state = RiskStateSnapshot(execution_mode=initial_mode, daily_date=self._today())
        self._update_gauges()

    def _today(self, now: datetime | None = None) -> str:
        return (now or self._clock()).strftime(UTC_DATE_FORMAT)

    def _update_gauges(self) -> None:
        if self._metrics is not None:
            self._metrics.set_kill_switch(self._state.kill_switch_active)
            self._metrics.set_daily_pnl(self._state.daily_pnl)

    # ------------------------------------------------------------------
    # Core write path
    # ------------------------------------------------------------------

    async def _commit(
        self,
        event_type: AUDIT_EVENTS,
        actor: str,
        action: str,
        mutate: Mutator,
        details: dict[str, Any] | None = None,
        market_id: str | None = None,
        decision_id: str | None = None,
        pnl_impact: float | None = None,
    ) -> AuditLogEntry:
        """Apply ``mutate`` to a copy, persist it with its audit entry, swap in. Caller holds the lock."""
        before = self._state
        after = before.copy()
        mutate(after)

        entry = AuditLogEntry(
            event_type=event_type.value,
            actor=actor,
            action=action,
            timestamp=self._clock(),
            details=details or {},
            market_id=market_id,
            decision_id=decision_id,
            pnl_impact=pnl_impact,
            state_before=before.to_dict(),
            state_after=after.to_dict(),
        )
        if self.store is not None:
            row_id = await self.store.save_with_audit_async(after, entry)
            entry = replace(entry, id=row_id)
        else:
            entry = replace(entry, id=len(self._memory_audit) + 1)
            self._memory_audit.append(entry)

        self._state = after
        self._update_gauges()
        return entry

    async def _apply_missed_reset(self, now: datetime | None = None, actor: str = "system") -> bool:
        """Reset daily counters if the stored UTC date is behind. Caller holds the lock."""
        today = self._today(now)
        if self._state.daily_date >= today:
            return False

        previous = self._state.daily_date

        def reset(state: RiskStateSnapshot) -> None:
            state.daily_pnl = 0.0
            state.daily_trades = 0
            state.daily_wins = 0
            state.daily_losses = 0
            state.daily_date = today
            # kill switch and positions carry over

        await self._commit(
            AUDIT_EVENTS.DAILY_RESET,
            actor,
            "reset_daily",
            reset,
            details={"previous_date": previous, "new_date": today},
        )
        logger.info(f"[RISK] Daily counters reset: {previous} -> {today} (actor={actor})")
        return True

    # ------------------------------------------------------------------
    # Named operations
    # ------------------------------------------------------------------

    async def get_state(self) -> RiskStateSnapshot:
        """Copy of the current state, with any missed daily reset applied."""
        async with self._lock:
            await self._apply_missed_reset()
            return self._state.copy()

    def peek(self) -> RiskStateSnapshot:
        """Copy of the in-memory state without taking the lock or resetting."""
        return self._state.copy()

    async def update_on_fill(
        self,
        market_id: str,
        size: float,
        entry_price: float,
        direction: DIRECTIONS,
        pnl: float = 0.0,
        decision_id: str | None = None,
    ) -> RiskStateSnapshot:
        """Add a filled order's exposure and count the trade."""
        size = max(0.0, float(ensure_finite(size, "fill_size", 0.0)))
        entry_price = float(ensure_finite(entry_price, "entry_price", 0.0))
        pnl = validate_pnl(pnl)

        def apply(state: RiskStateSnapshot) -> None:
            current = state.positions.get(market_id)
            if current is None:
                state.positions[market_id] = Position(size, entry_price, direction)
            else:
                total = current.size + size
                avg = (current.size * current.entry_price + size * entry_price) / total if total > 0 else entry_price
                state.positions[market_id] = Position(total, avg, current.direction)
            state.daily_trades += 1
            state.daily_pnl += pnl

        async with self._lock:
            await self._apply_missed_reset()
            await self._commit(
                AUDIT_EVENTS.FILL,
                "execution_controller",
                "update_on_fill",
                apply,
                details={"size": size, "entry_price": entry_price, "direction": direction.value},
                market_id=market_id,
                decision_id=decision_id,
                pnl_impact=pnl,
            )
            return self._state.copy()

    async def record_outcome(
        self,
        market_id: str,
        pnl: float,
        closed_size: float | None = None,
        decision_id: str | None = None,
    ) -> RiskStateSnapshot:
        """
        Book realised PnL for a market and shrink or remove its position.

        ``closed_size`` None closes the whole position.
        """
        pnl = validate_pnl(pnl)

        def apply(state: RiskStateSnapshot) -> None:
            state.daily_pnl += pnl
            if pnl > 0:
                state.daily_wins += 1
            elif pnl < 0:
                state.daily_losses += 1

            current = state.positions.get(market_id)
            if current is None:
                return
            remaining = 0.0 if closed_size is None else current.size - closed_size
            if remaining <= 0:
                del state.positions[market_id]
            else:
                state.positions[market_id] = Position(remaining, current.entry_price, current.direction)

        async with self._lock:
            await self._apply_missed_reset()
            await self._commit(
                AUDIT_EVENTS.OUTCOME,
                "settlement",
                "record_outcome",
                apply,
                details={"closed_size": closed_size},
                market_id=market_id,
                decision_id=decision_id,
                pnl_impact=pnl,
            )
            return self._state.copy()

    async def activate_kill_switch(self, reason: str, actor: str = "operator") -> RiskStateSnapshot:
        async with self._lock:
            await self._apply_missed_reset()
            await self._activate_locked(reason, actor)
            return self._state.copy()

    async def _activate_locked(self, reason: str, actor: str) -> None:
        now = self._clock()

        def apply(state: RiskStateSnapshot) -> None:
            state.kill_switch_active = True
            state.kill_switch_reason = reason
            state.kill_switch_activated_at = now

        await self._commit(
            AUDIT_EVENTS.KILL_SWITCH, actor, "activate", apply, details={"reason": reason}
        )
        logger.critical(f"[SAFETY] KILL SWITCH ACTIVATED by {actor}: {reason}")
        execution_logger.log_kill_switch(True, reason, actor)

    async def deactivate_kill_switch(self, actor: str = "operator") -> RiskStateSnapshot:
        def apply(state: RiskStateSnapshot) -> None:
            state.kill_switch_active = False
            state.kill_switch_reason = None
            state.kill_switch_activated_at = None
            state.consecutive_failures = 0

        async with self._lock:
            await self._apply_missed_reset()
            await self._commit(AUDIT_EVENTS.KILL_SWITCH, actor, "deactivate", apply)
            logger.warning(f"[SAFETY] Kill switch deactivated by {actor}")
            execution_logger.log_kill_switch(False, None, actor)
            return self._state.copy()

    async def reset_daily(self, now: datetime | None = None, actor: str = "scheduler") -> bool:
        """
        Reset daily counters for a new UTC day.

        Idempotent within a day: returns False (and changes nothing) when the
        counters already belong to the current UTC date. The kill switch
        survives the reset.
        """
        async with self._lock:
            return await self._apply_missed_reset(now, actor)

    async def set_execution_mode(self, mode: EXECUTION_MODES, actor: str = "operator") -> RiskStateSnapshot:
        def apply(state: RiskStateSnapshot) -> None:
            state.execution_mode = mode

        async with self._lock:
            await self._apply_missed_reset()
            previous = self._state.execution_mode
            await self._commit(
                AUDIT_EVENTS.MODE_CHANGE,
                actor,
                "set_execution_mode",
                apply,
                details={"from": previous.value, "to": mode.value},
            )
            logger.info(f"[SAFETY] Execution mode {previous.value} -> {mode.value} (actor={actor})")
            return self._state.copy()

    async def record_execution_success(self, decision_id: str | None = None) -> RiskStateSnapshot:
        async with self._lock:
            await self._apply_missed_reset()
            if self._state.consecutive_failures:

                def apply(state: RiskStateSnapshot) -> None:
                    state.consecutive_failures = 0

                await self._commit(
                    AUDIT_EVENTS.EXECUTION_SUCCESS,
                    "execution_controller",
                    "reset_failure_counter",
                    apply,
                    decision_id=decision_id,
                )
            return self._state.copy()

    async def record_execution_failure(
        self, reason: str, decision_id: str | None = None
    ) -> RiskStateSnapshot:
        """Count a terminal live failure; trip the kill switch at the threshold."""

        def apply(state: RiskStateSnapshot) -> None:
            state.consecutive_failures += 1

        async with self._lock:
            await self._apply_missed_reset()
            await self._commit(
                AUDIT_EVENTS.EXECUTION_FAILURE,
                "execution_controller",
                "record_failure",
                apply,
                details={"reason": reason},
                decision_id=decision_id,
            )
            failures = self._state.consecutive_failures
            logger.warning(
                f"[SAFETY] Execution failure {failures}/{self.failure_threshold}: {reason}"
            )
            if failures >= self.failure_threshold and not self._state.kill_switch_active:
                await self._activate_locked(
                    f"{failures} consecutive execution failures (last: {reason})",
                    CIRCUIT_BREAKER_ACTOR,
                )
            return self._state.copy()

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    async def get_audit_log(self, limit: int = 100, event_type: str | None = None) -> list[AuditLogEntry]:
        """Most recent entries first."""
        if self.store is not None:
            return await self.store.get_audit_log_async(limit, event_type)
        entries = [
            e for e in reversed(self._memory_audit) if event_type is None or e.event_type == event_type
        ]
        return entries[:limit]

    async def get_dashboard(self) -> dict[str, Any]:
        state = await self.get_state()
        limits = self.limits
        can_trade = (
            not state.kill_switch_active
            and state.daily_pnl > -limits.max_daily_loss
            and state.open_positions < limits.max_positions
        )
        return {
            "mode": state.execution_mode.value,
            "kill_switch": {
                "active": state.kill_switch_active,
                "reason": state.kill_switch_reason,
                "since": (
                    state.kill_switch_activated_at.isoformat()
                    if state.kill_switch_activated_at
                    else None
                ),
            },
            "daily": {
                "date": state.daily_date,
                "pnl": state.daily_pnl,
                "trades": state.daily_trades,
                "wins": state.daily_wins,
                "losses": state.daily_losses,
                "win_rate": state.win_rate,
            },
            "positions": {
                "open": state.open_positions,
                "max": limits.max_positions,
                "total_exposure": state.total_exposure,
            },
            "limits": {
                "daily_loss_limit": limits.max_daily_loss,
                "daily_loss_remaining": available_risk_budget(state, limits),
                "position_limit": limits.max_per_market,
            },
            "failures": {
                "consecutive": state.consecutive_failures,
                "threshold": self.failure_threshold,
            },
            "can_trade": can_trade,
        }


class DailyResetScheduler:
    """
    Background task that resets daily counters at each UTC midnight.

    A reset missed while the process was down is still applied lazily by
    RuntimeRiskState on the next access.
    """

    def __init__(self, risk_state: RuntimeRiskState, clock: Callable[[], datetime] = utc_now):
        self.risk_state = risk_state
        self._clock = clock
        self._task: asyncio.Task | None = None

    @staticmethod
    def seconds_until_next_reset(now: datetime) -> float:
        tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        return max(0.0, (tomorrow - now).total_seconds())

    async def run(self) -> None:
        while True:
            delay = self.seconds_until_next_reset(self._clock())
            logger.debug(f"Next daily reset in {delay:.0f}s")
            await asyncio.sleep(delay)
            await self.risk_state.reset_daily(actor="scheduler")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="daily-risk-reset")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
