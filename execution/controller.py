"""
Staged Execution Controller.

Owns the order lifecycle for one Decision in one of three fidelity modes:

    paper  - simulated fill, no external call
    shadow - real quote when available, simulated fill, no capital moves
    live   - real order: balance, token, quote, submit with retry, poll

ARCHITECTURAL PRINCIPLE:
The three modes differ only in where the fill comes from. Mode selection,
risk-state updates, audit, metrics and lifecycle logging are shared and
happen only once the Execution reaches a terminal status.

Safety:
    - An active kill switch or force_paper_mode downgrades shadow/live to
      paper (logged as a warning).
    - Every venue call is bounded by network_timeout.
    - Consecutive live failures feed the circuit breaker in RuntimeRiskState.
"""

import asyncio
import logging

import numpy as np

from config.constants import (
    ERROR_TYPES,
    EXECUTION_MODES,
    EXECUTION_STATUS,
    MAX_CONTRACT_PRICE,
)
from config.settings import ExecutionConfig
from execution.models import Decision, Execution, OrderStatusResult, Quote
from execution.risk_state import RuntimeRiskState
from execution.venue import (
    ExecutionError,
    LiveModeNoCredentialsError,
    VenueClient,
    VenueError,
    classify_error,
)
from observability.execution_logging import execution_logger
from observability.metrics import ExecutionMetrics, LatencyTimer
from utils.numerical_validation import clamp_contract_price

logger = logging.getLogger(__name__)

DEFAULT_MID_PRICE = 0.5
PAPER_SLIPPAGE_MIN = 0.001
PAPER_SLIPPAGE_SPREAD = 0.002
SHADOW_QUOTED_SLIPPAGE = 0.001
SHADOW_UNQUOTED_SLIPPAGE = 0.003

# Error types produced locally rather than by the venue
RISK_CHECK_FAILED = "risk_check_failed"
TRADING_DISABLED = "trading_disabled"
NO_CREDENTIALS = "no_credentials"
FILL_TIMEOUT = "fill_timeout"

# Rejections that never reached the venue do not feed the circuit breaker
NON_VENUE_REJECTIONS = frozenset([RISK_CHECK_FAILED, TRADING_DISABLED])


class StagedExecutionController:
    """
    Executes Decisions in paper, shadow or live mode.

    Args:
        risk_state: Shared runtime risk state (read for mode, written on terminal status)
        config: Execution settings
        venue: Exchange client; required for live, optional for shadow
        metrics: Prometheus metrics
        seed: Seed for the simulated-fill random generator
    """

    def __init__(
        self,
        risk_state: RuntimeRiskState,
        config: ExecutionConfig | None = None,
        venue: VenueClient | None = None,
        metrics: ExecutionMetrics | None = None,
        seed: int | None = None,
    ):
        self.risk_state = risk_state
        self.config = config or ExecutionConfig()
        self.venue = venue
        self.metrics = metrics or ExecutionMetrics()
        self._rng = np.random.default_rng(seed)

        logger.info(
            "StagedExecutionController initialized: "
            f"force_paper={self.config.force_paper_mode}, "
            f"trading_enabled={self.config.trading_enabled}, venue={venue is not None}"
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def execute(
        self,
        decision: Decision,
        mode: EXECUTION_MODES | None = None,
        mid_price: float | None = None,
    ) -> Execution:
        """
        Run ``decision`` to a terminal status.

        Without an explicit ``mode`` the runtime risk state's execution mode
        is used. Precondition and venue failures never raise out of this
        method; they end as a failed (or cancelled) Execution.
        """
        state = await self.risk_state.get_state()
        requested = mode or state.execution_mode
        effective, downgrade_reason = self._effective_mode(requested, state.kill_switch_active, state.kill_switch_reason)

        execution = Execution(decision_id=decision.decision_id, mode=effective)
        if downgrade_reason:
            logger.warning(
                f"[SAFETY] {requested.value} -> {effective.value} for {decision.decision_id}: {downgrade_reason}"
            )
            execution_logger.log_downgrade(
                decision.decision_id, requested.value, effective.value, downgrade_reason
            )
        execution_logger.log_attempt(
            decision.decision_id, effective.value, decision.market_id, decision.size_usdc
        )

        with LatencyTimer(self.metrics.record_execution_latency):
            try:
                if effective == EXECUTION_MODES.PAPER:
                    self._execute_paper(decision, execution, mid_price)
                elif effective == EXECUTION_MODES.SHADOW:
                    await self._execute_shadow(decision, execution, mid_price)
                elif effective == EXECUTION_MODES.LIVE:
                    await self._execute_live(decision, execution)
                else:
                    raise ValueError(f"Unhandled execution mode: {effective}")
            except LiveModeNoCredentialsError as e:
                logger.error(f"[SAFETY] {e}")
                execution.fail(NO_CREDENTIALS, str(e))
            except VenueError as e:
                logger.error(f"[TRADE] Live execution failed ({e.error_type.value}): {e}")
                execution.fail(e.error_type.value, str(e))
            except ExecutionError as e:
                execution.fail("unknown", str(e))

        await self._finalize(decision, execution)
        return execution

    def _effective_mode(
        self, requested: EXECUTION_MODES, kill_switch_active: bool, kill_switch_reason: str | None
    ) -> tuple[EXECUTION_MODES, str | None]:
        if requested == EXECUTION_MODES.PAPER:
            return requested, None
        if kill_switch_active:
            return EXECUTION_MODES.PAPER, f"kill switch active ({kill_switch_reason})"
        if self.config.force_paper_mode:
            return EXECUTION_MODES.PAPER, "force_paper_mode enabled"
        return requested, None

    # ------------------------------------------------------------------
    # Paper
    # ------------------------------------------------------------------

    def _execute_paper(self, decision: Decision, execution: Execution, mid_price: float | None) -> None:
        mid = DEFAULT_MID_PRICE if mid_price is None else mid_price
        band = self.config.paper_price_band
        fill_price = clamp_contract_price(mid + self._rng.uniform(-band, band))
        slippage = PAPER_SLIPPAGE_MIN + self._rng.random() * PAPER_SLIPPAGE_SPREAD

        execution.transition(
            EXECUTION_STATUS.FILLED,
            fill_price=fill_price,
            fill_size=decision.size_usdc,
            slippage=slippage,
            fees=decision.size_usdc * self.config.fee_rate,
            tx_hash=f"paper_{execution.execution_id[:8]}",
        )

    # ------------------------------------------------------------------
    # Shadow
    # ------------------------------------------------------------------

    async def _execute_shadow(self, decision: Decision, execution: Execution, mid_price: float | None) -> None:
        if not decision.risk_checks.all_passed():
            failed = ", ".join(decision.risk_checks.failed_names())
            execution.fail(RISK_CHECK_FAILED, f"Risk checks failed: {failed}")
            return

        quote = await self._try_quote(decision)
        if quote is not None:
            price, slippage = quote.best_price, SHADOW_QUOTED_SLIPPAGE
        else:
            price = DEFAULT_MID_PRICE if mid_price is None else mid_price
            slippage = SHADOW_UNQUOTED_SLIPPAGE

        execution.transition(
            EXECUTION_STATUS.FILLED,
            fill_price=clamp_contract_price(price),
            fill_size=decision.size_usdc,
            slippage=slippage,
            fees=decision.size_usdc * self.config.fee_rate,
            tx_hash=f"shadow_{execution.execution_id[:8]}",
        )

    async def _try_quote(self, decision: Decision) -> Quote | None:
        """Best-effort quote for shadow mode; failures fall back to mid."""
        if self.venue is None:
            return None
        try:
            token_id = await self._venue_call(
                "resolve_token_id", self.venue.resolve_token_id(decision.market_id, decision.direction)
            )
            return await self._venue_call("get_quote", self.venue.get_quote(token_id))
        except VenueError as e:
            logger.warning(f"[NETWORK] Shadow quote unavailable for {decision.market_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Live
    # ------------------------------------------------------------------

    async def _execute_live(self, decision: Decision, execution: Execution) -> None:
        # 1. Credentials
        if self.venue is None:
            raise LiveModeNoCredentialsError(["venue"])
        if not self.venue.has_credentials():
            raise LiveModeNoCredentialsError(self.venue.missing_credentials())

        # 2. Risk checks and master switch
        if not decision.risk_checks.all_passed():
            failed = ", ".join(decision.risk_checks.failed_names())
            execution.fail(RISK_CHECK_FAILED, f"Risk checks failed: {failed}")
            return
        if not self.config.trading_enabled:
            execution.fail(TRADING_DISABLED, "Live trading is disabled (execution.trading_enabled=false)")
            return

        # 3. Balance
        balance = await self._venue_call("get_balance", self.venue.get_balance())
        if balance < decision.size_usdc:
            raise VenueError(
                f"Insufficient balance: {balance:.2f} < {decision.size_usdc:.2f}",
                ERROR_TYPES.INSUFFICIENT_BALANCE,
            )

        # 4-5. Token and quote
        token_id = await self._venue_call(
            "resolve_token_id", self.venue.resolve_token_id(decision.market_id, decision.direction)
        )
        quote = await self._venue_call("get_quote", self.venue.get_quote(token_id))
        best = quote.best_price
        if best <= 0:
            raise VenueError(f"Invalid quote price {best} for {token_id}")

        # 6. Limit price with slippage tolerance, size in contracts
        limit_price = min(MAX_CONTRACT_PRICE, best * (1 + self.config.max_slippage))
        contracts = decision.size_usdc / best

        # 7. Submit with retry
        order_id = await self._submit_with_retry(execution, token_id, limit_price, contracts)
        logger.info(
            f"[TRADE] Order {order_id} submitted: {contracts:.4f} @ {limit_price:.4f} "
            f"(best {best:.4f}, attempts {execution.attempts})"
        )

        # 8. Poll for fill
        status = await self._wait_for_fill(order_id, execution)

        # 9. Terminal status
        self._settle_live(execution, status, best, limit_price)

    async def _submit_with_retry(
        self, execution: Execution, token_id: str, price: float, size: float
    ) -> str:
        max_attempts = self.config.max_retry_attempts
        for attempt in range(1, max_attempts + 1):
            execution.attempts = attempt
            try:
                return await self._venue_call(
                    "submit_order", self.venue.submit_order(token_id, "BUY", price, size)
                )
            except VenueError as e:
                if not e.retryable or attempt >= max_attempts:
                    raise
                delay = self.config.retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"[NETWORK] Retryable {e.error_type.value} on submit "
                    f"(attempt {attempt}/{max_attempts}), retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
        raise VenueError("Max retries exhausted")

    async def _wait_for_fill(self, order_id: str, execution: Execution) -> OrderStatusResult | None:
        """
        Poll until a terminal venue status or fill_timeout.

        On timeout, a missing status or a failed poll, a still-open order is
        cancelled and the last status seen is returned (None if the venue
        never reported one). A failed poll with no status at all re-raises
        its VenueError after the cancel.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.fill_timeout
        last: OrderStatusResult | None = None
        poll_error: VenueError | None = None

        while loop.time() < deadline:
            try:
                status = await self._venue_call("get_order_status", self.venue.get_order_status(order_id))
            except VenueError as e:
                logger.error(f"[NETWORK] Status poll failed for order {order_id}: {e}")
                poll_error = e
                break
            if status is None:
                logger.warning(f"[NETWORK] No status for order {order_id}")
                break
            last = status
            if status.status.is_terminal:
                return status
            if status.status == EXECUTION_STATUS.PARTIAL:
                execution.transition(EXECUTION_STATUS.PARTIAL)
            await asyncio.sleep(self.config.poll_interval)

        if last is None or not last.status.is_terminal:
            await self._cancel_quietly(order_id)
        if last is None and poll_error is not None:
            raise poll_error
        return last

    async def _cancel_quietly(self, order_id: str) -> None:
        try:
            cancelled = await self._venue_call("cancel_order", self.venue.cancel_order(order_id))
            logger.info(f"[TRADE] Cancel order {order_id}: {'ok' if cancelled else 'rejected'}")
        except VenueError as e:
            logger.error(f"[NETWORK] Failed to cancel order {order_id}: {e}")

    def _settle_live(
        self,
        execution: Execution,
        status: OrderStatusResult | None,
        best_price: float,
        limit_price: float,
    ) -> None:
        if status is None:
            execution.fail("order_not_found", "Order status unavailable")
            return

        fill_price = status.price if status.price > 0 else limit_price
        matched_usdc = status.size_matched * fill_price
        fill_fields = {
            "fill_price": fill_price,
            "fill_size": matched_usdc,
            "slippage": abs(fill_price - best_price) / best_price,
            "fees": matched_usdc * self.config.fee_rate,
            "tx_hash": status.order_id,
        }

        if status.status == EXECUTION_STATUS.FILLED:
            execution.transition(EXECUTION_STATUS.FILLED, **fill_fields)
        elif status.fill_fraction >= self.config.partial_fill_threshold:
            logger.info(
                f"[TRADE] Accepting partial fill {status.fill_fraction:.0%} for order {status.order_id}"
            )
            execution.transition(EXECUTION_STATUS.FILLED, **fill_fields)
        elif status.status == EXECUTION_STATUS.FAILED:
            execution.transition(EXECUTION_STATUS.FAILED, error_type="unknown", error="Venue rejected order", **fill_fields)
        else:
            execution.transition(
                EXECUTION_STATUS.CANCELLED,
                error_type=FILL_TIMEOUT,
                error=f"Filled {status.fill_fraction:.0%} before cancel",
                **fill_fields,
            )

    async def _venue_call(self, operation: str, awaitable):
        """Await one venue call under network_timeout; classify any failure."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.network_timeout)
        except VenueError as e:
            self.metrics.record_venue_error(e.error_type.value)
            raise
        except Exception as e:
            error = classify_error(e)
            self.metrics.record_venue_error(error.error_type.value)
            logger.warning(f"[NETWORK] {operation} failed ({error.error_type.value}): {e}")
            raise error from e

    # ------------------------------------------------------------------
    # Terminal side effects
    # ------------------------------------------------------------------

    async def _finalize(self, decision: Decision, execution: Execution) -> None:
        """Risk state, metrics and lifecycle log. Runs once per Execution."""
        if not execution.is_terminal:
            raise ValueError(f"Execution {execution.execution_id} finalized in {execution.status.value}")

        if execution.fill_size and execution.fill_size > 0:
            await self.risk_state.update_on_fill(
                decision.market_id,
                execution.fill_size,
                execution.fill_price or 0.0,
                decision.direction,
                decision_id=decision.decision_id,
            )

        is_live = execution.mode == EXECUTION_MODES.LIVE
        if execution.succeeded:
            if is_live:
                await self.risk_state.record_execution_success(decision.decision_id)
            execution_logger.log_fill(execution.to_dict())
        else:
            if execution.error_type == RISK_CHECK_FAILED:
                self.metrics.record_gate_rejections(decision.risk_checks.failed_names())
            if is_live and execution.error_type not in NON_VENUE_REJECTIONS:
                await self.risk_state.record_execution_failure(
                    f"{execution.error_type}: {execution.error}", decision.decision_id
                )
            execution_logger.log_failure(decision.decision_id, execution.error or "", execution.to_dict())

        self.metrics.record_execution(execution.mode.value, execution.status.value)
        logger.info(
            f"[TRADE] {execution.mode.value} execution {execution.execution_id[:8]} "
            f"-> {execution.status.value} (decision {decision.decision_id[:8]})"
        )
