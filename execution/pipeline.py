"""
Decision pipeline: Sizer -> Risk Gates -> Execution Controller.

One call per qualifying signal. The pipeline builds the immutable Decision,
so the rationale, sizing trail and gate results of every decision (traded
or not) are available to the caller.
"""

import logging
from dataclasses import dataclass
from typing import Any

from config.constants import DECISION_ACTIONS, DIRECTIONS, EXECUTION_MODES
from config.settings import RiskLimitsConfig
from execution.controller import StagedExecutionController
from execution.models import Decision, Execution, MarketQuality, Rationale, new_id
from execution.position_sizer import AdaptiveState, KellyPositionSizer, PositionSizeResult
from execution.risk_gates import RiskGateResult, evaluate_risk_gates
from execution.risk_state import RuntimeRiskState

logger = logging.getLogger(__name__)

HIGH_CONVICTION_CONFIDENCE = 0.8
HIGH_CONVICTION_EDGE = 0.1


@dataclass(frozen=True)
class SignalInput:
    """Output of the (external) signal generator for one market."""

    market_id: str
    direction: DIRECTIONS
    edge: float
    confidence: float
    alpha_type: str = "external"
    signal_id: str = ""
    top_features: tuple[str, ...] = ()


@dataclass
class PipelineResult:
    decision: Decision
    sizing: PositionSizeResult
    gates: RiskGateResult
    execution: Execution | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.to_dict(),
            "sizing": self.sizing.to_dict(),
            "gates": self.gates.to_dict(),
            "execution": self.execution.to_dict() if self.execution else None,
        }


def classify_action(
    size: float,
    gates_passed: bool,
    edge: float,
    confidence: float,
) -> DECISION_ACTIONS:
    if size <= 0 or not gates_passed:
        return DECISION_ACTIONS.REJECT
    if confidence >= HIGH_CONVICTION_CONFIDENCE and edge >= HIGH_CONVICTION_EDGE:
        return DECISION_ACTIONS.HIGH_CONVICTION
    return DECISION_ACTIONS.TRADE


class DecisionPipeline:
    """
    Sizes a signal, checks it against the live risk state and executes it.

    Example:
        >>> pipeline = DecisionPipeline(sizer, limits, risk_state, controller)
        >>> result = await pipeline.process(signal, quality, price=0.6, bankroll=1000)
    """

    def __init__(
        self,
        sizer: KellyPositionSizer,
        limits: RiskLimitsConfig,
        risk_state: RuntimeRiskState,
        controller: StagedExecutionController,
    ):
        self.sizer = sizer
        self.limits = limits
        self.risk_state = risk_state
        self.controller = controller

    async def process(
        self,
        signal: SignalInput,
        quality: MarketQuality,
        price: float,
        bankroll: float,
        mode: EXECUTION_MODES | None = None,
        adaptive: AdaptiveState | None = None,
    ) -> PipelineResult:
        state = await self.risk_state.get_state()
        existing = state.exposure_for(signal.market_id)

        # 1. Size
        sizing = self.sizer.compute_size(
            edge=signal.edge,
            confidence=signal.confidence,
            price=price,
            bankroll=bankroll,
            quality=quality,
            adaptive=adaptive,
            existing_exposure=existing,
        )

        # 2. Gate
        gates = evaluate_risk_gates(sizing.size, signal.market_id, quality, state, self.limits)

        # 3. Classify
        action = classify_action(sizing.size, gates.passed, signal.edge, signal.confidence)
        rejection_reasons = list(gates.failed_reasons)
        if sizing.size <= 0:
            rejection_reasons.append("Position size is zero")

        decision = Decision(
            signal_id=signal.signal_id or new_id(),
            market_id=signal.market_id,
            direction=signal.direction,
            action=action,
            size_usdc=sizing.size,
            risk_checks=gates.checks,
            rationale=Rationale(
                alpha_type=signal.alpha_type,
                edge=signal.edge,
                confidence=signal.confidence,
                top_features=signal.top_features,
                rejection_reasons=tuple(rejection_reasons) if action == DECISION_ACTIONS.REJECT else (),
            ),
        )
        result = PipelineResult(decision=decision, sizing=sizing, gates=gates)

        if not decision.is_tradeable:
            logger.info(
                f"[RISK] Decision {decision.decision_id[:8]} on {signal.market_id} rejected: "
                f"{'; '.join(rejection_reasons)}"
            )
            return result

        # 4. Execute
        result.execution = await self.controller.execute(decision, mode=mode, mid_price=price)
        return result
