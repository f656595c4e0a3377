"""
Look-ahead-free candidate signals for backtesting.

A SignalSource sees a market's tick history and picks a decision time; the
features it may use are restricted to ticks with timestamp <= that time.
Ticks after the decision time are reserved for the fill simulation.
"""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import numpy as np

from config.constants import DIRECTIONS
from execution.models import Tick

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateSignal:
    signal_id: str
    market_id: str
    direction: DIRECTIONS
    edge: float
    confidence: float
    decision_time: datetime
    alpha_type: str = "momentum"
    features: dict[str, Any] = field(default_factory=dict)


class SignalSource(Protocol):
    def generate(self, market_id: str, ticks: Sequence[Tick]) -> CandidateSignal | None:
        ...


def visible_window(ticks: Sequence[Tick], decision_time: datetime) -> list[Tick]:
    """Ticks observable at ``decision_time``."""
    return [t for t in ticks if t.timestamp <= decision_time]


class MomentumSignalSource:
    """
    Price-drift signal.

    The decision time is the timestamp of the tick at the middle index. Edge
    is the move of the recent mean (last ``recent_window`` visible ticks, at
    most half the visible window) over the earlier mean, doubled and capped.
    """

    def __init__(
        self,
        min_ticks: int = 5,
        recent_window: int = 5,
        edge_multiplier: float = 2.0,
        max_edge: float = 0.15,
        min_edge: float = 0.02,
        max_confidence: float = 0.9,
    ):
        if min_ticks < 3:
            raise ValueError(f"min_ticks must be >= 3, got {min_ticks}")
        self.min_ticks = min_ticks
        self.recent_window = recent_window
        self.edge_multiplier = edge_multiplier
        self.max_edge = max_edge
        self.min_edge = min_edge
        self.max_confidence = max_confidence

    def decision_time(self, ticks: Sequence[Tick]) -> datetime | None:
        if len(ticks) < self.min_ticks:
            return None
        return ticks[len(ticks) // 2].timestamp

    def generate(self, market_id: str, ticks: Sequence[Tick]) -> CandidateSignal | None:
        decision_time = self.decision_time(ticks)
        if decision_time is None:
            logger.debug(f"[BACKTEST] {market_id}: {len(ticks)} ticks < {self.min_ticks}, skipped")
            return None
        return self.from_window(market_id, visible_window(ticks, decision_time), decision_time)

    def from_window(
        self, market_id: str, visible: Sequence[Tick], decision_time: datetime
    ) -> CandidateSignal | None:
        """Build a signal from observable ticks only."""
        k = min(self.recent_window, len(visible) // 2)
        if k < 1:
            return None

        prices = np.array([t.price for t in visible], dtype=float)
        earlier_mean = float(prices[:-k].mean())
        recent_mean = float(prices[-k:].mean())
        delta = recent_mean - earlier_mean

        edge = min(self.max_edge, abs(delta) * self.edge_multiplier)
        if edge < self.min_edge:
            logger.debug(f"[BACKTEST] {market_id}: edge {edge:.4f} < {self.min_edge}, skipped")
            return None

        return CandidateSignal(
            signal_id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"{market_id}@{decision_time.isoformat()}")),
            market_id=market_id,
            direction=DIRECTIONS.YES if delta > 0 else DIRECTIONS.NO,
            edge=edge,
            confidence=min(self.max_confidence, 0.5 + 3 * edge),
            decision_time=decision_time,
            features={
                "price_change": delta,
                "earlier_mean": earlier_mean,
                "recent_mean": recent_mean,
                "visible_ticks": len(visible),
            },
        )
