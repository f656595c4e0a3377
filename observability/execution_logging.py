"""
Execution Logging - structured events for the order lifecycle.

Every terminal Execution and every safety action (mode downgrade, kill
switch) is emitted as one ``EXECUTION_EVENT: {json}`` line on the
``execution.lifecycle`` logger, so a log shipper can index them without
parsing free text.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("execution.lifecycle")


class ExecutionLogger:
    """
    Handles structured logging for execution lifecycle events.
    """

    def log_event(
        self,
        event_type: str,
        decision_id: str | None,
        success: bool,
        details: dict[str, Any] | None = None,
        error: str | None = None,
        level: int = logging.INFO,
    ) -> dict[str, Any]:
        """Log a structured execution event and return it."""
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "decision_id": decision_id,
            "success": success,
            "error": error,
            "details": details or {},
        }
        logger.log(level, f"EXECUTION_EVENT: {json.dumps(event, default=str)}")
        return event

    def log_attempt(self, decision_id: str, mode: str, market_id: str, size: float):
        return self.log_event(
            "attempt",
            decision_id,
            True,
            {"mode": mode, "market_id": market_id, "size_usdc": size},
        )

    def log_downgrade(self, decision_id: str, requested: str, effective: str, reason: str):
        return self.log_event(
            "downgrade",
            decision_id,
            True,
            {"requested_mode": requested, "effective_mode": effective, "reason": reason},
            level=logging.WARNING,
        )

    def log_fill(self, execution: dict[str, Any]):
        return self.log_event("fill", execution.get("decision_id"), True, execution)

    def log_failure(self, decision_id: str, error: str, details: dict[str, Any] | None = None):
        return self.log_event(
            "failure", decision_id, False, details=details, error=error, level=logging.WARNING
        )

    def log_kill_switch(self, active: bool, reason: str | None, actor: str):
        return self.log_event(
            "kill_switch",
            None,
            True,
            {"active": active, "reason": reason, "actor": actor},
            level=logging.CRITICAL if active else logging.WARNING,
        )


execution_logger = ExecutionLogger()
