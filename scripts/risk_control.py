#!/usr/bin/env python3
"""
Operator CLI for the runtime risk state.

Every write goes through RuntimeRiskState, so it is persisted and audited
like any other state change.

Usage:
    python scripts/risk_control.py status
    python scripts/risk_control.py kill --reason "venue outage"
    python scripts/risk_control.py resume
    python scripts/risk_control.py mode paper
    python scripts/risk_control.py reset
    python scripts/risk_control.py audit --limit 20 --type kill_switch
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

load_dotenv()

from config.constants import EXECUTION_MODES
from config.logging_config import setup_logging
from config.settings import load_settings
from execution.risk_state import RuntimeRiskState
from execution.risk_state_store import SQLiteRiskStateStore

logger = logging.getLogger(__name__)

OPERATOR = "operator_cli"


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def run_command(args, risk_state: RuntimeRiskState) -> int:
    if args.command == "status":
        _print_json(await risk_state.get_dashboard())
    elif args.command == "kill":
        await risk_state.activate_kill_switch(args.reason, actor=OPERATOR)
        print(f"Kill switch ACTIVE: {args.reason}")
    elif args.command == "resume":
        await risk_state.deactivate_kill_switch(actor=OPERATOR)
        print("Kill switch released")
    elif args.command == "mode":
        state = await risk_state.set_execution_mode(EXECUTION_MODES(args.mode), actor=OPERATOR)
        print(f"Execution mode: {state.execution_mode.value}")
    elif args.command == "reset":
        changed = await risk_state.reset_daily(actor=OPERATOR)
        print("Daily counters reset" if changed else "Daily counters already current")
    elif args.command == "audit":
        entries = await risk_state.get_audit_log(limit=args.limit, event_type=args.type)
        if args.json:
            _print_json([e.to_dict() for e in entries])
        else:
            for e in entries:
                print(f"{e.timestamp.isoformat()}  {e.event_type:<18} {e.actor:<20} {e.action}")
    else:
        raise ValueError(f"Unknown command: {args.command}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Runtime risk state control")
    parser.add_argument("--db", help="Risk state database (default: settings.storage.risk_state_db)")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show the risk dashboard")

    p_kill = sub.add_parser("kill", help="Activate the kill switch")
    p_kill.add_argument("--reason", required=True, help="Reason recorded in the audit log")

    sub.add_parser("resume", help="Deactivate the kill switch")

    p_mode = sub.add_parser("mode", help="Set the execution mode")
    p_mode.add_argument("mode", choices=[m.value for m in EXECUTION_MODES])

    sub.add_parser("reset", help="Reset daily counters if the UTC day has changed")

    p_audit = sub.add_parser("audit", help="Show the audit log, newest first")
    p_audit.add_argument("--limit", type=int, default=50)
    p_audit.add_argument("--type", default=None, help="Filter by event type")
    p_audit.add_argument("--json", action="store_true", help="JSON output")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)
    settings = load_settings()

    db_path = Path(args.db or settings.storage.risk_state_db)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = SQLiteRiskStateStore(db_path)
    try:
        risk_state = RuntimeRiskState(
            store,
            settings.risk_limits,
            failure_threshold=settings.execution.failure_threshold,
            initial_mode=EXECUTION_MODES(settings.execution.default_mode),
        )
        return asyncio.run(run_command(args, risk_state))
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
