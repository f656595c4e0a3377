"""
Persistent store for the runtime risk state and its audit log.

Schema:
    risk_state: single row (id = 1) holding the current RiskStateSnapshot.
        daily_date is the UTC date (YYYY-MM-DD) the daily counters belong
        to; positions are stored as JSON.
    audit_log: append-only, one row per state mutation with before/after
        snapshots.

State and audit row are written in the same transaction, so a crash can
never leave a mutation without its audit entry.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from execution.models import AuditLogEntry, RiskStateSnapshot
from execution.sqlite_mixin import SQLiteTransactionMixin

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS risk_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    execution_mode TEXT NOT NULL,
    kill_switch_active INTEGER NOT NULL DEFAULT 0,
    kill_switch_reason TEXT,
    kill_switch_activated_at TEXT,
    daily_pnl REAL NOT NULL DEFAULT 0.0,
    daily_trades INTEGER NOT NULL DEFAULT 0,
    daily_wins INTEGER NOT NULL DEFAULT 0,
    daily_losses INTEGER NOT NULL DEFAULT 0,
    daily_date TEXT NOT NULL,
    positions TEXT NOT NULL DEFAULT '{}',
    consecutive_failures INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    actor TEXT NOT NULL,
    action TEXT NOT NULL,
    details TEXT,
    market_id TEXT,
    decision_id TEXT,
    pnl_impact REAL,
    state_before TEXT,
    state_after TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_event_type ON audit_log(event_type);
"""


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


def _loads(value: str | None) -> Any:
    return None if value is None else json.loads(value)


class SQLiteRiskStateStore(SQLiteTransactionMixin):
    """SQLite backend for RuntimeRiskState."""

    def __init__(self, db_path: str | Path):
        super().__init__(db_path)
        self._executescript(_SCHEMA)
        logger.info(f"Risk state store initialized at {self._db_path}")

    def load_state(self) -> RiskStateSnapshot | None:
        """Return the persisted state, or None if nothing was saved yet."""
        row = self._fetchone("SELECT * FROM risk_state WHERE id = 1")
        if row is None:
            return None
        data = dict(row)
        data["kill_switch_active"] = bool(data["kill_switch_active"])
        data["positions"] = json.loads(data["positions"] or "{}")
        return RiskStateSnapshot.from_dict(data)

    def _write_state(self, conn: sqlite3.Connection, state: RiskStateSnapshot) -> None:
        data = state.to_dict()
        conn.execute(
            """
            INSERT INTO risk_state (
                id, execution_mode, kill_switch_active, kill_switch_reason,
                kill_switch_activated_at, daily_pnl, daily_trades, daily_wins,
                daily_losses, daily_date, positions, consecutive_failures, updated_at
            ) VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, datetime('now'))
            ON CONFLICT(id) DO UPDATE SET
                execution_mode = excluded.execution_mode,
                kill_switch_active = excluded.kill_switch_active,
                kill_switch_reason = excluded.kill_switch_reason,
                kill_switch_activated_at = excluded.kill_switch_activated_at,
                daily_pnl = excluded.daily_pnl,
                daily_trades = excluded.daily_trades,
                daily_wins = excluded.daily_wins,
                daily_losses = excluded.daily_losses,
                daily_date = excluded.daily_date,
                positions = excluded.positions,
                consecutive_failures = excluded.consecutive_failures,
                updated_at = excluded.updated_at
            """,
            (
                data["execution_mode"],
                int(data["kill_switch_active"]),
                data["kill_switch_reason"],
                data["kill_switch_activated_at"],
                data["daily_pnl"],
                data["daily_trades"],
                data["daily_wins"],
                data["daily_losses"],
                data["daily_date"],
                json.dumps(data["positions"]),
                data["consecutive_failures"],
            ),
        )

    def _write_audit(self, conn: sqlite3.Connection, entry: AuditLogEntry) -> int:
        cursor = conn.execute(
            """
            INSERT INTO audit_log (
                timestamp, event_type, actor, action, details, market_id,
                decision_id, pnl_impact, state_before, state_after
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.timestamp.isoformat(),
                entry.event_type,
                entry.actor,
                entry.action,
                _dumps(entry.details),
                entry.market_id,
                entry.decision_id,
                entry.pnl_impact,
                _dumps(entry.state_before),
                _dumps(entry.state_after),
            ),
        )
        return int(cursor.lastrowid)

    def save_state(self, state: RiskStateSnapshot) -> None:
        with self._transaction() as conn:
            self._write_state(conn, state)

    def append_audit(self, entry: AuditLogEntry) -> int:
        with self._transaction() as conn:
            return self._write_audit(conn, entry)

    def save_with_audit(self, state: RiskStateSnapshot, entry: AuditLogEntry) -> int:
        """Persist ``state`` and its audit entry atomically. Returns the audit row id."""
        with self._transaction() as conn:
            self._write_state(conn, state)
            return self._write_audit(conn, entry)

    def get_audit_log(self, limit: int = 100, event_type: str | None = None) -> list[AuditLogEntry]:
        """Most recent audit entries first."""
        if event_type is None:
            rows = self._fetchall(
                "SELECT * FROM audit_log ORDER BY timestamp DESC, id DESC LIMIT ?", (limit,)
            )
        else:
            rows = self._fetchall(
                "SELECT * FROM audit_log WHERE event_type = ? "
                "ORDER BY timestamp DESC, id DESC LIMIT ?",
                (event_type, limit),
            )
        return [self._row_to_entry(row) for row in rows]

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> AuditLogEntry:
        return AuditLogEntry(
            id=row["id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=row["event_type"],
            actor=row["actor"],
            action=row["action"],
            details=_loads(row["details"]) or {},
            market_id=row["market_id"],
            decision_id=row["decision_id"],
            pnl_impact=row["pnl_impact"],
            state_before=_loads(row["state_before"]),
            state_after=_loads(row["state_after"]),
        )

    # Async wrappers so the event loop never blocks on disk I/O
    async def load_state_async(self) -> RiskStateSnapshot | None:
        return await self._run_blocking(self.load_state)

    async def save_with_audit_async(self, state: RiskStateSnapshot, entry: AuditLogEntry) -> int:
        return await self._run_blocking(self.save_with_audit, state, entry)

    async def get_audit_log_async(
        self, limit: int = 100, event_type: str | None = None
    ) -> list[AuditLogEntry]:
        return await self._run_blocking(self.get_audit_log, limit, event_type)
