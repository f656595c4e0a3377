"""
Historical market data repository for backtesting.

Schema:
    historical_trades: one row per trade print, unique tx_hash.
    historical_markets: one row per market, upserted on market_id.
        outcome is 'answer1' (YES won), 'answer2' (NO won) or NULL.

Timestamps are stored as ISO-8601 UTC strings so lexical order matches
chronological order.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd

from config.constants import DIRECTIONS
from execution.models import Tick
from execution.sqlite_mixin import SQLiteTransactionMixin

logger = logging.getLogger(__name__)

OUTCOME_YES = "answer1"
OUTCOME_NO = "answer2"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS historical_trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    market_id TEXT NOT NULL,
    price REAL NOT NULL,
    usd_amount REAL NOT NULL,
    token_amount REAL,
    maker TEXT,
    taker TEXT,
    maker_direction TEXT,
    taker_direction TEXT,
    tx_hash TEXT UNIQUE
);

CREATE INDEX IF NOT EXISTS idx_hist_trades_market_ts
    ON historical_trades(market_id, timestamp);

CREATE TABLE IF NOT EXISTS historical_markets (
    market_id TEXT PRIMARY KEY,
    condition_id TEXT,
    question TEXT NOT NULL,
    answer1 TEXT,
    answer2 TEXT,
    token1 TEXT,
    token2 TEXT,
    market_slug TEXT,
    volume_total REAL,
    created_at TEXT,
    closed_at TEXT,
    outcome TEXT
);

CREATE INDEX IF NOT EXISTS idx_hist_markets_closed
    ON historical_markets(closed_at);
"""

_TRADE_INSERT = """
INSERT INTO historical_trades (
    timestamp, market_id, price, usd_amount, token_amount,
    maker, taker, maker_direction, taker_direction, tx_hash
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(tx_hash) DO NOTHING
"""

_MARKET_UPSERT = """
INSERT INTO historical_markets (
    market_id, condition_id, question, answer1, answer2,
    token1, token2, market_slug, volume_total, created_at, closed_at, outcome
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(market_id) DO UPDATE SET
    condition_id = excluded.condition_id,
    question = excluded.question,
    answer1 = excluded.answer1,
    answer2 = excluded.answer2,
    token1 = excluded.token1,
    token2 = excluded.token2,
    market_slug = excluded.market_slug,
    volume_total = excluded.volume_total,
    closed_at = excluded.closed_at,
    outcome = excluded.outcome
"""


def to_utc_iso(value: datetime) -> str:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class HistoricalTrade:
    timestamp: datetime
    market_id: str
    price: float
    usd_amount: float
    token_amount: float | None = None
    maker: str | None = None
    taker: str | None = None
    maker_direction: str | None = None
    taker_direction: str | None = None
    tx_hash: str | None = None

    def to_tick(self) -> Tick:
        return Tick(timestamp=self.timestamp, price=self.price, size=self.usd_amount)

    def _params(self) -> tuple:
        return (
            to_utc_iso(self.timestamp),
            self.market_id,
            self.price,
            self.usd_amount,
            self.token_amount,
            self.maker,
            self.taker,
            self.maker_direction,
            self.taker_direction,
            self.tx_hash,
        )


@dataclass(frozen=True)
class HistoricalMarket:
    market_id: str
    question: str
    condition_id: str | None = None
    answer1: str | None = None
    answer2: str | None = None
    token1: str | None = None
    token2: str | None = None
    market_slug: str | None = None
    volume_total: float | None = None
    created_at: datetime | None = None
    closed_at: datetime | None = None
    outcome: str | None = None

    @property
    def resolution(self) -> DIRECTIONS | None:
        """Winning side, None while unresolved."""
        if self.outcome == OUTCOME_YES:
            return DIRECTIONS.YES
        if self.outcome == OUTCOME_NO:
            return DIRECTIONS.NO
        return None

    def _params(self) -> tuple:
        return (
            self.market_id,
            self.condition_id,
            self.question,
            self.answer1,
            self.answer2,
            self.token1,
            self.token2,
            self.market_slug,
            self.volume_total,
            to_utc_iso(self.created_at) if self.created_at else None,
            to_utc_iso(self.closed_at) if self.closed_at else None,
            self.outcome,
        )


class HistoricalDataStore(SQLiteTransactionMixin):
    """SQLite repository for historical trades and markets."""

    def __init__(self, db_path: str | Path):
        super().__init__(db_path)
        self._executescript(_SCHEMA)

    def insert_trade(self, trade: HistoricalTrade) -> bool:
        """Returns False if the tx_hash was already stored."""
        with self._transaction() as conn:
            return conn.execute(_TRADE_INSERT, trade._params()).rowcount > 0

    def bulk_insert_trades(self, trades: list[HistoricalTrade]) -> int:
        """Insert in one transaction. Returns the number of new rows."""
        inserted = 0
        with self._transaction() as conn:
            for trade in trades:
                inserted += conn.execute(_TRADE_INSERT, trade._params()).rowcount
        logger.info(f"[DATA] Inserted {inserted}/{len(trades)} historical trades")
        return inserted

    def insert_market(self, market: HistoricalMarket) -> None:
        with self._transaction() as conn:
            conn.execute(_MARKET_UPSERT, market._params())

    def bulk_insert_markets(self, markets: list[HistoricalMarket]) -> int:
        with self._transaction() as conn:
            conn.executemany(_MARKET_UPSERT, [m._params() for m in markets])
        logger.info(f"[DATA] Upserted {len(markets)} historical markets")
        return len(markets)

    def get_trades_by_market(
        self,
        market_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[HistoricalTrade]:
        """Trades for one market in ascending timestamp order."""
        sql = "SELECT * FROM historical_trades WHERE market_id = ?"
        params: list[Any] = [market_id]
        if start is not None:
            sql += " AND timestamp >= ?"
            params.append(to_utc_iso(start))
        if end is not None:
            sql += " AND timestamp <= ?"
            params.append(to_utc_iso(end))
        sql += " ORDER BY timestamp ASC, id ASC"
        return [self._row_to_trade(row) for row in self._fetchall(sql, tuple(params))]

    def get_market(self, market_id: str) -> HistoricalMarket | None:
        row = self._fetchone("SELECT * FROM historical_markets WHERE market_id = ?", (market_id,))
        return self._row_to_market(row) if row else None

    def get_resolved_markets(self, start: datetime, end: datetime) -> list[HistoricalMarket]:
        """Markets with an outcome that closed within ``[start, end]``."""
        rows = self._fetchall(
            """
            SELECT * FROM historical_markets
            WHERE outcome IS NOT NULL
              AND closed_at IS NOT NULL
              AND closed_at >= ?
              AND closed_at <= ?
            ORDER BY closed_at ASC
            """,
            (to_utc_iso(start), to_utc_iso(end)),
        )
        return [self._row_to_market(row) for row in rows]

    def get_stats(self) -> dict[str, Any]:
        trades = self._fetchone(
            "SELECT COUNT(*) AS n, MIN(timestamp) AS first, MAX(timestamp) AS last FROM historical_trades"
        )
        markets = self._fetchone("SELECT COUNT(*) AS n FROM historical_markets")
        resolved = self._fetchone(
            "SELECT COUNT(*) AS n FROM historical_markets WHERE outcome IS NOT NULL"
        )
        return {
            "trade_count": trades["n"],
            "market_count": markets["n"],
            "resolved_count": resolved["n"],
            "date_range": {
                "from": _parse(trades["first"]),
                "to": _parse(trades["last"]),
            },
        }

    @staticmethod
    def _row_to_trade(row) -> HistoricalTrade:
        return HistoricalTrade(
            timestamp=datetime.fromisoformat(row["timestamp"]),
            market_id=row["market_id"],
            price=row["price"],
            usd_amount=row["usd_amount"],
            token_amount=row["token_amount"],
            maker=row["maker"],
            taker=row["taker"],
            maker_direction=row["maker_direction"],
            taker_direction=row["taker_direction"],
            tx_hash=row["tx_hash"],
        )

    @staticmethod
    def _row_to_market(row) -> HistoricalMarket:
        return HistoricalMarket(
            market_id=row["market_id"],
            question=row["question"],
            condition_id=row["condition_id"],
            answer1=row["answer1"],
            answer2=row["answer2"],
            token1=row["token1"],
            token2=row["token2"],
            market_slug=row["market_slug"],
            volume_total=row["volume_total"],
            created_at=_parse(row["created_at"]),
            closed_at=_parse(row["closed_at"]),
            outcome=row["outcome"],
        )


def _optional(value: Any) -> Any:
    return None if pd.isna(value) else value


def _float_or_none(value: Any) -> float | None:
    return None if pd.isna(value) else float(value)


def _optional_time(value: Any) -> datetime | None:
    return None if pd.isna(value) else pd.to_datetime(value, utc=True).to_pydatetime()


def trades_from_frame(frame: pd.DataFrame) -> list[HistoricalTrade]:
    """
    Convert a trade export to HistoricalTrade records.

    Required columns: timestamp, market_id, price, usd_amount. Rows with a
    price outside [0, 1] are dropped.
    """
    missing = {"timestamp", "market_id", "price", "usd_amount"} - set(frame.columns)
    if missing:
        raise ValueError(f"Trade frame is missing columns: {sorted(missing)}")

    frame = frame.copy()
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True)
    valid = frame["price"].between(0, 1)
    if (~valid).any():
        logger.warning(f"[DATA] Dropping {int((~valid).sum())} trades with price outside [0, 1]")
    frame = frame[valid]

    trades = []
    for row in frame.to_dict("records"):
        trades.append(
            HistoricalTrade(
                timestamp=row["timestamp"].to_pydatetime(),
                market_id=str(row["market_id"]),
                price=float(row["price"]),
                usd_amount=float(row["usd_amount"]),
                token_amount=_float_or_none(row.get("token_amount")),
                maker=_optional(row.get("maker")),
                taker=_optional(row.get("taker")),
                maker_direction=_optional(row.get("maker_direction")),
                taker_direction=_optional(row.get("taker_direction")),
                tx_hash=_optional(row.get("tx_hash")),
            )
        )
    return trades


def markets_from_frame(frame: pd.DataFrame) -> list[HistoricalMarket]:
    """Required columns: market_id, question."""
    missing = {"market_id", "question"} - set(frame.columns)
    if missing:
        raise ValueError(f"Market frame is missing columns: {sorted(missing)}")

    markets = []
    for row in frame.to_dict("records"):
        markets.append(
            HistoricalMarket(
                market_id=str(row["market_id"]),
                question=str(row["question"]),
                condition_id=_optional(row.get("condition_id")),
                answer1=_optional(row.get("answer1")),
                answer2=_optional(row.get("answer2")),
                token1=_optional(row.get("token1")),
                token2=_optional(row.get("token2")),
                market_slug=_optional(row.get("market_slug")),
                volume_total=_float_or_none(row.get("volume_total")),
                created_at=_optional_time(row.get("created_at")),
                closed_at=_optional_time(row.get("closed_at")),
                outcome=_optional(row.get("outcome")),
            )
        )
    return markets
