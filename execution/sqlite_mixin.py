"""
SQLite Transaction Mixin.

Shared connection handling for the SQLite-backed stores (risk state store,
historical data store): one connection per thread, WAL journaling, a write
lock around every transaction and helpers for pushing blocking calls off the
event loop.
"""

import asyncio
import logging
import sqlite3
import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar, cast

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLiteTransactionMixin:
    """
    Thread-safe SQLite access for store classes.

    Subclasses call ``super().__init__(db_path)`` and then create their
    schema with ``self._executescript(...)``.

    Attributes:
        _db_path (Path): Path to the database file.
        _write_lock (threading.Lock): Serialises write transactions.
        _local (threading.local): Per-thread connection holder.
    """

    def __init__(self, db_path: str | Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._local = threading.local()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        """Return this thread's connection, opening it on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30.0)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return cast(sqlite3.Connection, conn)

    @contextmanager
    def _transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Atomic write block.

        Usage:
            with self._transaction() as conn:
                conn.execute(...)
        """
        conn = self._get_connection()
        with self._write_lock:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def _executescript(self, script: str) -> None:
        with self._write_lock:
            self._get_connection().executescript(script)

    def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        return self._get_connection().execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return self._get_connection().execute(sql, params).fetchall()

    @staticmethod
    async def _run_blocking(func: Callable[..., T], *args: Any) -> T:
        """Run a blocking store call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args))

    def close(self) -> None:
        """Close this thread's connection if it is open."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
