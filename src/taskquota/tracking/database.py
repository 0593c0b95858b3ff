"""SQLite database layer with async access via aiosqlite."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS task_completions (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id       INTEGER NOT NULL,
    user_id       INTEGER NOT NULL,
    completed_at  TEXT NOT NULL
);
"""

_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_completions_key
    ON task_completions(task_id, user_id);

CREATE INDEX IF NOT EXISTS idx_completions_completed_at
    ON task_completions(completed_at);
"""


class Database:
    """Async SQLite database wrapper using aiosqlite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Use ``":memory:"`` for tests.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._tx_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _create_connection(self) -> aiosqlite.Connection:
        """Create and configure a single aiosqlite connection."""
        # isolation_level=None enables autocommit mode so that only
        # transaction() opens explicit transactions.
        conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA busy_timeout = 5000")
        return conn

    async def initialize(self) -> None:
        """Open the connection, enable WAL mode and create the schema."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = await self._create_connection()
        await self._conn.executescript(_SCHEMA_SQL)
        await self._conn.executescript(_INDEX_SQL)
        await self._conn.commit()
        logger.debug("Database initialized at %s", self.db_path)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    # ------------------------------------------------------------------
    # Transaction support
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self):
        """Async context manager for multi-statement transactions.

        Uses an asyncio lock to prevent concurrent coroutines from
        attempting nested BEGIN on the shared connection.
        """
        conn = self._require_conn()
        async with self._tx_lock:
            await conn.execute("BEGIN")
            try:
                yield conn
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    # ------------------------------------------------------------------
    # Generic query helpers
    # ------------------------------------------------------------------

    async def execute_fetchall(
        self, sql: str, params: tuple = ()
    ) -> list[dict]:
        """Execute a query and return all rows as dicts."""
        conn = self._require_conn()
        cursor = await conn.execute(sql, params)
        rows = await cursor.fetchall()
        if not rows:
            return []
        keys = [desc[0] for desc in cursor.description]
        return [dict(zip(keys, row)) for row in rows]

    async def execute_fetchone(
        self, sql: str, params: tuple = ()
    ) -> dict | None:
        """Execute a query and return the first row as a dict, or None."""
        conn = self._require_conn()
        cursor = await conn.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        keys = [desc[0] for desc in cursor.description]
        return dict(zip(keys, row))
