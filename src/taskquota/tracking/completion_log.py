"""Durable, age-bounded log of task completions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import aiosqlite

from taskquota.errors import StorageError
from taskquota.tracking._time import from_db, to_db, utcnow
from taskquota.tracking.database import Database

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(hours=24)

_STORAGE_ERRORS = (aiosqlite.Error, RuntimeError, OSError)


@dataclass(frozen=True)
class CompletionRecord:
    """One server-accepted completion of *task_id* by *user_id*."""

    task_id: int
    user_id: int
    completed_at: datetime
    id: int | None = None

    @classmethod
    def from_row(cls, row: dict) -> CompletionRecord:
        return cls(
            task_id=row["task_id"],
            user_id=row["user_id"],
            completed_at=from_db(row["completed_at"]),
            id=row.get("id"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "completed_at": self.completed_at.isoformat(),
        }


class CompletionLog:
    """Append-only completion store, pruned to *retention* on every write.

    Parameters
    ----------
    db:
        Initialised :class:`Database`.
    retention:
        Maximum age a record may reach before the next append deletes it.
    clock:
        Callable returning the current aware datetime.
    """

    def __init__(
        self,
        db: Database,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self.retention = retention
        self._clock = clock

    async def append(self, record: CompletionRecord, now: datetime | None = None) -> CompletionRecord:
        """Prune every expired record (all tasks and users), then insert *record*.

        Both statements run in a single transaction.

        Raises
        ------
        StorageError
            If the write fails; nothing is pruned or inserted in that case.
        """
        now = now or self._clock()
        cutoff = to_db(now - self.retention)
        try:
            async with self._db.transaction() as conn:
                pruned = await conn.execute(
                    "DELETE FROM task_completions WHERE completed_at < ?",
                    (cutoff,),
                )
                cursor = await conn.execute(
                    "INSERT INTO task_completions (task_id, user_id, completed_at) "
                    "VALUES (?, ?, ?)",
                    (record.task_id, record.user_id, to_db(record.completed_at)),
                )
                row_id = cursor.lastrowid
        except _STORAGE_ERRORS as exc:
            raise StorageError(f"Failed to record completion: {exc}") from exc

        if pruned.rowcount:
            logger.debug("Pruned %d completions older than %s", pruned.rowcount, cutoff)
        return CompletionRecord(
            task_id=record.task_id,
            user_id=record.user_id,
            completed_at=record.completed_at,
            id=row_id,
        )

    async def prune(self, cutoff: datetime) -> int:
        """Delete every record with ``completed_at < cutoff``; return the count."""
        try:
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    "DELETE FROM task_completions WHERE completed_at < ?",
                    (to_db(cutoff),),
                )
                removed = cursor.rowcount
        except _STORAGE_ERRORS as exc:
            raise StorageError(f"Failed to prune completions: {exc}") from exc
        logger.info("Pruned %d completions older than %s", removed, cutoff.isoformat())
        return removed

    async def query(self, task_id: int, user_id: int) -> list[CompletionRecord]:
        """Return every retained record for the pair, in no particular order.

        Read failures are logged and yield an empty list so that a storage
        fault never blocks a task attempt.
        """
        try:
            rows = await self._db.execute_fetchall(
                "SELECT id, task_id, user_id, completed_at FROM task_completions "
                "WHERE task_id = ? AND user_id = ?",
                (task_id, user_id),
            )
        except _STORAGE_ERRORS:
            logger.exception(
                "Error getting completions for task %s user %s", task_id, user_id
            )
            return []
        return [CompletionRecord.from_row(r) for r in rows]

    async def count(self) -> int:
        """Total number of retained records across all keys."""
        try:
            row = await self._db.execute_fetchone(
                "SELECT COUNT(*) AS n FROM task_completions"
            )
        except _STORAGE_ERRORS as exc:
            raise StorageError(f"Failed to count completions: {exc}") from exc
        return row["n"] if row else 0
