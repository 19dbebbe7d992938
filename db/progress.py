"""
SQLite-backed aggregate store for learning progress
"""

import json
import logging
import time
from typing import Callable, List, Optional

import aiosqlite

from db.connection import Database
from learning.errors import StoreUnavailable
from learning.models import (
    Aggregate,
    Difficulty,
    MergeRequest,
    SessionHistoryRecord,
    SessionSnapshot,
)
from learning.store import AggregateStore

logger = logging.getLogger(__name__)

_MERGE_SQL = """
    INSERT INTO learning_statistics (
        user_id, total_sessions, total_questions_attempted, total_questions_correct,
        best_streak, current_streak, best_score, total_time_spent_seconds,
        easy_questions_attempted, easy_questions_correct,
        medium_questions_attempted, medium_questions_correct,
        hard_questions_attempted, hard_questions_correct,
        first_session_date, last_session_date, updated_at
    ) VALUES (
        :user_id, :sessions, :attempted, :correct,
        :max_streak, :current_streak, :score, :duration_seconds,
        :easy_attempted, :easy_correct,
        :medium_attempted, :medium_correct,
        :hard_attempted, :hard_correct,
        :now, :now, :now
    )
    ON CONFLICT(user_id) DO UPDATE SET
        total_sessions = total_sessions + excluded.total_sessions,
        total_questions_attempted = total_questions_attempted + excluded.total_questions_attempted,
        total_questions_correct = total_questions_correct + excluded.total_questions_correct,
        best_streak = MAX(best_streak, excluded.best_streak),
        current_streak = excluded.current_streak,
        best_score = MAX(best_score, excluded.best_score),
        total_time_spent_seconds = total_time_spent_seconds + excluded.total_time_spent_seconds,
        easy_questions_attempted = easy_questions_attempted + excluded.easy_questions_attempted,
        easy_questions_correct = easy_questions_correct + excluded.easy_questions_correct,
        medium_questions_attempted = medium_questions_attempted + excluded.medium_questions_attempted,
        medium_questions_correct = medium_questions_correct + excluded.medium_questions_correct,
        hard_questions_attempted = hard_questions_attempted + excluded.hard_questions_attempted,
        hard_questions_correct = hard_questions_correct + excluded.hard_questions_correct,
        first_session_date = COALESCE(first_session_date, excluded.first_session_date),
        last_session_date = excluded.last_session_date,
        updated_at = excluded.updated_at
"""


def _row_to_aggregate(row: aiosqlite.Row) -> Aggregate:
    return Aggregate(
        user_id=row["user_id"],
        total_sessions=row["total_sessions"],
        total_questions_attempted=row["total_questions_attempted"],
        total_questions_correct=row["total_questions_correct"],
        best_streak=row["best_streak"],
        current_streak=row["current_streak"],
        best_score=row["best_score"],
        total_time_spent_seconds=row["total_time_spent_seconds"],
        difficulty_stats={
            d.value: {
                "attempted": row[f"{d.value}_questions_attempted"],
                "correct": row[f"{d.value}_questions_correct"],
            }
            for d in Difficulty
        },
        first_session_date=row["first_session_date"],
        last_session_date=row["last_session_date"],
    )


def _row_to_record(row: aiosqlite.Row) -> SessionHistoryRecord:
    return SessionHistoryRecord(
        session_id=row["session_id"],
        user_id=row["user_id"],
        difficulty=Difficulty(row["difficulty"]),
        started_at=row["session_start"],
        ended_at=row["session_end"],
        questions_attempted=row["questions_attempted"],
        questions_correct=row["questions_correct"],
        max_streak=row["max_streak"],
        final_score=row["final_score"],
        duration_seconds=row["session_duration_seconds"],
        recovered=bool(row["recovered"]),
    )


class SqliteAggregateStore(AggregateStore):
    """Local durable store; every write is a single transaction"""

    def __init__(self, database: Optional[Database] = None, clock: Callable[[], float] = time.time):
        self.database = database or Database()
        self.clock = clock

    @property
    def name(self) -> str:
        return "SQLite store"

    async def initialize(self):
        try:
            await self.database.get_db()
        except aiosqlite.Error as e:
            raise StoreUnavailable(f"Cannot open {self.database.path}: {e}") from e

    async def close(self):
        await self.database.close_db()

    async def _rollback(self, db: aiosqlite.Connection):
        try:
            await db.rollback()
        except aiosqlite.Error as e:
            logger.error(f"Rollback failed: {e}")

    async def load_aggregate(self, user_id: str) -> Optional[Aggregate]:
        try:
            db = await self.database.get_db()
            async with self.database.get_lock():
                cursor = await db.execute(
                    "SELECT * FROM learning_statistics WHERE user_id = ?", (user_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreUnavailable(f"Failed to load statistics: {e}") from e

        return _row_to_aggregate(row) if row else None

    async def merge_incremental(self, user_id: str, request: MergeRequest):
        now = self.clock()
        params = {
            "user_id": user_id,
            "sessions": request.sessions,
            "attempted": request.attempted,
            "correct": request.correct,
            "max_streak": request.max_streak,
            "current_streak": request.current_streak,
            "score": request.score,
            "duration_seconds": request.duration_seconds,
            "now": now,
        }
        for name, counts in request.difficulty_increments().items():
            params[f"{name}_attempted"] = counts["attempted"]
            params[f"{name}_correct"] = counts["correct"]

        try:
            db = await self.database.get_db()
            async with self.database.get_lock():
                try:
                    await db.execute(_MERGE_SQL, params)
                    if request.checkpoint is not None:
                        await db.execute(
                            "INSERT INTO session_checkpoints (session_id, user_id, snapshot, updated_at) "
                            "VALUES (?, ?, ?, ?) "
                            "ON CONFLICT(session_id) DO UPDATE SET "
                            "snapshot = excluded.snapshot, updated_at = excluded.updated_at",
                            (
                                request.checkpoint.session_id,
                                user_id,
                                json.dumps(request.checkpoint.to_dict()),
                                now,
                            )
                        )
                    await db.commit()
                except aiosqlite.Error:
                    await self._rollback(db)
                    raise
        except aiosqlite.Error as e:
            raise StoreUnavailable(f"Failed to merge progress: {e}") from e

        logger.debug(f"Merged progress for {user_id}: +{request.attempted} attempted, "
                     f"+{request.correct} correct, streak {request.current_streak}")

    async def append_session_history(self, record: SessionHistoryRecord) -> bool:
        try:
            db = await self.database.get_db()
            async with self.database.get_lock():
                try:
                    cursor = await db.execute(
                        "INSERT OR IGNORE INTO learning_sessions (session_id, user_id, difficulty, "
                        "session_start, session_end, questions_attempted, questions_correct, max_streak, "
                        "final_score, session_duration_seconds, recovered, created_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            record.session_id,
                            record.user_id,
                            record.difficulty.value,
                            record.started_at,
                            record.ended_at,
                            record.questions_attempted,
                            record.questions_correct,
                            record.max_streak,
                            record.final_score,
                            record.duration_seconds,
                            int(record.recovered),
                            self.clock(),
                        )
                    )
                    inserted = cursor.rowcount > 0
                    await db.execute(
                        "DELETE FROM session_checkpoints WHERE session_id = ?", (record.session_id,)
                    )
                    await db.commit()
                except aiosqlite.Error:
                    await self._rollback(db)
                    raise
        except aiosqlite.Error as e:
            raise StoreUnavailable(f"Failed to save session history: {e}") from e

        return inserted

    async def load_open_checkpoints(self, user_id: str) -> List[SessionSnapshot]:
        try:
            db = await self.database.get_db()
            async with self.database.get_lock():
                cursor = await db.execute(
                    "SELECT snapshot FROM session_checkpoints WHERE user_id = ? ORDER BY updated_at",
                    (user_id,)
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreUnavailable(f"Failed to load open sessions: {e}") from e

        checkpoints = []
        for row in rows:
            try:
                checkpoints.append(SessionSnapshot.from_dict(json.loads(row["snapshot"])))
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                logger.error(f"Skipping unreadable checkpoint for {user_id}: {e}")
        return checkpoints

    async def recent_sessions(self, user_id: str, limit: int = 10) -> List[SessionHistoryRecord]:
        try:
            db = await self.database.get_db()
            async with self.database.get_lock():
                cursor = await db.execute(
                    "SELECT * FROM learning_sessions WHERE user_id = ? "
                    "ORDER BY session_end DESC LIMIT ?",
                    (user_id, limit)
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreUnavailable(f"Failed to load recent sessions: {e}") from e

        return [_row_to_record(row) for row in rows]

    async def reset_statistics(self, user_id: str):
        try:
            db = await self.database.get_db()
            async with self.database.get_lock():
                try:
                    await db.execute("DELETE FROM learning_sessions WHERE user_id = ?", (user_id,))
                    await db.execute("DELETE FROM session_checkpoints WHERE user_id = ?", (user_id,))
                    await db.execute(
                        "INSERT OR REPLACE INTO learning_statistics (user_id, updated_at) VALUES (?, ?)",
                        (user_id, self.clock())
                    )
                    await db.commit()
                except aiosqlite.Error:
                    await self._rollback(db)
                    raise
        except aiosqlite.Error as e:
            raise StoreUnavailable(f"Failed to reset statistics: {e}") from e

    async def delete_user_data(self, user_id: str):
        try:
            db = await self.database.get_db()
            async with self.database.get_lock():
                try:
                    for table in ("learning_sessions", "session_checkpoints", "learning_statistics"):
                        await db.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))
                    await db.commit()
                except aiosqlite.Error:
                    await self._rollback(db)
                    raise
        except aiosqlite.Error as e:
            raise StoreUnavailable(f"Failed to delete user data: {e}") from e
