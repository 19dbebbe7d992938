"""
SQLite database connection management
"""

import aiosqlite
import asyncio
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

# Default database file path
DB_FILE = os.path.join(os.path.dirname(os.path.dirname(__file__)), "learning_progress.db")


class Database:
    """One lazily opened aiosqlite connection plus the lock that serializes it"""

    def __init__(self, path: Optional[str] = None):
        if path is None:
            try:
                import config
                path = config.PROGRESS_CONFIG["database_path"]
            except (ImportError, AttributeError, KeyError):
                path = DB_FILE
        self.path = path
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    def get_lock(self) -> asyncio.Lock:
        """Get the database lock for use in store modules"""
        return self._lock

    async def get_db(self) -> aiosqlite.Connection:
        """Get or create database connection"""
        if self._db is None:
            self._db = await aiosqlite.connect(self.path)
            self._db.row_factory = aiosqlite.Row
            await _init_tables(self._db)
            logger.info(f"Connected to SQLite database: {self.path}")
        return self._db

    async def close_db(self):
        """Close database connection"""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Closed SQLite database connection")


async def _init_tables(db: aiosqlite.Connection):
    """Initialize database tables"""
    await db.executescript("""
        -- One aggregate row per user
        CREATE TABLE IF NOT EXISTS learning_statistics (
            user_id TEXT PRIMARY KEY,
            total_sessions INTEGER NOT NULL DEFAULT 0,
            total_questions_attempted INTEGER NOT NULL DEFAULT 0,
            total_questions_correct INTEGER NOT NULL DEFAULT 0,
            best_streak INTEGER NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            best_score INTEGER NOT NULL DEFAULT 0,
            total_time_spent_seconds INTEGER NOT NULL DEFAULT 0,
            easy_questions_attempted INTEGER NOT NULL DEFAULT 0,
            easy_questions_correct INTEGER NOT NULL DEFAULT 0,
            medium_questions_attempted INTEGER NOT NULL DEFAULT 0,
            medium_questions_correct INTEGER NOT NULL DEFAULT 0,
            hard_questions_attempted INTEGER NOT NULL DEFAULT 0,
            hard_questions_correct INTEGER NOT NULL DEFAULT 0,
            first_session_date REAL,
            last_session_date REAL,
            updated_at REAL
        );

        -- Completed sessions (write-once)
        CREATE TABLE IF NOT EXISTS learning_sessions (
            session_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            difficulty TEXT NOT NULL CHECK (difficulty IN ('easy', 'medium', 'hard')),
            session_start REAL NOT NULL,
            session_end REAL NOT NULL,
            questions_attempted INTEGER NOT NULL DEFAULT 0,
            questions_correct INTEGER NOT NULL DEFAULT 0,
            max_streak INTEGER NOT NULL DEFAULT 0,
            final_score INTEGER NOT NULL DEFAULT 0,
            session_duration_seconds INTEGER NOT NULL DEFAULT 0,
            recovered INTEGER NOT NULL DEFAULT 0,
            created_at REAL
        );

        -- Last merged snapshot of sessions that have not ended yet
        CREATE TABLE IF NOT EXISTS session_checkpoints (
            session_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            snapshot TEXT NOT NULL,
            updated_at REAL
        );

        -- Indexes for fast lookups
        CREATE INDEX IF NOT EXISTS idx_learning_sessions_user ON learning_sessions(user_id, session_end);
        CREATE INDEX IF NOT EXISTS idx_session_checkpoints_user ON session_checkpoints(user_id);
    """)
    await db.commit()
