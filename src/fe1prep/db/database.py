"""SQLite database connection and schema management.

Provides connection management and schema initialization for the
progress and simulation engines.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

import structlog

logger = structlog.get_logger(__name__)

# Default database location
DEFAULT_DB_PATH = Path("db/fe1prep.db")

# Current database path (set once by init_db)
_db_path: Path | None = None


def utcnow() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def init_db(db_path: Path | None = None) -> None:
    """Initialize database with schema.

    Creates the database file and all required tables if they don't exist.

    Args:
        db_path: Path to database file. Defaults to db/fe1prep.db
    """
    global _db_path
    _db_path = db_path or DEFAULT_DB_PATH

    # Ensure directory exists
    _db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db() as conn:
        _create_schema(conn)

    logger.info("database.initialized", path=str(_db_path))


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get database connection as context manager.

    Commits on success, rolls back on any exception.

    Yields:
        SQLite connection with row factory set to sqlite3.Row

    Example:
        with get_db() as conn:
            rows = conn.execute("SELECT * FROM subjects").fetchall()
    """
    db_path = _db_path or DEFAULT_DB_PATH

    # Ensure directory exists
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Uses IF NOT EXISTS for idempotency. Composite UNIQUE constraints back
    every upsert and the one-attempt-per-question rule.
    """
    conn.executescript(
        """
        -- Content (owned by the content collaborator, read-only to the core)
        CREATE TABLE IF NOT EXISTS subjects (
            subject_id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            is_published INTEGER NOT NULL DEFAULT 1
        );

        CREATE TABLE IF NOT EXISTS modules (
            module_id TEXT PRIMARY KEY,
            subject_id TEXT NOT NULL REFERENCES subjects(subject_id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            "order" INTEGER NOT NULL DEFAULT 0,
            is_published INTEGER NOT NULL DEFAULT 1
        );

        CREATE TABLE IF NOT EXISTS lessons (
            lesson_id TEXT PRIMARY KEY,
            module_id TEXT NOT NULL REFERENCES modules(module_id) ON DELETE CASCADE,
            title TEXT NOT NULL,
            "order" INTEGER NOT NULL DEFAULT 0,
            video_duration INTEGER,
            is_published INTEGER NOT NULL DEFAULT 1
        );

        CREATE TABLE IF NOT EXISTS essay_questions (
            question_id TEXT PRIMARY KEY,
            subject TEXT NOT NULL,
            year INTEGER,
            exam_type TEXT,
            description TEXT,
            text TEXT NOT NULL,
            points INTEGER NOT NULL DEFAULT 20,
            is_published INTEGER NOT NULL DEFAULT 1
        );

        -- Progress rollup
        CREATE TABLE IF NOT EXISTS lesson_progress (
            user_id TEXT NOT NULL,
            lesson_id TEXT NOT NULL REFERENCES lessons(lesson_id) ON DELETE CASCADE,
            video_watched_seconds INTEGER NOT NULL DEFAULT 0,
            is_completed INTEGER NOT NULL DEFAULT 0,
            completed_at TEXT,
            time_spent_seconds INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL,
            UNIQUE (user_id, lesson_id)
        );

        CREATE TABLE IF NOT EXISTS module_progress (
            user_id TEXT NOT NULL,
            module_id TEXT NOT NULL REFERENCES modules(module_id) ON DELETE CASCADE,
            completed_lessons INTEGER NOT NULL DEFAULT 0,
            total_lessons INTEGER NOT NULL DEFAULT 0,
            progress_percent REAL NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'NOT_STARTED'
                CHECK(status IN ('NOT_STARTED', 'IN_PROGRESS', 'COMPLETED')),
            last_accessed_at TEXT NOT NULL,
            UNIQUE (user_id, module_id)
        );

        CREATE TABLE IF NOT EXISTS subject_progress (
            user_id TEXT NOT NULL,
            subject_id TEXT NOT NULL REFERENCES subjects(subject_id) ON DELETE CASCADE,
            progress_percent REAL NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'NOT_STARTED'
                CHECK(status IN ('NOT_STARTED', 'IN_PROGRESS', 'COMPLETED')),
            total_time_seconds INTEGER NOT NULL DEFAULT 0,
            last_accessed_at TEXT NOT NULL,
            UNIQUE (user_id, subject_id)
        );

        -- Simulation engine
        CREATE TABLE IF NOT EXISTS simulations (
            simulation_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            question_ids TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'CREATED'
                CHECK(status IN ('CREATED', 'IN_PROGRESS', 'COMPLETED', 'FAILED')),
            started_at TEXT NOT NULL,
            ended_at TEXT,
            overall_score INTEGER,
            passed INTEGER,
            fail_reason TEXT
        );

        CREATE TABLE IF NOT EXISTS essay_attempts (
            attempt_id TEXT PRIMARY KEY,
            simulation_id TEXT REFERENCES simulations(simulation_id) ON DELETE CASCADE,
            question_id TEXT NOT NULL REFERENCES essay_questions(question_id),
            user_id TEXT NOT NULL,
            answer_text TEXT NOT NULL,
            word_count INTEGER NOT NULL,
            time_taken_seconds INTEGER NOT NULL,
            is_simulation INTEGER NOT NULL DEFAULT 0,
            ai_score INTEGER,
            band TEXT,
            feedback TEXT,
            strengths TEXT,
            improvements TEXT,
            sample_answer TEXT,
            tokens_used INTEGER,
            graded_at TEXT,
            created_at TEXT NOT NULL,
            UNIQUE (simulation_id, question_id)
        );

        CREATE TABLE IF NOT EXISTS question_timers (
            timer_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            simulation_id TEXT NOT NULL REFERENCES simulations(simulation_id) ON DELETE CASCADE,
            question_id TEXT NOT NULL,
            started_at TEXT NOT NULL,
            ended_at TEXT
        );

        -- Indexes
        CREATE INDEX IF NOT EXISTS idx_modules_subject ON modules(subject_id);
        CREATE INDEX IF NOT EXISTS idx_lessons_module ON lessons(module_id);
        CREATE INDEX IF NOT EXISTS idx_simulations_user ON simulations(user_id);
        CREATE INDEX IF NOT EXISTS idx_timers_lookup
            ON question_timers(user_id, simulation_id, question_id);
        """
    )
