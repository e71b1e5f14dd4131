"""Repository functions for lesson, module and subject progress.

Every write is a single atomic statement keyed on the composite
(user, entity) UNIQUE constraint, so repeated or interleaved calls
converge instead of duplicating rows.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from fe1prep.db.database import get_db, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class LessonProgressRecord:
    """Per (user, lesson) progress row."""

    user_id: str
    lesson_id: str
    video_watched_seconds: int
    is_completed: bool
    completed_at: str | None
    time_spent_seconds: int
    updated_at: str


@dataclass
class LessonState:
    """A published lesson of a module and this user's progress on it."""

    lesson_id: str
    is_completed: bool
    video_watched_seconds: int


@dataclass
class CompletedLesson:
    """A completed lesson with the name of its subject."""

    lesson_id: str
    title: str
    subject_name: str
    completed_at: str


@dataclass
class ModuleProgressRecord:
    """Per (user, module) progress row."""

    user_id: str
    module_id: str
    completed_lessons: int
    total_lessons: int
    progress_percent: float
    status: str
    last_accessed_at: str


@dataclass
class SubjectProgressRecord:
    """Per (user, subject) progress row."""

    user_id: str
    subject_id: str
    progress_percent: float
    status: str
    total_time_seconds: int
    last_accessed_at: str


# =============================================================================
# LESSON PROGRESS
# =============================================================================


def ensure_lesson_progress(user_id: str, lesson_id: str) -> None:
    """Create the lesson progress row if absent; no-op otherwise."""
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO lesson_progress (user_id, lesson_id, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id, lesson_id) DO NOTHING
            """,
            (user_id, lesson_id, utcnow()),
        )


def upsert_video_position(
    user_id: str,
    lesson_id: str,
    video_watched_seconds: int,
    time_spent_seconds: int = 0,
) -> None:
    """Record the latest watch position and accumulate time spent.

    Never touches the completion columns.
    """
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO lesson_progress (
                user_id, lesson_id, video_watched_seconds, time_spent_seconds, updated_at
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, lesson_id) DO UPDATE SET
                video_watched_seconds = excluded.video_watched_seconds,
                time_spent_seconds = lesson_progress.time_spent_seconds + excluded.time_spent_seconds,
                updated_at = excluded.updated_at
            """,
            (user_id, lesson_id, video_watched_seconds, time_spent_seconds, utcnow()),
        )


def mark_lesson_completed(user_id: str, lesson_id: str) -> bool:
    """Flip a lesson to completed.

    Returns:
        True only for the call that performed the transition; False when the
        lesson was already completed (or the row is missing).
    """
    now = utcnow()
    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE lesson_progress
            SET is_completed = 1, completed_at = ?, updated_at = ?
            WHERE user_id = ? AND lesson_id = ? AND is_completed = 0
            """,
            (now, now, user_id, lesson_id),
        )

    flipped = cursor.rowcount > 0
    if flipped:
        logger.debug("lesson_progress.completed", user_id=user_id, lesson_id=lesson_id)

    return flipped


def get_lesson_progress(user_id: str, lesson_id: str) -> LessonProgressRecord | None:
    """Get lesson progress for a user."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM lesson_progress WHERE user_id = ? AND lesson_id = ?",
            (user_id, lesson_id),
        ).fetchone()

    if row is None:
        return None

    return LessonProgressRecord(
        user_id=row["user_id"],
        lesson_id=row["lesson_id"],
        video_watched_seconds=row["video_watched_seconds"],
        is_completed=bool(row["is_completed"]),
        completed_at=row["completed_at"],
        time_spent_seconds=row["time_spent_seconds"],
        updated_at=row["updated_at"],
    )


def list_module_lesson_states(user_id: str, module_id: str) -> list[LessonState]:
    """Published lessons of a module with this user's completion state.

    Lessons the user never opened appear as not completed, zero watched.
    """
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT l.lesson_id,
                   COALESCE(lp.is_completed, 0) AS is_completed,
                   COALESCE(lp.video_watched_seconds, 0) AS video_watched_seconds
            FROM lessons l
            LEFT JOIN lesson_progress lp
                ON lp.lesson_id = l.lesson_id AND lp.user_id = ?
            WHERE l.module_id = ? AND l.is_published = 1
            ORDER BY l."order", l.lesson_id
            """,
            (user_id, module_id),
        ).fetchall()

    return [
        LessonState(
            lesson_id=row["lesson_id"],
            is_completed=bool(row["is_completed"]),
            video_watched_seconds=row["video_watched_seconds"],
        )
        for row in rows
    ]


def sum_subject_time_spent(user_id: str, subject_id: str) -> int:
    """Total lesson time spent by a user across a subject."""
    with get_db() as conn:
        row = conn.execute(
            """
            SELECT COALESCE(SUM(lp.time_spent_seconds), 0) AS total
            FROM lesson_progress lp
            JOIN lessons l ON l.lesson_id = lp.lesson_id
            JOIN modules m ON m.module_id = l.module_id
            WHERE lp.user_id = ? AND m.subject_id = ?
            """,
            (user_id, subject_id),
        ).fetchone()

    return row["total"]


def sum_module_time_spent(user_id: str, module_id: str) -> int:
    """Total lesson time spent by a user across a module's published lessons."""
    with get_db() as conn:
        row = conn.execute(
            """
            SELECT COALESCE(SUM(lp.time_spent_seconds), 0) AS total
            FROM lesson_progress lp
            JOIN lessons l ON l.lesson_id = lp.lesson_id
            WHERE lp.user_id = ? AND l.module_id = ? AND l.is_published = 1
            """,
            (user_id, module_id),
        ).fetchone()

    return row["total"]


def count_lessons_completed_since(user_id: str, since: str) -> int:
    """Lessons a user completed at or after an ISO 8601 UTC timestamp."""
    with get_db() as conn:
        row = conn.execute(
            """
            SELECT COUNT(*) AS total
            FROM lesson_progress
            WHERE user_id = ? AND is_completed = 1 AND completed_at >= ?
            """,
            (user_id, since),
        ).fetchone()

    return row["total"]


def list_recently_completed_lessons(user_id: str, limit: int) -> list[CompletedLesson]:
    """A user's completed lessons, most recent first, with their subject name."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT lp.lesson_id, l.title, s.name AS subject_name, lp.completed_at
            FROM lesson_progress lp
            JOIN lessons l ON l.lesson_id = lp.lesson_id
            JOIN modules m ON m.module_id = l.module_id
            JOIN subjects s ON s.subject_id = m.subject_id
            WHERE lp.user_id = ? AND lp.is_completed = 1
            ORDER BY lp.completed_at DESC, lp.lesson_id
            LIMIT ?
            """,
            (user_id, limit),
        ).fetchall()

    return [
        CompletedLesson(
            lesson_id=row["lesson_id"],
            title=row["title"],
            subject_name=row["subject_name"],
            completed_at=row["completed_at"],
        )
        for row in rows
    ]


# =============================================================================
# MODULE PROGRESS
# =============================================================================


def touch_module_progress(user_id: str, module_id: str, total_lessons: int) -> None:
    """Create the module progress row or bump last_accessed_at only."""
    now = utcnow()
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO module_progress (user_id, module_id, total_lessons, last_accessed_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id, module_id) DO UPDATE SET
                last_accessed_at = excluded.last_accessed_at
            """,
            (user_id, module_id, total_lessons, now),
        )


def upsert_module_progress(
    user_id: str,
    module_id: str,
    completed_lessons: int,
    total_lessons: int,
    progress_percent: float,
    status: str,
) -> None:
    """Write recomputed module aggregates."""
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO module_progress (
                user_id, module_id, completed_lessons, total_lessons,
                progress_percent, status, last_accessed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, module_id) DO UPDATE SET
                completed_lessons = excluded.completed_lessons,
                total_lessons = excluded.total_lessons,
                progress_percent = excluded.progress_percent,
                status = excluded.status
            """,
            (
                user_id,
                module_id,
                completed_lessons,
                total_lessons,
                progress_percent,
                status,
                utcnow(),
            ),
        )

    logger.debug(
        "module_progress.upserted",
        user_id=user_id,
        module_id=module_id,
        progress_percent=progress_percent,
        status=status,
    )


def get_module_progress(user_id: str, module_id: str) -> ModuleProgressRecord | None:
    """Get module progress for a user."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM module_progress WHERE user_id = ? AND module_id = ?",
            (user_id, module_id),
        ).fetchone()

    if row is None:
        return None

    return _row_to_module_progress(row)


def list_module_progress_for_subject(
    user_id: str, subject_id: str
) -> dict[str, ModuleProgressRecord]:
    """Module progress rows of a user for the published modules of a subject.

    Returns:
        Mapping module_id -> record; modules without a row are absent.
    """
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT mp.*
            FROM module_progress mp
            JOIN modules m ON m.module_id = mp.module_id
            WHERE mp.user_id = ? AND m.subject_id = ? AND m.is_published = 1
            """,
            (user_id, subject_id),
        ).fetchall()

    return {row["module_id"]: _row_to_module_progress(row) for row in rows}


# =============================================================================
# SUBJECT PROGRESS
# =============================================================================


def touch_subject_progress(user_id: str, subject_id: str) -> None:
    """Create the subject progress row or bump last_accessed_at only."""
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO subject_progress (user_id, subject_id, last_accessed_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id, subject_id) DO UPDATE SET
                last_accessed_at = excluded.last_accessed_at
            """,
            (user_id, subject_id, utcnow()),
        )


def upsert_subject_progress(
    user_id: str,
    subject_id: str,
    progress_percent: float,
    status: str,
    total_time_seconds: int,
) -> None:
    """Write recomputed subject aggregates."""
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO subject_progress (
                user_id, subject_id, progress_percent, status,
                total_time_seconds, last_accessed_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, subject_id) DO UPDATE SET
                progress_percent = excluded.progress_percent,
                status = excluded.status,
                total_time_seconds = excluded.total_time_seconds
            """,
            (user_id, subject_id, progress_percent, status, total_time_seconds, utcnow()),
        )

    logger.debug(
        "subject_progress.upserted",
        user_id=user_id,
        subject_id=subject_id,
        progress_percent=progress_percent,
        status=status,
    )


def get_subject_progress(user_id: str, subject_id: str) -> SubjectProgressRecord | None:
    """Get subject progress for a user."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM subject_progress WHERE user_id = ? AND subject_id = ?",
            (user_id, subject_id),
        ).fetchone()

    if row is None:
        return None

    return _row_to_subject_progress(row)


def list_subject_progress(user_id: str) -> list[SubjectProgressRecord]:
    """All subject progress rows of a user for published subjects."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT sp.*
            FROM subject_progress sp
            JOIN subjects s ON s.subject_id = sp.subject_id
            WHERE sp.user_id = ? AND s.is_published = 1
            ORDER BY sp.last_accessed_at DESC
            """,
            (user_id,),
        ).fetchall()

    return [_row_to_subject_progress(row) for row in rows]


def _row_to_module_progress(row) -> ModuleProgressRecord:
    """Convert database row to ModuleProgressRecord."""
    return ModuleProgressRecord(
        user_id=row["user_id"],
        module_id=row["module_id"],
        completed_lessons=row["completed_lessons"],
        total_lessons=row["total_lessons"],
        progress_percent=row["progress_percent"],
        status=row["status"],
        last_accessed_at=row["last_accessed_at"],
    )


def _row_to_subject_progress(row) -> SubjectProgressRecord:
    """Convert database row to SubjectProgressRecord."""
    return SubjectProgressRecord(
        user_id=row["user_id"],
        subject_id=row["subject_id"],
        progress_percent=row["progress_percent"],
        status=row["status"],
        total_time_seconds=row["total_time_seconds"],
        last_accessed_at=row["last_accessed_at"],
    )
