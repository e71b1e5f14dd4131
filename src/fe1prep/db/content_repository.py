"""Repository functions for content tables.

Subjects, modules, lessons and essay questions are owned by the content
collaborator; the core only reads them. Insert helpers exist for the
content importer and for tests.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from fe1prep.db.database import get_db

logger = structlog.get_logger(__name__)


@dataclass
class SubjectRecord:
    """Subject record from database."""

    subject_id: str
    name: str
    slug: str
    is_published: bool


@dataclass
class ModuleRecord:
    """Module record from database."""

    module_id: str
    subject_id: str
    name: str
    order: int
    is_published: bool


@dataclass
class LessonRecord:
    """Lesson record from database, with its owning subject."""

    lesson_id: str
    module_id: str
    subject_id: str
    title: str
    order: int
    video_duration: int | None
    is_published: bool


@dataclass
class EssayQuestionRecord:
    """Essay question record from database."""

    question_id: str
    subject: str
    year: int | None
    exam_type: str | None
    description: str | None
    text: str
    points: int
    is_published: bool

    def to_payload(self) -> dict:
        """Question payload as shown to the candidate."""
        return {
            "question_id": self.question_id,
            "subject": self.subject,
            "year": self.year,
            "exam_type": self.exam_type,
            "description": self.description,
            "text": self.text,
            "points": self.points,
        }


# =============================================================================
# INSERTS
# =============================================================================


def insert_subject(subject_id: str, name: str, slug: str, is_published: bool = True) -> None:
    """Insert or replace a subject."""
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO subjects (subject_id, name, slug, is_published)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(subject_id) DO UPDATE SET
                name = excluded.name,
                slug = excluded.slug,
                is_published = excluded.is_published
            """,
            (subject_id, name, slug, int(is_published)),
        )

    logger.debug("subjects.upserted", subject_id=subject_id)


def insert_module(
    module_id: str,
    subject_id: str,
    name: str,
    order: int = 0,
    is_published: bool = True,
) -> None:
    """Insert or replace a module."""
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO modules (module_id, subject_id, name, "order", is_published)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(module_id) DO UPDATE SET
                subject_id = excluded.subject_id,
                name = excluded.name,
                "order" = excluded."order",
                is_published = excluded.is_published
            """,
            (module_id, subject_id, name, order, int(is_published)),
        )

    logger.debug("modules.upserted", module_id=module_id)


def insert_lesson(
    lesson_id: str,
    module_id: str,
    title: str,
    order: int = 0,
    video_duration: int | None = None,
    is_published: bool = True,
) -> None:
    """Insert or replace a lesson.

    Args:
        video_duration: Length of the lesson video in seconds, None if unknown
    """
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO lessons (lesson_id, module_id, title, "order", video_duration, is_published)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(lesson_id) DO UPDATE SET
                module_id = excluded.module_id,
                title = excluded.title,
                "order" = excluded."order",
                video_duration = excluded.video_duration,
                is_published = excluded.is_published
            """,
            (lesson_id, module_id, title, order, video_duration, int(is_published)),
        )

    logger.debug("lessons.upserted", lesson_id=lesson_id)


def insert_essay_question(
    question_id: str,
    subject: str,
    text: str,
    year: int | None = None,
    exam_type: str | None = None,
    description: str | None = None,
    points: int = 20,
    is_published: bool = True,
) -> None:
    """Insert or replace an essay question."""
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO essay_questions (
                question_id, subject, year, exam_type, description, text, points, is_published
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(question_id) DO UPDATE SET
                subject = excluded.subject,
                year = excluded.year,
                exam_type = excluded.exam_type,
                description = excluded.description,
                text = excluded.text,
                points = excluded.points,
                is_published = excluded.is_published
            """,
            (question_id, subject, year, exam_type, description, text, points, int(is_published)),
        )

    logger.debug("essay_questions.upserted", question_id=question_id)


# =============================================================================
# READS
# =============================================================================


def get_subject(subject_id: str) -> SubjectRecord | None:
    """Get a published subject by ID."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM subjects WHERE subject_id = ? AND is_published = 1",
            (subject_id,),
        ).fetchone()

    if row is None:
        return None

    return SubjectRecord(
        subject_id=row["subject_id"],
        name=row["name"],
        slug=row["slug"],
        is_published=bool(row["is_published"]),
    )


def get_module(module_id: str) -> ModuleRecord | None:
    """Get a published module by ID."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM modules WHERE module_id = ? AND is_published = 1",
            (module_id,),
        ).fetchone()

    if row is None:
        return None

    return _row_to_module(row)


def list_published_modules(subject_id: str) -> list[ModuleRecord]:
    """Get all published modules of a subject in display order."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM modules
            WHERE subject_id = ? AND is_published = 1
            ORDER BY "order", module_id
            """,
            (subject_id,),
        ).fetchall()

    return [_row_to_module(row) for row in rows]


def get_lesson(lesson_id: str) -> LessonRecord | None:
    """Get a published lesson by ID, joined with its module's subject."""
    with get_db() as conn:
        row = conn.execute(
            """
            SELECT l.*, m.subject_id
            FROM lessons l
            JOIN modules m ON m.module_id = l.module_id
            WHERE l.lesson_id = ? AND l.is_published = 1
            """,
            (lesson_id,),
        ).fetchone()

    if row is None:
        return None

    return LessonRecord(
        lesson_id=row["lesson_id"],
        module_id=row["module_id"],
        subject_id=row["subject_id"],
        title=row["title"],
        order=row["order"],
        video_duration=row["video_duration"],
        is_published=bool(row["is_published"]),
    )


def count_published_lessons(module_id: str) -> int:
    """Count published lessons in a module."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT COUNT(*) AS total FROM lessons WHERE module_id = ? AND is_published = 1",
            (module_id,),
        ).fetchone()

    return row["total"]


def get_essay_question(question_id: str) -> EssayQuestionRecord | None:
    """Get an essay question by ID."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM essay_questions WHERE question_id = ?",
            (question_id,),
        ).fetchone()

    if row is None:
        return None

    return _row_to_question(row)


def list_simulation_eligible_question_ids() -> list[str]:
    """IDs of published essay questions that carry an exam year."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT question_id FROM essay_questions
            WHERE is_published = 1 AND year IS NOT NULL
            ORDER BY question_id
            """
        ).fetchall()

    return [row["question_id"] for row in rows]


def _row_to_module(row) -> ModuleRecord:
    """Convert database row to ModuleRecord."""
    return ModuleRecord(
        module_id=row["module_id"],
        subject_id=row["subject_id"],
        name=row["name"],
        order=row["order"],
        is_published=bool(row["is_published"]),
    )


def _row_to_question(row) -> EssayQuestionRecord:
    """Convert database row to EssayQuestionRecord."""
    return EssayQuestionRecord(
        question_id=row["question_id"],
        subject=row["subject"],
        year=row["year"],
        exam_type=row["exam_type"],
        description=row["description"],
        text=row["text"],
        points=row["points"],
        is_published=bool(row["is_published"]),
    )
