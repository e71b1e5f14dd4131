"""Progress rollup module.

Responsibilities:
- Record lesson access (create-if-absent, touch ancestors)
- Record video progress and detect the completion transition (90% watched)
- Recompute module progress from its lessons
- Recompute subject progress from its modules (unweighted mean)
- Read-side snapshots for module, subject and overall progress

Every recompute re-reads child state and writes with an upsert, so calling
it twice, or interleaving two cascades, converges on the same result.
A cascade interrupted between the module and subject writes leaves the
subject stale until its next trigger.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable

import structlog

from fe1prep.core.errors import NotFoundError, ValidationError
from fe1prep.db import content_repository as content
from fe1prep.db import progress_repository as progress

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

VIDEO_COMPLETION_THRESHOLD = 0.9

# Upper bound for a watch position or a time-spent delta (one year)
MAX_TRACKED_SECONDS = 365 * 24 * 3600

RECENT_LESSONS_LIMIT = 5


class ProgressStatus(str, Enum):
    """Completion state of a module or subject."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class LessonProgressSnapshot:
    """Lesson progress as returned to callers."""

    lesson_id: str
    video_watched_seconds: int = 0
    is_completed: bool = False
    completed_at: str | None = None
    time_spent_seconds: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "lesson_id": self.lesson_id,
            "video_watched_seconds": self.video_watched_seconds,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at,
            "time_spent_seconds": self.time_spent_seconds,
        }


@dataclass
class ModuleProgressSnapshot:
    """Module progress as returned to callers."""

    module_id: str
    completed_lessons: int = 0
    total_lessons: int = 0
    progress_percent: float = 0.0
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    last_accessed_at: str | None = None
    name: str | None = None
    total_time_spent_seconds: int = 0

    @property
    def average_time_per_lesson(self) -> int:
        """Seconds spent per completed lesson, floored; 0 before any completion."""
        if self.completed_lessons == 0:
            return 0
        return self.total_time_spent_seconds // self.completed_lessons

    def to_dict(self) -> dict[str, Any]:
        result = {
            "module_id": self.module_id,
            "completed_lessons": self.completed_lessons,
            "total_lessons": self.total_lessons,
            "progress_percent": self.progress_percent,
            "status": self.status.value,
            "last_accessed_at": self.last_accessed_at,
            "total_time_spent_seconds": self.total_time_spent_seconds,
            "average_time_per_lesson": self.average_time_per_lesson,
        }
        if self.name is not None:
            result["name"] = self.name
        return result


@dataclass
class SubjectProgressSnapshot:
    """Subject progress as returned to callers."""

    subject_id: str
    progress_percent: float = 0.0
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    total_time_seconds: int = 0
    last_accessed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "progress_percent": self.progress_percent,
            "status": self.status.value,
            "total_time_seconds": self.total_time_seconds,
            "last_accessed_at": self.last_accessed_at,
        }


@dataclass
class VideoProgressResult:
    """Outcome of a video progress ping."""

    lesson: LessonProgressSnapshot
    just_completed: bool
    module: ModuleProgressSnapshot | None = None
    subject: SubjectProgressSnapshot | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lesson": self.lesson.to_dict(),
            "just_completed": self.just_completed,
            "module": self.module.to_dict() if self.module else None,
            "subject": self.subject.to_dict() if self.subject else None,
        }


@dataclass
class SubjectProgressDetail:
    """Subject progress with per-module breakdown."""

    subject: SubjectProgressSnapshot
    subject_name: str
    modules: list[ModuleProgressSnapshot] = field(default_factory=list)

    @property
    def total_lessons(self) -> int:
        return sum(m.total_lessons for m in self.modules)

    @property
    def total_lessons_completed(self) -> int:
        return sum(m.completed_lessons for m in self.modules)

    @property
    def completion_rate(self) -> float:
        if self.total_lessons == 0:
            return 0.0
        return round(self.total_lessons_completed / self.total_lessons * 100, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": {**self.subject.to_dict(), "name": self.subject_name},
            "modules": [m.to_dict() for m in self.modules],
            "performance": {
                "total_lessons_completed": self.total_lessons_completed,
                "total_lessons": self.total_lessons,
                "completion_rate": self.completion_rate,
            },
        }


@dataclass
class RecentLesson:
    """A lesson the user completed, for the activity feed."""

    lesson_id: str
    title: str
    subject_name: str
    completed_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "lesson_id": self.lesson_id,
            "title": self.title,
            "subject_name": self.subject_name,
            "completed_at": self.completed_at,
        }


@dataclass
class ProgressOverview:
    """Progress across every subject the user has opened, plus lesson activity."""

    total_subjects: int
    completed_subjects: int
    average_progress: float
    lessons_completed_today: int = 0
    lessons_completed_this_week: int = 0
    recent_lessons: list[RecentLesson] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_subjects": self.total_subjects,
            "completed_subjects": self.completed_subjects,
            "average_progress": self.average_progress,
            "lessons_completed_today": self.lessons_completed_today,
            "lessons_completed_this_week": self.lessons_completed_this_week,
            "recent_lessons": [lesson.to_dict() for lesson in self.recent_lessons],
        }


# =============================================================================
# HELPERS
# =============================================================================


def derive_status(children: Iterable[tuple[bool, bool]]) -> ProgressStatus:
    """Derive an aggregate status from its immediate children.

    Args:
        children: (is_completed, has_progress) per child

    Returns:
        COMPLETED iff there is at least one child and all are completed;
        IN_PROGRESS iff any child is completed or has nonzero progress;
        NOT_STARTED otherwise.
    """
    children = list(children)
    if children and all(completed for completed, _ in children):
        return ProgressStatus.COMPLETED
    if any(completed or started for completed, started in children):
        return ProgressStatus.IN_PROGRESS
    return ProgressStatus.NOT_STARTED


def is_video_complete(current_time_seconds: float, video_duration: int | None) -> bool:
    """Whether a watch position reaches the completion threshold.

    An unknown duration never completes the lesson.
    """
    if video_duration is None:
        return False
    return current_time_seconds >= video_duration * VIDEO_COMPLETION_THRESHOLD


def _lesson_snapshot(user_id: str, lesson_id: str) -> LessonProgressSnapshot:
    record = progress.get_lesson_progress(user_id, lesson_id)
    if record is None:
        return LessonProgressSnapshot(lesson_id=lesson_id)
    return LessonProgressSnapshot(
        lesson_id=lesson_id,
        video_watched_seconds=record.video_watched_seconds,
        is_completed=record.is_completed,
        completed_at=record.completed_at,
        time_spent_seconds=record.time_spent_seconds,
    )


def _require_lesson(lesson_id: str) -> content.LessonRecord:
    lesson = content.get_lesson(lesson_id)
    if lesson is None:
        raise NotFoundError(f"Lesson not found: {lesson_id}")
    return lesson


# =============================================================================
# TRIGGERS
# =============================================================================


def record_lesson_access(user_id: str, lesson_id: str) -> LessonProgressSnapshot:
    """Register that a user opened a lesson.

    Creates the lesson progress row if absent and touches module/subject
    last_accessed_at. Percentages are never changed here.

    Raises:
        NotFoundError: If the lesson does not exist or is unpublished
    """
    lesson = _require_lesson(lesson_id)
    total_lessons = content.count_published_lessons(lesson.module_id)

    progress.ensure_lesson_progress(user_id, lesson_id)
    progress.touch_module_progress(user_id, lesson.module_id, total_lessons)
    progress.touch_subject_progress(user_id, lesson.subject_id)

    logger.debug("lesson_accessed", user_id=user_id, lesson_id=lesson_id)
    return _lesson_snapshot(user_id, lesson_id)


def record_video_progress(
    user_id: str,
    lesson_id: str,
    current_time_seconds: float,
    time_spent_seconds: int = 0,
) -> VideoProgressResult:
    """Record a video progress ping.

    Stores the watch position and, when the position reaches 90% of the
    video duration for the first time, cascades a recompute of the owning
    module and then the owning subject.

    Args:
        user_id: Caller
        lesson_id: Lesson being watched
        current_time_seconds: Current video position
        time_spent_seconds: Seconds of study time since the last ping

    Raises:
        ValidationError: If a time value is not finite or outside
            0..MAX_TRACKED_SECONDS
        NotFoundError: If the lesson does not exist or is unpublished
    """
    for name, value in (
        ("current_time_seconds", current_time_seconds),
        ("time_spent_seconds", time_spent_seconds),
    ):
        if not math.isfinite(value) or not 0 <= value <= MAX_TRACKED_SECONDS:
            raise ValidationError(f"{name} must be between 0 and {MAX_TRACKED_SECONDS}")

    lesson = _require_lesson(lesson_id)

    progress.upsert_video_position(
        user_id,
        lesson_id,
        video_watched_seconds=int(current_time_seconds),
        time_spent_seconds=time_spent_seconds,
    )

    just_completed = False
    if is_video_complete(current_time_seconds, lesson.video_duration):
        just_completed = progress.mark_lesson_completed(user_id, lesson_id)

    result = VideoProgressResult(
        lesson=_lesson_snapshot(user_id, lesson_id),
        just_completed=just_completed,
    )

    if just_completed:
        logger.info(
            "lesson_completed",
            user_id=user_id,
            lesson_id=lesson_id,
            module_id=lesson.module_id,
        )
        result.module = recalculate_module_progress(user_id, lesson.module_id)
        result.subject = recalculate_subject_progress(user_id, lesson.subject_id)

    return result


# =============================================================================
# RECOMPUTE
# =============================================================================


def recalculate_module_progress(user_id: str, module_id: str) -> ModuleProgressSnapshot:
    """Recompute a module's progress from its published lessons.

    Raises:
        NotFoundError: If the module does not exist or is unpublished
    """
    module = content.get_module(module_id)
    if module is None:
        raise NotFoundError(f"Module not found: {module_id}")

    lessons = progress.list_module_lesson_states(user_id, module_id)
    total = len(lessons)
    completed = sum(1 for lesson in lessons if lesson.is_completed)
    percent = completed / total * 100 if total > 0 else 0.0
    status = derive_status(
        (lesson.is_completed, lesson.video_watched_seconds > 0) for lesson in lessons
    )

    progress.upsert_module_progress(
        user_id,
        module_id,
        completed_lessons=completed,
        total_lessons=total,
        progress_percent=percent,
        status=status.value,
    )

    logger.info(
        "module_progress_recalculated",
        user_id=user_id,
        module_id=module_id,
        completed=completed,
        total=total,
        status=status.value,
    )
    return get_module_progress(user_id, module_id)


def recalculate_subject_progress(user_id: str, subject_id: str) -> SubjectProgressSnapshot:
    """Recompute a subject's progress from its published modules.

    The percentage is the unweighted mean of module percentages; modules
    without a progress row count as 0.

    Raises:
        NotFoundError: If the subject does not exist or is unpublished
    """
    subject = content.get_subject(subject_id)
    if subject is None:
        raise NotFoundError(f"Subject not found: {subject_id}")

    modules = content.list_published_modules(subject_id)
    module_rows = progress.list_module_progress_for_subject(user_id, subject_id)

    percents: list[float] = []
    children: list[tuple[bool, bool]] = []
    for module in modules:
        row = module_rows.get(module.module_id)
        module_percent = row.progress_percent if row else 0.0
        module_status = row.status if row else ProgressStatus.NOT_STARTED.value
        percents.append(module_percent)
        children.append(
            (
                module_status == ProgressStatus.COMPLETED.value,
                module_percent > 0 or module_status != ProgressStatus.NOT_STARTED.value,
            )
        )

    percent = sum(percents) / len(percents) if percents else 0.0
    status = derive_status(children)
    total_time = progress.sum_subject_time_spent(user_id, subject_id)

    progress.upsert_subject_progress(
        user_id,
        subject_id,
        progress_percent=percent,
        status=status.value,
        total_time_seconds=total_time,
    )

    logger.info(
        "subject_progress_recalculated",
        user_id=user_id,
        subject_id=subject_id,
        progress_percent=percent,
        status=status.value,
    )
    return get_subject_progress(user_id, subject_id)


# =============================================================================
# READS
# =============================================================================


def get_lesson_progress(user_id: str, lesson_id: str) -> LessonProgressSnapshot:
    """Lesson progress, zeroed if the user never opened the lesson.

    Raises:
        NotFoundError: If the lesson does not exist or is unpublished
    """
    _require_lesson(lesson_id)
    return _lesson_snapshot(user_id, lesson_id)


def get_module_progress(user_id: str, module_id: str) -> ModuleProgressSnapshot:
    """Stored module progress, or a NOT_STARTED snapshot.

    Raises:
        NotFoundError: If the module does not exist or is unpublished
    """
    module = content.get_module(module_id)
    if module is None:
        raise NotFoundError(f"Module not found: {module_id}")

    time_spent = progress.sum_module_time_spent(user_id, module_id)

    row = progress.get_module_progress(user_id, module_id)
    if row is None:
        return ModuleProgressSnapshot(
            module_id=module_id,
            total_lessons=content.count_published_lessons(module_id),
            name=module.name,
            total_time_spent_seconds=time_spent,
        )

    return ModuleProgressSnapshot(
        module_id=module_id,
        completed_lessons=row.completed_lessons,
        total_lessons=row.total_lessons,
        progress_percent=row.progress_percent,
        status=ProgressStatus(row.status),
        last_accessed_at=row.last_accessed_at,
        name=module.name,
        total_time_spent_seconds=time_spent,
    )


def get_subject_progress(user_id: str, subject_id: str) -> SubjectProgressSnapshot:
    """Stored subject progress, or a NOT_STARTED snapshot.

    Raises:
        NotFoundError: If the subject does not exist or is unpublished
    """
    if content.get_subject(subject_id) is None:
        raise NotFoundError(f"Subject not found: {subject_id}")

    row = progress.get_subject_progress(user_id, subject_id)
    if row is None:
        return SubjectProgressSnapshot(subject_id=subject_id)

    return SubjectProgressSnapshot(
        subject_id=subject_id,
        progress_percent=row.progress_percent,
        status=ProgressStatus(row.status),
        total_time_seconds=row.total_time_seconds,
        last_accessed_at=row.last_accessed_at,
    )


def get_subject_progress_detail(user_id: str, subject_id: str) -> SubjectProgressDetail:
    """Subject progress with every published module's progress.

    Raises:
        NotFoundError: If the subject does not exist or is unpublished
    """
    subject = content.get_subject(subject_id)
    if subject is None:
        raise NotFoundError(f"Subject not found: {subject_id}")

    return SubjectProgressDetail(
        subject=get_subject_progress(user_id, subject_id),
        subject_name=subject.name,
        modules=[
            get_module_progress(user_id, module.module_id)
            for module in content.list_published_modules(subject_id)
        ],
    )


def get_progress_overview(user_id: str, now: datetime | None = None) -> ProgressOverview:
    """Totals across every subject the user has progress on.

    Lesson activity counts completions since the start of the current UTC
    day and since seven days before that, and lists the most recently
    completed lessons.

    Args:
        user_id: Caller
        now: Reference time (defaults to the current UTC time)
    """
    rows = progress.list_subject_progress(user_id)
    total = len(rows)
    completed = sum(1 for row in rows if row.status == ProgressStatus.COMPLETED.value)
    average = sum(row.progress_percent for row in rows) / total if total > 0 else 0.0

    now = now or datetime.now(timezone.utc)
    today_start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today_start - timedelta(days=7)

    recent = [
        RecentLesson(
            lesson_id=row.lesson_id,
            title=row.title,
            subject_name=row.subject_name,
            completed_at=row.completed_at,
        )
        for row in progress.list_recently_completed_lessons(user_id, RECENT_LESSONS_LIMIT)
    ]

    return ProgressOverview(
        total_subjects=total,
        completed_subjects=completed,
        average_progress=round(average, 1),
        lessons_completed_today=progress.count_lessons_completed_since(
            user_id, today_start.isoformat()
        ),
        lessons_completed_this_week=progress.count_lessons_completed_since(
            user_id, week_start.isoformat()
        ),
        recent_lessons=recent,
    )
