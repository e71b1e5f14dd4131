"""Content import module.

Loads subjects, modules, lessons and essay questions from a YAML file into
the content tables. Imports are upserts, so re-importing a file updates
the existing rows in place.

File structure:

    subjects:
      - id: tort
        name: Tort Law
        slug: tort-law
        modules:
          - id: tort-negligence
            name: Negligence
            order: 1
            lessons:
              - id: tort-negligence-1
                title: Duty of care
                order: 1
                video_duration: 1200
    essay_questions:
      - id: tort-2023-q1
        subject: Tort Law
        year: 2023
        text: "..."
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
import yaml

from fe1prep.core.errors import ValidationError
from fe1prep.db import content_repository as content

logger = structlog.get_logger(__name__)


@dataclass
class ImportSummary:
    """Counts of imported content rows."""

    subjects: int = 0
    modules: int = 0
    lessons: int = 0
    essay_questions: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "subjects": self.subjects,
            "modules": self.modules,
            "lessons": self.lessons,
            "essay_questions": self.essay_questions,
        }


def _require(entry: dict[str, Any], key: str, where: str) -> Any:
    value = entry.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing '{key}' in {where}")
    return value


def import_content(data: dict[str, Any]) -> ImportSummary:
    """Import a parsed content document.

    Raises:
        ValidationError: If a required field is missing
    """
    summary = ImportSummary()

    for subject in data.get("subjects") or []:
        subject_id = _require(subject, "id", "subject")
        content.insert_subject(
            subject_id=subject_id,
            name=_require(subject, "name", f"subject {subject_id}"),
            slug=subject.get("slug") or subject_id,
            is_published=subject.get("published", True),
        )
        summary.subjects += 1

        for m_order, module in enumerate(subject.get("modules") or [], start=1):
            module_id = _require(module, "id", f"module of {subject_id}")
            content.insert_module(
                module_id=module_id,
                subject_id=subject_id,
                name=_require(module, "name", f"module {module_id}"),
                order=module.get("order", m_order),
                is_published=module.get("published", True),
            )
            summary.modules += 1

            for l_order, lesson in enumerate(module.get("lessons") or [], start=1):
                lesson_id = _require(lesson, "id", f"lesson of {module_id}")
                content.insert_lesson(
                    lesson_id=lesson_id,
                    module_id=module_id,
                    title=_require(lesson, "title", f"lesson {lesson_id}"),
                    order=lesson.get("order", l_order),
                    video_duration=lesson.get("video_duration"),
                    is_published=lesson.get("published", True),
                )
                summary.lessons += 1

    for question in data.get("essay_questions") or []:
        question_id = _require(question, "id", "essay question")
        content.insert_essay_question(
            question_id=question_id,
            subject=_require(question, "subject", f"essay question {question_id}"),
            text=_require(question, "text", f"essay question {question_id}"),
            year=question.get("year"),
            exam_type=question.get("exam_type"),
            description=question.get("description"),
            points=question.get("points", 20),
            is_published=question.get("published", True),
        )
        summary.essay_questions += 1

    logger.info("content_imported", **summary.to_dict())
    return summary


def import_content_file(path: Path) -> ImportSummary:
    """Import content from a YAML file.

    Raises:
        ValidationError: If the file is unreadable or malformed
    """
    if not path.exists():
        raise ValidationError(f"Content file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(f"Content file must be a mapping: {path}")

    return import_content(data)
