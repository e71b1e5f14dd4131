"""Shared fixtures for the FE-1 prep test suite.

Every test that touches the database gets a fresh SQLite file under
tmp_path. Nothing here reads or writes ./data or ./db.
"""

import threading
from unittest.mock import MagicMock

import pytest

from fe1prep.config.app_config import clear_config_cache
from fe1prep.core.essay_grader import EssayGrade, GradingError
from fe1prep.db import content_repository as content
from fe1prep.db.database import init_db
from fe1prep.web.dependencies import reset_essay_grader

SUBJECT_ID = "tort"
QUESTION_SUBJECT = "Tort Law"


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Config cache and shared grader never leak between tests."""
    clear_config_cache()
    reset_essay_grader()
    yield
    clear_config_cache()
    reset_essay_grader()


@pytest.fixture
def db_path(tmp_path):
    """Initialize a temporary database and return its path."""
    path = tmp_path / "db" / "test.db"
    init_db(path)
    return path


@pytest.fixture
def seeded_course(db_path):
    """One subject with three modules.

    - tort-m1: two lessons, 100s videos
    - tort-m2: one lesson, 200s video, plus one unpublished lesson
    - tort-m3: one lesson with unknown video duration
    """
    content.insert_subject(SUBJECT_ID, "Tort Law", "tort-law")

    content.insert_module("tort-m1", SUBJECT_ID, "Negligence", order=1)
    content.insert_lesson("m1-l1", "tort-m1", "Duty of care", order=1, video_duration=100)
    content.insert_lesson("m1-l2", "tort-m1", "Breach", order=2, video_duration=100)

    content.insert_module("tort-m2", SUBJECT_ID, "Occupiers' liability", order=2)
    content.insert_lesson("m2-l1", "tort-m2", "Visitors", order=1, video_duration=200)
    content.insert_lesson(
        "m2-draft", "tort-m2", "Draft lesson", order=2, video_duration=50, is_published=False
    )

    content.insert_module("tort-m3", SUBJECT_ID, "Defamation", order=3)
    content.insert_lesson("m3-l1", "tort-m3", "Defences", order=1, video_duration=None)

    return {
        "subject_id": SUBJECT_ID,
        "modules": ["tort-m1", "tort-m2", "tort-m3"],
    }


@pytest.fixture
def question_pool(db_path):
    """Six eligible essay questions, plus one without a year and one unpublished."""
    ids = []
    for n in range(1, 7):
        question_id = f"tort-20{10 + n}-q1"
        content.insert_essay_question(
            question_id,
            subject=QUESTION_SUBJECT,
            text=f"Problem question {n} on negligence.",
            year=2010 + n,
            exam_type="Autumn",
        )
        ids.append(question_id)

    content.insert_essay_question("tort-sample", QUESTION_SUBJECT, "Sample question", year=None)
    content.insert_essay_question(
        "tort-hidden", QUESTION_SUBJECT, "Hidden question", year=2020, is_published=False
    )
    return ids


def make_grade(score: int, tokens: int = 100) -> EssayGrade:
    """Build a grade with the given score."""
    return EssayGrade(
        score=score,
        band="Pass" if score >= 50 else "Fail",
        feedback={"overall": f"Scored {score}"},
        strengths=["Identified the issues"],
        improvements=["Cite more authority"],
        sample_answer="A model answer.",
        tokens_used=tokens,
    )


class FakeGrader:
    """Grader returning queued scores, safe to call from worker threads."""

    def __init__(self, scores=None, fail_on_call=None):
        self._scores = list(scores or [70] * 5)
        self._fail_on_call = fail_on_call
        self._lock = threading.Lock()
        self.calls = []

    def grade(self, answer_text, question_text, subject):
        with self._lock:
            call_number = len(self.calls)
            self.calls.append((answer_text, question_text, subject))
            score = self._scores[call_number % len(self._scores)]
        if self._fail_on_call is not None and call_number == self._fail_on_call:
            raise GradingError("Grading output has no numeric score: None")
        return make_grade(score)


@pytest.fixture
def fake_grader():
    """Grader that gives every answer 70."""
    return FakeGrader()


@pytest.fixture
def mock_llm_client():
    """Mock LLM client that returns a valid grade without calling a real LLM."""
    from fe1prep.llm.client import LLMJsonResult

    client = MagicMock()
    client.config = MagicMock()
    client.config.provider = "lmstudio"
    client.config.model = "test-model"
    client.simple_json.return_value = LLMJsonResult(
        data={
            "score": 72,
            "band": "Merit",
            "feedback": {
                "overall": "Solid answer",
                "structure": "Clear",
                "legal_knowledge": "Accurate",
                "application": "Good",
            },
            "strengths": ["Cites Donoghue v Stevenson"],
            "improvements": ["Discuss remoteness"],
            "sample_answer": "The plaintiff must establish a duty of care...",
        },
        total_tokens=850,
    )
    return client


@pytest.fixture
def grader_factory():
    """Build a FakeGrader with custom scores or a failing call."""
    return FakeGrader
