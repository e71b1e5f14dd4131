"""Exam simulation module.

Responsibilities:
- Start a timed 5-question FE-1 essay simulation
- Accept exactly one answer per question, timed by a question timer
- Grade all answers concurrently on finish (all-or-nothing)
- Mark abandoned simulations as failed
- Review a finished simulation and list simulation history

Lifecycle: CREATED -> IN_PROGRESS -> COMPLETED | FAILED. A simulation is
terminal once ended_at is set; every mutating operation then raises
ConflictError. All precondition checks run before any write.
"""

from __future__ import annotations

import asyncio
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from fe1prep.config.app_config import load_app_config
from fe1prep.core.errors import (
    ConflictError,
    NotFoundError,
    UpstreamFailureError,
    ValidationError,
)
from fe1prep.core.essay_grader import EssayGrade, EssayGrader
from fe1prep.core.question_selector import select_simulation_questions
from fe1prep.db import content_repository as content
from fe1prep.db import simulation_repository as simulations
from fe1prep.db.database import utcnow
from fe1prep.db.simulation_repository import (
    EssayAttemptRecord,
    GradingUpdate,
    SimulationRecord,
)

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

SIMULATION_QUESTION_COUNT = 5
SIMULATION_TIME_LIMIT_SECONDS = 10800  # 3 hours
PASS_THRESHOLD = 50  # real FE-1 pass mark
APP_PASS_THRESHOLD = 80  # shown to the candidate, does not affect `passed`


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class SimulationStart:
    """Returned when a simulation starts."""

    simulation_id: str
    question: dict[str, Any]
    timer_id: str
    started_at: str
    current_question_index: int = 0
    total_questions: int = SIMULATION_QUESTION_COUNT
    time_limit_seconds: int = SIMULATION_TIME_LIMIT_SECONDS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "simulation_id": self.simulation_id,
            "question": self.question,
            "timer_id": self.timer_id,
            "started_at": self.started_at,
            "current_question_index": self.current_question_index,
            "total_questions": self.total_questions,
            "time_limit_seconds": self.time_limit_seconds,
        }


@dataclass
class SubmitResult:
    """Returned after an answer is stored."""

    attempt_id: str
    question_id: str
    word_count: int
    time_taken_seconds: int
    has_next: bool
    next_question_index: int | None
    next_question_id: str | None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "attempt_id": self.attempt_id,
            "question_id": self.question_id,
            "word_count": self.word_count,
            "time_taken_seconds": self.time_taken_seconds,
            "has_next": self.has_next,
            "next_question_index": self.next_question_index,
            "next_question_id": self.next_question_id,
        }


@dataclass
class SimulationQuestionView:
    """A question as seen from inside a running simulation."""

    simulation_id: str
    question: dict[str, Any]
    question_index: int
    total_questions: int
    previous_answer: str | None
    can_edit: bool
    timer_id: str | None
    next_question_id: str | None
    is_last_question: bool

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "simulation_id": self.simulation_id,
            "question": self.question,
            "question_index": self.question_index,
            "total_questions": self.total_questions,
            "previous_answer": self.previous_answer,
            "can_edit": self.can_edit,
            "timer_id": self.timer_id,
            "next_question_id": self.next_question_id,
            "is_last_question": self.is_last_question,
        }


@dataclass
class QuestionResult:
    """Per-question outcome of a simulation."""

    question_id: str
    answer_text: str
    word_count: int
    time_taken_seconds: int
    score: int | None = None
    band: str | None = None
    feedback: dict[str, Any] | None = None
    strengths: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    sample_answer: str | None = None
    tokens_used: int | None = None

    @classmethod
    def from_attempt(cls, attempt: EssayAttemptRecord) -> QuestionResult:
        return cls(
            question_id=attempt.question_id,
            answer_text=attempt.answer_text,
            word_count=attempt.word_count,
            time_taken_seconds=attempt.time_taken_seconds,
            score=attempt.ai_score,
            band=attempt.band,
            feedback=attempt.feedback,
            strengths=list(attempt.strengths),
            improvements=list(attempt.improvements),
            sample_answer=attempt.sample_answer,
            tokens_used=attempt.tokens_used,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "question_id": self.question_id,
            "answer_text": self.answer_text,
            "word_count": self.word_count,
            "time_taken_seconds": self.time_taken_seconds,
            "score": self.score,
            "band": self.band,
            "feedback": self.feedback,
            "strengths": self.strengths,
            "improvements": self.improvements,
            "sample_answer": self.sample_answer,
            "tokens_used": self.tokens_used,
        }


@dataclass
class SimulationResult:
    """Full result of a simulation, graded or not."""

    simulation_id: str
    status: str
    started_at: str
    ended_at: str | None
    overall_score: int | None
    passed: bool | None
    fail_reason: str | None
    results: list[QuestionResult] = field(default_factory=list)
    tokens_used: int = 0
    pass_threshold: int = PASS_THRESHOLD
    app_pass_threshold: int = APP_PASS_THRESHOLD

    @property
    def total_time_seconds(self) -> int:
        return sum(r.time_taken_seconds for r in self.results)

    @property
    def average_time_per_question(self) -> float:
        return self.total_time_seconds / SIMULATION_QUESTION_COUNT

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "simulation_id": self.simulation_id,
            "status": self.status,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "overall_score": self.overall_score,
            "passed": self.passed,
            "fail_reason": self.fail_reason,
            "results": [r.to_dict() for r in self.results],
            "total_time_seconds": self.total_time_seconds,
            "average_time_per_question": self.average_time_per_question,
            "pass_threshold": self.pass_threshold,
            "app_pass_threshold": self.app_pass_threshold,
            "tokens_used": self.tokens_used,
        }


@dataclass
class SimulationSummary:
    """One row of simulation history."""

    simulation_id: str
    status: str
    started_at: str
    ended_at: str | None
    overall_score: int | None
    passed: bool | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "simulation_id": self.simulation_id,
            "status": self.status,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "overall_score": self.overall_score,
            "passed": self.passed,
        }


# =============================================================================
# HELPERS
# =============================================================================


def count_words(text: str) -> int:
    """Whitespace-separated word count of the trimmed text."""
    return len(text.strip().split())


def is_passing(score: int) -> bool:
    """Whether an overall score passes the FE-1 pass mark."""
    return score >= PASS_THRESHOLD


def _elapsed_seconds(started_at: str, ended_at: str) -> int:
    delta = datetime.fromisoformat(ended_at) - datetime.fromisoformat(started_at)
    return max(0, int(delta.total_seconds()))


def _new_id() -> str:
    return str(uuid.uuid4())


def _require_owned(user_id: str, simulation_id: str) -> SimulationRecord:
    """Load a simulation owned by the user (wrong owner reads as missing)."""
    simulation = simulations.get_simulation(simulation_id)
    if simulation is None or simulation.user_id != user_id:
        raise NotFoundError(f"Simulation not found: {simulation_id}")
    return simulation


def _require_running(simulation: SimulationRecord) -> None:
    if simulation.is_ended:
        raise ConflictError(
            f"Simulation {simulation.simulation_id} has already ended ({simulation.status})"
        )


def _require_question(question_id: str) -> content.EssayQuestionRecord:
    question = content.get_essay_question(question_id)
    if question is None:
        raise NotFoundError(f"Essay question not found: {question_id}")
    return question


def _check_index(simulation: SimulationRecord, question_id: str, index: int) -> None:
    """The question must sit at `index` of the frozen question list."""
    question_ids = simulation.question_ids
    if not 0 <= index < len(question_ids) or question_ids[index] != question_id:
        raise ValidationError(
            f"Question {question_id} is not at index {index} of simulation "
            f"{simulation.simulation_id}"
        )


# =============================================================================
# OPERATIONS
# =============================================================================


def start_simulation(user_id: str, rng: random.Random | None = None) -> SimulationStart:
    """Start a new simulation for the user.

    Args:
        user_id: Candidate
        rng: Random source for question selection (tests pass a seeded one)

    Raises:
        ConflictError: If fewer than 5 eligible essay questions exist
    """
    question_ids = select_simulation_questions(SIMULATION_QUESTION_COUNT, rng=rng)
    first_question = _require_question(question_ids[0])

    simulation, timer = simulations.create_simulation(
        simulation_id=_new_id(),
        user_id=user_id,
        question_ids=question_ids,
        timer_id=_new_id(),
    )

    logger.info(
        "simulation_started",
        simulation_id=simulation.simulation_id,
        user_id=user_id,
        questions=question_ids,
    )

    return SimulationStart(
        simulation_id=simulation.simulation_id,
        question=first_question.to_payload(),
        timer_id=timer.timer_id,
        started_at=simulation.started_at,
    )


def submit_answer(
    user_id: str,
    simulation_id: str,
    question_id: str,
    answer_text: str,
    timer_id: str,
    current_question_index: int,
) -> SubmitResult:
    """Store the single answer for one question of a running simulation.

    Raises:
        NotFoundError: Unknown or foreign simulation, unknown or mismatched timer
        ConflictError: Simulation ended, question already answered, timer closed
        ValidationError: Question is not at the given index
    """
    simulation = _require_owned(user_id, simulation_id)
    _require_running(simulation)
    _check_index(simulation, question_id, current_question_index)

    if simulations.get_attempt(simulation_id, question_id) is not None:
        raise ConflictError(f"Answer already submitted for question {question_id}")

    timer = simulations.get_timer(timer_id)
    if (
        timer is None
        or timer.user_id != user_id
        or timer.simulation_id != simulation_id
        or timer.question_id != question_id
    ):
        raise NotFoundError(f"Timer not found: {timer_id}")
    if timer.ended_at is not None:
        raise ConflictError(f"Timer already closed: {timer_id}")

    ended_at = utcnow()
    time_taken = _elapsed_seconds(timer.started_at, ended_at)
    word_count = count_words(answer_text)

    attempt = simulations.insert_simulation_attempt(
        attempt_id=_new_id(),
        simulation_id=simulation_id,
        question_id=question_id,
        user_id=user_id,
        answer_text=answer_text,
        word_count=word_count,
        timer_id=timer_id,
        ended_at=ended_at,
        time_taken_seconds=time_taken,
    )

    answered = simulations.count_attempts(simulation_id)
    next_index = current_question_index + 1
    has_more_questions = next_index < len(simulation.question_ids)

    logger.info(
        "simulation_answer_submitted",
        simulation_id=simulation_id,
        question_id=question_id,
        word_count=word_count,
        time_taken_seconds=time_taken,
        answered=answered,
    )

    return SubmitResult(
        attempt_id=attempt.attempt_id,
        question_id=question_id,
        word_count=word_count,
        time_taken_seconds=time_taken,
        has_next=answered < SIMULATION_QUESTION_COUNT,
        next_question_index=next_index if has_more_questions else None,
        next_question_id=simulation.question_ids[next_index] if has_more_questions else None,
    )


def get_simulation_question(
    user_id: str,
    simulation_id: str,
    question_id: str,
    question_index: int,
) -> SimulationQuestionView:
    """Show one question of a simulation.

    While the question is unanswered and the simulation is running, an open
    timer is reused or a new one started, so the client always has a timer
    to submit against.

    Raises:
        NotFoundError: Unknown or foreign simulation, unknown question
        ValidationError: Question is not at the given index
    """
    simulation = _require_owned(user_id, simulation_id)
    _check_index(simulation, question_id, question_index)
    question = _require_question(question_id)

    attempt = simulations.get_attempt(simulation_id, question_id)

    timer_id = None
    if attempt is None and not simulation.is_ended:
        timer = simulations.get_open_timer(user_id, simulation_id, question_id)
        if timer is None:
            timer = simulations.start_timer(_new_id(), user_id, simulation_id, question_id)
            logger.debug("question_timer_started", simulation_id=simulation_id, question_id=question_id)
        timer_id = timer.timer_id

    question_ids = simulation.question_ids
    is_last = question_index == len(question_ids) - 1

    return SimulationQuestionView(
        simulation_id=simulation_id,
        question=question.to_payload(),
        question_index=question_index,
        total_questions=len(question_ids),
        previous_answer=attempt.answer_text if attempt else None,
        can_edit=attempt is None,
        timer_id=timer_id,
        next_question_id=None if is_last else question_ids[question_index + 1],
        is_last_question=is_last,
    )


async def finish_simulation(
    user_id: str,
    simulation_id: str,
    grader: EssayGrader | None = None,
    timeout: float | None = None,
) -> SimulationResult:
    """Grade every answer and complete the simulation.

    The five grading calls run concurrently in worker threads. If any of them
    fails or the whole batch exceeds `timeout`, nothing is written and the
    simulation stays IN_PROGRESS so the finish can be retried.

    Args:
        user_id: Candidate
        simulation_id: Simulation to finish
        grader: Grading collaborator (defaults to the LLM-backed grader)
        timeout: Seconds for the whole grading batch (defaults to config)

    Raises:
        NotFoundError: Unknown or foreign simulation
        ConflictError: Simulation ended, or not every question answered
        UpstreamFailureError: Any grading call failed or timed out
    """
    simulation = _require_owned(user_id, simulation_id)
    _require_running(simulation)

    attempts = simulations.list_attempts(simulation_id)
    if len(attempts) != SIMULATION_QUESTION_COUNT:
        raise ConflictError(
            f"Simulation has {len(attempts)} of {SIMULATION_QUESTION_COUNT} answers"
        )

    questions = {a.question_id: _require_question(a.question_id) for a in attempts}

    if grader is None:
        grader = EssayGrader()
    if timeout is None:
        timeout = load_app_config().grading.timeout_seconds

    logger.info("simulation_grading_started", simulation_id=simulation_id)

    calls = [
        asyncio.to_thread(
            grader.grade,
            attempt.answer_text,
            questions[attempt.question_id].text,
            questions[attempt.question_id].subject,
        )
        for attempt in attempts
    ]

    try:
        outcomes = await asyncio.wait_for(
            asyncio.gather(*calls, return_exceptions=True),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        logger.error("simulation_grading_timeout", simulation_id=simulation_id, timeout=timeout)
        raise UpstreamFailureError(f"Grading timed out after {timeout}s") from e

    failures = [o for o in outcomes if isinstance(o, BaseException)]
    if failures:
        logger.error(
            "simulation_grading_failed",
            simulation_id=simulation_id,
            failed=len(failures),
            error=str(failures[0]),
        )
        raise UpstreamFailureError(
            f"Grading failed for {len(failures)} of {len(attempts)} answers: {failures[0]}"
        ) from failures[0]

    grades: list[EssayGrade] = list(outcomes)
    overall_score = round(sum(g.score for g in grades) / len(grades))
    passed = is_passing(overall_score)

    updates = [
        GradingUpdate(
            attempt_id=attempt.attempt_id,
            ai_score=grade.score,
            band=grade.band,
            feedback=grade.feedback,
            strengths=grade.strengths,
            improvements=grade.improvements,
            sample_answer=grade.sample_answer,
            tokens_used=grade.tokens_used,
        )
        for attempt, grade in zip(attempts, grades)
    ]
    simulations.complete_simulation(simulation_id, updates, overall_score, passed)

    logger.info(
        "simulation_completed",
        simulation_id=simulation_id,
        overall_score=overall_score,
        passed=passed,
    )

    return get_simulation_result(user_id, simulation_id)


def fail_simulation(user_id: str, simulation_id: str, reason: str | None = None) -> SimulationResult:
    """Mark a running simulation as failed (abandoned, time expired, ...).

    Never grades. Existing attempts stay ungraded.

    Raises:
        NotFoundError: Unknown or foreign simulation
        ConflictError: Simulation already ended
    """
    simulation = _require_owned(user_id, simulation_id)
    _require_running(simulation)

    simulations.fail_simulation(simulation_id, reason)

    logger.info("simulation_failed", simulation_id=simulation_id, reason=reason)
    return get_simulation_result(user_id, simulation_id)


def get_simulation_result(user_id: str, simulation_id: str) -> SimulationResult:
    """Review a simulation with its attempts and any grading.

    Raises:
        NotFoundError: Unknown or foreign simulation
    """
    simulation = _require_owned(user_id, simulation_id)
    attempts = simulations.list_attempts(simulation_id)

    order = {qid: i for i, qid in enumerate(simulation.question_ids)}
    attempts.sort(key=lambda a: order.get(a.question_id, len(order)))

    return SimulationResult(
        simulation_id=simulation.simulation_id,
        status=simulation.status,
        started_at=simulation.started_at,
        ended_at=simulation.ended_at,
        overall_score=simulation.overall_score,
        passed=simulation.passed,
        fail_reason=simulation.fail_reason,
        results=[QuestionResult.from_attempt(a) for a in attempts],
        tokens_used=sum(a.tokens_used or 0 for a in attempts),
    )


def list_simulations(user_id: str) -> list[SimulationSummary]:
    """Simulation history of the user, newest first."""
    return [
        SimulationSummary(
            simulation_id=s.simulation_id,
            status=s.status,
            started_at=s.started_at,
            ended_at=s.ended_at,
            overall_score=s.overall_score,
            passed=s.passed,
        )
        for s in simulations.list_simulations(user_id)
    ]
