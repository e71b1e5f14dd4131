"""Repository functions for simulations, essay attempts and question timers.

Writes that must not race (closing a timer, inserting the single attempt
per question, grading, terminal transitions) are conditional statements
whose row count is checked inside the same transaction. A failed check
raises ConflictError and get_db() rolls the whole unit back.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any

import structlog

from fe1prep.core.errors import ConflictError
from fe1prep.db.database import get_db, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class SimulationRecord:
    """Simulation record from database."""

    simulation_id: str
    user_id: str
    question_ids: list[str]
    status: str
    started_at: str
    ended_at: str | None
    overall_score: int | None
    passed: bool | None
    fail_reason: str | None

    @property
    def is_ended(self) -> bool:
        """Terminal once ended_at is set."""
        return self.ended_at is not None


@dataclass
class TimerRecord:
    """Question timer record from database."""

    timer_id: str
    user_id: str
    simulation_id: str
    question_id: str
    started_at: str
    ended_at: str | None


@dataclass
class EssayAttemptRecord:
    """Essay attempt record from database."""

    attempt_id: str
    simulation_id: str | None
    question_id: str
    user_id: str
    answer_text: str
    word_count: int
    time_taken_seconds: int
    is_simulation: bool
    created_at: str
    ai_score: int | None = None
    band: str | None = None
    feedback: dict[str, Any] | None = None
    strengths: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    sample_answer: str | None = None
    tokens_used: int | None = None
    graded_at: str | None = None

    @property
    def is_graded(self) -> bool:
        return self.graded_at is not None


@dataclass
class GradingUpdate:
    """Grading fields to write onto one attempt."""

    attempt_id: str
    ai_score: int
    band: str
    feedback: dict[str, Any]
    strengths: list[str]
    improvements: list[str]
    sample_answer: str
    tokens_used: int


# =============================================================================
# SIMULATIONS
# =============================================================================


def create_simulation(
    simulation_id: str,
    user_id: str,
    question_ids: list[str],
    timer_id: str,
) -> tuple[SimulationRecord, TimerRecord]:
    """Create a simulation and start the timer for its first question.

    The simulation is inserted as CREATED and moved to IN_PROGRESS once the
    first timer exists, all in one transaction.
    """
    now = utcnow()
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO simulations (simulation_id, user_id, question_ids, status, started_at)
            VALUES (?, ?, ?, 'CREATED', ?)
            """,
            (simulation_id, user_id, json.dumps(question_ids), now),
        )
        conn.execute(
            """
            INSERT INTO question_timers (timer_id, user_id, simulation_id, question_id, started_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (timer_id, user_id, simulation_id, question_ids[0], now),
        )
        conn.execute(
            "UPDATE simulations SET status = 'IN_PROGRESS' WHERE simulation_id = ?",
            (simulation_id,),
        )

    logger.debug("simulations.inserted", simulation_id=simulation_id, user_id=user_id)

    simulation = SimulationRecord(
        simulation_id=simulation_id,
        user_id=user_id,
        question_ids=list(question_ids),
        status="IN_PROGRESS",
        started_at=now,
        ended_at=None,
        overall_score=None,
        passed=None,
        fail_reason=None,
    )
    timer = TimerRecord(
        timer_id=timer_id,
        user_id=user_id,
        simulation_id=simulation_id,
        question_id=question_ids[0],
        started_at=now,
        ended_at=None,
    )
    return simulation, timer


def get_simulation(simulation_id: str) -> SimulationRecord | None:
    """Get simulation by ID."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM simulations WHERE simulation_id = ?", (simulation_id,)
        ).fetchone()

    if row is None:
        return None

    return _row_to_simulation(row)


def list_simulations(user_id: str) -> list[SimulationRecord]:
    """All simulations of a user, newest first."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM simulations WHERE user_id = ? ORDER BY started_at DESC",
            (user_id,),
        ).fetchall()

    return [_row_to_simulation(row) for row in rows]


def complete_simulation(
    simulation_id: str,
    updates: list[GradingUpdate],
    overall_score: int,
    passed: bool,
) -> str:
    """Persist grading for every attempt and close the simulation.

    All writes share one transaction: either every attempt is graded and the
    simulation is COMPLETED, or nothing changes.

    Returns:
        The ended_at timestamp written.

    Raises:
        ConflictError: If the simulation already ended or an attempt was
            already graded.
    """
    now = utcnow()
    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE simulations
            SET status = 'COMPLETED', ended_at = ?, overall_score = ?, passed = ?
            WHERE simulation_id = ? AND ended_at IS NULL
            """,
            (now, overall_score, int(passed), simulation_id),
        )
        if cursor.rowcount == 0:
            raise ConflictError(f"Simulation already ended: {simulation_id}")

        for update in updates:
            cursor = conn.execute(
                """
                UPDATE essay_attempts
                SET ai_score = ?, band = ?, feedback = ?, strengths = ?, improvements = ?,
                    sample_answer = ?, tokens_used = ?, graded_at = ?
                WHERE attempt_id = ? AND simulation_id = ? AND graded_at IS NULL
                """,
                (
                    update.ai_score,
                    update.band,
                    json.dumps(update.feedback, ensure_ascii=False),
                    json.dumps(update.strengths, ensure_ascii=False),
                    json.dumps(update.improvements, ensure_ascii=False),
                    update.sample_answer,
                    update.tokens_used,
                    now,
                    update.attempt_id,
                    simulation_id,
                ),
            )
            if cursor.rowcount == 0:
                raise ConflictError(f"Attempt already graded: {update.attempt_id}")

    logger.debug("simulations.completed", simulation_id=simulation_id, attempts=len(updates))
    return now


def fail_simulation(simulation_id: str, reason: str | None) -> str:
    """Mark a running simulation as FAILED with a zero score.

    Returns:
        The ended_at timestamp written.

    Raises:
        ConflictError: If the simulation already ended.
    """
    now = utcnow()
    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE simulations
            SET status = 'FAILED', ended_at = ?, overall_score = 0, passed = 0, fail_reason = ?
            WHERE simulation_id = ? AND ended_at IS NULL
            """,
            (now, reason, simulation_id),
        )
        if cursor.rowcount == 0:
            raise ConflictError(f"Simulation already ended: {simulation_id}")

    logger.debug("simulations.failed", simulation_id=simulation_id)
    return now


# =============================================================================
# TIMERS
# =============================================================================


def start_timer(timer_id: str, user_id: str, simulation_id: str, question_id: str) -> TimerRecord:
    """Start a timer for a question."""
    now = utcnow()
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO question_timers (timer_id, user_id, simulation_id, question_id, started_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (timer_id, user_id, simulation_id, question_id, now),
        )

    return TimerRecord(
        timer_id=timer_id,
        user_id=user_id,
        simulation_id=simulation_id,
        question_id=question_id,
        started_at=now,
        ended_at=None,
    )


def get_timer(timer_id: str) -> TimerRecord | None:
    """Get timer by ID."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM question_timers WHERE timer_id = ?", (timer_id,)
        ).fetchone()

    if row is None:
        return None

    return _row_to_timer(row)


def get_open_timer(user_id: str, simulation_id: str, question_id: str) -> TimerRecord | None:
    """Get the most recent open timer for a question, if any."""
    with get_db() as conn:
        row = conn.execute(
            """
            SELECT * FROM question_timers
            WHERE user_id = ? AND simulation_id = ? AND question_id = ? AND ended_at IS NULL
            ORDER BY started_at DESC
            LIMIT 1
            """,
            (user_id, simulation_id, question_id),
        ).fetchone()

    if row is None:
        return None

    return _row_to_timer(row)


# =============================================================================
# ATTEMPTS
# =============================================================================


def insert_simulation_attempt(
    attempt_id: str,
    simulation_id: str,
    question_id: str,
    user_id: str,
    answer_text: str,
    word_count: int,
    timer_id: str,
    ended_at: str,
    time_taken_seconds: int,
) -> EssayAttemptRecord:
    """Close the question timer and store the ungraded attempt.

    Both writes share one transaction. The timer only closes while it is
    still open and the simulation is still running; the UNIQUE
    (simulation_id, question_id) constraint turns a concurrent duplicate
    into a ConflictError.

    Raises:
        ConflictError: Duplicate attempt, closed timer or ended simulation.
    """
    with get_db() as conn:
        cursor = conn.execute(
            """
            UPDATE question_timers SET ended_at = ?
            WHERE timer_id = ? AND ended_at IS NULL
              AND EXISTS (
                  SELECT 1 FROM simulations
                  WHERE simulation_id = ? AND ended_at IS NULL
              )
            """,
            (ended_at, timer_id, simulation_id),
        )
        if cursor.rowcount == 0:
            raise ConflictError("Timer already closed or simulation already ended")

        try:
            conn.execute(
                """
                INSERT INTO essay_attempts (
                    attempt_id, simulation_id, question_id, user_id, answer_text,
                    word_count, time_taken_seconds, is_simulation, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    attempt_id,
                    simulation_id,
                    question_id,
                    user_id,
                    answer_text,
                    word_count,
                    time_taken_seconds,
                    ended_at,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Answer already submitted for question {question_id}"
            ) from e

    logger.debug(
        "essay_attempts.inserted",
        attempt_id=attempt_id,
        simulation_id=simulation_id,
        question_id=question_id,
    )

    return EssayAttemptRecord(
        attempt_id=attempt_id,
        simulation_id=simulation_id,
        question_id=question_id,
        user_id=user_id,
        answer_text=answer_text,
        word_count=word_count,
        time_taken_seconds=time_taken_seconds,
        is_simulation=True,
        created_at=ended_at,
    )


def get_attempt(simulation_id: str, question_id: str) -> EssayAttemptRecord | None:
    """Get the attempt for a question of a simulation."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM essay_attempts WHERE simulation_id = ? AND question_id = ?",
            (simulation_id, question_id),
        ).fetchone()

    if row is None:
        return None

    return _row_to_attempt(row)


def list_attempts(simulation_id: str) -> list[EssayAttemptRecord]:
    """All attempts of a simulation in submission order."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM essay_attempts WHERE simulation_id = ? ORDER BY created_at, attempt_id",
            (simulation_id,),
        ).fetchall()

    return [_row_to_attempt(row) for row in rows]


def count_attempts(simulation_id: str) -> int:
    """Number of attempts submitted for a simulation."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT COUNT(*) AS total FROM essay_attempts WHERE simulation_id = ?",
            (simulation_id,),
        ).fetchone()

    return row["total"]


def _row_to_simulation(row) -> SimulationRecord:
    """Convert database row to SimulationRecord."""
    return SimulationRecord(
        simulation_id=row["simulation_id"],
        user_id=row["user_id"],
        question_ids=json.loads(row["question_ids"]),
        status=row["status"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
        overall_score=row["overall_score"],
        passed=None if row["passed"] is None else bool(row["passed"]),
        fail_reason=row["fail_reason"],
    )


def _row_to_timer(row) -> TimerRecord:
    """Convert database row to TimerRecord."""
    return TimerRecord(
        timer_id=row["timer_id"],
        user_id=row["user_id"],
        simulation_id=row["simulation_id"],
        question_id=row["question_id"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
    )


def _row_to_attempt(row) -> EssayAttemptRecord:
    """Convert database row to EssayAttemptRecord."""
    return EssayAttemptRecord(
        attempt_id=row["attempt_id"],
        simulation_id=row["simulation_id"],
        question_id=row["question_id"],
        user_id=row["user_id"],
        answer_text=row["answer_text"],
        word_count=row["word_count"],
        time_taken_seconds=row["time_taken_seconds"],
        is_simulation=bool(row["is_simulation"]),
        created_at=row["created_at"],
        ai_score=row["ai_score"],
        band=row["band"],
        feedback=json.loads(row["feedback"]) if row["feedback"] else None,
        strengths=json.loads(row["strengths"]) if row["strengths"] else [],
        improvements=json.loads(row["improvements"]) if row["improvements"] else [],
        sample_answer=row["sample_answer"],
        tokens_used=row["tokens_used"],
        graded_at=row["graded_at"],
    )
