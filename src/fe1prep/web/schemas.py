"""Pydantic schemas for the Web API.

Request bodies and response models for progress and simulations.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from fe1prep.core.progress_rollup import MAX_TRACKED_SECONDS


# =============================================================================
# COMMON
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: str


class ErrorResponse(BaseModel):
    """Error body for every AppError."""

    error: str
    message: str


# =============================================================================
# PROGRESS SCHEMAS
# =============================================================================


class VideoProgressRequest(BaseModel):
    """Request body for a video progress ping."""

    current_time_seconds: float = Field(..., ge=0, le=MAX_TRACKED_SECONDS, allow_inf_nan=False)
    time_spent_seconds: int = Field(default=0, ge=0, le=MAX_TRACKED_SECONDS)


class LessonProgressResponse(BaseModel):
    """Lesson progress."""

    lesson_id: str
    video_watched_seconds: int
    is_completed: bool
    completed_at: str | None = None
    time_spent_seconds: int


class ModuleProgressResponse(BaseModel):
    """Module progress."""

    module_id: str
    name: str | None = None
    completed_lessons: int
    total_lessons: int
    progress_percent: float
    status: str
    last_accessed_at: str | None = None
    total_time_spent_seconds: int = 0
    average_time_per_lesson: int = 0


class SubjectProgressResponse(BaseModel):
    """Subject progress."""

    subject_id: str
    name: str | None = None
    progress_percent: float
    status: str
    total_time_seconds: int
    last_accessed_at: str | None = None


class VideoProgressResponse(BaseModel):
    """Outcome of a video progress ping."""

    lesson: LessonProgressResponse
    just_completed: bool
    module: ModuleProgressResponse | None = None
    subject: SubjectProgressResponse | None = None


class SubjectPerformance(BaseModel):
    """Lesson totals for a subject."""

    total_lessons_completed: int
    total_lessons: int
    completion_rate: float


class SubjectProgressDetailResponse(BaseModel):
    """Subject progress with per-module breakdown."""

    subject: SubjectProgressResponse
    modules: list[ModuleProgressResponse]
    performance: SubjectPerformance


class RecentLessonResponse(BaseModel):
    """A recently completed lesson."""

    lesson_id: str
    title: str
    subject_name: str
    completed_at: str


class ProgressOverviewResponse(BaseModel):
    """Overall progress of a user."""

    total_subjects: int
    completed_subjects: int
    average_progress: float
    lessons_completed_today: int
    lessons_completed_this_week: int
    recent_lessons: list[RecentLessonResponse]


# =============================================================================
# SIMULATION SCHEMAS
# =============================================================================


class EssayQuestionResponse(BaseModel):
    """Essay question as shown to the candidate."""

    question_id: str
    subject: str
    year: int | None = None
    exam_type: str | None = None
    description: str | None = None
    text: str
    points: int


class SimulationStartResponse(BaseModel):
    """Response when a simulation starts."""

    simulation_id: str
    question: EssayQuestionResponse
    timer_id: str
    started_at: str
    current_question_index: int
    total_questions: int
    time_limit_seconds: int


class SubmitAnswerRequest(BaseModel):
    """Request body for submitting one answer."""

    question_id: str = Field(..., min_length=1)
    answer_text: str = Field(default="")
    timer_id: str = Field(..., min_length=1)
    current_question_index: int = Field(..., ge=0)


class SubmitAnswerResponse(BaseModel):
    """Response after storing an answer."""

    attempt_id: str
    question_id: str
    word_count: int
    time_taken_seconds: int
    has_next: bool
    next_question_index: int | None = None
    next_question_id: str | None = None


class SimulationQuestionResponse(BaseModel):
    """A question inside a simulation."""

    simulation_id: str
    question: EssayQuestionResponse
    question_index: int
    total_questions: int
    previous_answer: str | None = None
    can_edit: bool
    timer_id: str | None = None
    next_question_id: str | None = None
    is_last_question: bool


class FailSimulationRequest(BaseModel):
    """Request body for failing a simulation."""

    reason: str | None = Field(default=None, max_length=500)


class QuestionResultResponse(BaseModel):
    """Per-question outcome."""

    question_id: str
    answer_text: str
    word_count: int
    time_taken_seconds: int
    score: int | None = None
    band: str | None = None
    feedback: dict[str, Any] | None = None
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    sample_answer: str | None = None
    tokens_used: int | None = None


class SimulationResultResponse(BaseModel):
    """Full simulation result."""

    simulation_id: str
    status: str
    started_at: str
    ended_at: str | None = None
    overall_score: int | None = None
    passed: bool | None = None
    fail_reason: str | None = None
    results: list[QuestionResultResponse]
    total_time_seconds: int
    average_time_per_question: float
    pass_threshold: int
    app_pass_threshold: int
    tokens_used: int


class SimulationSummaryResponse(BaseModel):
    """One simulation in the history list."""

    simulation_id: str
    status: str
    started_at: str
    ended_at: str | None = None
    overall_score: int | None = None
    passed: bool | None = None


class SimulationListResponse(BaseModel):
    """Simulation history."""

    simulations: list[SimulationSummaryResponse]
    count: int
