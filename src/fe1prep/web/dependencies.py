"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Header

from fe1prep.core.essay_grader import EssayGrader
from fe1prep.core.errors import ValidationError

_essay_grader: EssayGrader | None = None


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, set by the authenticating proxy in X-User-Id."""
    if x_user_id is None or not x_user_id.strip():
        raise ValidationError("Missing X-User-Id header")
    return x_user_id.strip()


def get_essay_grader() -> EssayGrader:
    """Shared grader instance (the LLM client is created on first grade)."""
    global _essay_grader
    if _essay_grader is None:
        _essay_grader = EssayGrader()
    return _essay_grader


def reset_essay_grader() -> None:
    """Drop the shared grader (for tests and config reloads)."""
    global _essay_grader
    _essay_grader = None
