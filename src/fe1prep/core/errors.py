"""Error taxonomy shared by the progress and simulation engines.

Every failure surfaces as an AppError subclass with a stable ``kind``:
- not_found: missing entity, or an entity owned by another user
- conflict: duplicate submission, terminal simulation, insufficient pool
- validation: malformed input
- upstream_failure: grading collaborator failed or returned garbage
"""

from __future__ import annotations


class AppError(Exception):
    """Base error with a stable kind and a user-facing message."""

    kind = "app_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for API responses."""
        return {"error": self.kind, "message": self.message}


class NotFoundError(AppError):
    """Entity does not exist or does not belong to the caller."""

    kind = "not_found"


class ConflictError(AppError):
    """Operation conflicts with the current state."""

    kind = "conflict"


class ValidationError(AppError):
    """Input is malformed."""

    kind = "validation"


class UpstreamFailureError(AppError):
    """External collaborator failed, timed out or returned unparseable output."""

    kind = "upstream_failure"
