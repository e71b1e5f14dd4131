"""Random selection of essay questions for a simulation."""

from __future__ import annotations

import random

import structlog

from fe1prep.core.errors import ConflictError
from fe1prep.db import content_repository as content

logger = structlog.get_logger(__name__)


def select_simulation_questions(count: int, rng: random.Random | None = None) -> list[str]:
    """Pick `count` distinct eligible questions uniformly at random.

    Eligible means published with a non-null exam year. The returned order
    is the order the simulation will present them in.

    Raises:
        ConflictError: If fewer than `count` questions are eligible
    """
    pool = content.list_simulation_eligible_question_ids()
    if len(pool) < count:
        logger.warning("question_pool_too_small", available=len(pool), required=count)
        raise ConflictError(
            f"Not enough essay questions for a simulation: {len(pool)} available, {count} required"
        )

    rng = rng or random.Random()
    return rng.sample(pool, count)
