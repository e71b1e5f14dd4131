"""Essay grading module.

Responsibilities:
- Grade one FE-1 essay answer against its question with the LLM
- Enforce the grading contract (integer score 0-100, band, structured
  feedback, strengths/improvements, sample answer, tokens used)
- Treat unparseable or out-of-contract output as a hard failure

The grader keeps no per-call state, so one instance may be shared by
concurrent grading calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from fe1prep.core.errors import UpstreamFailureError
from fe1prep.llm.client import LLMClient, LLMError

logger = structlog.get_logger(__name__)

# =============================================================================
# PROMPTS
# =============================================================================

SYSTEM_PROMPT_GRADE = """You are a senior FE-1 examiner for the Law Society of Ireland.

STRICT RULES:
1. Grade the answer exactly as an FE-1 examiner would, for the subject given
2. Reward issue identification, accurate statement of law, authority
   (cases and statutes) and application to the facts
3. Reply ONLY with valid JSON
4. Be fair but rigorous; 50 is the real exam pass mark

The JSON must have exactly this structure:
{
  "score": integer from 0 to 100,
  "band": "Distinction" | "Merit" | "Pass" | "Fail",
  "feedback": {
    "overall": "Overall assessment",
    "structure": "Comment on structure",
    "legal_knowledge": "Comment on accuracy of the law",
    "application": "Comment on application to the facts"
  },
  "strengths": ["..."],
  "improvements": ["..."],
  "sample_answer": "Outline of a strong answer"
}

Bands:
- Distinction: 80-100
- Merit: 65-79
- Pass: 50-64
- Fail: 0-49"""

USER_PROMPT_GRADE = """Grade the following FE-1 answer.

**Subject:**
{subject}

**Question:**
{question}

**Candidate answer:**
{answer}

Return the JSON grade."""


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class EssayGrade:
    """Grade for a single essay answer."""

    score: int
    band: str
    feedback: dict[str, Any]
    strengths: list[str] = field(default_factory=list)
    improvements: list[str] = field(default_factory=list)
    sample_answer: str = ""
    tokens_used: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "score": self.score,
            "band": self.band,
            "feedback": self.feedback,
            "strengths": self.strengths,
            "improvements": self.improvements,
            "sample_answer": self.sample_answer,
            "tokens_used": self.tokens_used,
        }


class GradingError(UpstreamFailureError):
    """Grading collaborator failed or broke its output contract."""

    pass


# =============================================================================
# PARSING
# =============================================================================


def _string_list(value: Any, name: str) -> list[str]:
    """Validate a list of strings field (absent means empty)."""
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise GradingError(f"Grading output field '{name}' must be a list of strings")
    return [v.strip() for v in value if v.strip()]


def parse_grade(data: dict[str, Any], tokens_used: int = 0) -> EssayGrade:
    """Validate raw grading JSON against the contract.

    Args:
        data: Parsed JSON returned by the model
        tokens_used: Tokens spent producing it

    Returns:
        EssayGrade

    Raises:
        GradingError: If any required field is missing or malformed
    """
    raw_score = data.get("score")
    if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)):
        raise GradingError(f"Grading output has no numeric score: {raw_score!r}")
    if not 0 <= raw_score <= 100:
        raise GradingError(f"Grading score out of range 0-100: {raw_score}")
    score = int(round(raw_score))

    band = data.get("band")
    if not isinstance(band, str) or not band.strip():
        raise GradingError("Grading output has no band")

    feedback = data.get("feedback")
    if isinstance(feedback, str) and feedback.strip():
        feedback = {"overall": feedback.strip()}
    if not isinstance(feedback, dict) or not feedback:
        raise GradingError("Grading output has no structured feedback")

    sample_answer = data.get("sample_answer", "") or ""
    if not isinstance(sample_answer, str):
        raise GradingError("Grading output field 'sample_answer' must be a string")

    return EssayGrade(
        score=score,
        band=band.strip(),
        feedback=feedback,
        strengths=_string_list(data.get("strengths"), "strengths"),
        improvements=_string_list(data.get("improvements"), "improvements"),
        sample_answer=sample_answer.strip(),
        tokens_used=tokens_used,
    )


# =============================================================================
# GRADER
# =============================================================================


class EssayGrader:
    """LLM-backed grading collaborator."""

    def __init__(self, client: LLMClient | None = None):
        self._client = client

    @property
    def client(self) -> LLMClient:
        """LLM client, created from the app config on first use."""
        if self._client is None:
            self._client = LLMClient()
        return self._client

    def grade(self, answer_text: str, question_text: str, subject: str) -> EssayGrade:
        """Grade one essay answer.

        Args:
            answer_text: Candidate's answer
            question_text: Full question text
            subject: FE-1 subject name (e.g. "Tort Law")

        Returns:
            EssayGrade

        Raises:
            GradingError: On LLM failure or contract violation
        """
        user_prompt = USER_PROMPT_GRADE.format(
            subject=subject,
            question=question_text,
            answer=answer_text.strip() or "(no answer given)",
        )

        try:
            result = self.client.simple_json(
                system_prompt=SYSTEM_PROMPT_GRADE,
                user_message=user_prompt,
            )
        except LLMError as e:
            logger.error("essay_grading_failed", subject=subject, error=str(e))
            raise GradingError(f"Essay grading failed: {e}") from e

        grade = parse_grade(result.data, tokens_used=result.total_tokens)

        logger.info(
            "essay_graded",
            subject=subject,
            score=grade.score,
            band=grade.band,
            tokens=grade.tokens_used,
        )
        return grade
