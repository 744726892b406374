"""Portfolio scoring collaborator.

The scoring calculation itself (loan-tape parsing, performance metrics) is
an external service. This module defines the contract the queue relies on,
a score-to-letter-grade mapping, and the default HTTP implementation.
"""

from __future__ import annotations

from typing import Protocol

import httpx
import structlog
from pydantic import BaseModel, Field

from src.dealflow.deals.schemas import DealRead

logger = structlog.get_logger(__name__)

# (minimum score, grade), highest first.
GRADE_THRESHOLDS: list[tuple[float, str]] = [
    (95, "A"),
    (90, "A-"),
    (85, "B+"),
    (80, "B"),
    (75, "B-"),
    (70, "C+"),
    (65, "C"),
    (60, "C-"),
    (50, "D"),
]


def letter_grade_for(score: float) -> str:
    """Map a 0-100 score to its letter grade."""
    for minimum, grade in GRADE_THRESHOLDS:
        if score >= minimum:
            return grade
    return "F"


class ScoreResult(BaseModel):
    overall_score: float = Field(ge=0, le=100)
    letter_grade: str | None = None

    def graded(self) -> ScoreResult:
        """Fill in the letter grade from the score when the service omitted it."""
        if self.letter_grade:
            return self
        return self.model_copy(update={"letter_grade": letter_grade_for(self.overall_score)})


class ScoringServiceError(Exception):
    """The scoring collaborator could not produce a score."""


class ScoringClient(Protocol):
    async def score(self, deal: DealRead) -> ScoreResult: ...


class HttpScoringClient:
    """Requests a score from the scoring service over HTTP.

    POSTs the deal identity to ``url`` and expects
    ``{"overall_score": float, "letter_grade": str}`` back. One attempt per
    call; retries are a manual decision made through the queue.

    Args:
        url: Scoring service endpoint. Empty disables scoring.
        timeout: Request timeout in seconds.
    """

    def __init__(self, url: str, timeout: float = 60.0) -> None:
        self._url = url
        self._timeout = timeout

    async def score(self, deal: DealRead) -> ScoreResult:
        if not self._url:
            raise ScoringServiceError("Scoring service URL is not configured")

        payload = {
            "deal_id": deal.id,
            "qualification_code": deal.qualification_code,
            "company_name": deal.company_name,
            "capital_amount": deal.capital_amount,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            logger.warning("scoring.request_failed", deal_id=deal.id, error=str(exc))
            raise ScoringServiceError(f"Scoring request failed: {exc}") from exc
        except ValueError as exc:
            raise ScoringServiceError("Scoring service returned invalid JSON") from exc

        try:
            return ScoreResult.model_validate(data).graded()
        except ValueError as exc:
            raise ScoringServiceError(f"Unexpected scoring response: {exc}") from exc
