"""Portfolio scoring: collaborator client and in-process job queue.

Exports:
    ScoringQueue: Job queue with a single asyncio worker.
    ScoringJob: Observable job record (queued, running, complete, failed).
    HttpScoringClient: Default collaborator calling the scoring service.
    letter_grade_for: Score to letter grade mapping.
"""

from __future__ import annotations

from src.dealflow.scoring.client import HttpScoringClient, ScoreResult, letter_grade_for
from src.dealflow.scoring.queue import ScoringJob, ScoringJobStatus, ScoringQueue

__all__ = [
    "HttpScoringClient",
    "ScoreResult",
    "ScoringJob",
    "ScoringJobStatus",
    "ScoringQueue",
    "letter_grade_for",
]
