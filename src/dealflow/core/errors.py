"""Workflow error taxonomy.

Every error raised by the workflow core derives from WorkflowError and
carries the HTTP status the API boundary maps it to. The boundary turns
them into ``{"error": str(exc)}`` bodies; nothing here knows about FastAPI.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for all deal workflow errors."""

    status_code: int = 400


# ── Validation (400) ────────────────────────────────────────────────────────


class InvalidStageTransitionError(WorkflowError, ValueError):
    """Raised when a deal stage change is not allowed from the current stage."""

    def __init__(self, from_stage: str, to_stage: str, allowed: list[str] | None = None) -> None:
        self.from_stage = from_stage
        self.to_stage = to_stage
        self.allowed = allowed or []
        message = f"Invalid stage transition from {from_stage} to {to_stage}"
        if self.allowed:
            message += f". Allowed transitions from {from_stage}: {', '.join(self.allowed)}"
        else:
            message += f". {from_stage} is a terminal stage"
        super().__init__(message)


class InvalidHandoffError(WorkflowError, ValueError):
    """Raised for an unknown handoff target."""


class InvalidReleaseStatusError(WorkflowError, ValueError):
    """Raised when a release status change is not permitted."""


class InvalidAccessLevelError(WorkflowError, ValueError):
    """Raised for an access level outside summary/full/documents."""


class InvalidPartnerActionError(WorkflowError, ValueError):
    """Raised when a partner action is unknown or not allowed in the release's status."""


class InvalidLegalAssignmentError(WorkflowError, ValueError):
    """Raised for an unknown legal status or a partner that is not a legal partner."""


class InvalidDocumentReviewError(WorkflowError, ValueError):
    """Raised when a document review is missing its reason."""


class ScoringJobStateError(WorkflowError, ValueError):
    """Raised when retrying a scoring job that has not failed."""


class ScoringRequiredError(WorkflowError):
    """Raised when a release is attempted before the deal has a recorded score."""

    def __init__(self, deal_id: str) -> None:
        self.deal_id = deal_id
        super().__init__(
            f"Deal {deal_id} has no recorded score; scoring must complete before release"
        )


# ── Lookup (404) ────────────────────────────────────────────────────────────


class NotFoundError(WorkflowError):
    status_code = 404


class DealNotFoundError(NotFoundError):
    def __init__(self, deal_id: str) -> None:
        self.deal_id = deal_id
        super().__init__(f"Deal not found: {deal_id}")


class PartnerNotFoundError(NotFoundError):
    def __init__(self, partner: str) -> None:
        self.partner = partner
        super().__init__(f"Partner not found or inactive: {partner}")


class ReleaseNotFoundError(NotFoundError):
    def __init__(self, deal_id: str, partner: str) -> None:
        super().__init__(f"Deal release not found: deal={deal_id}, partner={partner}")


class DocumentNotFoundError(NotFoundError):
    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class ScoringJobNotFoundError(NotFoundError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Scoring job not found: {job_id}")


# ── Authorization (401/403) ─────────────────────────────────────────────────


class UnauthorizedError(WorkflowError):
    status_code = 401


class ForbiddenError(WorkflowError):
    status_code = 403


# ── Persistence (500) ───────────────────────────────────────────────────────


class PersistenceError(WorkflowError):
    """The data store rejected a write (constraint violation, connectivity).

    The message shown to callers is generic; the underlying cause is kept
    on ``__cause__`` and logged server-side.
    """

    status_code = 500

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Failed to {operation}")
