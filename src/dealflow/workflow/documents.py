"""Document review for deals.

Admins register documents against a deal and approve or reject them. Each
review writes the document status, a deal activity and an owner
notification. Approving a loan tape queues a scoring job for the deal, so a
deal's first score normally arrives without a separate scoring request.
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, Field

from src.dealflow.core.errors import (
    DealNotFoundError,
    DocumentNotFoundError,
    InvalidDocumentReviewError,
)
from src.dealflow.deals.repository import DealRepository
from src.dealflow.deals.schemas import (
    LOAN_TAPE_CATEGORY,
    DealRead,
    DocumentCreate,
    DocumentRead,
    DocumentStatus,
)
from src.dealflow.notifications.service import NotificationService
from src.dealflow.scoring.queue import ScoringJob, ScoringQueue
from src.dealflow.workflow.authorization import Caller, require_admin, require_staff

logger = structlog.get_logger(__name__)


class DocumentApproval(BaseModel):
    """An approved document and the scoring job it started, if any."""

    document: DocumentRead
    scoring_triggered: bool = Field(default=False, serialization_alias="scoringTriggered")
    scoring_job: ScoringJob | None = Field(default=None, serialization_alias="scoringJob")


class DocumentService:
    """Registers and reviews deal documents.

    Args:
        repository: DealRepository for persistence.
        notifications: NotificationService for owner notifications.
        scoring_queue: Queue that receives a job when a loan tape is approved.
            None disables the automatic trigger.
    """

    def __init__(
        self,
        repository: DealRepository,
        notifications: NotificationService,
        scoring_queue: ScoringQueue | None = None,
    ) -> None:
        self._repo = repository
        self._notifications = notifications
        self._scoring_queue = scoring_queue

    async def _load_deal(self, deal_id: str) -> DealRead:
        deal = await self._repo.get_deal(deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)
        return deal

    async def _load_document(self, document_id: str) -> DocumentRead:
        document = await self._repo.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    async def add_document(
        self, caller: Caller, deal_id: str, data: DocumentCreate
    ) -> DocumentRead:
        require_admin(caller)
        await self._load_deal(deal_id)
        document = await self._repo.create_document(deal_id, data)
        await self._repo.add_activity(
            deal_id,
            caller.user_id,
            "document_added",
            {
                "document_id": document.id,
                "document_name": document.name,
                "category": document.category,
            },
        )
        logger.info(
            "documents.added",
            deal_id=deal_id,
            document_id=document.id,
            category=document.category,
        )
        return document

    async def list_documents(self, caller: Caller, deal_id: str) -> list[DocumentRead]:
        require_staff(caller)
        await self._load_deal(deal_id)
        return await self._repo.list_documents(deal_id)

    async def approve_document(self, caller: Caller, document_id: str) -> DocumentApproval:
        """Approve a document; a loan tape also queues scoring for its deal.

        Raises:
            ForbiddenError: Caller is not an admin.
            DocumentNotFoundError: No such document.
        """
        require_admin(caller)
        document = await self._load_document(document_id)
        deal = await self._load_deal(document.deal_id)

        approved = await self._repo.update_document(
            document_id, {"status": DocumentStatus.APPROVED}
        )
        await self._repo.add_activity(
            deal.id,
            caller.user_id,
            "document_approved",
            {
                "document_id": document_id,
                "document_name": document.name,
                "approved_by": caller.email,
            },
        )
        logger.info(
            "documents.approved",
            deal_id=deal.id,
            document_id=document_id,
            category=document.category,
        )
        await self._notifications.document_approved(deal, document.name)

        job = None
        if document.category == LOAN_TAPE_CATEGORY and self._scoring_queue is not None:
            job = await self._scoring_queue.enqueue(
                caller, deal.id, trigger="loan_tape_approved"
            )
        return DocumentApproval(
            document=approved, scoring_triggered=job is not None, scoring_job=job
        )

    async def reject_document(
        self, caller: Caller, document_id: str, reason: str
    ) -> DocumentRead:
        """Reject a document with feedback for the owner.

        Raises:
            InvalidDocumentReviewError: ``reason`` is empty.
        """
        require_admin(caller)
        if not reason or not reason.strip():
            raise InvalidDocumentReviewError("A reason is required to reject a document")
        document = await self._load_document(document_id)
        deal = await self._load_deal(document.deal_id)

        rejected = await self._repo.update_document(
            document_id,
            {"status": DocumentStatus.REJECTED, "review_notes": reason},
        )
        await self._repo.add_activity(
            deal.id,
            caller.user_id,
            "document_rejected",
            {
                "document_id": document_id,
                "document_name": document.name,
                "reason": reason,
                "rejected_by": caller.email,
            },
        )
        logger.info("documents.rejected", deal_id=deal.id, document_id=document_id)
        await self._notifications.document_rejected(deal, document.name, reason)
        return rejected
