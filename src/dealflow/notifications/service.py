"""In-app notifications for deal owners.

Notifications are side effects of an already committed workflow write, so
delivery is best-effort: failures are logged and swallowed, never surfaced
to the caller of the mutator.
"""

from __future__ import annotations

import structlog

from src.dealflow.core.errors import PersistenceError
from src.dealflow.deals.repository import DealRepository
from src.dealflow.deals.schemas import DealRead, NotificationCreate
from src.dealflow.workflow.stages import (
    DealStage,
    stage_change_title,
    transition_message,
)

logger = structlog.get_logger(__name__)

# Owner-facing copy for release status changes.
RELEASE_STATUS_MESSAGES: dict[str, tuple[str, str]] = {
    "ready_for_release": (
        "Offering Ready for Release",
        "Your offering for {company} has been marked as ready for partner release.",
    ),
    "released": (
        "Offering Released to Partner",
        "Your offering for {company} has been released to {partner}.",
    ),
    "rejected": (
        "Offering Release Rejected",
        "Your offering for {company} was not approved for partner release at this time.",
    ),
}


class NotificationService:
    """Writes owner notifications through the deal repository."""

    def __init__(self, repository: DealRepository) -> None:
        self._repo = repository

    async def notify_owner(
        self, deal: DealRead, notification_type: str, title: str, message: str
    ) -> bool:
        """Create an in-app notification for the deal owner.

        Returns:
            True if a notification row was written.
        """
        if not deal.owner_id:
            return False
        try:
            await self._repo.add_notification(
                NotificationCreate(
                    user_id=deal.owner_id,
                    deal_id=deal.id,
                    type=notification_type,
                    title=title,
                    message=message,
                )
            )
        except (PersistenceError, ValueError) as exc:
            logger.warning(
                "notification.owner_failed",
                deal_id=deal.id,
                type=notification_type,
                error=str(exc),
            )
            return False
        return True

    async def stage_changed(
        self, deal: DealRead, from_stage: DealStage, to_stage: DealStage
    ) -> bool:
        return await self.notify_owner(
            deal,
            "stage_change",
            stage_change_title(to_stage),
            transition_message(from_stage, to_stage),
        )

    async def release_status_changed(
        self,
        deal: DealRead,
        status: str,
        partner: str | None = None,
        notes: str | None = None,
    ) -> bool:
        if status not in RELEASE_STATUS_MESSAGES:
            return False
        title, template = RELEASE_STATUS_MESSAGES[status]
        message = template.format(
            company=deal.company_name,
            partner=partner or "our partner network",
        )
        if status == "rejected" and notes:
            message += f" Reason: {notes}"
        return await self.notify_owner(deal, "release_status", title, message)

    async def scoring_started(self, deal: DealRead) -> bool:
        return await self.notify_owner(
            deal,
            "scoring_started",
            "Portfolio Analysis Started",
            "Your portfolio scoring analysis has begun.",
        )

    async def scoring_complete(self, deal: DealRead) -> bool:
        return await self.notify_owner(
            deal,
            "scoring_complete",
            "Portfolio Analysis Complete",
            f"Your portfolio has been scored: {deal.overall_score:g}/100 ({deal.letter_grade})",
        )

    async def document_approved(self, deal: DealRead, document_name: str) -> bool:
        return await self.notify_owner(
            deal,
            "document_approved",
            "Document Approved",
            f'Your document "{document_name}" has been reviewed and approved.',
        )

    async def document_rejected(
        self, deal: DealRead, document_name: str, reason: str
    ) -> bool:
        return await self.notify_owner(
            deal,
            "document_rejected",
            "Document Requires Revision",
            f'Your document "{document_name}" requires revision: {reason}',
        )
