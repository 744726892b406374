"""Workflow mutators for deals: stage, handoff, notes, release status, legal.

Every operation takes an explicit Caller and follows the same sequence:
load the deal, validate, persist, write an activity entry, notify the owner
where applicable, and return the DealRead projection. Validation failures
raise before any write.

Stage changes go through validate_stage_transition; nothing else in the
codebase writes Deal.stage.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, Field

from src.dealflow.core.errors import (
    DealNotFoundError,
    InvalidHandoffError,
    InvalidLegalAssignmentError,
    InvalidReleaseStatusError,
    InvalidStageTransitionError,
    PartnerNotFoundError,
)
from src.dealflow.core.monitoring import workflow_transitions_total
from src.dealflow.deals.repository import DealRepository
from src.dealflow.deals.schemas import (
    ActivityRead,
    DealCreate,
    DealFilter,
    DealRead,
    DealReleaseRead,
    HandoffTarget,
    LegalStatus,
    PartnerRole,
    ReleaseStatus,
)
from src.dealflow.notifications.service import NotificationService
from src.dealflow.workflow.authorization import (
    Caller,
    ensure_can_read_deal,
    require_admin,
    require_staff,
)
from src.dealflow.workflow.stages import DealStage, stage_progress
from src.dealflow.workflow.transitions import (
    is_terminal_stage,
    valid_next_stages,
    validate_stage_transition,
)

logger = structlog.get_logger(__name__)

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# Statuses an admin may set directly. RELEASED is reachable only through
# ReleaseGate.release_to_partner.
_SETTABLE_RELEASE_STATUSES = {
    ReleaseStatus.READY_FOR_RELEASE: "marked_ready_for_release",
    ReleaseStatus.REJECTED: "release_rejected",
}


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_qualification_code(company_name: str) -> str:
    """Build a code like ``BTC-ACM-K3F9Z`` for a new deal.

    Three letters of the company name, then three base36 digits of the
    current millisecond clock and two random base36 digits so deals created
    in the same millisecond still differ.
    """
    prefix = company_name.strip()[:3].upper() or "XXX"
    clock = _to_base36(int(time.time() * 1000))[-3:].rjust(3, "0")
    noise = "".join(secrets.choice(_BASE36) for _ in range(2))
    return f"BTC-{prefix}-{clock}{noise}"


class DealTransitions(BaseModel):
    """Where a deal sits in the pipeline and where it can go next."""

    stage: DealStage
    valid_next_stages: list[DealStage] = Field(default_factory=list)
    terminal: bool = False
    progress: int = 0


def _parse_stage(deal: DealRead, target: DealStage | str) -> DealStage:
    try:
        return DealStage(target)
    except ValueError:
        raise InvalidStageTransitionError(
            deal.stage.value,
            str(target),
            [s.value for s in valid_next_stages(deal.stage)],
        ) from None


class WorkflowService:
    """Admin-side mutators and reads for the deal workflow.

    Args:
        repository: DealRepository for persistence.
        notifications: NotificationService for owner notifications.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        repository: DealRepository,
        notifications: NotificationService,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repository
        self._notifications = notifications
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _load(self, deal_id: str) -> DealRead:
        deal = await self._repo.get_deal(deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)
        return deal

    # ── Reads ───────────────────────────────────────────────────────────────

    async def create_deal(self, caller: Caller, data: DealCreate) -> DealRead:
        require_admin(caller)
        deal = await self._repo.create_deal(
            data, generate_qualification_code(data.company_name)
        )
        await self._repo.add_activity(
            deal.id,
            caller.user_id,
            "deal_created",
            {"qualification_code": deal.qualification_code},
        )
        logger.info(
            "workflow.deal_created",
            deal_id=deal.id,
            qualification_code=deal.qualification_code,
        )
        return deal

    async def get_deal(self, caller: Caller, deal_id: str) -> DealRead:
        """Load a deal the caller is allowed to see."""
        deal = await self._load(deal_id)
        releases = (
            await self._repo.list_releases_for_deal(deal_id) if caller.partner else []
        )
        ensure_can_read_deal(caller, deal, releases)
        return deal

    async def list_deals(
        self, caller: Caller, filters: DealFilter | None = None
    ) -> list[DealRead]:
        require_staff(caller)
        return await self._repo.list_deals(filters)

    async def list_activities(self, caller: Caller, deal_id: str) -> list[ActivityRead]:
        require_staff(caller)
        await self._load(deal_id)
        return await self._repo.list_activities(deal_id)

    async def list_releases(self, caller: Caller, deal_id: str) -> list[DealReleaseRead]:
        require_admin(caller)
        await self._load(deal_id)
        return await self._repo.list_releases_for_deal(deal_id)

    async def transitions(self, caller: Caller, deal_id: str) -> DealTransitions:
        deal = await self.get_deal(caller, deal_id)
        return DealTransitions(
            stage=deal.stage,
            valid_next_stages=valid_next_stages(deal.stage),
            terminal=is_terminal_stage(deal.stage),
            progress=stage_progress(deal.stage),
        )

    # ── Mutators ────────────────────────────────────────────────────────────

    async def advance_stage(
        self, caller: Caller, deal_id: str, target_stage: DealStage | str
    ) -> DealRead:
        """Move a deal to ``target_stage``.

        Raises:
            ForbiddenError: Caller is not an admin.
            DealNotFoundError: No such deal.
            InvalidStageTransitionError: ``target_stage`` is not a valid next
                stage of the deal's current stage. The deal is unchanged.
        """
        require_admin(caller)
        deal = await self._load(deal_id)
        from_stage = deal.stage
        to_stage = _parse_stage(deal, target_stage)
        validate_stage_transition(from_stage, to_stage)

        updated = await self._repo.update_deal(
            deal_id,
            {"stage": to_stage, "stage_changed_at": self._clock()},
        )
        await self._repo.add_activity(
            deal_id,
            caller.user_id,
            "stage_changed",
            {
                "from_stage": from_stage.value,
                "to_stage": to_stage.value,
                "changed_by": caller.email,
            },
        )
        workflow_transitions_total.labels(
            from_stage=from_stage.value, to_stage=to_stage.value
        ).inc()
        logger.info(
            "workflow.stage_advanced",
            deal_id=deal_id,
            from_stage=from_stage.value,
            to_stage=to_stage.value,
            user_id=caller.user_id,
        )
        await self._notifications.stage_changed(updated, from_stage, to_stage)
        return updated

    async def set_handoff(
        self,
        caller: Caller,
        deal_id: str,
        target: HandoffTarget | str,
        notes: str | None = None,
    ) -> DealRead:
        """Assign the deal to an internal team, or clear the assignment.

        Switching to a different team stamps handed_off_at/by; repeating the
        current team keeps the original stamp; ``none`` clears both. Notes,
        when given, overwrite internal_notes.
        """
        require_admin(caller)
        try:
            handoff = HandoffTarget(target)
        except ValueError:
            raise InvalidHandoffError(
                f"Invalid handoff target: {target}. "
                f"Expected one of: {', '.join(t.value for t in HandoffTarget)}"
            ) from None
        deal = await self._load(deal_id)

        fields: dict = {"handoff_to": handoff}
        if handoff == HandoffTarget.NONE:
            fields["handed_off_at"] = None
            fields["handed_off_by"] = None
        elif handoff != deal.handoff_to:
            fields["handed_off_at"] = self._clock()
            fields["handed_off_by"] = caller.user_id
        if notes is not None:
            fields["internal_notes"] = notes

        updated = await self._repo.update_deal(deal_id, fields)
        action = (
            "cleared_handoff"
            if handoff == HandoffTarget.NONE
            else f"handed_off_to_{handoff.value}"
        )
        await self._repo.add_activity(
            deal_id,
            caller.user_id,
            action,
            {
                "from": deal.handoff_to.value,
                "to": handoff.value,
                "notes": notes,
                "handed_off_by": caller.email,
            },
        )
        logger.info(
            "workflow.handoff_set",
            deal_id=deal_id,
            handoff_to=handoff.value,
            user_id=caller.user_id,
        )
        return updated

    async def save_notes(self, caller: Caller, deal_id: str, text: str) -> DealRead:
        """Overwrite internal_notes (last write wins).

        Saving the text already stored writes nothing.
        """
        require_admin(caller)
        deal = await self._load(deal_id)
        if deal.internal_notes == text:
            return deal
        updated = await self._repo.update_deal(deal_id, {"internal_notes": text})
        await self._repo.add_activity(
            deal_id, caller.user_id, "notes_updated", {"length": len(text)}
        )
        logger.info("workflow.notes_saved", deal_id=deal_id, user_id=caller.user_id)
        return updated

    async def set_release_status(
        self,
        caller: Caller,
        deal_id: str,
        status: ReleaseStatus | str,
        notes: str | None = None,
    ) -> DealRead:
        """Mark a deal ready for partner release, or reject its release.

        Raises:
            InvalidReleaseStatusError: Unknown status, ``released`` (only the
                release gate sets it), or the deal is already released.
        """
        require_admin(caller)
        try:
            release_status = ReleaseStatus(status)
        except ValueError:
            raise InvalidReleaseStatusError(f"Invalid release status: {status}") from None
        if release_status == ReleaseStatus.RELEASED:
            raise InvalidReleaseStatusError(
                "Deals are released through the partner release endpoint"
            )
        if release_status not in _SETTABLE_RELEASE_STATUSES:
            raise InvalidReleaseStatusError(f"Invalid release status: {status}")

        deal = await self._load(deal_id)
        if deal.release_status == ReleaseStatus.RELEASED:
            raise InvalidReleaseStatusError(
                f"Deal {deal_id} has already been released to {deal.release_partner}"
            )

        fields: dict = {"release_status": release_status}
        if notes is not None:
            fields["release_notes"] = notes
        if release_status == ReleaseStatus.READY_FOR_RELEASE:
            fields["release_authorized_by"] = caller.user_id
            fields["release_authorized_at"] = self._clock()

        updated = await self._repo.update_deal(deal_id, fields)
        await self._repo.add_activity(
            deal_id,
            caller.user_id,
            _SETTABLE_RELEASE_STATUSES[release_status],
            {
                "from_status": deal.release_status.value,
                "to_status": release_status.value,
                "notes": notes,
            },
        )
        logger.info(
            "workflow.release_status_set",
            deal_id=deal_id,
            release_status=release_status.value,
            user_id=caller.user_id,
        )
        await self._notifications.release_status_changed(
            updated, release_status.value, notes=notes
        )
        return updated

    async def set_legal(
        self,
        caller: Caller,
        deal_id: str,
        legal_partner: str | None = None,
        legal_status: LegalStatus | str | None = None,
        notes: str | None = None,
    ) -> DealRead:
        """Assign a deal's legal partner and track its legal review.

        Args:
            legal_partner: Slug of a partner with role ``legal``; an empty
                string clears the assignment, None leaves it alone.
            legal_status: New legal status; ``approved`` stamps
                legal_signed_off_at.
            notes: Overwrites legal_notes when given.

        Raises:
            InvalidLegalAssignmentError: Unknown status, a partner that is not
                a legal partner, or nothing to update.
            PartnerNotFoundError: No partner with that slug.
        """
        require_admin(caller)
        status = None
        if legal_status is not None:
            try:
                status = LegalStatus(legal_status)
            except ValueError:
                raise InvalidLegalAssignmentError(
                    f"Invalid legal status: {legal_status}"
                ) from None
        deal = await self._load(deal_id)

        fields: dict = {}
        if legal_partner is not None:
            if legal_partner == "":
                fields["legal_partner_id"] = None
            else:
                partner = await self._repo.get_partner_by_slug(legal_partner)
                if partner is None:
                    raise PartnerNotFoundError(legal_partner)
                if partner.partner_role != PartnerRole.LEGAL:
                    raise InvalidLegalAssignmentError(
                        f"Selected partner is not a legal partner: {legal_partner}"
                    )
                fields["legal_partner_id"] = partner.id
        if status is not None:
            fields["legal_status"] = status
            if status == LegalStatus.APPROVED:
                fields["legal_signed_off_at"] = self._clock()
        if notes is not None:
            fields["legal_notes"] = notes
        if not fields:
            raise InvalidLegalAssignmentError("No legal fields to update")

        updated = await self._repo.update_deal(deal_id, fields)
        await self._repo.add_activity(
            deal_id,
            caller.user_id,
            "legal_partner_assigned" if legal_partner else "legal_status_updated",
            {
                "legal_partner": legal_partner,
                "from_status": deal.legal_status.value,
                "legal_status": updated.legal_status.value,
                "legal_notes": notes,
            },
        )
        logger.info(
            "workflow.legal_set",
            deal_id=deal_id,
            legal_partner_id=updated.legal_partner_id,
            legal_status=updated.legal_status.value,
            user_id=caller.user_id,
        )
        return updated
