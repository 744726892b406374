"""Partner-side actions on released deals.

A partner user acts on its own Deal Release: viewing it, expressing
interest, starting due diligence, passing, leaving a note, or bringing in a
legal partner. These are field writes with timestamps rather than a
validated state machine; the guards are that due diligence and legal
assignment both require prior interest.

Release status is tracked independently of the deal's pipeline stage.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from src.dealflow.core.errors import (
    InvalidPartnerActionError,
    PartnerNotFoundError,
    ReleaseNotFoundError,
)
from src.dealflow.deals.repository import DealRepository
from src.dealflow.deals.schemas import (
    AccessLevel,
    DealReleaseRead,
    DealReleaseStatus,
    FundingPartnerRead,
    LegalStatus,
    PartnerAction,
    PartnerRole,
)
from src.dealflow.workflow.authorization import Caller, require_partner

logger = structlog.get_logger(__name__)

# Partner access log action recorded for each partner action.
ACCESS_LOG_ACTIONS: dict[PartnerAction, str] = {
    PartnerAction.VIEW: "viewed_summary",
    PartnerAction.EXPRESS_INTEREST: "expressed_interest",
    PartnerAction.START_DUE_DILIGENCE: "started_due_diligence",
    PartnerAction.PASS: "passed",
    PartnerAction.ADD_NOTE: "added_note",
    PartnerAction.ASSIGN_LEGAL: "assigned_legal",
}

_DUE_DILIGENCE_FROM = (DealReleaseStatus.INTERESTED, DealReleaseStatus.REVIEWING)
_ASSIGN_LEGAL_FROM = (
    DealReleaseStatus.INTERESTED,
    DealReleaseStatus.REVIEWING,
    DealReleaseStatus.DUE_DILIGENCE,
)


class PartnerActionService:
    """Applies partner actions to the caller's own deal releases."""

    def __init__(
        self,
        repository: DealRepository,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _partner_for(self, caller: Caller) -> FundingPartnerRead:
        slug = require_partner(caller)
        partner = await self._repo.get_partner_by_slug(slug)
        if partner is None:
            raise PartnerNotFoundError(slug)
        return partner

    async def list_releases(self, caller: Caller) -> list[DealReleaseRead]:
        """Releases visible to the calling partner."""
        partner = await self._partner_for(caller)
        return await self._repo.list_releases_for_partner(partner.id)

    async def record_partner_action(
        self,
        caller: Caller,
        deal_id: str,
        action: PartnerAction | str,
        notes: str | None = None,
        pass_reason: str | None = None,
        legal_partner: str | None = None,
    ) -> DealReleaseRead:
        """Apply one partner action to the caller's release of ``deal_id``.

        ``legal_partner`` is the slug of the legal partner for
        ``assign_legal``; that action returns the caller's own release.

        Raises:
            ForbiddenError: Caller is not a partner user.
            ReleaseNotFoundError: The deal was never released to this partner.
            InvalidPartnerActionError: Unknown action, due diligence or legal
                assignment requested before interest was expressed, or
                ``assign_legal`` without a legal partner.
            PartnerNotFoundError: The legal partner is unknown, inactive, or
                not a legal partner.
        """
        try:
            partner_action = PartnerAction(action)
        except ValueError:
            raise InvalidPartnerActionError(f"Invalid action: {action}") from None

        partner = await self._partner_for(caller)
        release = await self._repo.get_release(deal_id, partner.id)
        if release is None:
            raise ReleaseNotFoundError(deal_id, partner.slug)

        if partner_action == PartnerAction.ASSIGN_LEGAL:
            return await self._assign_legal(caller, partner, release, legal_partner)

        fields = self._fields_for(partner_action, release, notes, pass_reason)
        updated = await self._repo.update_release(release.id, fields) if fields else release

        details: dict[str, Any] = {
            "previous_status": release.status.value,
            "new_status": updated.status.value,
            "notes": notes,
            "pass_reason": pass_reason,
        }
        await self._repo.add_partner_access_log(
            partner.id,
            release.deal_id,
            caller.user_id,
            ACCESS_LOG_ACTIONS[partner_action],
            details,
        )
        await self._repo.add_activity(
            release.deal_id,
            caller.user_id,
            f"partner_{partner_action.value}",
            {"partner_name": partner.name, **details},
        )
        logger.info(
            "partner.action_recorded",
            deal_id=release.deal_id,
            partner=partner.slug,
            action=partner_action.value,
            status=updated.status.value,
        )
        return updated

    def _fields_for(
        self,
        action: PartnerAction,
        release: DealReleaseRead,
        notes: str | None,
        pass_reason: str | None,
    ) -> dict[str, Any]:
        now = self._clock()
        if action == PartnerAction.VIEW:
            fields: dict[str, Any] = {}
            if release.first_viewed_at is None:
                fields["first_viewed_at"] = now
            if release.status == DealReleaseStatus.PENDING:
                fields["status"] = DealReleaseStatus.VIEWED
            return fields

        if action == PartnerAction.EXPRESS_INTEREST:
            return {
                "status": DealReleaseStatus.INTERESTED,
                "access_level": AccessLevel.FULL,
                "interest_expressed_at": now,
            }

        if action == PartnerAction.START_DUE_DILIGENCE:
            if release.status not in _DUE_DILIGENCE_FROM:
                raise InvalidPartnerActionError(
                    "Must express interest before starting due diligence"
                )
            return {
                "status": DealReleaseStatus.DUE_DILIGENCE,
                "access_level": AccessLevel.DOCUMENTS,
            }

        if action == PartnerAction.PASS:
            fields = {"status": DealReleaseStatus.PASSED, "passed_at": now}
            if pass_reason:
                fields["pass_reason"] = pass_reason
            return fields

        # ADD_NOTE
        return {"partner_notes": notes} if notes else {}

    async def _assign_legal(
        self,
        caller: Caller,
        partner: FundingPartnerRead,
        release: DealReleaseRead,
        legal_slug: str | None,
    ) -> DealReleaseRead:
        """Put a legal partner on the deal and give it full access.

        The deal update and the legal partner's release are both idempotent
        writes, so repeating the action after a failure converges.
        """
        if release.status not in _ASSIGN_LEGAL_FROM:
            raise InvalidPartnerActionError(
                "Must express interest before assigning legal partner"
            )
        if not legal_slug:
            raise InvalidPartnerActionError("Legal partner is required")

        legal = await self._repo.get_partner_by_slug(legal_slug)
        if legal is None or not legal.is_active or legal.partner_role != PartnerRole.LEGAL:
            raise PartnerNotFoundError(legal_slug)

        await self._repo.update_deal(
            release.deal_id,
            {"legal_partner_id": legal.id, "legal_status": LegalStatus.ASSIGNED},
        )
        await self._repo.upsert_release(
            release.deal_id,
            legal.id,
            status=DealReleaseStatus.LEGAL_REVIEW,
            access_level=AccessLevel.FULL,
            released_by=caller.user_id,
            released_at=self._clock(),
            release_notes=f"Assigned by {partner.name}",
        )

        details: dict[str, Any] = {
            "legal_partner": legal.slug,
            "legal_partner_name": legal.name,
        }
        await self._repo.add_partner_access_log(
            partner.id,
            release.deal_id,
            caller.user_id,
            ACCESS_LOG_ACTIONS[PartnerAction.ASSIGN_LEGAL],
            details,
        )
        await self._repo.add_activity(
            release.deal_id,
            caller.user_id,
            f"partner_{PartnerAction.ASSIGN_LEGAL.value}",
            {"partner_name": partner.name, **details},
        )
        logger.info(
            "partner.legal_assigned",
            deal_id=release.deal_id,
            partner=partner.slug,
            legal_partner=legal.slug,
        )
        return release
