"""Partner release gate.

release_to_partner is the only path that sets a deal's release_status to
``released``. It refuses deals without a recorded score, refuses unknown or
inactive partners, and treats a repeat release to the same partner as an
idempotent no-op returning the existing record.

A new release is written in one repository transaction (release row, audit
entries, deal-level fields), so a failed write leaves nothing behind.

The partner e-mail is fire-and-forget: it runs as a background task after
the release is committed, and its failures are logged but never roll the
release back.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel, Field

from src.dealflow.core.errors import (
    DealNotFoundError,
    InvalidAccessLevelError,
    PartnerNotFoundError,
    ScoringRequiredError,
)
from src.dealflow.core.monitoring import deal_releases_total
from src.dealflow.deals.repository import DealRepository
from src.dealflow.deals.schemas import (
    AccessLevel,
    DealRead,
    DealReleaseRead,
    FundingPartnerRead,
    ReleaseStatus,
)
from src.dealflow.notifications.email import ResendEmailSender, build_partner_release_email
from src.dealflow.notifications.service import NotificationService
from src.dealflow.workflow.authorization import Caller, require_admin

logger = structlog.get_logger(__name__)


class ReleaseOutcome(BaseModel):
    """Result of a release attempt."""

    deal: DealRead
    release: DealReleaseRead
    already_released: bool = Field(default=False, serialization_alias="alreadyReleased")


class ReleaseGate:
    """Exposes scored deals to funding partners.

    Args:
        repository: DealRepository for persistence.
        notifications: NotificationService for the owner notification.
        email_sender: Sender for the partner alert; None disables e-mail.
        app_url: Base URL used for dashboard links in the alert.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        repository: DealRepository,
        notifications: NotificationService,
        email_sender: ResendEmailSender | None = None,
        app_url: str = "",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repository
        self._notifications = notifications
        self._email_sender = email_sender
        self._app_url = app_url
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._background: set[asyncio.Task] = set()

    async def release_to_partner(
        self,
        caller: Caller,
        deal_id: str,
        partner_slug: str,
        access_level: AccessLevel | str = AccessLevel.SUMMARY,
        notes: str | None = None,
    ) -> ReleaseOutcome:
        """Release a deal to one partner.

        Preconditions are checked in order: the deal has a recorded score,
        then the partner exists and is active, then whether a release for
        this (deal, partner) already exists.

        Raises:
            ForbiddenError: Caller is not an admin.
            DealNotFoundError: No such deal.
            ScoringRequiredError: The deal has no overall_score. Nothing is written.
            InvalidAccessLevelError: Unknown access level. Nothing is written.
            PartnerNotFoundError: Unknown or inactive partner. Nothing is written.
        """
        require_admin(caller)
        deal = await self._repo.get_deal(deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)

        if deal.overall_score is None:
            deal_releases_total.labels(outcome="scoring_required").inc()
            logger.warning("release.scoring_required", deal_id=deal_id, partner=partner_slug)
            raise ScoringRequiredError(deal_id)

        try:
            level = AccessLevel(access_level)
        except ValueError:
            raise InvalidAccessLevelError(
                f"Invalid access level: {access_level}. "
                f"Expected one of: {', '.join(a.value for a in AccessLevel)}"
            ) from None

        partner = await self._repo.get_partner_by_slug(partner_slug)
        if partner is None or not partner.is_active:
            deal_releases_total.labels(outcome="partner_not_found").inc()
            raise PartnerNotFoundError(partner_slug)

        existing = await self._repo.get_release(deal.id, partner.id)
        if existing is not None:
            return await self._existing_release(caller, deal, partner, existing)

        now = self._clock()
        fields: dict = {
            "release_status": ReleaseStatus.RELEASED,
            "release_partner": partner.slug,
            "release_authorized_by": caller.user_id,
            "release_authorized_at": now,
        }
        if notes is not None:
            fields["release_notes"] = notes
        updated, release, created = await self._repo.release_deal(
            deal.id,
            partner.id,
            access_level=level.value,
            released_by=caller.user_id,
            released_at=now,
            release_notes=notes,
            deal_fields=fields,
            log_details={"access_level": level.value, "notes": notes},
            activity_details={
                "partner": partner.slug,
                "partner_name": partner.name,
                "access_level": level.value,
                "released_by": caller.email,
            },
        )
        if not created:
            return await self._existing_release(caller, updated, partner, release)

        deal_releases_total.labels(outcome="released").inc()
        logger.info(
            "release.released",
            deal_id=deal.id,
            partner=partner.slug,
            access_level=level.value,
            user_id=caller.user_id,
        )
        await self._announce(updated, partner)
        return ReleaseOutcome(deal=updated, release=release, already_released=False)

    async def _existing_release(
        self,
        caller: Caller,
        deal: DealRead,
        partner: FundingPartnerRead,
        release: DealReleaseRead,
    ) -> ReleaseOutcome:
        """Answer a repeat release with the stored record.

        A release row whose deal never reached ``released`` is completed
        here so the deal-level fields match the row that exists.
        """
        if deal.release_status == ReleaseStatus.RELEASED and deal.release_partner:
            deal_releases_total.labels(outcome="already_released").inc()
            logger.info(
                "release.already_released",
                deal_id=deal.id,
                partner=release.partner_slug,
            )
            return ReleaseOutcome(deal=deal, release=release, already_released=True)

        fields: dict = {
            "release_status": ReleaseStatus.RELEASED,
            "release_partner": partner.slug,
            "release_authorized_by": release.released_by or caller.user_id,
            "release_authorized_at": release.released_at or self._clock(),
        }
        if release.release_notes is not None:
            fields["release_notes"] = release.release_notes
        updated = await self._repo.update_deal(deal.id, fields)

        deal_releases_total.labels(outcome="repaired").inc()
        logger.warning(
            "release.repaired",
            deal_id=deal.id,
            partner=partner.slug,
            previous_status=deal.release_status.value,
        )
        await self._announce(updated, partner)
        return ReleaseOutcome(deal=updated, release=release, already_released=True)

    async def _announce(self, deal: DealRead, partner: FundingPartnerRead) -> None:
        await self._notifications.release_status_changed(
            deal, ReleaseStatus.RELEASED.value, partner=partner.name
        )
        self._schedule_partner_email(deal, partner)


    # ── Background e-mail ───────────────────────────────────────────────────

    def _schedule_partner_email(self, deal: DealRead, partner: FundingPartnerRead) -> None:
        if self._email_sender is None:
            return
        task = asyncio.create_task(self._send_partner_email(deal, partner))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_partner_email(self, deal: DealRead, partner: FundingPartnerRead) -> None:
        message = build_partner_release_email(deal, partner, self._app_url)
        if message is None:
            logger.info("release.partner_email_skipped", deal_id=deal.id, partner=partner.slug)
            return
        try:
            await self._email_sender.send(message)
        except Exception as exc:
            logger.warning(
                "release.partner_email_failed",
                deal_id=deal.id,
                partner=partner.slug,
                error=str(exc),
            )

    async def wait_for_background(self) -> None:
        """Wait for pending partner e-mails (shutdown, tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
