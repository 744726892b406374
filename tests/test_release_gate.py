"""Tests for ReleaseGate.release_to_partner.

Covers the scoring precondition, partner checks, idempotent repeat
releases, distinct partner releases, owner notification, and the
best-effort partner e-mail.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.dealflow.core.errors import (
    DealNotFoundError,
    ForbiddenError,
    InvalidAccessLevelError,
    InvalidReleaseStatusError,
    PartnerNotFoundError,
    PersistenceError,
    ScoringRequiredError,
)
from src.dealflow.deals.schemas import (
    AccessLevel,
    DealReleaseStatus,
    FundingPartnerCreate,
    ReleaseStatus,
)
from src.dealflow.workflow.release import ReleaseGate
from src.dealflow.workflow.stages import DealStage


# ── Preconditions ────────────────────────────────────────────────────────────


class TestScoringRequired:
    @pytest.mark.asyncio
    async def test_unscored_deal_rejected(self, repo, gate, deal, optima, admin) -> None:
        with pytest.raises(ScoringRequiredError):
            await gate.release_to_partner(admin, deal.id, "optima")

        assert repo.releases == {}
        assert repo.access_logs == []
        assert (await repo.get_deal(deal.id)).release_status == ReleaseStatus.PENDING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stage", list(DealStage))
    async def test_rejected_regardless_of_stage(
        self, repo, gate, deal, optima, admin, stage
    ) -> None:
        await repo.update_deal(deal.id, {"stage": stage})

        with pytest.raises(ScoringRequiredError):
            await gate.release_to_partner(admin, deal.id, "optima")

        assert repo.releases == {}

    @pytest.mark.asyncio
    async def test_score_checked_before_partner(self, gate, deal, admin) -> None:
        with pytest.raises(ScoringRequiredError):
            await gate.release_to_partner(admin, deal.id, "no-such-partner")


class TestPartnerChecks:
    @pytest.mark.asyncio
    async def test_unknown_partner(self, repo, gate, scored_deal, admin) -> None:
        with pytest.raises(PartnerNotFoundError):
            await gate.release_to_partner(admin, scored_deal.id, "ghost-capital")
        assert repo.releases == {}

    @pytest.mark.asyncio
    async def test_inactive_partner(
        self, repo, gate, scored_deal, dormant_partner, admin
    ) -> None:
        with pytest.raises(PartnerNotFoundError):
            await gate.release_to_partner(admin, scored_deal.id, "dormant")
        assert repo.releases == {}

    @pytest.mark.asyncio
    async def test_invalid_access_level(
        self, repo, gate, scored_deal, optima, admin
    ) -> None:
        with pytest.raises(InvalidAccessLevelError) as exc_info:
            await gate.release_to_partner(
                admin, scored_deal.id, "optima", access_level="everything"
            )

        assert exc_info.value.status_code == 400
        assert "everything" in str(exc_info.value)
        assert repo.releases == {}

    @pytest.mark.asyncio
    async def test_missing_deal(self, gate, optima, admin) -> None:
        with pytest.raises(DealNotFoundError):
            await gate.release_to_partner(admin, "missing", "optima")

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, gate, scored_deal, optima, legal) -> None:
        with pytest.raises(ForbiddenError):
            await gate.release_to_partner(legal, scored_deal.id, "optima")


# ── Successful release ───────────────────────────────────────────────────────


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_to_optima(self, repo, gate, scored_deal, optima, admin) -> None:
        outcome = await gate.release_to_partner(admin, scored_deal.id, "optima")

        assert outcome.already_released is False
        assert outcome.release.status == DealReleaseStatus.PENDING
        assert outcome.release.access_level == AccessLevel.SUMMARY
        assert outcome.release.released_by == admin.user_id
        assert outcome.release.released_at is not None
        assert outcome.deal.release_status == ReleaseStatus.RELEASED
        assert outcome.deal.release_partner == "optima"
        assert outcome.deal.release_authorized_by == admin.user_id

        stored = await repo.get_deal(scored_deal.id)
        assert stored.release_status == ReleaseStatus.RELEASED
        assert repo.access_logs[-1]["action"] == "released"
        assert repo.actions_for(scored_deal.id)[-1] == "released_to_partner"

    @pytest.mark.asyncio
    async def test_owner_notified_with_partner_name(
        self, repo, gate, scored_deal, optima, admin
    ) -> None:
        await gate.release_to_partner(admin, scored_deal.id, "optima")

        notification = repo.notifications[-1]
        assert notification.type == "release_status"
        assert notification.title == "Offering Released to Partner"
        assert notification.message == (
            "Your offering for Acme Lending has been released to Optima Capital."
        )

    @pytest.mark.asyncio
    async def test_distinct_partners_get_distinct_releases(
        self, repo, gate, scored_deal, optima, northwind, admin
    ) -> None:
        first = await gate.release_to_partner(admin, scored_deal.id, "optima")
        second = await gate.release_to_partner(
            admin, scored_deal.id, "northwind", access_level="full"
        )

        assert first.release.id != second.release.id
        assert second.already_released is False
        assert second.release.access_level == AccessLevel.FULL
        assert len(await repo.list_releases_for_deal(scored_deal.id)) == 2
        assert second.deal.release_partner == "northwind"

    @pytest.mark.asyncio
    async def test_repeat_release_is_idempotent(
        self, repo, gate, scored_deal, optima, admin, email_sender
    ) -> None:
        first = await gate.release_to_partner(admin, scored_deal.id, "optima")
        await gate.wait_for_background()
        repeat = await gate.release_to_partner(admin, scored_deal.id, "optima")
        await gate.wait_for_background()

        assert repeat.already_released is True
        assert repeat.release.id == first.release.id
        assert len(repo.releases) == 1
        assert len(repo.access_logs) == 1
        assert repo.actions_for(scored_deal.id).count("released_to_partner") == 1
        assert email_sender.send.await_count == 1
        assert repeat.model_dump(by_alias=True)["alreadyReleased"] is True

    @pytest.mark.asyncio
    async def test_release_status_locked_after_release(
        self, workflow, gate, scored_deal, optima, admin
    ) -> None:
        await gate.release_to_partner(admin, scored_deal.id, "optima")

        with pytest.raises(InvalidReleaseStatusError):
            await workflow.set_release_status(admin, scored_deal.id, "rejected")


# ── Failed writes ────────────────────────────────────────────────────────────


class TestFailedRelease:
    @pytest.mark.asyncio
    async def test_failed_write_leaves_nothing_and_retry_succeeds(
        self, repo, gate, scored_deal, optima, admin, monkeypatch
    ) -> None:
        real_release_deal = repo.release_deal
        calls = 0

        async def flaky_release_deal(*args, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise PersistenceError("release deal")
            return await real_release_deal(*args, **kwargs)

        monkeypatch.setattr(repo, "release_deal", flaky_release_deal)

        with pytest.raises(PersistenceError):
            await gate.release_to_partner(admin, scored_deal.id, "optima")

        assert repo.releases == {}
        assert repo.access_logs == []
        assert (await repo.get_deal(scored_deal.id)).release_status == ReleaseStatus.PENDING

        outcome = await gate.release_to_partner(admin, scored_deal.id, "optima")

        assert outcome.already_released is False
        assert outcome.deal.release_status == ReleaseStatus.RELEASED
        assert outcome.deal.release_partner == "optima"
        assert len(repo.releases) == 1

    @pytest.mark.asyncio
    async def test_repeat_completes_half_released_deal(
        self, repo, gate, scored_deal, optima, admin, email_sender, monkeypatch
    ) -> None:
        # A release row whose deal-level update never landed.
        release, _ = await repo.create_release(
            scored_deal.id,
            optima.id,
            access_level="summary",
            released_by=admin.user_id,
            released_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
        )
        real_update_deal = repo.update_deal
        calls = 0

        async def flaky_update_deal(deal_id, fields):
            nonlocal calls
            calls += 1
            if calls == 1 and "release_status" in fields:
                raise PersistenceError("update deal")
            return await real_update_deal(deal_id, fields)

        monkeypatch.setattr(repo, "update_deal", flaky_update_deal)

        with pytest.raises(PersistenceError):
            await gate.release_to_partner(admin, scored_deal.id, "optima")
        outcome = await gate.release_to_partner(admin, scored_deal.id, "optima")
        await gate.wait_for_background()

        assert outcome.already_released is True
        assert outcome.release.id == release.id
        assert outcome.deal.release_status == ReleaseStatus.RELEASED
        assert outcome.deal.release_partner == "optima"
        assert outcome.deal.release_authorized_at == datetime(2026, 10, 1, tzinfo=timezone.utc)
        stored = await repo.get_deal(scored_deal.id)
        assert stored.release_status == ReleaseStatus.RELEASED
        assert len(repo.releases) == 1
        email_sender.send.assert_awaited_once()

        again = await gate.release_to_partner(admin, scored_deal.id, "optima")
        await gate.wait_for_background()
        assert again.already_released is True
        email_sender.send.assert_awaited_once()


# ── Partner e-mail ───────────────────────────────────────────────────────────


class TestPartnerEmail:
    @pytest.mark.asyncio
    async def test_email_sent_to_primary_contact(
        self, gate, scored_deal, optima, admin, email_sender
    ) -> None:
        await gate.release_to_partner(admin, scored_deal.id, "optima")
        await gate.wait_for_background()

        email_sender.send.assert_awaited_once()
        message = email_sender.send.await_args.args[0]
        assert message.to == "deals@optima.test"
        assert message.subject == "New Deal Released - Acme Lending"
        assert "https://app.bitcense.test/dashboard/optima" in message.text
        assert "Qualification Score: 82/100" in message.text

    @pytest.mark.asyncio
    async def test_email_failure_does_not_roll_back(
        self, repo, gate, scored_deal, optima, admin, email_sender
    ) -> None:
        email_sender.send.side_effect = RuntimeError("resend unavailable")

        outcome = await gate.release_to_partner(admin, scored_deal.id, "optima")
        await gate.wait_for_background()

        assert outcome.deal.release_status == ReleaseStatus.RELEASED
        assert len(repo.releases) == 1
        assert (await repo.get_deal(scored_deal.id)).release_status == ReleaseStatus.RELEASED

    @pytest.mark.asyncio
    async def test_partner_without_contact_skips_email(
        self, repo, gate, scored_deal, admin, email_sender
    ) -> None:
        await repo.create_partner(FundingPartnerCreate(slug="quiet", name="Quiet Fund"))

        outcome = await gate.release_to_partner(admin, scored_deal.id, "quiet")
        await gate.wait_for_background()

        assert outcome.already_released is False
        email_sender.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_sender_configured(
        self, repo, notifications, scored_deal, optima, admin
    ) -> None:
        gate = ReleaseGate(repo, notifications)

        outcome = await gate.release_to_partner(admin, scored_deal.id, "optima")
        await gate.wait_for_background()

        assert outcome.release.partner_slug == "optima"
