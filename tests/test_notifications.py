"""Owner notification copy and the partner release e-mail."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from src.dealflow.deals.schemas import DealRead, FundingPartnerRead
from src.dealflow.notifications.email import (
    EmailMessage,
    ResendEmailSender,
    build_partner_release_email,
)
from src.dealflow.notifications.service import NotificationService
from src.dealflow.workflow.stages import DealStage


@pytest.fixture
def sample_deal() -> DealRead:
    return DealRead(
        id="deal-1",
        qualification_code="BTC-ACM-K3F9Z",
        owner_id="owner-1",
        company_name="Acme <Lending>",
        capital_amount=2_500_000,
        overall_score=91.4,
        letter_grade="A-",
    )


@pytest.fixture
def sample_partner() -> FundingPartnerRead:
    return FundingPartnerRead(
        id="partner-1",
        slug="optima",
        name="Optima Capital",
        primary_contact_email="deals@optima.test",
    )


class TestNotificationService:
    @pytest.mark.asyncio
    async def test_owner_without_id_skipped(self, sample_deal) -> None:
        repo = AsyncMock()
        service = NotificationService(repo)

        sent = await service.stage_changed(
            sample_deal.model_copy(update={"owner_id": None}),
            DealStage.DRAFT,
            DealStage.QUALIFIED,
        )

        assert sent is False
        repo.add_notification.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_funded_copy(self, sample_deal) -> None:
        repo = AsyncMock()
        service = NotificationService(repo)

        assert await service.stage_changed(sample_deal, DealStage.CLOSING, DealStage.FUNDED)

        created = repo.add_notification.await_args.args[0]
        assert created.title == "Funding Complete!"
        assert created.message == "Congratulations! Your funding has been completed."
        assert created.user_id == "owner-1"

    @pytest.mark.asyncio
    async def test_released_without_partner_name(self, sample_deal) -> None:
        repo = AsyncMock()
        service = NotificationService(repo)

        await service.release_status_changed(sample_deal, "released")

        created = repo.add_notification.await_args.args[0]
        assert created.message.endswith("released to our partner network.")

    @pytest.mark.asyncio
    async def test_unknown_release_status_ignored(self, sample_deal) -> None:
        repo = AsyncMock()
        assert await NotificationService(repo).release_status_changed(sample_deal, "pending") is False
        repo.add_notification.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scoring_complete_copy(self, sample_deal) -> None:
        repo = AsyncMock()
        await NotificationService(repo).scoring_complete(sample_deal)

        created = repo.add_notification.await_args.args[0]
        assert created.message == "Your portfolio has been scored: 91.4/100 (A-)"


class TestPartnerReleaseEmail:
    def test_message_content(self, sample_deal, sample_partner) -> None:
        message = build_partner_release_email(
            sample_deal, sample_partner, "https://app.bitcense.test/"
        )

        assert message.to == "deals@optima.test"
        assert message.subject == "New Deal Released - Acme <Lending>"
        assert "Acme &lt;Lending&gt;" in message.html
        assert "https://app.bitcense.test/dashboard/optima" in message.text
        assert "Capital Requested: $2,500,000" in message.text
        assert "Qualification Score: 91/100" in message.text

    def test_no_contact_address(self, sample_deal, sample_partner) -> None:
        partner = sample_partner.model_copy(update={"primary_contact_email": None})
        assert build_partner_release_email(sample_deal, partner, "https://x") is None


class TestResendEmailSender:
    @pytest.mark.asyncio
    async def test_disabled_without_api_key(self) -> None:
        sender = ResendEmailSender(api_key="", sender="deals@bitcense.com")
        message = EmailMessage(to="a@b.test", subject="s", html="<p>h</p>", text="t")

        with patch("src.dealflow.notifications.email.httpx.AsyncClient") as client_cls:
            assert await sender.send(message) is None
        client_cls.assert_not_called()
        assert sender.enabled is False
