"""Shared fixtures for deal workflow tests.

Provides:
- InMemoryDealRepository: DealRepository test double (no database)
- Callers for each role (admin, legal, partner "optima", client)
- Wired services: WorkflowService, ReleaseGate, PartnerActionService,
  ScoringQueue (running worker) and DocumentService
- A draft deal, a scored deal, two funding partners and a legal partner
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from src.dealflow.core.errors import DealNotFoundError
from src.dealflow.deals.schemas import (
    ActivityRead,
    DealCreate,
    DealFilter,
    DealRead,
    DealReleaseRead,
    DocumentCreate,
    DocumentRead,
    FundingPartnerCreate,
    FundingPartnerRead,
    NotificationCreate,
    NotificationRead,
    PartnerRole,
    PartnerStatus,
)
from src.dealflow.notifications.service import NotificationService
from src.dealflow.scoring.client import ScoreResult
from src.dealflow.scoring.queue import ScoringQueue
from src.dealflow.workflow.authorization import Caller, Role
from src.dealflow.workflow.documents import DocumentService
from src.dealflow.workflow.partner_actions import PartnerActionService
from src.dealflow.workflow.release import ReleaseGate
from src.dealflow.workflow.service import WorkflowService

OWNER_ID = str(uuid.uuid4())


# ── In-Memory Test Double ────────────────────────────────────────────────────


class InMemoryDealRepository:
    """In-memory DealRepository for testing without database."""

    def __init__(self) -> None:
        self.deals: dict[str, DealRead] = {}
        self.partners: dict[str, FundingPartnerRead] = {}
        self.releases: dict[str, DealReleaseRead] = {}
        self.activities: list[ActivityRead] = []
        self.notifications: list[NotificationRead] = []
        self.access_logs: list[dict[str, Any]] = []
        self.documents: dict[str, DocumentRead] = {}
        self.fail_notifications = False

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    # Deals

    async def create_deal(self, data: DealCreate, qualification_code: str) -> DealRead:
        deal_id = str(uuid.uuid4())
        deal = DealRead(
            id=deal_id,
            qualification_code=qualification_code,
            owner_id=data.owner_id,
            company_name=data.company_name,
            capital_amount=data.capital_amount,
            created_at=self._now(),
        )
        self.deals[deal_id] = deal
        return deal

    async def get_deal(self, deal_id: str) -> DealRead | None:
        return self.deals.get(deal_id)

    async def list_deals(self, filters: DealFilter | None = None) -> list[DealRead]:
        deals = list(self.deals.values())
        if filters is not None:
            if filters.stage is not None:
                deals = [d for d in deals if d.stage == filters.stage]
            if filters.handoff_to is not None:
                deals = [d for d in deals if d.handoff_to == filters.handoff_to]
        return deals

    async def update_deal(self, deal_id: str, fields: dict[str, Any]) -> DealRead:
        deal = self.deals.get(deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)
        unknown = set(fields) - set(DealRead.model_fields)
        assert not unknown, f"unknown deal fields: {unknown}"
        updated = DealRead.model_validate(
            {**deal.model_dump(), **fields, "updated_at": self._now()}
        )
        self.deals[deal_id] = updated
        return updated

    # Partners

    async def create_partner(self, data: FundingPartnerCreate) -> FundingPartnerRead:
        partner = FundingPartnerRead(id=str(uuid.uuid4()), **data.model_dump())
        self.partners[partner.id] = partner
        return partner

    async def get_partner_by_slug(self, slug: str) -> FundingPartnerRead | None:
        for partner in self.partners.values():
            if partner.slug == slug:
                return partner
        return None

    async def list_partners(self) -> list[FundingPartnerRead]:
        return list(self.partners.values())

    # Releases

    async def get_release(self, deal_id: str, partner_id: str) -> DealReleaseRead | None:
        for release in self.releases.values():
            if release.deal_id == deal_id and release.partner_id == partner_id:
                return release
        return None

    async def create_release(
        self,
        deal_id: str,
        partner_id: str,
        *,
        access_level: str,
        released_by: str | None,
        released_at: datetime,
        release_notes: str | None = None,
    ) -> tuple[DealReleaseRead, bool]:
        existing = await self.get_release(deal_id, partner_id)
        if existing is not None:
            return existing, False
        release = DealReleaseRead(
            id=str(uuid.uuid4()),
            deal_id=deal_id,
            partner_id=partner_id,
            partner_slug=self.partners[partner_id].slug,
            access_level=access_level,
            released_by=released_by,
            released_at=released_at,
            release_notes=release_notes,
            created_at=self._now(),
        )
        self.releases[release.id] = release
        return release, True

    async def release_deal(
        self,
        deal_id: str,
        partner_id: str,
        *,
        access_level: str,
        released_by: str | None,
        released_at: datetime,
        release_notes: str | None,
        deal_fields: dict[str, Any],
        log_details: dict[str, Any],
        activity_details: dict[str, Any],
    ) -> tuple[DealRead, DealReleaseRead, bool]:
        deal = self.deals.get(deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)
        existing = await self.get_release(deal_id, partner_id)
        if existing is not None:
            return deal, existing, False

        # Build every row before storing any, so a bad field stores nothing.
        updated = DealRead.model_validate(
            {**deal.model_dump(), **deal_fields, "updated_at": self._now()}
        )
        release = DealReleaseRead(
            id=str(uuid.uuid4()),
            deal_id=deal_id,
            partner_id=partner_id,
            partner_slug=self.partners[partner_id].slug,
            access_level=access_level,
            released_by=released_by,
            released_at=released_at,
            release_notes=release_notes,
            created_at=self._now(),
        )
        self.releases[release.id] = release
        self.deals[deal_id] = updated
        await self.add_partner_access_log(
            partner_id, deal_id, released_by, "released", log_details
        )
        await self.add_activity(deal_id, released_by, "released_to_partner", activity_details)
        return updated, release, True

    async def upsert_release(
        self,
        deal_id: str,
        partner_id: str,
        *,
        status: str,
        access_level: str,
        released_by: str | None,
        released_at: datetime,
        release_notes: str | None = None,
    ) -> DealReleaseRead:
        values = {
            "status": status,
            "access_level": access_level,
            "released_by": released_by,
            "released_at": released_at,
            "release_notes": release_notes,
        }
        existing = await self.get_release(deal_id, partner_id)
        if existing is not None:
            return await self.update_release(existing.id, values)
        release = DealReleaseRead(
            id=str(uuid.uuid4()),
            deal_id=deal_id,
            partner_id=partner_id,
            partner_slug=self.partners[partner_id].slug,
            created_at=self._now(),
            **values,
        )
        self.releases[release.id] = release
        return release

    async def update_release(self, release_id: str, fields: dict[str, Any]) -> DealReleaseRead:
        release = self.releases[release_id]
        updated = DealReleaseRead.model_validate(
            {**release.model_dump(), **fields, "updated_at": self._now()}
        )
        self.releases[release_id] = updated
        return updated

    async def list_releases_for_deal(self, deal_id: str) -> list[DealReleaseRead]:
        return [r for r in self.releases.values() if r.deal_id == deal_id]

    async def list_releases_for_partner(self, partner_id: str) -> list[DealReleaseRead]:
        return [r for r in self.releases.values() if r.partner_id == partner_id]

    # Documents

    async def create_document(self, deal_id: str, data: DocumentCreate) -> DocumentRead:
        document = DocumentRead(
            id=str(uuid.uuid4()),
            deal_id=deal_id,
            name=data.name,
            category=data.category,
            created_at=self._now(),
        )
        self.documents[document.id] = document
        return document

    async def get_document(self, document_id: str) -> DocumentRead | None:
        return self.documents.get(document_id)

    async def update_document(self, document_id: str, fields: dict[str, Any]) -> DocumentRead:
        document = self.documents[document_id]
        updated = DocumentRead.model_validate(
            {**document.model_dump(), **fields, "updated_at": self._now()}
        )
        self.documents[document_id] = updated
        return updated

    async def list_documents(self, deal_id: str) -> list[DocumentRead]:
        return [d for d in self.documents.values() if d.deal_id == deal_id]

    # Audit

    async def add_activity(
        self,
        deal_id: str,
        user_id: str | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> ActivityRead:
        activity = ActivityRead(
            id=str(uuid.uuid4()),
            deal_id=deal_id,
            user_id=user_id,
            action=action,
            details=details or {},
            created_at=self._now(),
        )
        self.activities.append(activity)
        return activity

    async def list_activities(self, deal_id: str) -> list[ActivityRead]:
        return [a for a in self.activities if a.deal_id == deal_id]

    async def add_notification(self, data: NotificationCreate) -> NotificationRead:
        if self.fail_notifications:
            raise ValueError("notifications table unavailable")
        notification = NotificationRead(id=str(uuid.uuid4()), **data.model_dump())
        self.notifications.append(notification)
        return notification

    async def add_partner_access_log(
        self,
        partner_id: str,
        deal_id: str,
        user_id: str | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.access_logs.append(
            {
                "partner_id": partner_id,
                "deal_id": deal_id,
                "user_id": user_id,
                "action": action,
                "details": details or {},
            }
        )

    # Test helpers

    def actions_for(self, deal_id: str) -> list[str]:
        return [a.action for a in self.activities if a.deal_id == deal_id]


# ── Callers ──────────────────────────────────────────────────────────────────


@pytest.fixture
def admin() -> Caller:
    return Caller(user_id=str(uuid.uuid4()), role=Role.ADMIN, email="admin@bitcense.com")


@pytest.fixture
def legal() -> Caller:
    return Caller(user_id=str(uuid.uuid4()), role=Role.LEGAL, email="legal@bitcense.com")


@pytest.fixture
def optima_user() -> Caller:
    return Caller(
        user_id=str(uuid.uuid4()),
        role=Role.PARTNER,
        email="analyst@optima.test",
        partner="optima",
    )


@pytest.fixture
def client_user() -> Caller:
    return Caller(user_id=OWNER_ID, role=Role.CLIENT, email="founder@acme.test")


# ── Services ─────────────────────────────────────────────────────────────────


@pytest.fixture
def repo() -> InMemoryDealRepository:
    return InMemoryDealRepository()


@pytest.fixture
def notifications(repo) -> NotificationService:
    return NotificationService(repo)


@pytest.fixture
def workflow(repo, notifications) -> WorkflowService:
    return WorkflowService(repo, notifications)


@pytest.fixture
def email_sender() -> AsyncMock:
    sender = AsyncMock()
    sender.send.return_value = "msg_123"
    return sender


@pytest.fixture
def gate(repo, notifications, email_sender) -> ReleaseGate:
    return ReleaseGate(
        repo,
        notifications,
        email_sender=email_sender,
        app_url="https://app.bitcense.test",
    )


@pytest.fixture
def partner_actions(repo) -> PartnerActionService:
    return PartnerActionService(repo)


@pytest.fixture
def scoring_client() -> AsyncMock:
    client = AsyncMock()
    client.score.return_value = ScoreResult(overall_score=82.0, letter_grade="B")
    return client


@pytest_asyncio.fixture
async def queue(repo, notifications, scoring_client):
    queue = ScoringQueue(repo, scoring_client, notifications)
    queue.start()
    yield queue
    await queue.stop()


@pytest.fixture
def documents(repo, notifications, queue) -> DocumentService:
    return DocumentService(repo, notifications, queue)


# ── Data ─────────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def optima(repo) -> FundingPartnerRead:
    return await repo.create_partner(
        FundingPartnerCreate(
            slug="optima",
            name="Optima Capital",
            primary_contact_email="deals@optima.test",
        )
    )


@pytest_asyncio.fixture
async def northwind(repo) -> FundingPartnerRead:
    return await repo.create_partner(
        FundingPartnerCreate(
            slug="northwind",
            name="Northwind Credit",
            primary_contact_email="origination@northwind.test",
        )
    )


@pytest_asyncio.fixture
async def lexington(repo) -> FundingPartnerRead:
    return await repo.create_partner(
        FundingPartnerCreate(
            slug="lexington",
            name="Lexington Legal",
            partner_role=PartnerRole.LEGAL,
            primary_contact_email="intake@lexington.test",
        )
    )


@pytest_asyncio.fixture
async def dormant_partner(repo) -> FundingPartnerRead:
    return await repo.create_partner(
        FundingPartnerCreate(
            slug="dormant",
            name="Dormant Fund",
            status=PartnerStatus.INACTIVE,
        )
    )


@pytest_asyncio.fixture
async def deal(workflow, admin) -> DealRead:
    return await workflow.create_deal(
        admin,
        DealCreate(
            company_name="Acme Lending",
            owner_id=OWNER_ID,
            capital_amount=5_000_000,
        ),
    )


@pytest_asyncio.fixture
async def scored_deal(repo, deal) -> DealRead:
    return await repo.update_deal(deal.id, {"overall_score": 82.0, "letter_grade": "B"})
