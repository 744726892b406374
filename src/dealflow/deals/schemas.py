"""Pydantic schemas for deals, partners, releases and audit rows.

Defines all structured types the workflow core passes around:
- Enums: HandoffTarget, ReleaseStatus, DealReleaseStatus, AccessLevel,
  PartnerRole, PartnerStatus, PartnerAction, LegalStatus, DocumentStatus
- Deals: DealCreate, DealRead (public projection), DealFilter
- Partners: FundingPartnerCreate/Read
- Releases: DealReleaseRead
- Documents: DocumentCreate, DocumentRead
- Audit: ActivityRead, NotificationCreate/Read, PartnerAccessLogRead

DealStage lives in src.dealflow.workflow.stages and is re-exported here.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.dealflow.workflow.stages import DealStage  # noqa: F401 -- re-export


# ── Enums ───────────────────────────────────────────────────────────────────


class HandoffTarget(str, Enum):
    """Internal team currently responsible for a deal."""

    NONE = "none"
    LEGAL = "legal"
    FUNDING_PARTNER = "funding_partner"


class ReleaseStatus(str, Enum):
    """Deal-level release gate status."""

    PENDING = "pending"
    READY_FOR_RELEASE = "ready_for_release"
    RELEASED = "released"
    REJECTED = "rejected"


class DealReleaseStatus(str, Enum):
    """Partner engagement status on a single Deal Release."""

    PENDING = "pending"
    VIEWED = "viewed"
    INTERESTED = "interested"
    REVIEWING = "reviewing"
    DUE_DILIGENCE = "due_diligence"
    TERM_SHEET = "term_sheet"
    LEGAL_REVIEW = "legal_review"
    PASSED = "passed"
    FUNDED = "funded"


class AccessLevel(str, Enum):
    SUMMARY = "summary"
    FULL = "full"
    DOCUMENTS = "documents"


class PartnerRole(str, Enum):
    FUNDING = "funding"
    LEGAL = "legal"
    TOKENIZATION = "tokenization"


class PartnerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


class PartnerAction(str, Enum):
    """Actions a partner user can take on a deal released to them."""

    VIEW = "view"
    EXPRESS_INTEREST = "express_interest"
    START_DUE_DILIGENCE = "start_due_diligence"
    PASS = "pass"
    ADD_NOTE = "add_note"
    ASSIGN_LEGAL = "assign_legal"


class LegalStatus(str, Enum):
    """Legal review status of a deal."""

    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    CHANGES_REQUIRED = "changes_required"
    REJECTED = "rejected"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Approving a document in this category queues scoring for its deal.
LOAN_TAPE_CATEGORY = "loan_tape"


# ── Deals ───────────────────────────────────────────────────────────────────


class DealCreate(BaseModel):
    """Schema for creating a new deal (always starts in draft)."""

    company_name: str = Field(min_length=1)
    owner_id: str | None = None
    capital_amount: float | None = Field(default=None, ge=0)


class DealRead(BaseModel):
    """Public projection of a deal.

    Returned by every workflow mutator and by deal reads. Carries every
    persisted field; the API layer decides who may see it.
    """

    id: str
    qualification_code: str
    owner_id: str | None = None
    company_name: str
    capital_amount: float | None = None
    stage: DealStage = DealStage.DRAFT
    handoff_to: HandoffTarget = HandoffTarget.NONE
    handed_off_at: datetime | None = None
    handed_off_by: str | None = None
    release_status: ReleaseStatus = ReleaseStatus.PENDING
    release_partner: str | None = None
    release_notes: str | None = None
    release_authorized_by: str | None = None
    release_authorized_at: datetime | None = None
    internal_notes: str | None = None
    overall_score: float | None = None
    letter_grade: str | None = None
    legal_partner_id: str | None = None
    legal_status: LegalStatus = LegalStatus.NOT_REQUIRED
    legal_notes: str | None = None
    legal_signed_off_at: datetime | None = None
    stage_changed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DealFilter(BaseModel):
    """Optional filters for listing deals."""

    stage: DealStage | None = None
    handoff_to: HandoffTarget | None = None


# ── Partners ────────────────────────────────────────────────────────────────


class FundingPartnerCreate(BaseModel):
    slug: str = Field(min_length=1, max_length=100)
    name: str
    partner_role: PartnerRole = PartnerRole.FUNDING
    primary_contact_email: str | None = None
    status: PartnerStatus = PartnerStatus.ACTIVE


class FundingPartnerRead(BaseModel):
    id: str
    slug: str
    name: str
    partner_role: PartnerRole = PartnerRole.FUNDING
    primary_contact_email: str | None = None
    status: PartnerStatus = PartnerStatus.ACTIVE
    created_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == PartnerStatus.ACTIVE


# ── Releases ────────────────────────────────────────────────────────────────


class DealReleaseRead(BaseModel):
    """A deal released to a partner, with the partner's engagement fields."""

    id: str
    deal_id: str
    partner_id: str
    partner_slug: str | None = None
    status: DealReleaseStatus = DealReleaseStatus.PENDING
    access_level: AccessLevel = AccessLevel.SUMMARY
    released_by: str | None = None
    released_at: datetime | None = None
    release_notes: str | None = None
    first_viewed_at: datetime | None = None
    interest_expressed_at: datetime | None = None
    passed_at: datetime | None = None
    pass_reason: str | None = None
    partner_notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Documents ───────────────────────────────────────────────────────────────


class DocumentCreate(BaseModel):
    """Metadata for a document submitted against a deal."""

    name: str = Field(min_length=1, max_length=300)
    category: str = Field(min_length=1, max_length=50)


class DocumentRead(BaseModel):
    id: str
    deal_id: str
    name: str
    category: str
    status: DocumentStatus = DocumentStatus.PENDING
    review_notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Audit ───────────────────────────────────────────────────────────────────


class ActivityRead(BaseModel):
    id: str
    deal_id: str
    user_id: str | None = None
    action: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class NotificationCreate(BaseModel):
    """In-app notification addressed to one user."""

    user_id: str
    deal_id: str | None = None
    type: str
    title: str
    message: str


class NotificationRead(NotificationCreate):
    id: str
    is_read: bool = False
    created_at: datetime | None = None


class PartnerAccessLogRead(BaseModel):
    id: str
    partner_id: str
    deal_id: str
    user_id: str | None = None
    action: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
