"""Create deal workflow tables.

Revision ID: 001_initial_workflow
Revises:
Create Date: 2026-10-17

Creates six tables:
- deals: Funding applications and their workflow state
- funding_partners: External funding, legal and tokenization partners
- deal_releases: Deal x partner releases (unique per pair)
- activities: Deal audit trail
- notifications: In-app owner notifications
- partner_access_logs: Partner-side audit trail
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_initial_workflow"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at_column() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ── deals table ─────────────────────────────────────────────────────

    op.create_table(
        "deals",
        _id_column(),
        sa.Column("qualification_code", sa.String(50), nullable=False),
        sa.Column("owner_id", UUID(as_uuid=True), nullable=True),
        sa.Column("company_name", sa.String(300), nullable=False),
        sa.Column("capital_amount", sa.Float(), nullable=True),
        sa.Column("stage", sa.String(50), server_default=sa.text("'draft'"), nullable=False),
        sa.Column("handoff_to", sa.String(30), server_default=sa.text("'none'"), nullable=False),
        sa.Column("handed_off_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("handed_off_by", UUID(as_uuid=True), nullable=True),
        sa.Column(
            "release_status", sa.String(30), server_default=sa.text("'pending'"), nullable=False
        ),
        sa.Column("release_partner", sa.String(100), nullable=True),
        sa.Column("release_notes", sa.Text(), nullable=True),
        sa.Column("release_authorized_by", UUID(as_uuid=True), nullable=True),
        sa.Column("release_authorized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("internal_notes", sa.Text(), nullable=True),
        sa.Column("overall_score", sa.Float(), nullable=True),
        sa.Column("letter_grade", sa.String(5), nullable=True),
        sa.Column("stage_changed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at_column(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("qualification_code", name="uq_deals_qualification_code"),
        sa.CheckConstraint(
            "stage IN ('draft', 'qualified', 'documents_requested', 'documents_in_review', "
            "'due_diligence', 'term_sheet', 'negotiation', 'closing', 'funded', "
            "'declined', 'withdrawn')",
            name="ck_deals_stage",
        ),
        sa.CheckConstraint(
            "handoff_to IN ('none', 'legal', 'funding_partner')",
            name="ck_deals_handoff_to",
        ),
        sa.CheckConstraint(
            "release_status IN ('pending', 'ready_for_release', 'released', 'rejected')",
            name="ck_deals_release_status",
        ),
    )
    op.create_index("ix_deals_stage", "deals", ["stage"])
    op.create_index("ix_deals_owner_id", "deals", ["owner_id"])

    # ── funding_partners table ──────────────────────────────────────────

    op.create_table(
        "funding_partners",
        _id_column(),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column(
            "partner_role", sa.String(30), server_default=sa.text("'funding'"), nullable=False
        ),
        sa.Column("primary_contact_email", sa.String(320), nullable=True),
        sa.Column("status", sa.String(20), server_default=sa.text("'active'"), nullable=False),
        _created_at_column(),
        sa.UniqueConstraint("slug", name="uq_funding_partners_slug"),
    )

    # ── deal_releases table ─────────────────────────────────────────────

    op.create_table(
        "deal_releases",
        _id_column(),
        sa.Column(
            "deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "partner_id",
            UUID(as_uuid=True),
            sa.ForeignKey("funding_partners.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(30), server_default=sa.text("'pending'"), nullable=False),
        sa.Column(
            "access_level", sa.String(20), server_default=sa.text("'summary'"), nullable=False
        ),
        sa.Column("released_by", UUID(as_uuid=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("release_notes", sa.Text(), nullable=True),
        sa.Column("first_viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("interest_expressed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("passed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pass_reason", sa.Text(), nullable=True),
        sa.Column("partner_notes", sa.Text(), nullable=True),
        _created_at_column(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("deal_id", "partner_id", name="uq_deal_release_deal_partner"),
    )
    op.create_index("ix_deal_releases_partner_id", "deal_releases", ["partner_id"])

    # ── activities table ────────────────────────────────────────────────

    op.create_table(
        "activities",
        _id_column(),
        sa.Column(
            "deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("details", sa.JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        _created_at_column(),
    )
    op.create_index("ix_activities_deal_created", "activities", ["deal_id", "created_at"])

    # ── notifications table ─────────────────────────────────────────────

    op.create_table(
        "notifications",
        _id_column(),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        _created_at_column(),
    )
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "is_read"])

    # ── partner_access_logs table ───────────────────────────────────────

    op.create_table(
        "partner_access_logs",
        _id_column(),
        sa.Column(
            "partner_id",
            UUID(as_uuid=True),
            sa.ForeignKey("funding_partners.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("details", sa.JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        _created_at_column(),
    )
    op.create_index(
        "ix_partner_access_logs_partner_deal",
        "partner_access_logs",
        ["partner_id", "deal_id"],
    )


def downgrade() -> None:
    op.drop_table("partner_access_logs")
    op.drop_table("notifications")
    op.drop_table("activities")
    op.drop_table("deal_releases")
    op.drop_table("funding_partners")
    op.drop_table("deals")
