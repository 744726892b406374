"""Add documents and deal legal review columns.

Revision ID: 002_documents_and_legal
Revises: 001_initial_workflow
Create Date: 2026-10-17

Adds legal_partner_id, legal_status, legal_notes and legal_signed_off_at to
deals, and creates the documents table for admin document review.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "002_documents_and_legal"
down_revision: Union[str, None] = "001_initial_workflow"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── deals: legal review ─────────────────────────────────────────────

    op.add_column(
        "deals",
        sa.Column(
            "legal_partner_id",
            UUID(as_uuid=True),
            sa.ForeignKey(
                "funding_partners.id",
                name="fk_deals_legal_partner_id",
                ondelete="SET NULL",
            ),
            nullable=True,
        ),
    )
    op.add_column(
        "deals",
        sa.Column(
            "legal_status",
            sa.String(30),
            server_default=sa.text("'not_required'"),
            nullable=False,
        ),
    )
    op.add_column("deals", sa.Column("legal_notes", sa.Text(), nullable=True))
    op.add_column(
        "deals",
        sa.Column("legal_signed_off_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_check_constraint(
        "ck_deals_legal_status",
        "deals",
        "legal_status IN ('not_required', 'pending', 'assigned', 'in_review', "
        "'approved', 'changes_required', 'rejected')",
    )

    # ── documents table ─────────────────────────────────────────────────

    op.create_table(
        "documents",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "deal_id",
            UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_documents_status",
        ),
    )
    op.create_index("ix_documents_deal_id", "documents", ["deal_id"])


def downgrade() -> None:
    op.drop_index("ix_documents_deal_id", table_name="documents")
    op.drop_table("documents")
    op.drop_constraint("ck_deals_legal_status", "deals", type_="check")
    op.drop_column("deals", "legal_signed_off_at")
    op.drop_column("deals", "legal_notes")
    op.drop_column("deals", "legal_status")
    op.drop_column("deals", "legal_partner_id")
