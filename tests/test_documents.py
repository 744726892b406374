"""Tests for document review.

Approving a loan tape must leave a scoring job on the queue that the worker
completes, writing the score onto the deal.
"""

from __future__ import annotations

import uuid

import pytest
import pytest_asyncio

from src.dealflow.core.errors import (
    DocumentNotFoundError,
    ForbiddenError,
    InvalidDocumentReviewError,
)
from src.dealflow.deals.schemas import DocumentCreate, DocumentStatus
from src.dealflow.scoring.queue import ScoringJobStatus


@pytest_asyncio.fixture
async def loan_tape(documents, deal, admin):
    return await documents.add_document(
        admin, deal.id, DocumentCreate(name="tape-2026-q3.csv", category="loan_tape")
    )


@pytest_asyncio.fixture
async def financials(documents, deal, admin):
    return await documents.add_document(
        admin, deal.id, DocumentCreate(name="fy2025.pdf", category="financials")
    )


class TestAddDocument:
    @pytest.mark.asyncio
    async def test_added_pending_and_listed(
        self, repo, documents, deal, loan_tape, legal
    ) -> None:
        assert loan_tape.status == DocumentStatus.PENDING
        assert await documents.list_documents(legal, deal.id) == [loan_tape]
        assert repo.actions_for(deal.id)[-1] == "document_added"

    @pytest.mark.asyncio
    async def test_partner_cannot_list(self, documents, deal, optima_user) -> None:
        with pytest.raises(ForbiddenError):
            await documents.list_documents(optima_user, deal.id)


class TestApproveDocument:
    @pytest.mark.asyncio
    async def test_loan_tape_queues_scoring(
        self, repo, documents, queue, deal, loan_tape, admin, scoring_client
    ) -> None:
        approval = await documents.approve_document(admin, loan_tape.id)

        assert approval.document.status == DocumentStatus.APPROVED
        assert approval.scoring_triggered is True
        job = approval.scoring_job
        assert job.deal_id == deal.id
        assert job.trigger == "loan_tape_approved"
        assert job.requested_by == admin.user_id

        await queue.drain()

        finished = queue.get(admin, job.id)
        assert finished.status == ScoringJobStatus.COMPLETE
        scored = await repo.get_deal(deal.id)
        assert scored.overall_score == 82.0
        assert scored.letter_grade == "B"
        scoring_client.score.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_category_does_not_score(
        self, repo, documents, queue, deal, financials, admin, scoring_client
    ) -> None:
        approval = await documents.approve_document(admin, financials.id)

        assert approval.scoring_triggered is False
        assert approval.scoring_job is None
        await queue.drain()
        scoring_client.score.assert_not_awaited()
        assert (await repo.get_deal(deal.id)).overall_score is None

    @pytest.mark.asyncio
    async def test_owner_notified_and_activity_logged(
        self, repo, documents, deal, financials, admin
    ) -> None:
        await documents.approve_document(admin, financials.id)

        assert repo.notifications[-1].user_id == deal.owner_id
        assert repo.notifications[-1].title == "Document Approved"
        assert '"fy2025.pdf"' in repo.notifications[-1].message
        assert "document_approved" in repo.actions_for(deal.id)

    @pytest.mark.asyncio
    async def test_unknown_document(self, documents, admin) -> None:
        with pytest.raises(DocumentNotFoundError) as exc_info:
            await documents.approve_document(admin, str(uuid.uuid4()))
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(
        self, repo, documents, loan_tape, legal, queue
    ) -> None:
        with pytest.raises(ForbiddenError):
            await documents.approve_document(legal, loan_tape.id)
        assert repo.documents[loan_tape.id].status == DocumentStatus.PENDING


class TestRejectDocument:
    @pytest.mark.asyncio
    async def test_rejected_with_reason(
        self, repo, documents, deal, loan_tape, admin, scoring_client, queue
    ) -> None:
        rejected = await documents.reject_document(
            admin, loan_tape.id, "Missing September payments"
        )

        assert rejected.status == DocumentStatus.REJECTED
        assert rejected.review_notes == "Missing September payments"
        assert repo.notifications[-1].title == "Document Requires Revision"
        assert repo.notifications[-1].message.endswith(
            "requires revision: Missing September payments"
        )
        assert "document_rejected" in repo.actions_for(deal.id)
        await queue.drain()
        scoring_client.score.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reason_required(self, repo, documents, loan_tape, admin) -> None:
        with pytest.raises(InvalidDocumentReviewError) as exc_info:
            await documents.reject_document(admin, loan_tape.id, "   ")
        assert exc_info.value.status_code == 400
        assert repo.documents[loan_tape.id].status == DocumentStatus.PENDING
