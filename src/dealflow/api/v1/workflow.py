"""REST API endpoints for workflow mutations.

Stage advancement, handoff, internal notes, release status, partner
release, legal assignment, document review, and scoring requests. Every mutation requires an admin caller;
the services enforce that and raise WorkflowError subclasses, which the
application's exception handlers turn into ``{"error": ...}`` responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from src.dealflow.api.deps import (
    get_caller,
    get_document_service,
    get_release_gate,
    get_scoring_queue,
    get_workflow_service,
)
from src.dealflow.deals.schemas import AccessLevel, DealRead, DocumentRead
from src.dealflow.scoring.queue import ScoringJob, ScoringQueue
from src.dealflow.workflow.authorization import Caller
from src.dealflow.workflow.documents import DocumentApproval, DocumentService
from src.dealflow.workflow.release import ReleaseGate, ReleaseOutcome
from src.dealflow.workflow.service import WorkflowService
from src.dealflow.workflow.stages import STAGE_CONFIG, DealStage, stage_progress
from src.dealflow.workflow.transitions import is_terminal_stage, valid_next_stages

router = APIRouter(prefix="/api/v1/workflow", tags=["workflow"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class _CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AdvanceRequest(_CamelRequest):
    deal_id: str = Field(alias="dealId")
    new_stage: str = Field(alias="newStage")


class NotesRequest(_CamelRequest):
    deal_id: str = Field(alias="dealId")
    notes: str


class HandoffRequest(_CamelRequest):
    deal_id: str = Field(alias="dealId")
    handoff_to: str = Field(alias="handoffTo")
    notes: str | None = None


class ReleaseRequest(_CamelRequest):
    deal_id: str = Field(alias="dealId")
    partner: str = Field(min_length=1)
    access_level: str = Field(default=AccessLevel.SUMMARY.value, alias="accessLevel")
    notes: str | None = None


class ReleaseStatusRequest(_CamelRequest):
    deal_id: str = Field(alias="dealId")
    status: str
    notes: str | None = None


class LegalRequest(_CamelRequest):
    deal_id: str = Field(alias="dealId")
    legal_partner: str | None = Field(default=None, alias="legalPartner")
    legal_status: str | None = Field(default=None, alias="legalStatus")
    notes: str | None = None


class ApproveDocumentRequest(_CamelRequest):
    document_id: str = Field(alias="documentId")


class RejectDocumentRequest(_CamelRequest):
    document_id: str = Field(alias="documentId")
    reason: str = Field(min_length=1)


class ScoringRequest(_CamelRequest):
    deal_id: str = Field(alias="dealId")


# ── Response Schemas ─────────────────────────────────────────────────────────


class StageResponse(BaseModel):
    """Display metadata and rules for one pipeline stage."""

    stage: DealStage
    label: str
    description: str
    owner: str
    color: str
    bg_color: str = Field(serialization_alias="bgColor")
    client_actions: list[str] = Field(serialization_alias="clientActions")
    admin_actions: list[str] = Field(serialization_alias="adminActions")
    terminal: bool
    valid_next_stages: list[DealStage] = Field(serialization_alias="validNextStages")
    progress: int


# ── Stage Taxonomy ───────────────────────────────────────────────────────────


@router.get("/stages", response_model=list[StageResponse])
async def list_stages(caller: Caller = Depends(get_caller)) -> list[StageResponse]:
    """The full stage taxonomy in pipeline order."""
    return [
        StageResponse(
            stage=stage,
            label=config.label,
            description=config.description,
            owner=config.owner,
            color=config.color,
            bg_color=config.bg_color,
            client_actions=config.client_actions,
            admin_actions=config.admin_actions,
            terminal=is_terminal_stage(stage),
            valid_next_stages=valid_next_stages(stage),
            progress=stage_progress(stage),
        )
        for stage, config in STAGE_CONFIG.items()
    ]


# ── Mutators ─────────────────────────────────────────────────────────────────


@router.post("/advance", response_model=DealRead)
async def advance_stage(
    body: AdvanceRequest,
    caller: Caller = Depends(get_caller),
    service: WorkflowService = Depends(get_workflow_service),
) -> DealRead:
    return await service.advance_stage(caller, body.deal_id, body.new_stage)


@router.post("/notes", response_model=DealRead)
async def save_notes(
    body: NotesRequest,
    caller: Caller = Depends(get_caller),
    service: WorkflowService = Depends(get_workflow_service),
) -> DealRead:
    return await service.save_notes(caller, body.deal_id, body.notes)


@router.post("/handoff", response_model=DealRead)
async def set_handoff(
    body: HandoffRequest,
    caller: Caller = Depends(get_caller),
    service: WorkflowService = Depends(get_workflow_service),
) -> DealRead:
    return await service.set_handoff(caller, body.deal_id, body.handoff_to, body.notes)


@router.post("/release", response_model=ReleaseOutcome)
async def release_to_partner(
    body: ReleaseRequest,
    caller: Caller = Depends(get_caller),
    gate: ReleaseGate = Depends(get_release_gate),
) -> ReleaseOutcome:
    """Release a scored deal to a partner. Repeats return the existing release."""
    return await gate.release_to_partner(
        caller, body.deal_id, body.partner, body.access_level, body.notes
    )


@router.post("/release-status", response_model=DealRead)
async def set_release_status(
    body: ReleaseStatusRequest,
    caller: Caller = Depends(get_caller),
    service: WorkflowService = Depends(get_workflow_service),
) -> DealRead:
    return await service.set_release_status(caller, body.deal_id, body.status, body.notes)


@router.post("/legal", response_model=DealRead)
async def set_legal(
    body: LegalRequest,
    caller: Caller = Depends(get_caller),
    service: WorkflowService = Depends(get_workflow_service),
) -> DealRead:
    """Assign the legal partner and update legal review status or notes."""
    return await service.set_legal(
        caller,
        body.deal_id,
        legal_partner=body.legal_partner,
        legal_status=body.legal_status,
        notes=body.notes,
    )


# ── Documents ─────────────────────────────────────────────────────────────────


@router.post("/approve-document", response_model=DocumentApproval)
async def approve_document(
    body: ApproveDocumentRequest,
    caller: Caller = Depends(get_caller),
    service: DocumentService = Depends(get_document_service),
) -> DocumentApproval:
    """Approve a document. Approving a loan tape queues scoring."""
    return await service.approve_document(caller, body.document_id)


@router.post("/reject-document", response_model=DocumentRead)
async def reject_document(
    body: RejectDocumentRequest,
    caller: Caller = Depends(get_caller),
    service: DocumentService = Depends(get_document_service),
) -> DocumentRead:
    return await service.reject_document(caller, body.document_id, body.reason)


# ── Scoring ──────────────────────────────────────────────────────────────────


@router.post("/scoring", response_model=ScoringJob, status_code=202)
async def request_scoring(
    body: ScoringRequest,
    caller: Caller = Depends(get_caller),
    queue: ScoringQueue = Depends(get_scoring_queue),
) -> ScoringJob:
    return await queue.enqueue(caller, body.deal_id)


@router.get("/scoring/{job_id}", response_model=ScoringJob)
async def get_scoring_job(
    job_id: str,
    caller: Caller = Depends(get_caller),
    queue: ScoringQueue = Depends(get_scoring_queue),
) -> ScoringJob:
    return queue.get(caller, job_id)


@router.post("/scoring/{job_id}/retry", response_model=ScoringJob, status_code=202)
async def retry_scoring_job(
    job_id: str,
    caller: Caller = Depends(get_caller),
    queue: ScoringQueue = Depends(get_scoring_queue),
) -> ScoringJob:
    return await queue.retry(caller, job_id)
