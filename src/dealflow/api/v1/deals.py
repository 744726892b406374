"""REST API endpoints for deal records.

Create, list and read deals, plus the per-deal transitions view, activity
log, partner releases and documents. Mutations of an existing deal live in the
workflow router.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from src.dealflow.api.deps import get_caller, get_document_service, get_workflow_service
from src.dealflow.deals.schemas import (
    ActivityRead,
    DealCreate,
    DealFilter,
    DealRead,
    DealReleaseRead,
    DocumentCreate,
    DocumentRead,
    HandoffTarget,
)
from src.dealflow.workflow.authorization import Caller
from src.dealflow.workflow.documents import DocumentService
from src.dealflow.workflow.service import WorkflowService
from src.dealflow.workflow.stages import DealStage

router = APIRouter(prefix="/api/v1/deals", tags=["deals"])


# ── Request / Response Schemas ───────────────────────────────────────────────


class CreateDealRequest(BaseModel):
    """Request body for creating a deal."""

    model_config = ConfigDict(populate_by_name=True)

    company_name: str = Field(alias="companyName", min_length=1)
    owner_id: str | None = Field(default=None, alias="ownerId")
    capital_amount: float | None = Field(default=None, alias="capitalAmount", ge=0)


class AddDocumentRequest(BaseModel):
    name: str = Field(min_length=1, max_length=300)
    category: str = Field(min_length=1, max_length=50)


class TransitionsResponse(BaseModel):
    """Current stage with its legal next stages."""

    stage: DealStage
    valid_next_stages: list[DealStage] = Field(serialization_alias="validNextStages")
    terminal: bool
    progress: int


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=DealRead, status_code=201)
async def create_deal(
    body: CreateDealRequest,
    caller: Caller = Depends(get_caller),
    service: WorkflowService = Depends(get_workflow_service),
) -> DealRead:
    """Create a deal in the draft stage."""
    data = DealCreate(
        company_name=body.company_name,
        owner_id=body.owner_id,
        capital_amount=body.capital_amount,
    )
    return await service.create_deal(caller, data)


@router.get("", response_model=list[DealRead])
async def list_deals(
    stage: DealStage | None = Query(default=None),
    handoff: HandoffTarget | None = Query(default=None),
    caller: Caller = Depends(get_caller),
    service: WorkflowService = Depends(get_workflow_service),
) -> list[DealRead]:
    """List deals, optionally filtered by stage and handoff target."""
    return await service.list_deals(caller, DealFilter(stage=stage, handoff_to=handoff))


@router.get("/{deal_id}", response_model=DealRead)
async def get_deal(
    deal_id: str,
    caller: Caller = Depends(get_caller),
    service: WorkflowService = Depends(get_workflow_service),
) -> DealRead:
    return await service.get_deal(caller, deal_id)


@router.get("/{deal_id}/transitions", response_model=TransitionsResponse)
async def get_transitions(
    deal_id: str,
    caller: Caller = Depends(get_caller),
    service: WorkflowService = Depends(get_workflow_service),
) -> TransitionsResponse:
    view = await service.transitions(caller, deal_id)
    return TransitionsResponse(
        stage=view.stage,
        valid_next_stages=view.valid_next_stages,
        terminal=view.terminal,
        progress=view.progress,
    )


@router.get("/{deal_id}/activities", response_model=list[ActivityRead])
async def list_activities(
    deal_id: str,
    caller: Caller = Depends(get_caller),
    service: WorkflowService = Depends(get_workflow_service),
) -> list[ActivityRead]:
    return await service.list_activities(caller, deal_id)


@router.get("/{deal_id}/releases", response_model=list[DealReleaseRead])
async def list_releases(
    deal_id: str,
    caller: Caller = Depends(get_caller),
    service: WorkflowService = Depends(get_workflow_service),
) -> list[DealReleaseRead]:
    return await service.list_releases(caller, deal_id)


@router.post("/{deal_id}/documents", response_model=DocumentRead, status_code=201)
async def add_document(
    deal_id: str,
    body: AddDocumentRequest,
    caller: Caller = Depends(get_caller),
    service: DocumentService = Depends(get_document_service),
) -> DocumentRead:
    """Register a document against a deal, pending review."""
    data = DocumentCreate(name=body.name, category=body.category)
    return await service.add_document(caller, deal_id, data)


@router.get("/{deal_id}/documents", response_model=list[DocumentRead])
async def list_documents(
    deal_id: str,
    caller: Caller = Depends(get_caller),
    service: DocumentService = Depends(get_document_service),
) -> list[DocumentRead]:
    return await service.list_documents(caller, deal_id)
