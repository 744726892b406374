"""REST API endpoints for partner users.

A partner sees only the deals released to it and acts on them through a
single action endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from src.dealflow.api.deps import get_caller, get_partner_actions
from src.dealflow.deals.schemas import DealReleaseRead
from src.dealflow.workflow.authorization import Caller
from src.dealflow.workflow.partner_actions import PartnerActionService

router = APIRouter(prefix="/api/v1/partner", tags=["partner"])


class PartnerActionRequest(BaseModel):
    """Request body for a partner action."""

    model_config = ConfigDict(populate_by_name=True)

    action: str
    notes: str | None = None
    pass_reason: str | None = Field(default=None, alias="passReason")
    legal_partner: str | None = Field(default=None, alias="legalPartner")


@router.get("/deals", response_model=list[DealReleaseRead])
async def list_partner_deals(
    caller: Caller = Depends(get_caller),
    service: PartnerActionService = Depends(get_partner_actions),
) -> list[DealReleaseRead]:
    """Releases visible to the calling partner."""
    return await service.list_releases(caller)


@router.post("/deals/{deal_id}/action", response_model=DealReleaseRead)
async def take_action(
    deal_id: str,
    body: PartnerActionRequest,
    caller: Caller = Depends(get_caller),
    service: PartnerActionService = Depends(get_partner_actions),
) -> DealReleaseRead:
    return await service.record_partner_action(
        caller,
        deal_id,
        body.action,
        notes=body.notes,
        pass_reason=body.pass_reason,
        legal_partner=body.legal_partner,
    )
