"""FastAPI dependency injection for the caller identity and workflow services.

These dependencies are used in endpoint function signatures to inject the
authenticated Caller and the services built during application lifespan
(stored on app.state).
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.dealflow.core.security import verify_token
from src.dealflow.scoring.queue import ScoringQueue
from src.dealflow.workflow.authorization import Caller
from src.dealflow.workflow.documents import DocumentService
from src.dealflow.workflow.partner_actions import PartnerActionService
from src.dealflow.workflow.release import ReleaseGate
from src.dealflow.workflow.service import WorkflowService


async def get_caller(request: Request) -> Caller:
    """Resolve the bearer token into a Caller.

    Raises:
        HTTPException(401): Missing, malformed, expired or invalid token.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = verify_token(auth_header[7:])
    return Caller.from_claims(payload)


def _from_state(request: Request, name: str) -> Any:
    """Retrieve a service from app.state, 503 if not available."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Deal workflow not initialized",
        )
    return service


def get_workflow_service(request: Request) -> WorkflowService:
    return _from_state(request, "workflow_service")


def get_release_gate(request: Request) -> ReleaseGate:
    return _from_state(request, "release_gate")


def get_partner_actions(request: Request) -> PartnerActionService:
    return _from_state(request, "partner_actions")


def get_scoring_queue(request: Request) -> ScoringQueue:
    return _from_state(request, "scoring_queue")


def get_document_service(request: Request) -> DocumentService:
    return _from_state(request, "document_service")
