"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.dealflow.api.v1 import deals, health, partner, workflow

router = APIRouter()

router.include_router(health.router)
router.include_router(deals.router)
router.include_router(workflow.router)
router.include_router(partner.router)
