"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
error handlers, lifespan events for database and scoring worker startup,
and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.dealflow.api.errors import register_exception_handlers
from src.dealflow.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.dealflow.api.v1.router import router as v1_router
from src.dealflow.config import Settings, get_settings
from src.dealflow.core.database import close_db, get_session, init_db
from src.dealflow.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.dealflow.deals.repository import DealRepository
from src.dealflow.notifications.email import ResendEmailSender
from src.dealflow.notifications.service import NotificationService
from src.dealflow.scoring.client import HttpScoringClient, ScoringClient
from src.dealflow.scoring.queue import ScoringQueue
from src.dealflow.workflow.documents import DocumentService
from src.dealflow.workflow.partner_actions import PartnerActionService
from src.dealflow.workflow.release import ReleaseGate
from src.dealflow.workflow.service import WorkflowService

logger = structlog.get_logger(__name__)


def wire_services(
    state,
    repository: DealRepository,
    settings: Settings,
    scoring_client: ScoringClient | None = None,
    email_sender: ResendEmailSender | None = None,
) -> None:
    """Build the workflow services and store them on ``state`` (app.state)."""
    notifications = NotificationService(repository)
    if email_sender is None:
        email_sender = ResendEmailSender(
            api_key=settings.RESEND_API_KEY,
            sender=settings.EMAIL_FROM,
            api_url=settings.EMAIL_API_URL,
            timeout=settings.EMAIL_TIMEOUT,
        )
    if scoring_client is None:
        scoring_client = HttpScoringClient(
            settings.SCORING_SERVICE_URL, timeout=settings.SCORING_TIMEOUT
        )

    state.deal_repository = repository
    state.notification_service = notifications
    state.workflow_service = WorkflowService(repository, notifications)
    state.release_gate = ReleaseGate(
        repository,
        notifications,
        email_sender=email_sender,
        app_url=settings.APP_URL,
    )
    state.partner_actions = PartnerActionService(repository)
    state.scoring_queue = ScoringQueue(repository, scoring_client, notifications)
    state.document_service = DocumentService(
        repository, notifications, state.scoring_queue
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and the scoring worker on startup."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    wire_services(app.state, DealRepository(get_session), settings)
    app.state.scoring_queue.start()
    logger.info("app.started", environment=settings.ENVIRONMENT.value)

    yield

    await app.state.scoring_queue.stop()
    await app.state.release_gate.wait_for_background()
    await close_db()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Dealflow API",
        version="0.1.0",
        description="Deal workflow and partner release service for private-credit offerings",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    register_exception_handlers(app)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
