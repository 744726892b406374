"""Deal workflow repository -- async CRUD for deals, partners and releases.

Provides DealRepository with the session_factory callable pattern: each
method opens its own session, commits, and returns Pydantic Read schemas so
no ORM instance ever escapes the repository.

Writes that the database rejects (constraint violations, lost connections)
are logged and re-raised as PersistenceError, which the API maps to a
generic 500. The one expected constraint violation, a duplicate
(deal, partner) release, is handled inside create_release.

release_deal is the one multi-table unit of work: the release row, its audit
entries and the deal-level release fields commit together or not at all.
"""

from __future__ import annotations

import functools
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.dealflow.core.errors import (
    DealNotFoundError,
    PersistenceError,
    ReleaseNotFoundError,
)
from src.dealflow.deals.models import (
    ActivityModel,
    DealModel,
    DealReleaseModel,
    DocumentModel,
    FundingPartnerModel,
    NotificationModel,
    PartnerAccessLogModel,
)
from src.dealflow.deals.schemas import (
    ActivityRead,
    DealCreate,
    DealFilter,
    DealRead,
    DealReleaseRead,
    DocumentCreate,
    DocumentRead,
    FundingPartnerCreate,
    FundingPartnerRead,
    NotificationCreate,
    NotificationRead,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Deal columns the workflow is allowed to write after creation.
# qualification_code, id and created_at are deliberately absent.
_MUTABLE_DEAL_FIELDS = frozenset(
    {
        "owner_id",
        "company_name",
        "capital_amount",
        "stage",
        "stage_changed_at",
        "handoff_to",
        "handed_off_at",
        "handed_off_by",
        "release_status",
        "release_partner",
        "release_notes",
        "release_authorized_by",
        "release_authorized_at",
        "internal_notes",
        "overall_score",
        "letter_grade",
        "legal_partner_id",
        "legal_status",
        "legal_notes",
        "legal_signed_off_at",
    }
)

_MUTABLE_RELEASE_FIELDS = frozenset(
    {
        "status",
        "access_level",
        "first_viewed_at",
        "interest_expressed_at",
        "passed_at",
        "pass_reason",
        "partner_notes",
    }
)

_MUTABLE_DOCUMENT_FIELDS = frozenset({"status", "review_notes"})

_UUID_FIELDS = frozenset(
    {
        "owner_id",
        "handed_off_by",
        "release_authorized_by",
        "released_by",
        "user_id",
        "legal_partner_id",
    }
)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _as_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    """Parse a UUID string, returning None for anything malformed."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _str_or_none(value: uuid.UUID | None) -> str | None:
    return str(value) if value is not None else None


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _model_to_deal(model: DealModel) -> DealRead:
    """Convert DealModel to the DealRead projection."""
    return DealRead(
        id=str(model.id),
        qualification_code=model.qualification_code,
        owner_id=_str_or_none(model.owner_id),
        company_name=model.company_name,
        capital_amount=model.capital_amount,
        stage=model.stage,
        handoff_to=model.handoff_to,
        handed_off_at=model.handed_off_at,
        handed_off_by=_str_or_none(model.handed_off_by),
        release_status=model.release_status,
        release_partner=model.release_partner,
        release_notes=model.release_notes,
        release_authorized_by=_str_or_none(model.release_authorized_by),
        release_authorized_at=model.release_authorized_at,
        internal_notes=model.internal_notes,
        overall_score=model.overall_score,
        letter_grade=model.letter_grade,
        legal_partner_id=_str_or_none(model.legal_partner_id),
        legal_status=model.legal_status,
        legal_notes=model.legal_notes,
        legal_signed_off_at=model.legal_signed_off_at,
        stage_changed_at=model.stage_changed_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_partner(model: FundingPartnerModel) -> FundingPartnerRead:
    return FundingPartnerRead(
        id=str(model.id),
        slug=model.slug,
        name=model.name,
        partner_role=model.partner_role,
        primary_contact_email=model.primary_contact_email,
        status=model.status,
        created_at=model.created_at,
    )


def _model_to_release(
    model: DealReleaseModel, partner_slug: str | None = None
) -> DealReleaseRead:
    """Convert DealReleaseModel to DealReleaseRead schema."""
    return DealReleaseRead(
        id=str(model.id),
        deal_id=str(model.deal_id),
        partner_id=str(model.partner_id),
        partner_slug=partner_slug,
        status=model.status,
        access_level=model.access_level,
        released_by=_str_or_none(model.released_by),
        released_at=model.released_at,
        release_notes=model.release_notes,
        first_viewed_at=model.first_viewed_at,
        interest_expressed_at=model.interest_expressed_at,
        passed_at=model.passed_at,
        pass_reason=model.pass_reason,
        partner_notes=model.partner_notes,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_document(model: DocumentModel) -> DocumentRead:
    return DocumentRead(
        id=str(model.id),
        deal_id=str(model.deal_id),
        name=model.name,
        category=model.category,
        status=model.status,
        review_notes=model.review_notes,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_activity(model: ActivityModel) -> ActivityRead:
    return ActivityRead(
        id=str(model.id),
        deal_id=str(model.deal_id),
        user_id=_str_or_none(model.user_id),
        action=model.action,
        details=model.details or {},
        created_at=model.created_at,
    )


def _column_values(fields: dict[str, Any], allowed: frozenset[str]) -> dict[str, Any]:
    """Normalize a field dict for assignment onto a model.

    Enums become their values and id strings become UUIDs. Unknown keys are a
    programming error.
    """
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    values: dict[str, Any] = {}
    for key, value in fields.items():
        value = _enum_value(value)
        if key in _UUID_FIELDS and value is not None:
            value = _as_uuid(value)
        values[key] = value
    return values


def _persistence(operation: str) -> Callable[
    [Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]
]:
    """Re-raise database failures of the wrapped method as PersistenceError."""

    def decorator(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(method)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await method(*args, **kwargs)
            except SQLAlchemyError as exc:
                logger.error(
                    "repository.persistence_error",
                    operation=operation,
                    error=str(exc),
                )
                raise PersistenceError(operation) from exc

        return wrapper

    return decorator


# ── Repository ──────────────────────────────────────────────────────────────


class DealRepository:
    """Async CRUD operations for the deal workflow tables.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Deals ───────────────────────────────────────────────────────────────

    @_persistence("create deal")
    async def create_deal(self, data: DealCreate, qualification_code: str) -> DealRead:
        """Insert a new deal in the draft stage.

        Args:
            data: DealCreate with company name, owner and amount.
            qualification_code: Pre-generated unique code for the deal.

        Returns:
            DealRead with all persisted fields.
        """
        async for session in self._session_factory():
            model = DealModel(
                qualification_code=qualification_code,
                owner_id=_as_uuid(data.owner_id),
                company_name=data.company_name,
                capital_amount=data.capital_amount,
                stage="draft",
                handoff_to="none",
                release_status="pending",
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_deal(model)

    @_persistence("load deal")
    async def get_deal(self, deal_id: str) -> DealRead | None:
        """Get a deal by ID. Malformed IDs are treated as not found."""
        deal_uuid = _as_uuid(deal_id)
        if deal_uuid is None:
            return None
        async for session in self._session_factory():
            model = await session.get(DealModel, deal_uuid)
            if model is None:
                return None
            return _model_to_deal(model)

    @_persistence("list deals")
    async def list_deals(self, filters: DealFilter | None = None) -> list[DealRead]:
        """List deals, newest first, with optional stage/handoff filters."""
        async for session in self._session_factory():
            stmt = select(DealModel)
            if filters is not None:
                if filters.stage is not None:
                    stmt = stmt.where(DealModel.stage == filters.stage.value)
                if filters.handoff_to is not None:
                    stmt = stmt.where(DealModel.handoff_to == filters.handoff_to.value)
            stmt = stmt.order_by(DealModel.created_at.desc())
            result = await session.execute(stmt)
            return [_model_to_deal(m) for m in result.scalars().all()]

    @_persistence("update deal")
    async def update_deal(self, deal_id: str, fields: dict[str, Any]) -> DealRead:
        """Write the given columns onto a deal and bump updated_at.

        Unlike a partial-update schema, explicit None values are written, so
        callers can clear columns (e.g. handed_off_at).

        Raises:
            DealNotFoundError: If the deal does not exist.
        """
        values = _column_values(fields, _MUTABLE_DEAL_FIELDS)
        deal_uuid = _as_uuid(deal_id)
        if deal_uuid is None:
            raise DealNotFoundError(deal_id)
        async for session in self._session_factory():
            model = await session.get(DealModel, deal_uuid)
            if model is None:
                raise DealNotFoundError(deal_id)
            for key, value in values.items():
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_deal(model)

    # ── Partners ────────────────────────────────────────────────────────────

    @_persistence("create partner")
    async def create_partner(self, data: FundingPartnerCreate) -> FundingPartnerRead:
        async for session in self._session_factory():
            model = FundingPartnerModel(
                slug=data.slug,
                name=data.name,
                partner_role=data.partner_role.value,
                primary_contact_email=data.primary_contact_email,
                status=data.status.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_partner(model)

    @_persistence("load partner")
    async def get_partner_by_slug(self, slug: str) -> FundingPartnerRead | None:
        async for session in self._session_factory():
            stmt = select(FundingPartnerModel).where(FundingPartnerModel.slug == slug)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_partner(model)

    @_persistence("list partners")
    async def list_partners(self) -> list[FundingPartnerRead]:
        async for session in self._session_factory():
            stmt = select(FundingPartnerModel).order_by(FundingPartnerModel.name)
            result = await session.execute(stmt)
            return [_model_to_partner(m) for m in result.scalars().all()]

    # ── Releases ────────────────────────────────────────────────────────────

    @_persistence("load release")
    async def get_release(self, deal_id: str, partner_id: str) -> DealReleaseRead | None:
        """Get the release of a deal to a partner, if any."""
        deal_uuid, partner_uuid = _as_uuid(deal_id), _as_uuid(partner_id)
        if deal_uuid is None or partner_uuid is None:
            return None
        async for session in self._session_factory():
            stmt = (
                select(DealReleaseModel, FundingPartnerModel.slug)
                .join(FundingPartnerModel, FundingPartnerModel.id == DealReleaseModel.partner_id)
                .where(
                    DealReleaseModel.deal_id == deal_uuid,
                    DealReleaseModel.partner_id == partner_uuid,
                )
            )
            row = (await session.execute(stmt)).one_or_none()
            if row is None:
                return None
            return _model_to_release(row[0], row[1])

    @_persistence("create release")
    async def create_release(
        self,
        deal_id: str,
        partner_id: str,
        *,
        access_level: str,
        released_by: str | None,
        released_at: datetime,
        release_notes: str | None = None,
    ) -> tuple[DealReleaseRead, bool]:
        """Insert a release for (deal, partner).

        Returns:
            Tuple of (release, created). If a concurrent writer inserted the
            same pair first, the unique constraint fires and the existing row
            is returned with created=False.
        """
        async for session in self._session_factory():
            model = DealReleaseModel(
                deal_id=uuid.UUID(deal_id),
                partner_id=uuid.UUID(partner_id),
                status="pending",
                access_level=_enum_value(access_level),
                released_by=_as_uuid(released_by),
                released_at=released_at,
                release_notes=release_notes,
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "repository.release_exists",
                    deal_id=deal_id,
                    partner_id=partner_id,
                )
            else:
                await session.refresh(model)
                partner = await session.get(FundingPartnerModel, model.partner_id)
                return _model_to_release(model, partner.slug if partner else None), True

        existing = await self.get_release(deal_id, partner_id)
        if existing is None:
            raise ReleaseNotFoundError(deal_id, partner_id)
        return existing, False

    @_persistence("release deal")
    async def release_deal(
        self,
        deal_id: str,
        partner_id: str,
        *,
        access_level: str,
        released_by: str | None,
        released_at: datetime,
        release_notes: str | None,
        deal_fields: dict[str, Any],
        log_details: dict[str, Any],
        activity_details: dict[str, Any],
    ) -> tuple[DealRead, DealReleaseRead, bool]:
        """Release a deal to a partner in a single transaction.

        Inserts the release row, the partner access log entry ``released``
        and the deal activity ``released_to_partner``, and writes
        ``deal_fields`` onto the deal. One commit covers all four writes.

        Returns:
            Tuple of (deal, release, created). When the (deal, partner)
            release already exists nothing is written and the stored deal
            and release come back with created=False.

        Raises:
            DealNotFoundError: If the deal does not exist.
        """
        values = _column_values(deal_fields, _MUTABLE_DEAL_FIELDS)
        deal_uuid, partner_uuid = _as_uuid(deal_id), _as_uuid(partner_id)
        if deal_uuid is None or partner_uuid is None:
            raise DealNotFoundError(deal_id)
        user_uuid = _as_uuid(released_by)
        async for session in self._session_factory():
            deal = await session.get(DealModel, deal_uuid)
            if deal is None:
                raise DealNotFoundError(deal_id)
            release = DealReleaseModel(
                deal_id=deal_uuid,
                partner_id=partner_uuid,
                status="pending",
                access_level=_enum_value(access_level),
                released_by=user_uuid,
                released_at=released_at,
                release_notes=release_notes,
            )
            session.add(release)
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "repository.release_exists",
                    deal_id=deal_id,
                    partner_id=partner_id,
                )
            else:
                session.add(
                    PartnerAccessLogModel(
                        partner_id=partner_uuid,
                        deal_id=deal_uuid,
                        user_id=user_uuid,
                        action="released",
                        details=log_details,
                    )
                )
                session.add(
                    ActivityModel(
                        deal_id=deal_uuid,
                        user_id=user_uuid,
                        action="released_to_partner",
                        details=activity_details,
                    )
                )
                for key, value in values.items():
                    setattr(deal, key, value)
                deal.updated_at = datetime.now(timezone.utc)
                await session.commit()
                await session.refresh(deal)
                await session.refresh(release)
                partner = await session.get(FundingPartnerModel, partner_uuid)
                return (
                    _model_to_deal(deal),
                    _model_to_release(release, partner.slug if partner else None),
                    True,
                )

        existing = await self.get_release(deal_id, partner_id)
        current = await self.get_deal(deal_id)
        if existing is None or current is None:
            raise ReleaseNotFoundError(deal_id, partner_id)
        return current, existing, False

    @_persistence("upsert release")
    async def upsert_release(
        self,
        deal_id: str,
        partner_id: str,
        *,
        status: str,
        access_level: str,
        released_by: str | None,
        released_at: datetime,
        release_notes: str | None = None,
    ) -> DealReleaseRead:
        """Insert the (deal, partner) release, or overwrite the existing one."""
        values = {
            "status": _enum_value(status),
            "access_level": _enum_value(access_level),
            "released_by": _as_uuid(released_by),
            "released_at": released_at,
            "release_notes": release_notes,
        }
        async for session in self._session_factory():
            stmt = (
                pg_insert(DealReleaseModel)
                .values(deal_id=uuid.UUID(deal_id), partner_id=uuid.UUID(partner_id), **values)
                .on_conflict_do_update(
                    constraint="uq_deal_release_deal_partner",
                    set_={**values, "updated_at": func.now()},
                )
                .returning(DealReleaseModel)
            )
            model = (await session.execute(stmt)).scalar_one()
            await session.commit()
            partner = await session.get(FundingPartnerModel, model.partner_id)
            return _model_to_release(model, partner.slug if partner else None)

    @_persistence("update release")
    async def update_release(self, release_id: str, fields: dict[str, Any]) -> DealReleaseRead:
        values = _column_values(fields, _MUTABLE_RELEASE_FIELDS)
        async for session in self._session_factory():
            model = await session.get(DealReleaseModel, uuid.UUID(release_id))
            if model is None:
                raise ValueError(f"Deal release not found: id={release_id}")
            for key, value in values.items():
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            partner = await session.get(FundingPartnerModel, model.partner_id)
            return _model_to_release(model, partner.slug if partner else None)

    @_persistence("list releases")
    async def list_releases_for_deal(self, deal_id: str) -> list[DealReleaseRead]:
        deal_uuid = _as_uuid(deal_id)
        if deal_uuid is None:
            return []
        async for session in self._session_factory():
            stmt = (
                select(DealReleaseModel, FundingPartnerModel.slug)
                .join(FundingPartnerModel, FundingPartnerModel.id == DealReleaseModel.partner_id)
                .where(DealReleaseModel.deal_id == deal_uuid)
                .order_by(DealReleaseModel.created_at)
            )
            result = await session.execute(stmt)
            return [_model_to_release(model, slug) for model, slug in result.all()]

    @_persistence("list releases")
    async def list_releases_for_partner(self, partner_id: str) -> list[DealReleaseRead]:
        async for session in self._session_factory():
            stmt = (
                select(DealReleaseModel, FundingPartnerModel.slug)
                .join(FundingPartnerModel, FundingPartnerModel.id == DealReleaseModel.partner_id)
                .where(DealReleaseModel.partner_id == uuid.UUID(partner_id))
                .order_by(DealReleaseModel.released_at.desc())
            )
            result = await session.execute(stmt)
            return [_model_to_release(model, slug) for model, slug in result.all()]

    # ── Documents ───────────────────────────────────────────────────────────

    @_persistence("create document")
    async def create_document(self, deal_id: str, data: DocumentCreate) -> DocumentRead:
        async for session in self._session_factory():
            model = DocumentModel(
                deal_id=uuid.UUID(deal_id),
                name=data.name,
                category=data.category,
                status="pending",
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_document(model)

    @_persistence("load document")
    async def get_document(self, document_id: str) -> DocumentRead | None:
        document_uuid = _as_uuid(document_id)
        if document_uuid is None:
            return None
        async for session in self._session_factory():
            model = await session.get(DocumentModel, document_uuid)
            if model is None:
                return None
            return _model_to_document(model)

    @_persistence("update document")
    async def update_document(self, document_id: str, fields: dict[str, Any]) -> DocumentRead:
        values = _column_values(fields, _MUTABLE_DOCUMENT_FIELDS)
        async for session in self._session_factory():
            model = await session.get(DocumentModel, uuid.UUID(document_id))
            if model is None:
                raise ValueError(f"Document not found: id={document_id}")
            for key, value in values.items():
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_document(model)

    @_persistence("list documents")
    async def list_documents(self, deal_id: str) -> list[DocumentRead]:
        deal_uuid = _as_uuid(deal_id)
        if deal_uuid is None:
            return []
        async for session in self._session_factory():
            stmt = (
                select(DocumentModel)
                .where(DocumentModel.deal_id == deal_uuid)
                .order_by(DocumentModel.created_at)
            )
            result = await session.execute(stmt)
            return [_model_to_document(m) for m in result.scalars().all()]

    # ── Audit ───────────────────────────────────────────────────────────────

    @_persistence("record activity")
    async def add_activity(
        self,
        deal_id: str,
        user_id: str | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> ActivityRead:
        async for session in self._session_factory():
            model = ActivityModel(
                deal_id=uuid.UUID(deal_id),
                user_id=_as_uuid(user_id),
                action=action,
                details=details or {},
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_activity(model)

    @_persistence("list activities")
    async def list_activities(self, deal_id: str) -> list[ActivityRead]:
        deal_uuid = _as_uuid(deal_id)
        if deal_uuid is None:
            return []
        async for session in self._session_factory():
            stmt = (
                select(ActivityModel)
                .where(ActivityModel.deal_id == deal_uuid)
                .order_by(ActivityModel.created_at)
            )
            result = await session.execute(stmt)
            return [_model_to_activity(m) for m in result.scalars().all()]

    @_persistence("create notification")
    async def add_notification(self, data: NotificationCreate) -> NotificationRead:
        async for session in self._session_factory():
            model = NotificationModel(
                user_id=uuid.UUID(data.user_id),
                deal_id=_as_uuid(data.deal_id),
                type=data.type,
                title=data.title,
                message=data.message,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return NotificationRead(
                id=str(model.id),
                user_id=str(model.user_id),
                deal_id=_str_or_none(model.deal_id),
                type=model.type,
                title=model.title,
                message=model.message,
                is_read=model.is_read,
                created_at=model.created_at,
            )

    @_persistence("record partner access")
    async def add_partner_access_log(
        self,
        partner_id: str,
        deal_id: str,
        user_id: str | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        async for session in self._session_factory():
            session.add(
                PartnerAccessLogModel(
                    partner_id=uuid.UUID(partner_id),
                    deal_id=uuid.UUID(deal_id),
                    user_id=_as_uuid(user_id),
                    action=action,
                    details=details or {},
                )
            )
            await session.commit()
