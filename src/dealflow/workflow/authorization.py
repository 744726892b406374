"""Caller identity and role checks for workflow operations.

The API layer resolves the bearer token into a Caller once per request and
passes it explicitly to every mutator. Nothing in the workflow core looks up
the current user on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from src.dealflow.core.errors import ForbiddenError, UnauthorizedError
from src.dealflow.deals.schemas import DealRead, DealReleaseRead, HandoffTarget


class Role(str, Enum):
    ADMIN = "admin"
    LEGAL = "legal"
    PARTNER = "partner"
    CLIENT = "client"


@dataclass(frozen=True)
class Caller:
    """Resolved identity of the requester."""

    user_id: str
    role: Role
    email: str | None = None
    partner: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @classmethod
    def from_claims(cls, claims: dict) -> Caller:
        """Build a Caller from verified JWT claims.

        Raises:
            UnauthorizedError: If the role claim is unknown.
        """
        try:
            role = Role(claims.get("role"))
        except ValueError:
            raise UnauthorizedError(f"Unknown role: {claims.get('role')}") from None
        return cls(
            user_id=str(claims["sub"]),
            role=role,
            email=claims.get("email"),
            partner=claims.get("partner") if role == Role.PARTNER else None,
        )


def require_admin(caller: Caller) -> None:
    if caller.role != Role.ADMIN:
        raise ForbiddenError("Admin access required")


def require_staff(caller: Caller) -> None:
    """Admin or legal."""
    if caller.role not in (Role.ADMIN, Role.LEGAL):
        raise ForbiddenError("Admin or legal access required")


def require_partner(caller: Caller) -> str:
    """Return the caller's partner slug, or refuse non-partner callers."""
    if caller.role != Role.PARTNER or not caller.partner:
        raise ForbiddenError("Partner access required")
    return caller.partner


def ensure_can_read_deal(
    caller: Caller, deal: DealRead, releases: list[DealReleaseRead]
) -> None:
    """Refuse callers not allowed to see ``deal``.

    Admin and legal see every deal. A partner sees a deal released to it, or
    a deal handed off to funding partners.
    """
    if caller.role in (Role.ADMIN, Role.LEGAL):
        return
    if caller.role == Role.PARTNER and caller.partner:
        if any(r.partner_slug == caller.partner for r in releases):
            return
        if deal.handoff_to == HandoffTarget.FUNDING_PARTNER:
            return
    raise ForbiddenError("Not authorized to view this deal")
