"""Token issuing, verification and Caller resolution tests."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import jwt

from src.dealflow.config import get_settings
from src.dealflow.core.errors import UnauthorizedError
from src.dealflow.core.security import create_access_token, verify_token
from src.dealflow.workflow.authorization import Caller, Role


# ── Tokens ────────────────────────────────────────────────────────────────────


def test_token_round_trip_to_caller():
    """A partner token resolves to a Caller with its slug."""
    token = create_access_token(
        {"sub": "user-1", "role": "partner", "email": "a@optima.test", "partner": "optima"}
    )
    caller = Caller.from_claims(verify_token(token))

    assert caller == Caller(
        user_id="user-1", role=Role.PARTNER, email="a@optima.test", partner="optima"
    )
    assert not caller.is_admin


def test_expired_token_rejected():
    token = create_access_token(
        {"sub": "user-1", "role": "admin"}, expires_delta=timedelta(seconds=-1)
    )
    with pytest.raises(HTTPException) as exc_info:
        verify_token(token)
    assert exc_info.value.status_code == 401


def test_wrong_token_type_rejected():
    settings = get_settings()
    token = jwt.encode(
        {"sub": "user-1", "role": "admin", "type": "refresh"},
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(HTTPException):
        verify_token(token)


def test_token_without_role_rejected():
    with pytest.raises(HTTPException):
        verify_token(create_access_token({"sub": "user-1"}))


def test_tampered_signature_rejected():
    token = jwt.encode(
        {"sub": "user-1", "role": "admin", "type": "access"},
        "some-other-secret",
        algorithm="HS256",
    )
    with pytest.raises(HTTPException):
        verify_token(token)


# ── Caller ────────────────────────────────────────────────────────────────────


def test_partner_slug_ignored_for_non_partner_roles():
    caller = Caller.from_claims({"sub": "u", "role": "admin", "partner": "optima"})
    assert caller.partner is None
    assert caller.is_admin


def test_unknown_role_unauthorized():
    with pytest.raises(UnauthorizedError):
        Caller.from_claims({"sub": "u", "role": "root"})
