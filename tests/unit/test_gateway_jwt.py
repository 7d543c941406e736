"""Unit tests for JWT handler and auth dependencies."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from src.gf_common.errors import AuthenticationError, AuthorizationError
from src.gf_gateway.auth.dependencies import Principal, get_current_principal, require_admin
from src.gf_gateway.auth.jwt_handler import (
    ROLE_ADMIN,
    ROLE_SERVICE,
    create_access_token,
    decode_token,
)


def test_access_token_contains_correct_claims() -> None:
    token = create_access_token("ops@example.com", role=ROLE_ADMIN)
    # Decode without verification to inspect claims
    payload = jwt.get_unverified_claims(token)
    assert payload["sub"] == "ops@example.com"
    assert payload["role"] == "admin"
    assert payload["type"] == "access"


def test_default_role_is_service() -> None:
    payload = decode_token(create_access_token("checkout"))
    assert payload["role"] == ROLE_SERVICE


def test_tampered_token_raises() -> None:
    header, payload, _ = create_access_token("checkout").split(".")
    foreign_sig = create_access_token("someone-else").split(".")[2]
    with pytest.raises(AuthenticationError):
        decode_token(f"{header}.{payload}.{foreign_sig}")


def test_foreign_secret_raises() -> None:
    token = jwt.encode({"sub": "x", "type": "access"}, "other-secret", algorithm="HS256")
    with pytest.raises(AuthenticationError):
        decode_token(token)


def test_expired_access_token_raises() -> None:
    with patch("src.gf_gateway.auth.jwt_handler._ACCESS_EXPIRE", timedelta(seconds=-1)):
        token = create_access_token("checkout")
    with pytest.raises(AuthenticationError):
        decode_token(token)


async def test_principal_from_bearer() -> None:
    creds = HTTPAuthorizationCredentials(
        scheme="Bearer", credentials=create_access_token("ops@example.com", role=ROLE_ADMIN)
    )
    principal = await get_current_principal(creds)
    assert principal == Principal(subject="ops@example.com", role="admin")
    assert principal.is_admin


async def test_missing_bearer_raises() -> None:
    with pytest.raises(AuthenticationError, match="Missing bearer token"):
        await get_current_principal(None)


async def test_require_admin_refuses_service() -> None:
    with pytest.raises(AuthorizationError):
        await require_admin(Principal(subject="checkout", role=ROLE_SERVICE))
