"""Tests for JWT auth dependencies."""

from unittest.mock import patch

import jwt
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from backend.core.auth import authenticate_token


def test_missing_auth_header(app):
    with TestClient(app) as client:
        resp = client.get("/api/auth/me/")
    assert resp.status_code in (401, 403)


def test_invalid_token_format(app):
    with TestClient(app) as client:
        resp = client.get("/api/auth/me/", headers={"Authorization": "Bearer not.a.jwt"})
    assert resp.status_code == 401


@pytest.fixture()
def private_key():
    from cryptography.hazmat.primitives.asymmetric import rsa

    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture()
def jwks(private_key):
    """A JWKS document publishing the test key under kid ``test-kid``."""
    import json

    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk["kid"] = "test-kid"
    return {"keys": [jwk]}


def _token(private_key, sub, kid="test-kid"):
    return jwt.encode({"sub": sub}, private_key, algorithm="RS256", headers={"kid": kid})


def test_unknown_kid_returns_401(app, student, private_key):
    """Token with a kid not in JWKS -> 401."""
    token = _token(private_key, student.clerk_user_id, kid="unknown-kid")

    with patch("backend.core.auth._fetch_jwks", return_value={"keys": []}):
        with TestClient(app) as client:
            resp = client.get("/api/auth/me/", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_valid_token_returns_profile_and_capabilities(app, ta, private_key, jwks):
    token = _token(private_key, ta.clerk_user_id)

    with patch("backend.core.auth._fetch_jwks", return_value=jwks):
        with TestClient(app) as client:
            resp = client.get("/api/auth/me/", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["clerk_user_id"] == ta.clerk_user_id
    assert data["role"] == "ta"
    assert data["capabilities"] == {
        "can_moderate": True,
        "can_view_all_dms": False,
        "can_unlock_self": True,
        "can_manage_lessons": True,
    }


def test_unknown_subject_is_unauthorized(app, student, private_key, jwks):  # noqa: ARG001
    token = _token(private_key, "user_not_synced_yet")

    with patch("backend.core.auth._fetch_jwks", return_value=jwks):
        with TestClient(app) as client:
            resp = client.get("/api/auth/me/", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401
    assert resp.json()["detail"] == "Profile not found"


@pytest.mark.asyncio
async def test_authenticate_token_rejects_missing_subject(private_key, jwks, async_engine):
    from sqlalchemy.ext.asyncio import async_sessionmaker

    token = jwt.encode({}, private_key, algorithm="RS256", headers={"kid": "test-kid"})
    with patch("backend.core.auth._fetch_jwks", return_value=jwks):
        async with async_sessionmaker(async_engine)() as db:
            with pytest.raises(HTTPException) as exc_info:
                await authenticate_token(token, db)
    assert exc_info.value.status_code == 401


def test_me_with_overridden_user(app, login, student):
    login(student)
    with TestClient(app) as client:
        resp = client.get("/api/auth/me/")

    assert resp.status_code == 200
    data = resp.json()
    assert data["full_name"] == "Ada Student"
    assert data["school"] == "Lagos State"
    assert data["capabilities"]["can_moderate"] is False


def test_jwks_force_refresh_rate_limited(app, private_key):
    """Multiple unknown-kid requests within the interval trigger only one JWKS force-refresh."""
    import backend.core.auth as auth_module

    token = _token(private_key, "any", kid="unknown-kid")

    force_refresh_calls = [0]

    async def counting_fetch(force_refresh: bool = False) -> dict:
        if force_refresh:
            force_refresh_calls[0] += 1
        # Empty JWKS: no keys match "unknown-kid", triggering the retry path.
        return {"keys": []}

    # Reset rate-limit state so the first request is always allowed to refresh.
    original_ts = auth_module._last_force_refresh_at
    auth_module._last_force_refresh_at = float("-inf")

    try:
        with patch("backend.core.auth._fetch_jwks", side_effect=counting_fetch):
            for _ in range(3):
                with TestClient(app) as client:
                    client.get("/api/auth/me/", headers={"Authorization": f"Bearer {token}"})
    finally:
        auth_module._last_force_refresh_at = original_ts

    # All three requests carry an unknown kid, but only the first triggers a force-refresh.
    assert force_refresh_calls[0] == 1
