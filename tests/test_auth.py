"""Bearer token authentication tests."""

from __future__ import annotations

from datetime import timedelta

from memory_core.services.auth import (
    ENV_ADMIN_USER_ID,
    auth_context_from_token,
    create_access_token,
    decode_access_token,
    is_env_admin_token,
)
from tests.factories import make_user
from tests.test_constants import TEST_ENV_ADMIN_TOKEN


def test_token_round_trip_resolves_user(db):
    user = make_user(db, "dev@example.com")
    token = create_access_token({"sub": "DEV@example.com"})

    auth = auth_context_from_token(db, token)

    assert auth.user_id == str(user.id)
    assert auth.user_email == "dev@example.com"
    assert auth.is_service_principal is False


def test_expired_and_garbage_tokens_are_rejected(db):
    make_user(db, "dev@example.com")
    expired = create_access_token({"sub": "dev@example.com"}, timedelta(seconds=-10))

    assert decode_access_token(expired) is None
    assert auth_context_from_token(db, "not-a-jwt") is None


def test_unknown_user_is_rejected(db):
    assert auth_context_from_token(db, create_access_token({"sub": "ghost@example.com"})) is None
    assert auth_context_from_token(db, create_access_token({"scope": "no-sub"})) is None


def test_env_admin_token(db):
    assert is_env_admin_token(TEST_ENV_ADMIN_TOKEN)
    assert not is_env_admin_token("wrong")

    auth = auth_context_from_token(db, TEST_ENV_ADMIN_TOKEN)
    assert auth.user_id == ENV_ADMIN_USER_ID
    assert auth.env_admin is True
