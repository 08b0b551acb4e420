"""
Tests for bearer token authentication.
"""

from datetime import timedelta

import pytest
from fastapi import HTTPException
from jose import jwt

from threadsync.api.auth import (
    create_access_token,
    decode_access_token,
    get_current_user,
)
from threadsync.config import settings


class TestTokens:
    def test_round_trip(self):
        token = create_access_token("alice")

        assert decode_access_token(token) == "alice"

    def test_expired_token(self):
        token = create_access_token("alice", expires_delta=timedelta(seconds=-1))

        assert decode_access_token(token) is None

    def test_wrong_secret(self):
        token = jwt.encode({"sub": "alice"}, "other-secret", algorithm="HS256")

        assert decode_access_token(token) is None

    def test_missing_subject(self):
        token = jwt.encode(
            {"scope": "read"}, settings.jwt_secret, algorithm=settings.jwt_algorithm
        )

        assert decode_access_token(token) is None

    def test_garbage(self):
        assert decode_access_token("not-a-jwt") is None


class TestGetCurrentUser:
    """Tests for the get_current_user dependency."""

    def test_valid_header(self):
        user = get_current_user(f"Bearer {create_access_token('bob')}")

        assert user.id == "bob"

    @pytest.mark.parametrize(
        "header",
        [None, "", "Basic abc", "Bearer ", "Bearer not-a-jwt"],
    )
    def test_rejected_headers(self, header):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(header)

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}
