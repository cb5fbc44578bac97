"""Tests for access token handling."""

from datetime import timedelta
from uuid import uuid4

from app.core.security import create_access_token, decode_access_token


def test_access_token_round_trip():
    user_id = uuid4()
    token = create_access_token(user_id, extra_claims={"role": "staff"})

    payload = decode_access_token(token)

    assert payload["sub"] == str(user_id)
    assert payload["role"] == "staff"
    assert payload["type"] == "access"


def test_expired_or_invalid_token():
    expired = create_access_token(uuid4(), expires_delta=timedelta(minutes=-5))

    assert decode_access_token(expired) is None
    assert decode_access_token("not-a-token") is None
