from datetime import timedelta

import jwt
import pytest
from src.core.auth import (
    Role,
    TokenError,
    create_access_token,
    decode_access_token,
    user_from_claims,
)
from src.core.config import get_settings


def test_create_and_decode_token_roundtrip() -> None:
    token = create_access_token("user-123", roles=["student"], email="user@example.com")

    payload = decode_access_token(token)

    assert payload["sub"] == "user-123"
    assert payload["roles"] == ["student"]
    assert payload["email"] == "user@example.com"


def test_claims_become_domain_user() -> None:
    token = create_access_token("sup-1", roles=[Role.SUPERVISOR.value])

    user = user_from_claims(decode_access_token(token))

    assert user.user_id == "sup-1"
    assert user.has_role("supervisor")
    assert not user.has_role("admin")


def test_expired_token_is_rejected() -> None:
    token = create_access_token("user-1", roles=["student"], expires_delta=timedelta(minutes=-5))

    with pytest.raises(TokenError, match="expired"):
        decode_access_token(token)


def test_token_from_other_issuer_is_rejected() -> None:
    settings = get_settings()
    token = jwt.encode(
        {"sub": "user-1", "roles": ["student"], "exp": 4102444800, "iss": "someone-else"},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )

    with pytest.raises(TokenError):
        decode_access_token(token)


def test_unknown_role_cannot_be_issued() -> None:
    with pytest.raises(TokenError):
        create_access_token("user-1", roles=["guest"])
