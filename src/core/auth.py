"""
Bearer token handling.

Tokens are issued by the platform's identity service; this module only
verifies them and turns their claims into a domain ``User``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import jwt
from src.core.config import get_settings
from src.domain.models import User

# Tolerated clock drift between the identity service and this API
CLOCK_SKEW = timedelta(seconds=30)


class TokenError(Exception):
    """Raised when a token cannot be decoded or validated."""


class Role(str, Enum):
    STUDENT = "student"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"

    @classmethod
    def contains(cls, value: str) -> bool:
        return value in {role.value for role in cls}


def create_access_token(
    subject: str,
    *,
    roles: Sequence[str],
    email: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Sign a token the way the identity service does; for smoke tests and the test-suite."""
    settings = get_settings()

    unknown = [role for role in roles if role not in settings.allowed_roles]
    if unknown:
        raise TokenError(f"Unsupported role(s): {', '.join(unknown)}")

    issued_at = datetime.now(UTC)
    claims: dict[str, Any] = {
        "sub": subject,
        "roles": list(roles),
        "iat": issued_at,
        "exp": issued_at + (expires_delta or timedelta(seconds=settings.access_token_ttl_seconds)),
        "iss": settings.app_name,
    }
    if email:
        claims["email"] = email

    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """Verify signature, expiry and issuer; return the claims."""
    settings = get_settings()

    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.app_name,
            leeway=CLOCK_SKEW,
            options={"require": ["sub", "roles", "exp", "iss"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token expired") from exc
    except jwt.PyJWTError as exc:
        raise TokenError("Invalid token") from exc

    unknown = [role for role in claims.get("roles", []) if not Role.contains(role)]
    if unknown:
        raise TokenError(f"Unsupported role: {unknown[0]}")
    return claims


def user_from_claims(claims: Mapping[str, Any]) -> User:
    """Build the acting user from verified token claims."""
    subject = claims.get("sub")
    if not subject:
        raise TokenError("Token missing subject")
    return User(
        user_id=str(subject),
        email=claims.get("email", ""),
        roles=list(claims.get("roles", [])),
    )
