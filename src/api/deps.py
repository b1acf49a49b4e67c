from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Sequence

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.auth import (
    Role,
    TokenError,
    create_access_token,
    decode_access_token,
    user_from_claims,
)
from src.core.config import get_settings
from src.domain import User
from src.domain.services import (
    AssessmentService,
    CertificateIssuanceTrigger,
    CertificateService,
)
from src.infrastructure.db.session import get_session
from src.libs.certificate_client import CertificateClientProtocol, CertificateServiceClient
from src.workers.queue import RetrySchedulerProtocol, RQRetryScheduler

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),  # noqa: B008
) -> User:
    """Resolve the authenticated user from a bearer token."""
    if credentials is None:
        raise _unauthorized("Missing bearer token")

    try:
        user = user_from_claims(decode_access_token(credentials.credentials))
    except TokenError as exc:
        raise _unauthorized(str(exc)) from exc

    if not user.roles:
        raise _forbidden("Token missing required roles")
    return user


def require_roles(required_roles: Sequence[str]) -> Callable[[User], User]:
    """Dependency factory enforcing that the authenticated user has one of the required roles."""
    settings = get_settings()
    allowed = set(settings.allowed_roles)

    invalid_roles = [role for role in required_roles if role not in allowed]
    if invalid_roles:
        joined_roles = ", ".join(invalid_roles)
        raise ValueError(f"Unsupported role(s) requested: {joined_roles}")

    required = set(required_roles)

    def dependency(user: User = Depends(get_current_user)) -> User:  # noqa: B008
        if not required.intersection(user.roles):
            raise _forbidden("Insufficient role privileges")
        return user

    return dependency


def issue_smoke_token(user_id: str, *, role: Role, email: str | None = None) -> str:
    """Generate a signed token for manual smoke testing."""
    return create_access_token(user_id, roles=[role.value], email=email)


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Provide an async SQLAlchemy session for API handlers."""
    async for session in get_session():
        yield session


def get_certificate_client() -> CertificateClientProtocol:
    """Client for the external certificate service."""
    return CertificateServiceClient()


def get_retry_scheduler() -> RetrySchedulerProtocol:
    return RQRetryScheduler()


def get_certificate_trigger(
    session: AsyncSession = Depends(get_db_session),  # noqa: B008
    client: CertificateClientProtocol = Depends(get_certificate_client),  # noqa: B008
    scheduler: RetrySchedulerProtocol = Depends(get_retry_scheduler),  # noqa: B008
) -> CertificateIssuanceTrigger:
    return CertificateIssuanceTrigger(session, client, scheduler)


def get_assessment_service(
    session: AsyncSession = Depends(get_db_session),  # noqa: B008
    trigger: CertificateIssuanceTrigger = Depends(get_certificate_trigger),  # noqa: B008
) -> AssessmentService:
    """Assessment lifecycle service wired to the request session."""
    return AssessmentService(session, certificate_trigger=trigger)


def get_certificate_service(
    session: AsyncSession = Depends(get_db_session),  # noqa: B008
) -> CertificateService:
    return CertificateService(session)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
