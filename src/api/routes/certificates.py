from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from src.api.deps import get_certificate_service, get_certificate_trigger, require_roles
from src.api.schemas.certificates import (
    CertificateItem,
    CertificateRegenerateRequest,
    CertificateRegenerateResponse,
    CertificateVerifyRequest,
    CertificateVerifyResponse,
)
from src.domain import User
from src.domain.services import CertificateIssuanceTrigger, CertificateService
from src.domain.services.certificates import (
    CertificateNotFoundError,
    CertificateNotOwnedError,
    NoAwardedLevelError,
)

router = APIRouter(prefix="/certificates", tags=["Certificates"])


@router.get("/my-certificates", response_model=list[CertificateItem])
async def list_my_certificates(
    user: User = Depends(require_roles(["student"])),
    service: CertificateService = Depends(get_certificate_service),
) -> list[CertificateItem]:
    certificates = await service.list_for_user(user)
    return [CertificateItem(**certificate) for certificate in certificates]


@router.post("/verify", response_model=CertificateVerifyResponse)
async def verify_certificate(
    payload: CertificateVerifyRequest,
    service: CertificateService = Depends(get_certificate_service),
) -> CertificateVerifyResponse:
    """Public check of a certificate number against its verification code."""
    result = await service.verify(
        certificate_number=payload.certificate_number,
        verification_code=payload.verification_code,
    )
    return CertificateVerifyResponse(**result)


@router.post("/regenerate", response_model=CertificateRegenerateResponse)
async def regenerate_certificate(
    payload: CertificateRegenerateRequest,
    user: User = Depends(require_roles(["student"])),
    trigger: CertificateIssuanceTrigger = Depends(get_certificate_trigger),
) -> CertificateRegenerateResponse:
    """
    Re-run certificate issuance for one of the caller's completed assessments.

    Used when the certificate service was unavailable at submission time.
    """
    try:
        outcome = await trigger.regenerate(user=user, assessment_id=payload.assessment_id)
    except CertificateNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except CertificateNotOwnedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except NoAwardedLevelError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return CertificateRegenerateResponse(
        assessment_id=payload.assessment_id,
        job_id=outcome.job_id or None,
        status=outcome.status,
        certificate_id=outcome.certificate_id,
        detail=outcome.detail,
    )


@router.get("/{certificate_id}", response_model=CertificateItem)
async def get_certificate(
    certificate_id: str,
    user: User = Depends(require_roles(["student", "supervisor", "admin"])),
    service: CertificateService = Depends(get_certificate_service),
) -> CertificateItem:
    try:
        certificate = await service.get(user=user, certificate_id=certificate_id)
    except CertificateNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except CertificateNotOwnedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return CertificateItem(**certificate)
