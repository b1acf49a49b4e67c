from __future__ import annotations

from pydantic import BaseModel, Field


class CertificateItem(BaseModel):
    id: str
    user_id: str
    assessment_id: str
    level: str
    certificate_number: str
    verification_code: str
    issued_at: str | None = None


class CertificateVerifyRequest(BaseModel):
    certificate_number: str = Field(..., min_length=1)
    verification_code: str = Field(..., min_length=1)


class VerifiedCertificate(BaseModel):
    certificate_number: str
    level: str
    issued_date: str | None = None
    holder_id: str


class CertificateVerifyResponse(BaseModel):
    is_valid: bool
    certificate: VerifiedCertificate | None = None


class CertificateRegenerateRequest(BaseModel):
    assessment_id: str


class CertificateRegenerateResponse(BaseModel):
    assessment_id: str
    job_id: str | None = None
    status: str
    certificate_id: str | None = None
    detail: str | None = None
