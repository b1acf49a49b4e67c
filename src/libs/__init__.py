"""Shared library helpers."""

from src.libs.certificate_client import (
    CertificateClientProtocol,
    CertificateServiceClient,
    CertificateServiceError,
    IssuedCertificate,
)

__all__ = [
    "CertificateClientProtocol",
    "CertificateServiceClient",
    "CertificateServiceError",
    "IssuedCertificate",
]
