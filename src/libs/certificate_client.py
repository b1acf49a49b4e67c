"""
Certificate service client.

Async HTTP client for the external certificate service with retry logic
and exponential backoff.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import httpx
import structlog
from src.core.config import get_settings

logger = structlog.get_logger()


class CertificateServiceError(Exception):
    """Base exception for certificate service errors."""


class CertificateServiceTimeoutError(CertificateServiceError):
    """Raised when the request times out."""


class CertificateServiceAPIError(CertificateServiceError):
    """Raised for non-success responses."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class IssuedCertificate:
    """Parsed certificate service response."""

    certificate_id: str
    certificate_number: str
    verification_code: str
    latency_ms: int = 0


class CertificateClientProtocol(Protocol):
    """Protocol for certificate clients (allows mocking)."""

    async def issue_certificate(
        self,
        *,
        user_id: str,
        assessment_id: str,
        level: str,
    ) -> IssuedCertificate:
        """Request a certificate for an awarded level."""
        ...


class CertificateServiceClient:
    """Async client for ``POST /certificates`` on the certificate service."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        max_retries: int | None = None,
        timeout_seconds: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_base: float = 1.0,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.certificate_service_url).rstrip("/")
        self.token = token if token is not None else settings.certificate_service_token
        self.max_retries = (
            max_retries if max_retries is not None else settings.certificate_max_retries
        )
        self.timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.certificate_timeout_seconds
        )
        self.transport = transport
        self.backoff_base = backoff_base

    async def issue_certificate(
        self,
        *,
        user_id: str,
        assessment_id: str,
        level: str,
    ) -> IssuedCertificate:
        """
        Request certificate creation with retry logic.

        Retries timeouts, connection errors and 5xx responses with
        exponential backoff; 4xx responses fail immediately.
        """
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        payload = {"userId": user_id, "assessmentId": assessment_id, "level": level}
        attempts = max(self.max_retries, 1)
        last_error: Exception | None = None

        for attempt in range(attempts):
            start_time = datetime.now(UTC)

            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self.transport
                ) as client:
                    response = await client.post(
                        f"{self.base_url}/certificates",
                        headers=headers,
                        json=payload,
                    )

                latency_ms = int((datetime.now(UTC) - start_time).total_seconds() * 1000)

                if response.status_code in (200, 201):
                    return self._parse_response(response, latency_ms)

                if response.status_code >= 500:
                    last_error = CertificateServiceAPIError(
                        f"Server error: {response.status_code}",
                        status_code=response.status_code,
                    )
                    await logger.awarning(
                        "certificate_service_server_error",
                        status_code=response.status_code,
                        attempt=attempt + 1,
                    )
                else:
                    raise CertificateServiceAPIError(
                        f"API error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )

            except httpx.TimeoutException:
                last_error = CertificateServiceTimeoutError(
                    f"Request timed out (attempt {attempt + 1})"
                )
                await logger.awarning(
                    "certificate_service_timeout",
                    attempt=attempt + 1,
                    timeout_seconds=self.timeout,
                )

            except httpx.RequestError as e:
                last_error = CertificateServiceError(f"Request failed: {e}")
                await logger.awarning(
                    "certificate_service_request_error",
                    error=str(e),
                    attempt=attempt + 1,
                )

            if attempt < attempts - 1:
                await asyncio.sleep(self.backoff_base * 2**attempt)

        raise last_error or CertificateServiceError("All retries exhausted")

    def _parse_response(self, response: httpx.Response, latency_ms: int) -> IssuedCertificate:
        try:
            data = response.json()
        except ValueError as exc:
            raise CertificateServiceAPIError(
                f"Certificate response is not JSON: {exc}", status_code=response.status_code
            ) from exc
        if not isinstance(data, dict):
            raise CertificateServiceAPIError(
                f"Certificate response is a JSON {type(data).__name__}, expected an object",
                status_code=response.status_code,
            )

        body = data.get("data", data)
        if isinstance(body, dict) and "certificate" in body:
            body = body["certificate"]
        try:
            return IssuedCertificate(
                certificate_id=str(body["certificateId"]),
                certificate_number=str(body["certificateNumber"]),
                verification_code=str(body["verificationCode"]),
                latency_ms=latency_ms,
            )
        except (KeyError, TypeError) as exc:
            raise CertificateServiceAPIError(f"Malformed certificate response: {exc}") from exc
