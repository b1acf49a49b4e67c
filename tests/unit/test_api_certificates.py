from __future__ import annotations

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.auth import Role

from tests.utils import FakeCertificateClient, FakeRetryScheduler, auth_headers, take_step


async def award_a2(client: AsyncClient, db: AsyncSession, user_id: str = "student-1") -> dict:
    """Finish an assessment on step 1 with the mid band, which awards A2."""
    headers = auth_headers(user_id)
    await client.post("/assessment/start", headers=headers)
    response = await take_step(client, db, 1, correct=22, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


async def test_my_certificates_lists_awarded_level(
    async_client: AsyncClient, db: AsyncSession
) -> None:
    result = await award_a2(async_client, db)

    response = await async_client.get("/certificates/my-certificates", headers=auth_headers())

    assert response.status_code == 200
    certificates = response.json()
    assert len(certificates) == 1
    assert certificates[0]["id"] == result["certificate_id"]
    assert certificates[0]["level"] == "A2"
    assert certificates[0]["assessment_id"] == result["assessment_id"]


async def test_get_certificate_access_rules(async_client: AsyncClient, db: AsyncSession) -> None:
    certificate_id = (await award_a2(async_client, db))["certificate_id"]
    url = f"/certificates/{certificate_id}"

    owner = await async_client.get(url, headers=auth_headers())
    admin = await async_client.get(url, headers=auth_headers("admin-1", role=Role.ADMIN))
    stranger = await async_client.get(url, headers=auth_headers("student-2"))
    missing = await async_client.get("/certificates/nope", headers=auth_headers())

    assert owner.status_code == 200
    assert admin.status_code == 200
    assert stranger.status_code == 403
    assert missing.status_code == 404


async def test_verify_is_public(async_client: AsyncClient, db: AsyncSession) -> None:
    certificate_id = (await award_a2(async_client, db))["certificate_id"]
    certificate = (
        await async_client.get(f"/certificates/{certificate_id}", headers=auth_headers())
    ).json()

    valid = await async_client.post(
        "/certificates/verify",
        json={
            "certificate_number": certificate["certificate_number"],
            "verification_code": certificate["verification_code"],
        },
    )
    invalid = await async_client.post(
        "/certificates/verify",
        json={"certificate_number": certificate["certificate_number"], "verification_code": "X"},
    )

    assert valid.status_code == 200
    assert valid.json()["is_valid"] is True
    assert valid.json()["certificate"]["level"] == "A2"
    assert invalid.json() == {"is_valid": False, "certificate": None}


async def test_failed_issuance_is_pending_then_regenerated(
    async_client: AsyncClient,
    db: AsyncSession,
    certificate_client: FakeCertificateClient,
    retry_scheduler: FakeRetryScheduler,
) -> None:
    certificate_client.fail_times = 1

    result = await award_a2(async_client, db)

    # The award stands even though the certificate service failed
    assert result["final_level"] == "A2"
    assert result["certificate_pending"] is True
    assert result["certificate_id"] is None
    assert len(retry_scheduler.scheduled) == 1

    response = await async_client.post(
        "/certificates/regenerate",
        json={"assessment_id": result["assessment_id"]},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["certificate_id"] is not None
    assert body["job_id"] == retry_scheduler.scheduled[0][0]


async def test_regenerate_when_already_issued(async_client: AsyncClient, db: AsyncSession) -> None:
    result = await award_a2(async_client, db)

    response = await async_client.post(
        "/certificates/regenerate",
        json={"assessment_id": result["assessment_id"]},
        headers=auth_headers(),
    )

    assert response.status_code == 200
    assert response.json()["detail"] == "already_issued"
    assert response.json()["job_id"] is None
    assert response.json()["certificate_id"] == result["certificate_id"]


async def test_regenerate_error_statuses(async_client: AsyncClient, db: AsyncSession) -> None:
    result = await award_a2(async_client, db)

    foreign = await async_client.post(
        "/certificates/regenerate",
        json={"assessment_id": result["assessment_id"]},
        headers=auth_headers("student-2"),
    )
    unknown = await async_client.post(
        "/certificates/regenerate",
        json={"assessment_id": "missing"},
        headers=auth_headers(),
    )

    assert foreign.status_code == 403
    assert unknown.status_code == 404


async def test_regenerate_for_blocked_assessment_conflicts(
    async_client: AsyncClient, db: AsyncSession
) -> None:
    headers = auth_headers("student-3")
    await async_client.post("/assessment/start", headers=headers)
    result = (await take_step(async_client, db, 1, correct=0, headers=headers)).json()

    response = await async_client.post(
        "/certificates/regenerate",
        json={"assessment_id": result["assessment_id"]},
        headers=headers,
    )

    assert response.status_code == 409
