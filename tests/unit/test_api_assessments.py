"""
API tests for the assessment endpoints.
"""

from __future__ import annotations

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from src.core.auth import Role

from tests.utils import auth_headers, take_step


async def test_full_assessment_flow(async_client: AsyncClient, db: AsyncSession) -> None:
    """Advance through step 1, stop on the mid band of step 2 and receive B2."""
    headers = auth_headers()

    started = await async_client.post("/assessment/start", headers=headers)
    assert started.status_code == 201
    assert started.json()["current_step"] == 1

    questions = await async_client.get("/assessment/step/1/questions", headers=headers)
    body = questions.json()
    assert len(body["questions"]) == 44
    assert all("correct_option" not in question for question in body["questions"])
    assert body["expires_at"] is not None

    first = await take_step(async_client, db, 1, correct=44, headers=headers)
    assert first.status_code == 200
    assert first.json()["proceed_to_next"] is True
    assert first.json()["next_step"] == 2

    second = await take_step(async_client, db, 2, correct=22, headers=headers)
    result = second.json()
    assert result["percentage"] == 50.0
    assert result["final_level"] == "B2"
    assert result["is_completed"] is True
    assert result["certificate_id"] is not None

    status_response = await async_client.get("/assessment/status", headers=headers)
    status_body = status_response.json()
    assert status_body["assessment"]["state"] == "completed"
    assert status_body["assessment"]["total_time_spent"] == 880.0
    assert status_body["certificate"]["level"] == "B2"

    history = await async_client.get("/assessment/history", headers=headers)
    assert history.json()["pagination"]["total"] == 1


async def test_idempotent_submission_replays_result(
    async_client: AsyncClient, db: AsyncSession
) -> None:
    headers = auth_headers()
    await async_client.post("/assessment/start", headers=headers)
    first = await take_step(
        async_client, db, 1, correct=40, headers=headers, idempotency_key="submit-1"
    )

    replay = await async_client.post(
        "/assessment/step/1/submit",
        json={"answers": []},
        headers={**headers, "Idempotency-Key": "submit-1"},
    )

    assert replay.status_code == 200
    assert replay.json() == first.json()


async def test_resubmission_without_key_conflicts(
    async_client: AsyncClient, db: AsyncSession
) -> None:
    headers = auth_headers()
    await async_client.post("/assessment/start", headers=headers)
    await take_step(async_client, db, 1, correct=40, headers=headers)

    response = await async_client.post(
        "/assessment/step/1/submit", json={"answers": []}, headers=headers
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "step_already_submitted"


async def test_blocked_user_cannot_restart(async_client: AsyncClient, db: AsyncSession) -> None:
    headers = auth_headers()
    await async_client.post("/assessment/start", headers=headers)

    result = await take_step(async_client, db, 1, correct=10, headers=headers)
    assert result.json()["is_blocked"] is True
    assert result.json()["final_level"] is None

    response = await async_client.post("/assessment/start", headers=headers)

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "user_blocked"


async def test_second_start_conflicts(async_client: AsyncClient) -> None:
    headers = auth_headers()
    await async_client.post("/assessment/start", headers=headers)

    response = await async_client.post("/assessment/start", headers=headers)

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "assessment_already_active"


async def test_step_errors_map_to_status_codes(async_client: AsyncClient) -> None:
    headers = auth_headers()

    missing = await async_client.get("/assessment/step/1/questions", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "assessment_not_found"

    await async_client.post("/assessment/start", headers=headers)

    not_current = await async_client.get("/assessment/step/2/questions", headers=headers)
    assert not_current.status_code == 409
    assert not_current.json()["detail"]["code"] == "step_not_current"

    invalid = await async_client.get("/assessment/step/9/questions", headers=headers)
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["code"] == "invalid_step"

    not_opened = await async_client.post(
        "/assessment/step/1/submit", json={"answers": []}, headers=headers
    )
    assert not_opened.status_code == 409
    assert not_opened.json()["detail"]["code"] == "step_not_opened"


async def test_stale_question_set_is_rejected(async_client: AsyncClient) -> None:
    headers = auth_headers()
    await async_client.post("/assessment/start", headers=headers)
    await async_client.get("/assessment/step/1/questions", headers=headers)

    response = await async_client.post(
        "/assessment/step/1/submit",
        json={"answers": [{"question_id": "ghost", "answer": "a"}]},
        headers=headers,
    )

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "stale_question_set"
    assert detail["unknown_question_ids"] == ["ghost"]


async def test_negative_time_spent_is_invalid(async_client: AsyncClient) -> None:
    headers = auth_headers()
    await async_client.post("/assessment/start", headers=headers)

    response = await async_client.post(
        "/assessment/step/1/submit",
        json={"answers": [{"question_id": "q", "answer": "a", "time_spent": -1}]},
        headers=headers,
    )

    assert response.status_code == 422


async def test_requires_bearer_token(async_client: AsyncClient) -> None:
    response = await async_client.post("/assessment/start")

    assert response.status_code == 401


async def test_requires_student_role(async_client: AsyncClient) -> None:
    response = await async_client.post(
        "/assessment/start", headers=auth_headers("admin-1", role=Role.ADMIN)
    )

    assert response.status_code == 403


async def test_status_without_assessment(async_client: AsyncClient) -> None:
    response = await async_client.get("/assessment/status", headers=auth_headers())

    assert response.status_code == 200
    assert response.json() == {"has_assessment": False, "assessment": None, "certificate": None}
