from decimal import Decimal
from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import RequirementType
from app.core.models import EssayReview


async def _essay_requirement_status(client: AsyncClient, enrollment_id, headers) -> dict:
    response = await client.get(f"/api/v1/promotions/progress/{enrollment_id}", headers=headers)
    assert response.status_code == 200
    [essay_item] = [r for r in response.json()["requirements"] if r["type"] == "ESSAY"]
    return {**essay_item, "ready": response.json()["ready_for_promotion"]}


@pytest.mark.asyncio
async def test_essay_requirement_completes_after_review(client: AsyncClient, factory, dojo, auth) -> None:
    program, (white, _, _) = await factory.program(dojo["school"])
    await factory.requirement(white, RequirementType.ESSAY, value=None, description="What respect means")
    enrollment = await factory.enrollment(dojo["student"], program, dojo["school"])

    submitted = await client.post(
        "/api/v1/promotions/essays",
        json={"enrollment_id": str(enrollment.id), "title": "Respect", "content": "Bowing on and off the mat..."},
        headers=auth(dojo["student"]),
    )
    assert submitted.status_code == 201
    essay = submitted.json()
    assert essay["score"] is None
    assert essay["submitted_by_id"] == str(dojo["student"].id)

    before = await _essay_requirement_status(client, enrollment.id, auth(dojo["instructor"]))
    assert before["is_complete"] is False
    assert before["ready"] is False

    reviewed = await client.patch(
        f"/api/v1/promotions/essays/{essay['id']}/review",
        json={"score": 85, "feedback": "Thoughtful"},
        headers=auth(dojo["instructor"]),
    )
    assert reviewed.status_code == 200
    assert Decimal(reviewed.json()["score"]) == Decimal("85")
    assert reviewed.json()["reviewed_by_id"] == str(dojo["instructor"].id)

    after = await _essay_requirement_status(client, enrollment.id, auth(dojo["instructor"]))
    assert after["is_complete"] is True
    assert after["essay_id"] == essay["id"]
    assert Decimal(after["current_value"]) == Decimal("85")
    assert after["ready"] is True


@pytest.mark.asyncio
async def test_re_review_keeps_the_trail(
    client: AsyncClient, db_session: AsyncSession, factory, dojo, auth
) -> None:
    program, _ = await factory.program(dojo["school"])
    enrollment = await factory.enrollment(dojo["student"], program, dojo["school"])

    submitted = await client.post(
        "/api/v1/promotions/essays",
        json={"enrollment_id": str(enrollment.id), "content": "Perseverance"},
        headers=auth(dojo["student"]),
    )
    essay_id = submitted.json()["id"]

    for score in (60, 90):
        response = await client.patch(
            f"/api/v1/promotions/essays/{essay_id}/review",
            json={"score": score},
            headers=auth(dojo["owner"]),
        )
        assert response.status_code == 200

    body = response.json()
    assert Decimal(body["score"]) == Decimal("90")
    assert sorted(Decimal(r["score"]) for r in body["reviews"]) == [Decimal("60"), Decimal("90")]

    count = (
        await db_session.execute(select(func.count(EssayReview.id)).where(EssayReview.essay_id == UUID(essay_id)))
    ).scalar_one()
    assert count == 2


@pytest.mark.asyncio
async def test_review_score_is_bounded(client: AsyncClient, factory, dojo, auth) -> None:
    program, _ = await factory.program(dojo["school"])
    enrollment = await factory.enrollment(dojo["student"], program, dojo["school"])
    submitted = await client.post(
        "/api/v1/promotions/essays",
        json={"enrollment_id": str(enrollment.id), "content": "Discipline"},
        headers=auth(dojo["student"]),
    )

    response = await client.patch(
        f"/api/v1/promotions/essays/{submitted.json()['id']}/review",
        json={"score": 101},
        headers=auth(dojo["instructor"]),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_students_cannot_review_or_submit_for_others(client: AsyncClient, factory, dojo, auth) -> None:
    program, _ = await factory.program(dojo["school"])
    enrollment = await factory.enrollment(dojo["student"], program, dojo["school"])
    classmate = await factory.student(dojo["school"], first_name="Kim")

    for_someone_else = await client.post(
        "/api/v1/promotions/essays",
        json={"enrollment_id": str(enrollment.id), "content": "Not mine"},
        headers=auth(classmate),
    )
    assert for_someone_else.status_code == 403

    own = await client.post(
        "/api/v1/promotions/essays",
        json={"enrollment_id": str(enrollment.id), "content": "Mine"},
        headers=auth(dojo["student"]),
    )
    self_review = await client.patch(
        f"/api/v1/promotions/essays/{own.json()['id']}/review",
        json={"score": 100},
        headers=auth(dojo["student"]),
    )
    assert self_review.status_code == 403


@pytest.mark.asyncio
async def test_essay_must_reference_a_test_of_the_same_enrollment(client: AsyncClient, factory, dojo, auth) -> None:
    program, (white, _, _) = await factory.program(dojo["school"])
    enrollment = await factory.enrollment(dojo["student"], program, dojo["school"])
    classmate = await factory.student(dojo["school"], first_name="Kim")
    other_enrollment = await factory.enrollment(classmate, program, dojo["school"])

    scheduled = await client.post(
        "/api/v1/promotions/tests",
        json={
            "enrollment_id": str(other_enrollment.id),
            "belt_id": str(white.id),
            "test_date": "2024-06-01T10:00:00Z",
        },
        headers=auth(dojo["instructor"]),
    )
    assert scheduled.status_code == 201

    response = await client.post(
        "/api/v1/promotions/essays",
        json={
            "enrollment_id": str(enrollment.id),
            "content": "Borrowed test",
            "belt_test_id": scheduled.json()["id"],
        },
        headers=auth(dojo["student"]),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_essays_for_enrollment(client: AsyncClient, factory, dojo, auth) -> None:
    program, _ = await factory.program(dojo["school"])
    enrollment = await factory.enrollment(dojo["student"], program, dojo["school"])

    for content in ("First", "Second"):
        await client.post(
            "/api/v1/promotions/essays",
            json={"enrollment_id": str(enrollment.id), "content": content},
            headers=auth(dojo["student"]),
        )

    response = await client.get(f"/api/v1/promotions/essays/{enrollment.id}", headers=auth(dojo["student"]))
    assert response.status_code == 200
    assert {e["content"] for e in response.json()} == {"First", "Second"}
