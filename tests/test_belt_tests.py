import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import RequirementType
from app.core.models import ProgramEnrollment, PromotionHistory


async def _schedule(client: AsyncClient, enrollment, belt, headers) -> dict:
    response = await client.post(
        "/api/v1/promotions/tests",
        json={
            "enrollment_id": str(enrollment.id),
            "belt_id": str(belt.id),
            "test_date": "2024-06-01T10:00:00Z",
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_passing_a_test_promotes_the_student(
    client: AsyncClient, db_session: AsyncSession, factory, dojo, auth
) -> None:
    program, (white, _, _) = await factory.program(dojo["school"])
    kata = await factory.requirement(white, RequirementType.TECHNIQUE, value=None, description="Heian Shodan")
    enrollment = await factory.enrollment(dojo["student"], program, dojo["school"])
    staff = auth(dojo["instructor"])
    progress = await client.patch(
        f"/api/v1/promotions/progress/{enrollment.id}",
        json={"requirement_id": str(kata.id), "current_value": 1, "is_complete": True},
        headers=staff,
    )
    assert progress.status_code == 200

    test = await _schedule(client, enrollment, white, staff)
    assert test["status"] == "SCHEDULED"
    assert test["belt_name"] == "White"

    response = await client.patch(
        f"/api/v1/promotions/tests/{test['id']}",
        json={"status": "PASSED", "score": 92},
        headers=staff,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "PASSED"
    assert response.json()["tested_by_id"] == str(dojo["instructor"].id)

    refreshed = await db_session.get(ProgramEnrollment, enrollment.id, populate_existing=True)
    assert refreshed.current_belt_id == white.id

    # Reopening would leave the promotion without its test
    reopen = await client.patch(
        f"/api/v1/promotions/tests/{test['id']}", json={"status": "FAILED"}, headers=staff
    )
    assert reopen.status_code == 409
    assert reopen.json()["detail"]["code"] == "ALREADY_PROMOTED"


@pytest.mark.asyncio
async def test_pass_refused_when_not_ready(
    client: AsyncClient, db_session: AsyncSession, factory, dojo, auth
) -> None:
    program, (white, _, _) = await factory.program(dojo["school"])
    await factory.requirement(white, RequirementType.MIN_ATTENDANCE)
    enrollment = await factory.enrollment(dojo["student"], program, dojo["school"])
    staff = auth(dojo["instructor"])
    test = await _schedule(client, enrollment, white, staff)

    response = await client.patch(
        f"/api/v1/promotions/tests/{test['id']}", json={"status": "PASSED"}, headers=staff
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "NOT_READY"

    listing = await client.get(f"/api/v1/promotions/tests/{dojo['school'].id}", headers=staff)
    assert listing.json()[0]["status"] == "SCHEDULED"

    history = (
        await db_session.execute(
            select(func.count(PromotionHistory.id)).where(PromotionHistory.enrollment_id == enrollment.id)
        )
    ).scalar_one()
    assert history == 0


@pytest.mark.asyncio
async def test_pass_for_a_belt_beyond_the_next_is_rejected(client: AsyncClient, factory, dojo, auth) -> None:
    program, (_, yellow, _) = await factory.program(dojo["school"])
    enrollment = await factory.enrollment(dojo["student"], program, dojo["school"])
    staff = auth(dojo["instructor"])
    test = await _schedule(client, enrollment, yellow, staff)

    response = await client.patch(
        f"/api/v1/promotions/tests/{test['id']}", json={"status": "PASSED"}, headers=staff
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_failed_test_records_outcome_only(
    client: AsyncClient, db_session: AsyncSession, factory, dojo, auth
) -> None:
    program, (white, _, _) = await factory.program(dojo["school"])
    enrollment = await factory.enrollment(dojo["student"], program, dojo["school"])
    staff = auth(dojo["instructor"])
    test = await _schedule(client, enrollment, white, staff)

    response = await client.patch(
        f"/api/v1/promotions/tests/{test['id']}",
        json={"status": "FAILED", "notes": "Kata needs work"},
        headers=staff,
    )
    assert response.status_code == 200
    assert response.json()["notes"] == "Kata needs work"

    refreshed = await db_session.get(ProgramEnrollment, enrollment.id, populate_existing=True)
    assert refreshed.current_belt_id is None


@pytest.mark.asyncio
async def test_belt_must_belong_to_enrollment_program(client: AsyncClient, factory, dojo, auth) -> None:
    program, _ = await factory.program(dojo["school"])
    _, (judo_white, _, _) = await factory.program(dojo["school"], name="Judo")
    enrollment = await factory.enrollment(dojo["student"], program, dojo["school"])

    response = await client.post(
        "/api/v1/promotions/tests",
        json={
            "enrollment_id": str(enrollment.id),
            "belt_id": str(judo_white.id),
            "test_date": "2024-06-01T10:00:00Z",
        },
        headers=auth(dojo["instructor"]),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_students_see_only_their_tests(client: AsyncClient, factory, dojo, auth) -> None:
    program, (white, _, _) = await factory.program(dojo["school"])
    classmate = await factory.student(dojo["school"], first_name="Kim")
    mine = await factory.enrollment(dojo["student"], program, dojo["school"])
    theirs = await factory.enrollment(classmate, program, dojo["school"])
    staff = auth(dojo["instructor"])
    await _schedule(client, mine, white, staff)
    await _schedule(client, theirs, white, staff)

    as_student = await client.get(f"/api/v1/promotions/tests/{dojo['school'].id}", headers=auth(dojo["student"]))
    assert [t["student_id"] for t in as_student.json()] == [str(dojo["student"].id)]

    scheduled_only = await client.get(
        f"/api/v1/promotions/tests/{dojo['school'].id}", params={"status": "PASSED"}, headers=staff
    )
    assert scheduled_only.json() == []

    denied = await client.patch(
        f"/api/v1/promotions/tests/{as_student.json()[0]['id']}",
        json={"status": "PASSED"},
        headers=auth(dojo["student"]),
    )
    assert denied.status_code == 403
