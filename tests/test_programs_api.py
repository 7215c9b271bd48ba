from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import RequirementType, Role
from app.core.models import BeltRequirement


@pytest.mark.asyncio
async def test_owner_builds_program_hierarchy(client: AsyncClient, dojo, auth) -> None:
    owner = dojo["owner"]

    response = await client.post(
        "/api/v1/promotions/programs",
        json={"name": "Karate", "description": "Shotokan"},
        headers=auth(owner),
    )
    assert response.status_code == 201
    program = response.json()
    assert program["school_id"] == str(dojo["school"].id)
    assert program["is_global"] is False
    assert program["belts"] == []

    for name, order in (("Yellow", 2), ("White", 1)):
        response = await client.post(
            f"/api/v1/promotions/programs/{program['id']}/belts",
            json={"name": name, "display_order": order, "color": name.lower()},
            headers=auth(owner),
        )
        assert response.status_code == 201

    listing = await client.get("/api/v1/promotions/programs", headers=auth(dojo["student"]))
    assert listing.status_code == 200
    [karate] = listing.json()
    assert [b["name"] for b in karate["belts"]] == ["White", "Yellow"]

    white_id = karate["belts"][0]["id"]
    response = await client.post(
        f"/api/v1/promotions/belts/{white_id}/requirements",
        json={"type": "MIN_ATTENDANCE", "description": "Attend 10 classes", "value": 10},
        headers=auth(owner),
    )
    assert response.status_code == 201
    assert response.json()["is_required"] is True

    detail = await client.get(f"/api/v1/promotions/programs/{program['id']}", headers=auth(owner))
    assert detail.status_code == 200
    body = detail.json()
    assert body["enrollment_count"] == 0
    assert body["belts"][0]["requirements"][0]["type"] == "MIN_ATTENDANCE"


@pytest.mark.asyncio
async def test_duplicate_display_order_is_conflict(client: AsyncClient, factory, dojo, auth) -> None:
    program, _ = await factory.program(dojo["school"])

    response = await client.post(
        f"/api/v1/promotions/programs/{program.id}/belts",
        json={"name": "Also white", "display_order": 1},
        headers=auth(dojo["owner"]),
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "DUPLICATE"


@pytest.mark.asyncio
async def test_display_order_must_be_positive(client: AsyncClient, factory, dojo, auth) -> None:
    program, _ = await factory.program(dojo["school"])

    response = await client.post(
        f"/api/v1/promotions/programs/{program.id}/belts",
        json={"name": "Zero", "display_order": 0},
        headers=auth(dojo["owner"]),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_global_programs_need_super_admin(client: AsyncClient, dojo, auth) -> None:
    payload = {"name": "Brazilian Jiu-Jitsu", "is_global": True}

    denied = await client.post("/api/v1/promotions/programs", json=payload, headers=auth(dojo["owner"]))
    assert denied.status_code == 403

    created = await client.post("/api/v1/promotions/programs", json=payload, headers=auth(dojo["super_admin"]))
    assert created.status_code == 201
    assert created.json()["school_id"] is None

    # Global programs are visible to every school, listed first
    listing = await client.get("/api/v1/promotions/programs", headers=auth(dojo["instructor"]))
    assert [p["name"] for p in listing.json()] == ["Brazilian Jiu-Jitsu"]


@pytest.mark.asyncio
async def test_other_schools_programs_are_hidden(client: AsyncClient, factory, dojo, auth) -> None:
    other_school = await factory.school("Tiger Dojo")
    other_program, _ = await factory.program(other_school, name="Taekwondo")

    listing = await client.get("/api/v1/promotions/programs", headers=auth(dojo["owner"]))
    assert listing.json() == []

    response = await client.get(f"/api/v1/promotions/programs/{other_program.id}", headers=auth(dojo["owner"]))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_instructor_cannot_manage_catalog(client: AsyncClient, dojo, auth) -> None:
    response = await client.post(
        "/api/v1/promotions/programs",
        json={"name": "Judo"},
        headers=auth(dojo["instructor"]),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_deleting_belt_removes_requirements(
    client: AsyncClient, db_session: AsyncSession, factory, dojo, auth
) -> None:
    program, (white, yellow, green) = await factory.program(dojo["school"])
    await factory.requirement(green, RequirementType.TECHNIQUE, value=None)

    response = await client.delete(f"/api/v1/promotions/belts/{green.id}", headers=auth(dojo["owner"]))
    assert response.status_code == 200

    remaining = (
        await db_session.execute(select(BeltRequirement).where(BeltRequirement.belt_id == green.id))
    ).scalars().all()
    assert remaining == []


@pytest.mark.asyncio
async def test_belt_held_by_student_cannot_be_deleted(client: AsyncClient, factory, dojo, auth) -> None:
    program, (white, _, _) = await factory.program(dojo["school"])
    await factory.enrollment(dojo["student"], program, dojo["school"], current_belt=white)

    response = await client.delete(f"/api/v1/promotions/belts/{white.id}", headers=auth(dojo["owner"]))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_requirement_value_cannot_be_negative(client: AsyncClient, factory, dojo, auth) -> None:
    _, (white, _, _) = await factory.program(dojo["school"])

    response = await client.post(
        f"/api/v1/promotions/belts/{white.id}/requirements",
        json={"type": "MIN_AGE", "description": "At least 6", "value": -1},
        headers=auth(dojo["owner"]),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_enrollment_starts_without_rank(client: AsyncClient, factory, dojo, auth) -> None:
    program, _ = await factory.program(dojo["school"])
    school_id = dojo["school"].id

    response = await client.post(
        f"/api/v1/promotions/enrollments/{school_id}",
        json={"student_id": str(dojo["student"].id), "program_id": str(program.id)},
        headers=auth(dojo["instructor"]),
    )
    assert response.status_code == 201
    enrollment = response.json()
    assert enrollment["current_belt"] is None
    UUID(enrollment["id"])

    duplicate = await client.post(
        f"/api/v1/promotions/enrollments/{school_id}",
        json={"student_id": str(dojo["student"].id), "program_id": str(program.id)},
        headers=auth(dojo["instructor"]),
    )
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_enrollment_requires_roster_entry(client: AsyncClient, factory, dojo, auth) -> None:
    program, _ = await factory.program(dojo["school"])
    walk_in = await factory.student(dojo["school"], on_roster=False)

    response = await client.post(
        f"/api/v1/promotions/enrollments/{dojo['school'].id}",
        json={"student_id": str(walk_in.id), "program_id": str(program.id)},
        headers=auth(dojo["owner"]),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_students_list_only_their_enrollments(client: AsyncClient, factory, dojo, auth) -> None:
    program, _ = await factory.program(dojo["school"])
    classmate = await factory.student(dojo["school"], first_name="Kim")
    await factory.enrollment(dojo["student"], program, dojo["school"])
    await factory.enrollment(classmate, program, dojo["school"])

    as_student = await client.get(
        f"/api/v1/promotions/enrollments/{dojo['school'].id}", headers=auth(dojo["student"])
    )
    assert [e["student_id"] for e in as_student.json()] == [str(dojo["student"].id)]

    as_staff = await client.get(
        f"/api/v1/promotions/enrollments/{dojo['school'].id}", headers=auth(dojo["instructor"])
    )
    assert len(as_staff.json()) == 2


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(client: AsyncClient, factory) -> None:
    school = await factory.school()
    await factory.user(school, Role.OWNER)
    response = await client.get("/api/v1/promotions/programs")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_updates_reject_null_for_required_fields(client: AsyncClient, factory, dojo, auth) -> None:
    program, (white, _, _) = await factory.program(dojo["school"])
    requirement = await factory.requirement(white)
    owner = auth(dojo["owner"])

    rejected = [
        (f"/api/v1/promotions/programs/{program.id}", {"name": None}),
        (f"/api/v1/promotions/programs/{program.id}", {"has_rank_structure": None}),
        (f"/api/v1/promotions/programs/{program.id}", {"is_active": None}),
        (f"/api/v1/promotions/belts/{white.id}", {"name": None}),
        (f"/api/v1/promotions/belts/{white.id}", {"display_order": None}),
        (f"/api/v1/promotions/requirements/{requirement.id}", {"type": None}),
        (f"/api/v1/promotions/requirements/{requirement.id}", {"description": None}),
        (f"/api/v1/promotions/requirements/{requirement.id}", {"is_required": None}),
    ]
    for url, body in rejected:
        response = await client.put(url, json=body, headers=owner)
        assert response.status_code == 422, body

    # Nullable columns may still be cleared
    belt = await client.put(f"/api/v1/promotions/belts/{white.id}", json={"color": None}, headers=owner)
    assert belt.status_code == 200
    assert belt.json()["color"] is None
    assert belt.json()["display_order"] == 1

    checkbox = await client.put(f"/api/v1/promotions/requirements/{requirement.id}", json={"value": None}, headers=owner)
    assert checkbox.status_code == 200
    assert checkbox.json()["value"] is None
