"""Program catalog service: programs (global or school-scoped), belt hierarchy, belt requirements."""

from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.auth.rbac import authorize
from app.auth.schemas import CurrentUser
from app.core.enums import StateConflict
from app.core.exceptions import ServiceError
from app.core.models import (
    Belt,
    BeltRequirement,
    BeltTest,
    Program,
    ProgramEnrollment,
    PromotionHistory,
    RequirementProgress,
)

from .schemas import (
    BeltCreate,
    BeltResponse,
    BeltSummary,
    BeltUpdate,
    BeltWithRequirements,
    ProgramCreate,
    ProgramDetailResponse,
    ProgramResponse,
    ProgramUpdate,
    RequirementCreate,
    RequirementResponse,
    RequirementUpdate,
)


def visible_to_school(school_id: Optional[UUID]):
    """Programs a school can use: every global program plus its own."""
    if school_id is None:
        return Program.is_global.is_(True)
    return or_(Program.is_global.is_(True), Program.school_id == school_id)


def _program_to_response(p: Program) -> ProgramResponse:
    return ProgramResponse(
        id=p.id,
        name=p.name,
        description=p.description,
        school_id=p.school_id,
        is_global=p.is_global,
        has_rank_structure=p.has_rank_structure,
        is_active=p.is_active,
        belts=[BeltSummary.model_validate(b) for b in p.belts],
        created_at=p.created_at,
        updated_at=p.updated_at,
    )


def _authorize_manage(current_user: CurrentUser, program: Program) -> None:
    if program.is_global:
        authorize(current_user, "programs.manage_global")
    else:
        authorize(current_user, "programs.manage", school_id=program.school_id)


async def _get_program_or_404(db: AsyncSession, program_id: UUID) -> Program:
    result = await db.execute(
        select(Program).where(Program.id == program_id).options(selectinload(Program.belts))
    )
    program = result.scalar_one_or_none()
    if not program:
        raise ServiceError("Program not found", status.HTTP_404_NOT_FOUND)
    return program


async def _get_belt_or_404(db: AsyncSession, belt_id: UUID) -> Belt:
    result = await db.execute(
        select(Belt).where(Belt.id == belt_id).options(selectinload(Belt.program))
    )
    belt = result.scalar_one_or_none()
    if not belt:
        raise ServiceError("Belt not found", status.HTTP_404_NOT_FOUND)
    return belt


async def _get_requirement_or_404(db: AsyncSession, requirement_id: UUID) -> BeltRequirement:
    result = await db.execute(
        select(BeltRequirement)
        .where(BeltRequirement.id == requirement_id)
        .options(selectinload(BeltRequirement.belt).selectinload(Belt.program))
    )
    requirement = result.scalar_one_or_none()
    if not requirement:
        raise ServiceError("Requirement not found", status.HTTP_404_NOT_FOUND)
    return requirement


# --- Programs ---
async def list_programs(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: Optional[UUID] = None,
) -> List[ProgramResponse]:
    """Active programs available to a school (global first, then by name). Non super admins are pinned to their school."""
    authorize(current_user, "programs.read")
    if not current_user.is_super_admin:
        school_id = current_user.school_id

    stmt = select(Program).where(Program.is_active.is_(True)).options(selectinload(Program.belts))
    if school_id is not None or not current_user.is_super_admin:
        stmt = stmt.where(visible_to_school(school_id))
    stmt = stmt.order_by(Program.is_global.desc(), Program.name)
    result = await db.execute(stmt)
    return [_program_to_response(p) for p in result.scalars().all()]


async def get_program(
    db: AsyncSession,
    current_user: CurrentUser,
    program_id: UUID,
) -> ProgramDetailResponse:
    """Program with its full belt hierarchy and requirements."""
    result = await db.execute(
        select(Program)
        .where(Program.id == program_id)
        .options(selectinload(Program.belts).selectinload(Belt.requirements))
    )
    program = result.scalar_one_or_none()
    if not program:
        raise ServiceError("Program not found", status.HTTP_404_NOT_FOUND)
    authorize(current_user, "programs.read", school_id=None if program.is_global else program.school_id)

    enrollment_count = (
        await db.execute(
            select(func.count(ProgramEnrollment.id)).where(ProgramEnrollment.program_id == program_id)
        )
    ).scalar_one()

    belts = [
        BeltWithRequirements(
            **BeltResponse.model_validate(b).model_dump(),
            requirements=[RequirementResponse.model_validate(r) for r in b.requirements],
        )
        for b in program.belts
    ]
    return ProgramDetailResponse(
        id=program.id,
        name=program.name,
        description=program.description,
        school_id=program.school_id,
        is_global=program.is_global,
        has_rank_structure=program.has_rank_structure,
        is_active=program.is_active,
        belts=belts,
        enrollment_count=enrollment_count,
    )


async def create_program(
    db: AsyncSession,
    current_user: CurrentUser,
    payload: ProgramCreate,
) -> ProgramResponse:
    if payload.is_global:
        authorize(current_user, "programs.manage_global")
        school_id = None
    else:
        school_id = payload.school_id or current_user.school_id
        if school_id is None:
            raise ServiceError("school_id is required for a school program", status.HTTP_400_BAD_REQUEST)
        authorize(current_user, "programs.manage", school_id=school_id)

    program = Program(
        name=payload.name.strip(),
        description=payload.description,
        school_id=school_id,
        is_global=payload.is_global,
        has_rank_structure=payload.has_rank_structure,
        is_active=True,
        belts=[],
    )
    db.add(program)
    await db.commit()
    return _program_to_response(program)


async def update_program(
    db: AsyncSession,
    current_user: CurrentUser,
    program_id: UUID,
    payload: ProgramUpdate,
) -> ProgramResponse:
    program = await _get_program_or_404(db, program_id)
    _authorize_manage(current_user, program)

    data = payload.model_dump(exclude_unset=True)
    if "name" in data and data["name"] is not None:
        data["name"] = data["name"].strip()
    for field, value in data.items():
        setattr(program, field, value)
    await db.commit()
    db.expire(program)
    return _program_to_response(await _get_program_or_404(db, program_id))


# --- Belts ---
async def create_belt(
    db: AsyncSession,
    current_user: CurrentUser,
    program_id: UUID,
    payload: BeltCreate,
) -> BeltResponse:
    program = await _get_program_or_404(db, program_id)
    _authorize_manage(current_user, program)
    if not program.has_rank_structure:
        raise ServiceError("Program has no rank structure", status.HTTP_400_BAD_REQUEST)

    try:
        belt = Belt(
            program_id=program_id,
            name=payload.name.strip(),
            display_order=payload.display_order,
            color=payload.color,
            description=payload.description,
        )
        db.add(belt)
        await db.commit()
        await db.refresh(belt)
        return BeltResponse.model_validate(belt)
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "A belt with that order already exists in this program",
            status.HTTP_409_CONFLICT,
            code=StateConflict.DUPLICATE.value,
        )


async def update_belt(
    db: AsyncSession,
    current_user: CurrentUser,
    belt_id: UUID,
    payload: BeltUpdate,
) -> BeltResponse:
    belt = await _get_belt_or_404(db, belt_id)
    _authorize_manage(current_user, belt.program)

    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(belt, field, value)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "A belt with that order already exists in this program",
            status.HTTP_409_CONFLICT,
            code=StateConflict.DUPLICATE.value,
        )
    await db.refresh(belt)
    return BeltResponse.model_validate(belt)


async def delete_belt(
    db: AsyncSession,
    current_user: CurrentUser,
    belt_id: UUID,
) -> None:
    """Delete a belt and its requirements. Refused while any enrollment, promotion record or test points at it."""
    belt = await _get_belt_or_404(db, belt_id)
    _authorize_manage(current_user, belt.program)

    in_use = (
        await db.execute(
            select(ProgramEnrollment.id).where(ProgramEnrollment.current_belt_id == belt_id).limit(1)
        )
    ).scalar_one_or_none()
    if in_use is None:
        in_use = (
            await db.execute(
                select(PromotionHistory.id)
                .where(or_(PromotionHistory.from_belt_id == belt_id, PromotionHistory.to_belt_id == belt_id))
                .limit(1)
            )
        ).scalar_one_or_none()
    if in_use is None:
        in_use = (
            await db.execute(select(BeltTest.id).where(BeltTest.belt_id == belt_id).limit(1))
        ).scalar_one_or_none()
    if in_use is not None:
        raise ServiceError(
            "Belt is held by students or referenced by promotion history and cannot be deleted",
            status.HTTP_409_CONFLICT,
        )

    requirement_ids = select(BeltRequirement.id).where(BeltRequirement.belt_id == belt_id)
    await db.execute(delete(RequirementProgress).where(RequirementProgress.requirement_id.in_(requirement_ids)))
    await db.execute(delete(BeltRequirement).where(BeltRequirement.belt_id == belt_id))
    await db.execute(delete(Belt).where(Belt.id == belt_id))
    await db.commit()


# --- Requirements ---
async def create_requirement(
    db: AsyncSession,
    current_user: CurrentUser,
    belt_id: UUID,
    payload: RequirementCreate,
) -> RequirementResponse:
    belt = await _get_belt_or_404(db, belt_id)
    _authorize_manage(current_user, belt.program)

    requirement = BeltRequirement(
        belt_id=belt_id,
        type=payload.type.value,
        description=payload.description.strip(),
        value=payload.value,
        is_required=payload.is_required,
    )
    db.add(requirement)
    await db.commit()
    await db.refresh(requirement)
    return RequirementResponse.model_validate(requirement)


async def update_requirement(
    db: AsyncSession,
    current_user: CurrentUser,
    requirement_id: UUID,
    payload: RequirementUpdate,
) -> RequirementResponse:
    requirement = await _get_requirement_or_404(db, requirement_id)
    _authorize_manage(current_user, requirement.belt.program)

    data = payload.model_dump(exclude_unset=True)
    if data.get("type") is not None:
        data["type"] = data["type"].value
    for field, value in data.items():
        setattr(requirement, field, value)
    await db.commit()
    await db.refresh(requirement)
    return RequirementResponse.model_validate(requirement)


async def delete_requirement(
    db: AsyncSession,
    current_user: CurrentUser,
    requirement_id: UUID,
) -> None:
    requirement = await _get_requirement_or_404(db, requirement_id)
    _authorize_manage(current_user, requirement.belt.program)

    await db.execute(delete(RequirementProgress).where(RequirementProgress.requirement_id == requirement_id))
    await db.execute(delete(BeltRequirement).where(BeltRequirement.id == requirement_id))
    await db.commit()
