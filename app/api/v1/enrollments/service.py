"""Program enrollment service: bind roster students to programs and list them."""

from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.programs.service import visible_to_school
from app.auth.rbac import authorize
from app.auth.schemas import CurrentUser
from app.core.enums import RosterStatus, StateConflict
from app.core.exceptions import ServiceError
from app.core.models import Program, ProgramEnrollment, SchoolEnrollment, User

from .schemas import CurrentBeltInfo, ProgramEnrollmentCreate, ProgramEnrollmentResponse


def _enrollment_to_response(pe: ProgramEnrollment) -> ProgramEnrollmentResponse:
    return ProgramEnrollmentResponse(
        id=pe.id,
        student_id=pe.student_id,
        student_name=pe.student.full_name if pe.student else None,
        program_id=pe.program_id,
        program_name=pe.program.name if pe.program else None,
        school_id=pe.school_id,
        current_belt=CurrentBeltInfo.model_validate(pe.current_belt) if pe.current_belt else None,
        enrolled_at=pe.enrolled_at,
    )


def _with_details(stmt):
    return stmt.options(
        selectinload(ProgramEnrollment.student),
        selectinload(ProgramEnrollment.program),
        selectinload(ProgramEnrollment.current_belt),
    )


async def is_on_roster(db: AsyncSession, student_id: UUID, school_id: UUID) -> bool:
    """True if the student has an ACTIVE roster entry at the school."""
    result = await db.execute(
        select(SchoolEnrollment.id).where(
            SchoolEnrollment.student_id == student_id,
            SchoolEnrollment.school_id == school_id,
            SchoolEnrollment.status == RosterStatus.ACTIVE.value,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def get_enrollment_or_404(db: AsyncSession, enrollment_id: UUID) -> ProgramEnrollment:
    result = await db.execute(
        _with_details(select(ProgramEnrollment).where(ProgramEnrollment.id == enrollment_id))
    )
    pe = result.scalar_one_or_none()
    if not pe:
        raise ServiceError("Program enrollment not found", status.HTTP_404_NOT_FOUND)
    return pe


async def create_program_enrollment(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    payload: ProgramEnrollmentCreate,
) -> ProgramEnrollmentResponse:
    """
    Enroll a roster student in a program available to the school.
    The enrollment starts with no rank; the lowest belt is the first promotion target.
    """
    authorize(current_user, "enrollments.create", school_id=school_id)

    student = await db.get(User, payload.student_id)
    if not student:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    if not await is_on_roster(db, payload.student_id, school_id):
        raise ServiceError("Student is not enrolled at this school", status.HTTP_400_BAD_REQUEST)

    program = (
        await db.execute(
            select(Program).where(
                Program.id == payload.program_id,
                Program.is_active.is_(True),
                visible_to_school(school_id),
            )
        )
    ).scalar_one_or_none()
    if not program:
        raise ServiceError("Program not available at this school", status.HTTP_404_NOT_FOUND)

    try:
        pe = ProgramEnrollment(
            student_id=payload.student_id,
            program_id=payload.program_id,
            school_id=school_id,
            current_belt_id=None,
        )
        db.add(pe)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "Student is already enrolled in this program",
            status.HTTP_409_CONFLICT,
            code=StateConflict.DUPLICATE.value,
        )
    return _enrollment_to_response(await get_enrollment_or_404(db, pe.id))


async def list_program_enrollments(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    program_id: Optional[UUID] = None,
    student_id: Optional[UUID] = None,
) -> List[ProgramEnrollmentResponse]:
    """Enrollments at a school. Students only ever see their own."""
    authorize(current_user, "enrollments.read", school_id=school_id)

    stmt = select(ProgramEnrollment).where(ProgramEnrollment.school_id == school_id)
    if program_id is not None:
        stmt = stmt.where(ProgramEnrollment.program_id == program_id)
    if current_user.is_student:
        stmt = stmt.where(ProgramEnrollment.student_id == current_user.id)
    elif student_id is not None:
        stmt = stmt.where(ProgramEnrollment.student_id == student_id)
    stmt = stmt.order_by(ProgramEnrollment.enrolled_at)

    result = await db.execute(_with_details(stmt))
    return [_enrollment_to_response(pe) for pe in result.scalars().all()]
