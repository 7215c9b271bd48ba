"""Belt test service. Marking a test PASSED promotes through the promotion executor."""

from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.enrollments.service import get_enrollment_or_404
from app.api.v1.promotions.service import apply_promotion, lock_enrollment
from app.auth.rbac import authorize
from app.auth.schemas import CurrentUser
from app.core.datetime_utils import utc_now
from app.core.enums import BeltTestStatus, StateConflict
from app.core.exceptions import ServiceError
from app.core.logging import get_logger
from app.core.models import Belt, BeltTest, ProgramEnrollment

from .schemas import BeltTestCreate, BeltTestResponse, BeltTestUpdate

logger = get_logger(__name__)


def _test_to_response(t: BeltTest) -> BeltTestResponse:
    enrollment = t.enrollment
    return BeltTestResponse(
        id=t.id,
        enrollment_id=t.enrollment_id,
        student_id=enrollment.student_id,
        student_name=enrollment.student.full_name if enrollment.student else None,
        belt_id=t.belt_id,
        belt_name=t.belt.name if t.belt else None,
        test_date=t.test_date,
        status=BeltTestStatus(t.status),
        score=t.score,
        notes=t.notes,
        tested_by_id=t.tested_by_id,
        created_at=t.created_at,
        updated_at=t.updated_at,
    )


async def _get_test_or_404(db: AsyncSession, test_id: UUID) -> BeltTest:
    result = await db.execute(
        select(BeltTest)
        .where(BeltTest.id == test_id)
        .options(
            selectinload(BeltTest.enrollment).selectinload(ProgramEnrollment.student),
            selectinload(BeltTest.belt),
        )
    )
    test = result.scalar_one_or_none()
    if not test:
        raise ServiceError("Belt test not found", status.HTTP_404_NOT_FOUND)
    return test


async def schedule_test(
    db: AsyncSession,
    current_user: CurrentUser,
    payload: BeltTestCreate,
) -> BeltTestResponse:
    enrollment = await get_enrollment_or_404(db, payload.enrollment_id)
    authorize(current_user, "belt_tests.manage", school_id=enrollment.school_id)

    belt = await db.get(Belt, payload.belt_id)
    if not belt or belt.program_id != enrollment.program_id:
        raise ServiceError("Belt does not belong to the enrollment's program", status.HTTP_400_BAD_REQUEST)

    test = BeltTest(
        enrollment_id=enrollment.id,
        belt_id=belt.id,
        test_date=payload.test_date,
        status=BeltTestStatus.SCHEDULED.value,
        notes=payload.notes,
    )
    db.add(test)
    await db.commit()
    return _test_to_response(await _get_test_or_404(db, test.id))


async def list_tests(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    status_filter: Optional[BeltTestStatus] = None,
) -> List[BeltTestResponse]:
    """Tests at a school by date. Students only see their own."""
    authorize(current_user, "belt_tests.read", school_id=school_id)

    stmt = (
        select(BeltTest)
        .join(ProgramEnrollment, ProgramEnrollment.id == BeltTest.enrollment_id)
        .where(ProgramEnrollment.school_id == school_id)
        .options(
            selectinload(BeltTest.enrollment).selectinload(ProgramEnrollment.student),
            selectinload(BeltTest.belt),
        )
        .order_by(BeltTest.test_date)
    )
    if status_filter is not None:
        stmt = stmt.where(BeltTest.status == status_filter.value)
    if current_user.is_student:
        stmt = stmt.where(ProgramEnrollment.student_id == current_user.id)
    result = await db.execute(stmt)
    return [_test_to_response(t) for t in result.scalars().all()]


async def update_test(
    db: AsyncSession,
    current_user: CurrentUser,
    test_id: UUID,
    payload: BeltTestUpdate,
) -> BeltTestResponse:
    """
    Record a test outcome. Moving to PASSED promotes the student to the tested belt in
    the same transaction; if the promotion is refused nothing is written.
    """
    test = await _get_test_or_404(db, test_id)
    authorize(current_user, "belt_tests.manage", school_id=test.enrollment.school_id)

    new_status = payload.status
    if test.status == BeltTestStatus.PASSED.value and new_status not in (None, BeltTestStatus.PASSED):
        raise ServiceError(
            "A passed test has already promoted the student and cannot be reopened",
            status.HTTP_409_CONFLICT,
            code=StateConflict.ALREADY_PROMOTED.value,
        )

    try:
        if new_status == BeltTestStatus.PASSED and test.status != BeltTestStatus.PASSED.value:
            enrollment = await lock_enrollment(db, test.enrollment_id)
            await apply_promotion(
                db,
                enrollment,
                promoted_by_id=current_user.id,
                notes=payload.notes or f"Passed belt test {test.id}",
                expected_belt_id=test.belt_id,
            )
    except ServiceError:
        await db.rollback()
        raise

    if new_status is not None:
        test.status = new_status.value
        if new_status in (BeltTestStatus.PASSED, BeltTestStatus.FAILED):
            test.tested_by_id = current_user.id
    if payload.score is not None:
        test.score = payload.score
    if payload.notes is not None:
        test.notes = payload.notes
    test.updated_at = utc_now()
    await db.commit()
    logger.info("Belt test updated: test=%s status=%s", test.id, test.status)
    return _test_to_response(await _get_test_or_404(db, test.id))
