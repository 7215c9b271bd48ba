"""
Promotion executor.

A promotion is one transaction: lock the enrollment row, re-run the evaluator on
fresh data, then move current_belt_id to the next belt and append a history row.
Concurrent requests for the same enrollment serialize on the row lock, so the
second one re-evaluates against the already promoted state and is refused. The
belt move itself is a compare-and-set on current_belt_id, which also holds on
backends that ignore FOR UPDATE.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.enrollments.schemas import CurrentBeltInfo
from app.api.v1.progress.schemas import PromotionHistoryItem
from app.api.v1.progress.service import load_evaluation
from app.auth.rbac import authorize
from app.auth.schemas import CurrentUser
from app.core.datetime_utils import utc_now
from app.core.enums import StateConflict
from app.core.exceptions import ServiceError
from app.core.logging import get_logger
from app.core.models import Belt, ProgramEnrollment, PromotionHistory

from .schemas import PromotionRequest, PromotionResponse

logger = get_logger(__name__)


async def lock_enrollment(db: AsyncSession, enrollment_id: UUID) -> ProgramEnrollment:
    """SELECT ... FOR UPDATE on the enrollment, refreshing any copy already in the session."""
    result = await db.execute(
        select(ProgramEnrollment)
        .where(ProgramEnrollment.id == enrollment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    enrollment = result.scalar_one_or_none()
    if not enrollment:
        raise ServiceError("Program enrollment not found", status.HTTP_404_NOT_FOUND)
    return enrollment


async def apply_promotion(
    db: AsyncSession,
    enrollment: ProgramEnrollment,
    promoted_by_id: Optional[UUID],
    notes: Optional[str] = None,
    expected_belt_id: Optional[UUID] = None,
) -> PromotionHistory:
    """
    Validate and stage a promotion on a locked enrollment. Does not commit.

    Raises 409 HIGHEST_RANK when there is nothing above the current belt,
    409 ALREADY_PROMOTED when expected_belt_id is at or below the current belt and
    409 NOT_READY when a required requirement of the next belt is incomplete.
    """
    evaluation, _ = await load_evaluation(db, enrollment)
    current_belt = evaluation.current_belt
    next_belt = evaluation.next_belt

    if next_belt is None:
        raise ServiceError(
            "Student has reached the highest rank",
            status.HTTP_409_CONFLICT,
            code=StateConflict.HIGHEST_RANK.value,
        )

    if expected_belt_id is not None:
        expected = await db.get(Belt, expected_belt_id)
        if expected is None or expected.program_id != enrollment.program_id:
            raise ServiceError("Belt does not belong to the enrollment's program", status.HTTP_400_BAD_REQUEST)
        if current_belt is not None and expected.display_order <= current_belt.display_order:
            raise ServiceError(
                "Student already holds this belt",
                status.HTTP_409_CONFLICT,
                code=StateConflict.ALREADY_PROMOTED.value,
            )
        if expected.id != next_belt.id:
            raise ServiceError("Promotions can only target the next belt", status.HTTP_400_BAD_REQUEST)

    if not evaluation.ready_for_promotion:
        missing = [r.requirement.description for r in evaluation.requirements if r.is_required and not r.is_complete]
        message = (
            "Requirements not met: " + ", ".join(missing)
            if missing
            else f"No requirements defined for {next_belt.name}"
        )
        raise ServiceError(
            message,
            status.HTTP_409_CONFLICT,
            code=StateConflict.NOT_READY.value,
        )

    held = (
        ProgramEnrollment.current_belt_id == current_belt.id
        if current_belt is not None
        else ProgramEnrollment.current_belt_id.is_(None)
    )
    moved = await db.execute(
        update(ProgramEnrollment)
        .where(ProgramEnrollment.id == enrollment.id, held)
        .values(current_belt_id=next_belt.id, updated_at=utc_now())
    )
    if moved.rowcount != 1:
        # Another transaction promoted this enrollment after it was read
        raise ServiceError(
            "Student already holds this belt",
            status.HTTP_409_CONFLICT,
            code=StateConflict.ALREADY_PROMOTED.value,
        )

    record = PromotionHistory(
        enrollment_id=enrollment.id,
        from_belt_id=current_belt.id if current_belt is not None else None,
        to_belt_id=next_belt.id,
        promoted_by_id=promoted_by_id,
        promoted_at=utc_now(),
        notes=notes,
    )
    db.add(record)
    logger.info(
        "Promotion staged: enrollment=%s from=%s to=%s by=%s",
        enrollment.id,
        current_belt.name if current_belt is not None else None,
        next_belt.name,
        promoted_by_id,
    )
    return record


async def promote(
    db: AsyncSession,
    current_user: CurrentUser,
    enrollment_id: UUID,
    payload: PromotionRequest,
) -> PromotionResponse:
    enrollment = await lock_enrollment(db, enrollment_id)
    authorize(current_user, "promotions.execute", school_id=enrollment.school_id)

    try:
        record = await apply_promotion(
            db,
            enrollment,
            promoted_by_id=current_user.id,
            notes=payload.notes,
            expected_belt_id=payload.expected_belt_id,
        )
    except ServiceError:
        await db.rollback()
        raise
    await db.commit()

    from_belt = await db.get(Belt, record.from_belt_id) if record.from_belt_id else None
    to_belt = await db.get(Belt, record.to_belt_id)
    logger.info("Promotion committed: enrollment=%s to=%s", enrollment_id, to_belt.name)
    return PromotionResponse(
        id=record.id,
        enrollment_id=enrollment_id,
        from_belt=CurrentBeltInfo.model_validate(from_belt) if from_belt else None,
        to_belt=CurrentBeltInfo.model_validate(to_belt),
        promoted_by_id=record.promoted_by_id,
        promoted_at=record.promoted_at,
        notes=record.notes,
    )


async def list_promotion_history(
    db: AsyncSession,
    current_user: CurrentUser,
    enrollment_id: UUID,
) -> List[PromotionHistoryItem]:
    """Promotion log for an enrollment, newest first."""
    enrollment = await db.get(ProgramEnrollment, enrollment_id)
    if not enrollment:
        raise ServiceError("Program enrollment not found", status.HTTP_404_NOT_FOUND)
    authorize(current_user, "progress.read", school_id=enrollment.school_id, student_id=enrollment.student_id)

    result = await db.execute(
        select(PromotionHistory)
        .where(PromotionHistory.enrollment_id == enrollment_id)
        .options(selectinload(PromotionHistory.from_belt), selectinload(PromotionHistory.to_belt))
        .order_by(PromotionHistory.promoted_at.desc())
    )
    return [PromotionHistoryItem.model_validate(h) for h in result.scalars().all()]
