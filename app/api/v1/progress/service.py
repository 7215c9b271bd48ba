"""Progress service: evaluate an enrollment against its next belt and record requirement progress."""

from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.enrollments.schemas import CurrentBeltInfo
from app.api.v1.enrollments.service import get_enrollment_or_404
from app.auth.rbac import authorize
from app.auth.schemas import CurrentUser
from app.core.datetime_utils import utc_now
from app.core.enums import RequirementType, StateConflict
from app.core.exceptions import ServiceError
from app.core.logging import get_logger
from app.core.models import (
    Belt,
    BeltRequirement,
    BeltTest,
    EssaySubmission,
    ProgramEnrollment,
    PromotionHistory,
    RequirementProgress,
)

from .evaluator import EssayLookup, PromotionEvaluation, evaluate, is_manually_tracked, threshold_met
from .schemas import (
    BeltProgressItem,
    EnrollmentInfo,
    EssaySummary,
    ProgressUpdate,
    PromotionHistoryItem,
    RequirementProgressItem,
    RequirementProgressResponse,
    StudentProgressResponse,
)

logger = get_logger(__name__)


async def load_evaluation(
    db: AsyncSession,
    enrollment: ProgramEnrollment,
) -> Tuple[PromotionEvaluation, List[EssaySubmission]]:
    """
    Load everything the evaluator needs for one enrollment and run it.
    Returns the evaluation and the enrollment's essays (newest first).
    """
    belts = list(
        (
            await db.execute(
                select(Belt)
                .where(Belt.program_id == enrollment.program_id)
                .options(selectinload(Belt.requirements))
                .order_by(Belt.display_order)
            )
        ).scalars().all()
    )
    current_belt: Optional[Belt] = next((b for b in belts if b.id == enrollment.current_belt_id), None)

    progress_rows = (
        await db.execute(select(RequirementProgress).where(RequirementProgress.enrollment_id == enrollment.id))
    ).scalars().all()

    essays = list(
        (
            await db.execute(
                select(EssaySubmission)
                .where(EssaySubmission.enrollment_id == enrollment.id)
                .order_by(EssaySubmission.submitted_at.desc())
            )
        ).scalars().all()
    )
    test_belts = {
        test_id: belt_id
        for test_id, belt_id in (
            await db.execute(select(BeltTest.id, BeltTest.belt_id).where(BeltTest.enrollment_id == enrollment.id))
        ).all()
    }
    last_promoted_at = (
        await db.execute(
            select(func.max(PromotionHistory.promoted_at)).where(PromotionHistory.enrollment_id == enrollment.id)
        )
    ).scalar_one_or_none()

    evaluation = evaluate(
        belts,
        current_belt,
        {b.id: list(b.requirements) for b in belts},
        progress_rows,
        EssayLookup(essays, test_belts, since=last_promoted_at or enrollment.enrolled_at),
    )
    return evaluation, essays


def _belt_info(belt: Optional[Belt]) -> Optional[CurrentBeltInfo]:
    return CurrentBeltInfo.model_validate(belt) if belt is not None else None


async def get_student_progress(
    db: AsyncSession,
    current_user: CurrentUser,
    enrollment_id: UUID,
) -> StudentProgressResponse:
    """Full evaluation for one enrollment: belts, next-belt requirements, readiness, history and essays."""
    enrollment = await get_enrollment_or_404(db, enrollment_id)
    authorize(current_user, "progress.read", school_id=enrollment.school_id, student_id=enrollment.student_id)

    evaluation, essays = await load_evaluation(db, enrollment)

    history = (
        await db.execute(
            select(PromotionHistory)
            .where(PromotionHistory.enrollment_id == enrollment_id)
            .options(selectinload(PromotionHistory.from_belt), selectinload(PromotionHistory.to_belt))
            .order_by(PromotionHistory.promoted_at.desc())
        )
    ).scalars().all()

    return StudentProgressResponse(
        enrollment=EnrollmentInfo(
            id=enrollment.id,
            student_id=enrollment.student_id,
            student_name=enrollment.student.full_name if enrollment.student else None,
            program_id=enrollment.program_id,
            program_name=enrollment.program.name if enrollment.program else None,
            school_id=enrollment.school_id,
            enrolled_at=enrollment.enrolled_at,
        ),
        current_belt=_belt_info(evaluation.current_belt),
        next_belt=_belt_info(evaluation.next_belt),
        all_belts=[
            BeltProgressItem(
                id=s.belt.id,
                name=s.belt.name,
                color=s.belt.color,
                display_order=s.belt.display_order,
                is_achieved=s.is_achieved,
                is_current=s.is_current,
            )
            for s in evaluation.all_belts
        ],
        requirements=[
            RequirementProgressItem(
                requirement_id=r.requirement.id,
                type=RequirementType(r.requirement.type),
                description=r.requirement.description,
                value=r.requirement.value,
                is_required=r.is_required,
                current_value=r.completion.current_value,
                is_complete=r.is_complete,
                completed_at=r.completion.completed_at,
                essay_id=r.completion.essay_id,
            )
            for r in evaluation.requirements
        ],
        ready_for_promotion=evaluation.ready_for_promotion,
        highest_rank_achieved=evaluation.highest_rank_achieved,
        promotion_history=[PromotionHistoryItem.model_validate(h) for h in history],
        essays=[EssaySummary.model_validate(e) for e in essays],
    )


async def update_progress(
    db: AsyncSession,
    current_user: CurrentUser,
    enrollment_id: UUID,
    payload: ProgressUpdate,
) -> RequirementProgressResponse:
    """
    Upsert progress for one requirement of the enrollment's next belt.

    is_complete defaults to ``current_value >= requirement.value`` (never true for
    requirements without a threshold); an explicit value is stored as given.
    """
    enrollment = await get_enrollment_or_404(db, enrollment_id)
    authorize(current_user, "progress.update", school_id=enrollment.school_id)

    requirement = await db.get(BeltRequirement, payload.requirement_id)
    if not requirement:
        raise ServiceError("Requirement not found", status.HTTP_404_NOT_FOUND)

    evaluation, _ = await load_evaluation(db, enrollment)
    if evaluation.next_belt is None or requirement.belt_id != evaluation.next_belt.id:
        raise ServiceError(
            "Requirement does not belong to the enrollment's next belt",
            status.HTTP_400_BAD_REQUEST,
        )
    if not is_manually_tracked(requirement.type):
        raise ServiceError(
            "Essay requirements are completed by reviewing an essay",
            status.HTTP_400_BAD_REQUEST,
        )

    is_complete = payload.is_complete
    if is_complete is None:
        is_complete = threshold_met(payload.current_value, requirement.value)

    progress = (
        await db.execute(
            select(RequirementProgress).where(
                RequirementProgress.enrollment_id == enrollment_id,
                RequirementProgress.requirement_id == requirement.id,
            )
        )
    ).scalar_one_or_none()
    if progress is None:
        progress = RequirementProgress(enrollment_id=enrollment_id, requirement_id=requirement.id)
        db.add(progress)

    if is_complete and not progress.is_complete:
        progress.completed_at = utc_now()
    elif not is_complete:
        progress.completed_at = None
    progress.current_value = payload.current_value
    progress.is_complete = is_complete
    progress.updated_by = current_user.id
    progress.updated_at = utc_now()

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "Progress for this requirement was recorded concurrently; retry",
            status.HTTP_409_CONFLICT,
            code=StateConflict.DUPLICATE.value,
        )
    await db.refresh(progress)
    logger.info(
        "Progress updated: enrollment=%s requirement=%s value=%s complete=%s",
        enrollment_id,
        requirement.id,
        payload.current_value,
        is_complete,
    )
    return RequirementProgressResponse.model_validate(progress)
