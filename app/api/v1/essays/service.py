"""Essay service: student submissions and staff reviews for ESSAY requirements."""

from typing import List
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.enrollments.service import get_enrollment_or_404
from app.auth.rbac import authorize
from app.auth.schemas import CurrentUser
from app.core.datetime_utils import utc_now
from app.core.exceptions import ServiceError
from app.core.logging import get_logger
from app.core.models import BeltTest, EssayReview, EssaySubmission

from .schemas import EssayCreate, EssayResponse, EssayReviewRequest

logger = get_logger(__name__)


async def submit_essay(
    db: AsyncSession,
    current_user: CurrentUser,
    payload: EssayCreate,
) -> EssayResponse:
    """Students submit for their own enrollment; staff may submit on a student's behalf."""
    enrollment = await get_enrollment_or_404(db, payload.enrollment_id)
    authorize(current_user, "essays.submit", school_id=enrollment.school_id, student_id=enrollment.student_id)

    if payload.belt_test_id is not None:
        test = await db.get(BeltTest, payload.belt_test_id)
        if not test or test.enrollment_id != enrollment.id:
            raise ServiceError("Belt test does not belong to this enrollment", status.HTTP_400_BAD_REQUEST)

    essay = EssaySubmission(
        enrollment_id=enrollment.id,
        belt_test_id=payload.belt_test_id,
        title=payload.title.strip() if payload.title else None,
        content=payload.content,
        submitted_at=utc_now(),
        submitted_by_id=current_user.id,
        reviews=[],
    )
    db.add(essay)
    await db.commit()
    logger.info("Essay submitted: essay=%s enrollment=%s", essay.id, enrollment.id)
    return EssayResponse.model_validate(essay)


async def review_essay(
    db: AsyncSession,
    current_user: CurrentUser,
    essay_id: UUID,
    payload: EssayReviewRequest,
) -> EssayResponse:
    """
    Score an essay. A re-review replaces the latest score on the essay and is
    appended to the review trail, so earlier scores are kept.
    """
    result = await db.execute(
        select(EssaySubmission)
        .where(EssaySubmission.id == essay_id)
        .options(selectinload(EssaySubmission.reviews))
    )
    essay = result.scalar_one_or_none()
    if not essay:
        raise ServiceError("Essay not found", status.HTTP_404_NOT_FOUND)
    enrollment = await get_enrollment_or_404(db, essay.enrollment_id)
    authorize(current_user, "essays.review", school_id=enrollment.school_id)

    reviewed_at = utc_now()
    essay.score = payload.score
    essay.feedback = payload.feedback
    essay.reviewed_by_id = current_user.id
    essay.reviewed_at = reviewed_at
    essay.reviews.append(
        EssayReview(
            score=payload.score,
            feedback=payload.feedback,
            reviewed_by_id=current_user.id,
            reviewed_at=reviewed_at,
        )
    )
    await db.commit()
    logger.info(
        "Essay reviewed: essay=%s enrollment=%s score=%s reviews=%d",
        essay.id,
        essay.enrollment_id,
        payload.score,
        len(essay.reviews),
    )
    return EssayResponse.model_validate(essay)


async def list_essays(
    db: AsyncSession,
    current_user: CurrentUser,
    enrollment_id: UUID,
) -> List[EssayResponse]:
    enrollment = await get_enrollment_or_404(db, enrollment_id)
    authorize(current_user, "essays.read", school_id=enrollment.school_id, student_id=enrollment.student_id)

    result = await db.execute(
        select(EssaySubmission)
        .where(EssaySubmission.enrollment_id == enrollment_id)
        .options(selectinload(EssaySubmission.reviews))
        .order_by(EssaySubmission.submitted_at.desc())
    )
    return [EssayResponse.model_validate(e) for e in result.scalars().all()]
