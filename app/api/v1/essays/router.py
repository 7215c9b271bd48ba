from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import EssayCreate, EssayResponse, EssayReviewRequest
from . import service

router = APIRouter(prefix="/api/v1/promotions/essays", tags=["essays"])


@router.post(
    "",
    response_model=EssayResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("essays.submit"))],
)
async def submit_essay(
    payload: EssayCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> EssayResponse:
    try:
        return await service.submit_essay(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/{enrollment_id}",
    response_model=List[EssayResponse],
    dependencies=[Depends(check_permission("essays.read"))],
)
async def list_essays(
    enrollment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[EssayResponse]:
    try:
        return await service.list_essays(db, current_user, enrollment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.patch(
    "/{essay_id}/review",
    response_model=EssayResponse,
    dependencies=[Depends(check_permission("essays.review"))],
)
async def review_essay(
    essay_id: UUID,
    payload: EssayReviewRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> EssayResponse:
    try:
        return await service.review_essay(db, current_user, essay_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
