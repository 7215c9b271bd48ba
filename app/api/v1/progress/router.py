from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import ProgressUpdate, RequirementProgressResponse, StudentProgressResponse
from . import service

router = APIRouter(prefix="/api/v1/promotions/progress", tags=["progress"])


@router.get(
    "/{enrollment_id}",
    response_model=StudentProgressResponse,
    dependencies=[Depends(check_permission("progress.read"))],
)
async def get_student_progress(
    enrollment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentProgressResponse:
    try:
        return await service.get_student_progress(db, current_user, enrollment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.patch(
    "/{enrollment_id}",
    response_model=RequirementProgressResponse,
    dependencies=[Depends(check_permission("progress.update"))],
)
async def update_progress(
    enrollment_id: UUID,
    payload: ProgressUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> RequirementProgressResponse:
    try:
        return await service.update_progress(db, current_user, enrollment_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
