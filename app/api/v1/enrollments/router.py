from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import ProgramEnrollmentCreate, ProgramEnrollmentResponse
from . import service

router = APIRouter(prefix="/api/v1/promotions/enrollments", tags=["program-enrollments"])


@router.get(
    "/{school_id}",
    response_model=List[ProgramEnrollmentResponse],
    dependencies=[Depends(check_permission("enrollments.read"))],
)
async def list_program_enrollments(
    school_id: UUID,
    program_id: Optional[UUID] = Query(None),
    student_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[ProgramEnrollmentResponse]:
    try:
        return await service.list_program_enrollments(
            db, current_user, school_id, program_id=program_id, student_id=student_id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/{school_id}",
    response_model=ProgramEnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("enrollments.create"))],
)
async def create_program_enrollment(
    school_id: UUID,
    payload: ProgramEnrollmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ProgramEnrollmentResponse:
    try:
        return await service.create_program_enrollment(db, current_user, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
