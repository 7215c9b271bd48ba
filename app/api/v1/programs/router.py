"""Program catalog router: programs, belts, requirements."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    BeltCreate,
    BeltResponse,
    BeltUpdate,
    MessageResponse,
    ProgramCreate,
    ProgramDetailResponse,
    ProgramResponse,
    ProgramUpdate,
    RequirementCreate,
    RequirementResponse,
    RequirementUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1/promotions", tags=["programs"])


# --- Programs ---
@router.get(
    "/programs",
    response_model=List[ProgramResponse],
    dependencies=[Depends(check_permission("programs.read"))],
)
async def list_programs(
    school_id: Optional[UUID] = Query(None, description="Super admin only; others always see their own school"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[ProgramResponse]:
    return await service.list_programs(db, current_user, school_id=school_id)


@router.get(
    "/programs/{program_id}",
    response_model=ProgramDetailResponse,
    dependencies=[Depends(check_permission("programs.read"))],
)
async def get_program(
    program_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ProgramDetailResponse:
    try:
        return await service.get_program(db, current_user, program_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/programs",
    response_model=ProgramResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("programs.manage"))],
)
async def create_program(
    payload: ProgramCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ProgramResponse:
    try:
        return await service.create_program(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put(
    "/programs/{program_id}",
    response_model=ProgramResponse,
    dependencies=[Depends(check_permission("programs.manage"))],
)
async def update_program(
    program_id: UUID,
    payload: ProgramUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ProgramResponse:
    try:
        return await service.update_program(db, current_user, program_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Belts ---
@router.post(
    "/programs/{program_id}/belts",
    response_model=BeltResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("programs.manage"))],
)
async def create_belt(
    program_id: UUID,
    payload: BeltCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BeltResponse:
    try:
        return await service.create_belt(db, current_user, program_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put(
    "/belts/{belt_id}",
    response_model=BeltResponse,
    dependencies=[Depends(check_permission("programs.manage"))],
)
async def update_belt(
    belt_id: UUID,
    payload: BeltUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BeltResponse:
    try:
        return await service.update_belt(db, current_user, belt_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.delete(
    "/belts/{belt_id}",
    response_model=MessageResponse,
    dependencies=[Depends(check_permission("programs.manage"))],
)
async def delete_belt(
    belt_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MessageResponse:
    try:
        await service.delete_belt(db, current_user, belt_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return MessageResponse(message="Belt deleted")


# --- Requirements ---
@router.post(
    "/belts/{belt_id}/requirements",
    response_model=RequirementResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("programs.manage"))],
)
async def create_requirement(
    belt_id: UUID,
    payload: RequirementCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> RequirementResponse:
    try:
        return await service.create_requirement(db, current_user, belt_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put(
    "/requirements/{requirement_id}",
    response_model=RequirementResponse,
    dependencies=[Depends(check_permission("programs.manage"))],
)
async def update_requirement(
    requirement_id: UUID,
    payload: RequirementUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> RequirementResponse:
    try:
        return await service.update_requirement(db, current_user, requirement_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.delete(
    "/requirements/{requirement_id}",
    response_model=MessageResponse,
    dependencies=[Depends(check_permission("programs.manage"))],
)
async def delete_requirement(
    requirement_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MessageResponse:
    try:
        await service.delete_requirement(db, current_user, requirement_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return MessageResponse(message="Requirement deleted")
