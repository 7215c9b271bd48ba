from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.enums import BeltTestStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import BeltTestCreate, BeltTestResponse, BeltTestUpdate
from . import service

router = APIRouter(prefix="/api/v1/promotions/tests", tags=["belt-tests"])


@router.get(
    "/{school_id}",
    response_model=List[BeltTestResponse],
    dependencies=[Depends(check_permission("belt_tests.read"))],
)
async def list_tests(
    school_id: UUID,
    status_filter: Optional[BeltTestStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[BeltTestResponse]:
    try:
        return await service.list_tests(db, current_user, school_id, status_filter=status_filter)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "",
    response_model=BeltTestResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("belt_tests.manage"))],
)
async def schedule_test(
    payload: BeltTestCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BeltTestResponse:
    try:
        return await service.schedule_test(db, current_user, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.patch(
    "/{test_id}",
    response_model=BeltTestResponse,
    dependencies=[Depends(check_permission("belt_tests.manage"))],
)
async def update_test(
    test_id: UUID,
    payload: BeltTestUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BeltTestResponse:
    try:
        return await service.update_test(db, current_user, test_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
