from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.progress.schemas import PromotionHistoryItem
from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import PromotionRequest, PromotionResponse
from . import service

router = APIRouter(prefix="/api/v1/promotions", tags=["promotions"])


@router.post(
    "/promote/{enrollment_id}",
    response_model=PromotionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("promotions.execute"))],
)
async def promote_student(
    enrollment_id: UUID,
    payload: PromotionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromotionResponse:
    try:
        return await service.promote(db, current_user, enrollment_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/history/{enrollment_id}",
    response_model=List[PromotionHistoryItem],
    dependencies=[Depends(check_permission("progress.read"))],
)
async def list_promotion_history(
    enrollment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PromotionHistoryItem]:
    try:
        return await service.list_promotion_history(db, current_user, enrollment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
