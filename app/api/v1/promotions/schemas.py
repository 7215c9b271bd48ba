"""Promotion schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.api.v1.enrollments.schemas import CurrentBeltInfo


class PromotionRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)
    # Belt the caller saw as "next"; a stale value is rejected instead of promoting twice
    expected_belt_id: UUID


class PromotionResponse(BaseModel):
    id: UUID
    enrollment_id: UUID
    from_belt: Optional[CurrentBeltInfo] = None
    to_belt: CurrentBeltInfo
    promoted_by_id: Optional[UUID] = None
    promoted_at: datetime
    notes: Optional[str] = None
