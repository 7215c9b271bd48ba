"""Essay schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class EssayCreate(BaseModel):
    enrollment_id: UUID
    title: Optional[str] = Field(None, max_length=255)
    content: str = Field(..., min_length=1)
    belt_test_id: Optional[UUID] = None


class EssayReviewRequest(BaseModel):
    score: Decimal = Field(..., ge=0, le=100)
    feedback: Optional[str] = None


class EssayReviewItem(BaseModel):
    id: UUID
    score: Decimal
    feedback: Optional[str] = None
    reviewed_by_id: Optional[UUID] = None
    reviewed_at: datetime

    class Config:
        from_attributes = True


class EssayResponse(BaseModel):
    id: UUID
    enrollment_id: UUID
    belt_test_id: Optional[UUID] = None
    title: Optional[str] = None
    content: str
    submitted_at: datetime
    submitted_by_id: Optional[UUID] = None
    score: Optional[Decimal] = None
    feedback: Optional[str] = None
    reviewed_by_id: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    reviews: List[EssayReviewItem] = Field(default_factory=list)

    class Config:
        from_attributes = True
