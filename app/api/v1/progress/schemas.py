"""Progress schemas: evaluation views and requirement progress updates."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.api.v1.enrollments.schemas import CurrentBeltInfo
from app.core.enums import RequirementType


class ProgressUpdate(BaseModel):
    requirement_id: UUID
    current_value: Decimal = Field(..., ge=0)
    # Omit to derive from the requirement threshold; send explicitly to override
    is_complete: Optional[bool] = None


class RequirementProgressResponse(BaseModel):
    id: UUID
    enrollment_id: UUID
    requirement_id: UUID
    current_value: Decimal
    is_complete: bool
    completed_at: Optional[datetime] = None
    updated_by: Optional[UUID] = None
    updated_at: datetime

    class Config:
        from_attributes = True


class RequirementProgressItem(BaseModel):
    requirement_id: UUID
    type: RequirementType
    description: str
    value: Optional[Decimal] = None
    is_required: bool
    current_value: Decimal
    is_complete: bool
    completed_at: Optional[datetime] = None
    essay_id: Optional[UUID] = None


class BeltProgressItem(BaseModel):
    id: UUID
    name: str
    color: Optional[str] = None
    display_order: int
    is_achieved: bool
    is_current: bool


class PromotionHistoryItem(BaseModel):
    id: UUID
    from_belt: Optional[CurrentBeltInfo] = None
    to_belt: CurrentBeltInfo
    promoted_by_id: Optional[UUID] = None
    promoted_at: datetime
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class EssaySummary(BaseModel):
    id: UUID
    title: Optional[str] = None
    belt_test_id: Optional[UUID] = None
    submitted_at: datetime
    score: Optional[Decimal] = None
    reviewed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EnrollmentInfo(BaseModel):
    id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    program_id: UUID
    program_name: Optional[str] = None
    school_id: UUID
    enrolled_at: datetime


class StudentProgressResponse(BaseModel):
    enrollment: EnrollmentInfo
    current_belt: Optional[CurrentBeltInfo] = None
    next_belt: Optional[CurrentBeltInfo] = None
    all_belts: List[BeltProgressItem] = Field(default_factory=list)
    requirements: List[RequirementProgressItem] = Field(default_factory=list)
    ready_for_promotion: bool
    highest_rank_achieved: bool
    promotion_history: List[PromotionHistoryItem] = Field(default_factory=list)
    essays: List[EssaySummary] = Field(default_factory=list)
