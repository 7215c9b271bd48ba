"""Belt test schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import BeltTestStatus


class BeltTestCreate(BaseModel):
    enrollment_id: UUID
    belt_id: UUID
    test_date: datetime
    notes: Optional[str] = None


class BeltTestUpdate(BaseModel):
    status: Optional[BeltTestStatus] = None
    score: Optional[Decimal] = Field(None, ge=0, le=100)
    notes: Optional[str] = None


class BeltTestResponse(BaseModel):
    id: UUID
    enrollment_id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    belt_id: UUID
    belt_name: Optional[str] = None
    test_date: datetime
    status: BeltTestStatus
    score: Optional[Decimal] = None
    notes: Optional[str] = None
    tested_by_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
