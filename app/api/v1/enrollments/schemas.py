"""Program enrollment schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ProgramEnrollmentCreate(BaseModel):
    student_id: UUID
    program_id: UUID


class CurrentBeltInfo(BaseModel):
    id: UUID
    name: str
    color: Optional[str] = None
    display_order: int

    class Config:
        from_attributes = True


class ProgramEnrollmentResponse(BaseModel):
    id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    program_id: UUID
    program_name: Optional[str] = None
    school_id: UUID
    current_belt: Optional[CurrentBeltInfo] = None
    enrolled_at: datetime
