"""Program catalog schemas: programs, belts, requirements."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.core.enums import RequirementType


def reject_null(value):
    """Update fields may be omitted but not set to null."""
    if value is None:
        raise ValueError("may not be null")
    return value


# --- Program ---
class ProgramCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    # Ignored for global programs; defaults to the caller's school otherwise
    school_id: Optional[UUID] = None
    is_global: bool = False
    has_rank_structure: bool = True


class ProgramUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    has_rank_structure: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("name", "has_rank_structure", "is_active", mode="before")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class BeltSummary(BaseModel):
    id: UUID
    name: str
    display_order: int
    color: Optional[str] = None

    class Config:
        from_attributes = True


class ProgramResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    school_id: Optional[UUID] = None
    is_global: bool
    has_rank_structure: bool
    is_active: bool
    belts: List[BeltSummary] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


# --- Belt ---
class BeltCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    display_order: int = Field(..., ge=1, description="1 = lowest rank")
    color: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None


class BeltUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    display_order: Optional[int] = Field(None, ge=1)
    color: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None

    @field_validator("name", "display_order", mode="before")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class BeltResponse(BaseModel):
    id: UUID
    program_id: UUID
    name: str
    display_order: int
    color: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# --- Requirement ---
class RequirementCreate(BaseModel):
    type: RequirementType
    description: str = Field(..., min_length=1)
    value: Optional[Decimal] = Field(None, ge=0, description="Numeric threshold; omit for checkbox requirements")
    is_required: bool = True


class RequirementUpdate(BaseModel):
    type: Optional[RequirementType] = None
    description: Optional[str] = Field(None, min_length=1)
    value: Optional[Decimal] = Field(None, ge=0)
    is_required: Optional[bool] = None

    @field_validator("type", "description", "is_required", mode="before")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class RequirementResponse(BaseModel):
    id: UUID
    belt_id: UUID
    type: RequirementType
    description: str
    value: Optional[Decimal] = None
    is_required: bool
    created_at: datetime

    class Config:
        from_attributes = True


class BeltWithRequirements(BeltResponse):
    requirements: List[RequirementResponse] = Field(default_factory=list)


class ProgramDetailResponse(BaseModel):
    """Full hierarchy: belts in rank order, each with its requirements."""

    id: UUID
    name: str
    description: Optional[str] = None
    school_id: Optional[UUID] = None
    is_global: bool
    has_rank_structure: bool
    is_active: bool
    belts: List[BeltWithRequirements]
    enrollment_count: int = 0


class MessageResponse(BaseModel):
    message: str
