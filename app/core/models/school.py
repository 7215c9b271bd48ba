"""Schools (tenants) and the student roster."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.datetime_utils import utc_now
from app.core.enums import RosterStatus
from app.db.session import Base


class School(Base):
    """Tenant. Every school-scoped row carries school_id as its FK."""

    __tablename__ = "schools"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    owner_id = Column(UUID(as_uuid=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class SchoolEnrollment(Base):
    """Roster entry: a student attending a school. Programs and plans are only offered to ACTIVE rows."""

    __tablename__ = "school_enrollments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=RosterStatus.ACTIVE.value)
    enrolled_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    left_at = Column(DateTime(timezone=True), nullable=True)

    school = relationship("School")
    student = relationship("User", foreign_keys=[student_id])
