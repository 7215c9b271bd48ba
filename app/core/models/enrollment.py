"""Program enrollments, per-requirement progress and the promotion audit log."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.datetime_utils import utc_now
from app.db.session import Base


class ProgramEnrollment(Base):
    """Student membership in a program. current_belt_id NULL means no rank yet (below the lowest belt)."""

    __tablename__ = "program_enrollments"
    __table_args__ = (
        UniqueConstraint("student_id", "program_id", name="uq_program_enrollment_student_program"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    program_id = Column(UUID(as_uuid=True), ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    # School the student trains at; for global programs this is the only tenant link
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True)
    current_belt_id = Column(UUID(as_uuid=True), ForeignKey("belts.id", ondelete="RESTRICT"), nullable=True)
    enrolled_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    student = relationship("User", foreign_keys=[student_id])
    program = relationship("Program")
    current_belt = relationship("Belt", foreign_keys=[current_belt_id])


class RequirementProgress(Base):
    """
    Evidence logged against one requirement for one enrollment.
    Created lazily on first update. Rows for belts already achieved are kept as history.
    """

    __tablename__ = "requirement_progress"
    __table_args__ = (
        UniqueConstraint("enrollment_id", "requirement_id", name="uq_requirement_progress_enrollment_requirement"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enrollment_id = Column(
        UUID(as_uuid=True),
        ForeignKey("program_enrollments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requirement_id = Column(
        UUID(as_uuid=True),
        ForeignKey("belt_requirements.id", ondelete="CASCADE"),
        nullable=False,
    )
    current_value = Column(Numeric(10, 2), nullable=False, default=0)
    is_complete = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    requirement = relationship("BeltRequirement")


class PromotionHistory(Base):
    """Append-only promotion log. Never updated or deleted except by enrollment cascade."""

    __tablename__ = "promotion_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enrollment_id = Column(
        UUID(as_uuid=True),
        ForeignKey("program_enrollments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_belt_id = Column(UUID(as_uuid=True), ForeignKey("belts.id", ondelete="RESTRICT"), nullable=True)
    to_belt_id = Column(UUID(as_uuid=True), ForeignKey("belts.id", ondelete="RESTRICT"), nullable=False)
    promoted_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    promoted_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    notes = Column(Text, nullable=True)

    from_belt = relationship("Belt", foreign_keys=[from_belt_id])
    to_belt = relationship("Belt", foreign_keys=[to_belt_id])
