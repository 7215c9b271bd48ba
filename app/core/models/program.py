"""Program catalog: programs own ordered belts, belts own requirements."""

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.datetime_utils import utc_now
from app.db.session import Base


class Program(Base):
    """
    Curriculum offered by one school, or shared by all schools when is_global.

    Scope is explicit: global programs have school_id NULL, school programs have it set.
    Queries always filter by (is_global OR school_id = :school_id).
    """

    __tablename__ = "programs"
    __table_args__ = (
        CheckConstraint(
            "(is_global AND school_id IS NULL) OR (NOT is_global AND school_id IS NOT NULL)",
            name="chk_program_scope",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_global = Column(Boolean, nullable=False, default=False)
    # Some programs (e.g. fitness) have no belts at all
    has_rank_structure = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    belts = relationship(
        "Belt",
        back_populates="program",
        order_by="Belt.display_order",
        cascade="all, delete-orphan",
    )


class Belt(Base):
    """Rank within a program. Higher display_order = higher rank; 1 is the lowest."""

    __tablename__ = "belts"
    __table_args__ = (
        UniqueConstraint("program_id", "display_order", name="uq_belt_program_display_order"),
        CheckConstraint("display_order >= 1", name="chk_belt_display_order_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    program_id = Column(UUID(as_uuid=True), ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    display_order = Column(Integer, nullable=False)
    color = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    program = relationship("Program", back_populates="belts")
    requirements = relationship(
        "BeltRequirement",
        back_populates="belt",
        order_by="BeltRequirement.created_at",
        cascade="all, delete-orphan",
    )


class BeltRequirement(Base):
    """Criterion that must be met on a belt before promotion to it. Non-required rows are informational."""

    __tablename__ = "belt_requirements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    belt_id = Column(UUID(as_uuid=True), ForeignKey("belts.id", ondelete="CASCADE"), nullable=False, index=True)
    # MIN_ATTENDANCE, TECHNIQUE, TIME_IN_RANK, MIN_AGE, ESSAY, CUSTOM
    type = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)
    # Numeric threshold (classes, months, years); NULL for checkbox-style requirements
    value = Column(Numeric(10, 2), nullable=True)
    is_required = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    belt = relationship("Belt", back_populates="requirements")
