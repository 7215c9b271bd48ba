"""Essay submissions for ESSAY-type belt requirements, plus their review trail."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.datetime_utils import utc_now
from app.db.session import Base


class EssaySubmission(Base):
    """
    Essay written by a student for a program enrollment.
    Content is immutable once submitted; only the review fields (latest review) change.
    """

    __tablename__ = "essay_submissions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enrollment_id = Column(
        UUID(as_uuid=True),
        ForeignKey("program_enrollments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    belt_test_id = Column(UUID(as_uuid=True), ForeignKey("belt_tests.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(255), nullable=True)
    content = Column(Text, nullable=False)
    submitted_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    submitted_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    # Latest review; full history in essay_reviews
    score = Column(Numeric(5, 2), nullable=True)
    feedback = Column(Text, nullable=True)
    reviewed_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    belt_test = relationship("BeltTest")
    reviews = relationship(
        "EssayReview",
        back_populates="essay",
        order_by="EssayReview.reviewed_at",
        cascade="all, delete-orphan",
    )


class EssayReview(Base):
    """One row per review action. Append-only, so re-reviews never erase earlier scores."""

    __tablename__ = "essay_reviews"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    essay_id = Column(
        UUID(as_uuid=True),
        ForeignKey("essay_submissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    score = Column(Numeric(5, 2), nullable=False)
    feedback = Column(Text, nullable=True)
    reviewed_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    essay = relationship("EssaySubmission", back_populates="reviews")
