import uuid

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.datetime_utils import utc_now
from app.db.session import Base


class User(Base):
    """Person known to the platform: staff member, student or platform admin.

    Credentials live with the identity provider; this row only carries what the
    promotion and billing code needs (role, school affiliation, active flag).
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_user_email"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Null only for SUPER_ADMIN (platform-wide)
    school_id = Column(UUID(as_uuid=True), ForeignKey("schools.id", ondelete="SET NULL"), nullable=True, index=True)
    email = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    # SUPER_ADMIN, OWNER, INSTRUCTOR, SCHOOL_STAFF, IT_ADMIN, MARKETING, STUDENT
    role = Column(String(30), nullable=False, default="STUDENT")
    date_of_birth = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    school = relationship("School", foreign_keys=[school_id])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
