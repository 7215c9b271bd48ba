from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from app.core.enums import Role


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user for capability checks.

    school_id is None only for SUPER_ADMIN, whose scope is the whole platform.
    """

    id: UUID
    role: Role
    school_id: Optional[UUID] = None

    @property
    def is_student(self) -> bool:
        return self.role == Role.STUDENT

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN
