"""
Capability checks. Every service operation asks ``authorize(user, action, school_id=..., student_id=...)``
instead of testing roles inline.

Scope rules:
- SUPER_ADMIN is platform-wide.
- Every other role only acts inside its own school.
- STUDENT additionally only acts on its own records (student_id must be the caller).
"""

from typing import Dict, FrozenSet, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.enums import Role
from app.core.exceptions import ServiceError

ALL_ROLES: FrozenSet[Role] = frozenset(Role)
STAFF_ROLES: FrozenSet[Role] = frozenset(r for r in Role if r != Role.STUDENT)
ADMIN_ROLES: FrozenSet[Role] = frozenset({Role.SUPER_ADMIN, Role.OWNER})
FRONT_DESK_ROLES: FrozenSet[Role] = frozenset({Role.SUPER_ADMIN, Role.OWNER, Role.INSTRUCTOR, Role.SCHOOL_STAFF})

CAPABILITIES: Dict[str, FrozenSet[Role]] = {
    # Catalog
    "programs.read": ALL_ROLES,
    "programs.manage": ADMIN_ROLES,
    "programs.manage_global": frozenset({Role.SUPER_ADMIN}),
    # Enrollment, progress, promotion
    "enrollments.read": ALL_ROLES,
    "enrollments.create": STAFF_ROLES,
    "progress.read": ALL_ROLES,
    "progress.update": STAFF_ROLES,
    "promotions.execute": STAFF_ROLES,
    "belt_tests.read": ALL_ROLES,
    "belt_tests.manage": STAFF_ROLES,
    "essays.read": ALL_ROLES,
    "essays.submit": ALL_ROLES,
    "essays.review": STAFF_ROLES,
    # Billing
    "billing.config": ADMIN_ROLES,
    "billing.plans.read": ALL_ROLES,
    "billing.plans.manage": ADMIN_ROLES,
    "billing.subscriptions.read": ALL_ROLES,
    "billing.subscriptions.manage": ADMIN_ROLES,
    "billing.invoices.read": ALL_ROLES,
    "billing.invoices.create": FRONT_DESK_ROLES,
    "billing.invoices.update": ADMIN_ROLES,
    "billing.payments.read": ALL_ROLES,
    "billing.payments.record": ALL_ROLES,
    "billing.summary": FRONT_DESK_ROLES,
    "billing.auto_invoice": frozenset({Role.SUPER_ADMIN}),
}


def can(
    user: CurrentUser,
    action: str,
    school_id: Optional[UUID] = None,
    student_id: Optional[UUID] = None,
) -> bool:
    """Return True if ``user`` may perform ``action`` on a resource in ``school_id`` owned by ``student_id``."""
    allowed = CAPABILITIES.get(action)
    if allowed is None or user.role not in allowed:
        return False
    if user.is_super_admin:
        return True
    if school_id is not None and user.school_id != school_id:
        return False
    if user.is_student and student_id is not None and student_id != user.id:
        return False
    return True


def authorize(
    user: CurrentUser,
    action: str,
    school_id: Optional[UUID] = None,
    student_id: Optional[UUID] = None,
) -> None:
    """Raise a 403 ServiceError unless ``can(...)`` allows the action. No partial effects: call before writing."""
    if not can(user, action, school_id=school_id, student_id=student_id):
        raise ServiceError("Access denied", status.HTTP_403_FORBIDDEN)


def check_permission(action: str):
    """
    Dependency factory enforcing the role part of a capability at the router.
    Services still call ``authorize`` with the resource scope once it is loaded.

    Example:
        Depends(check_permission("promotions.execute"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        allowed = CAPABILITIES.get(action, frozenset())
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

    return _checker
