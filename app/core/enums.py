from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    OWNER = "OWNER"
    INSTRUCTOR = "INSTRUCTOR"
    SCHOOL_STAFF = "SCHOOL_STAFF"
    IT_ADMIN = "IT_ADMIN"
    MARKETING = "MARKETING"
    STUDENT = "STUDENT"


class RosterStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    TRANSFERRED = "TRANSFERRED"


class RequirementType(str, Enum):
    MIN_ATTENDANCE = "MIN_ATTENDANCE"
    TECHNIQUE = "TECHNIQUE"
    TIME_IN_RANK = "TIME_IN_RANK"
    MIN_AGE = "MIN_AGE"
    ESSAY = "ESSAY"
    CUSTOM = "CUSTOM"


class BeltTestStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    PASSED = "PASSED"
    FAILED = "FAILED"


class BillingCycle(str, Enum):
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMI_ANNUAL = "SEMI_ANNUAL"
    ANNUAL = "ANNUAL"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    CARD = "CARD"
    CASH = "CASH"
    CHECK = "CHECK"
    BANK_TRANSFER = "BANK_TRANSFER"
    GATEWAY = "GATEWAY"


class StateConflict(str, Enum):
    """Machine-readable codes carried on 409 ServiceErrors."""

    NOT_READY = "NOT_READY"
    ALREADY_PROMOTED = "ALREADY_PROMOTED"
    HIGHEST_RANK = "HIGHEST_RANK"
    DUPLICATE = "DUPLICATE"
