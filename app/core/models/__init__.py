from app.auth.models import User
from app.core.models.school import School, SchoolEnrollment
from app.core.models.program import Belt, BeltRequirement, Program
from app.core.models.enrollment import ProgramEnrollment, PromotionHistory, RequirementProgress
from app.core.models.belt_test import BeltTest
from app.core.models.essay import EssayReview, EssaySubmission
from app.core.models.billing import Invoice, MembershipPlan, Payment, PaymentConfig, Subscription

__all__ = [
    "User",
    "School",
    "SchoolEnrollment",
    "Program",
    "Belt",
    "BeltRequirement",
    "ProgramEnrollment",
    "RequirementProgress",
    "PromotionHistory",
    "BeltTest",
    "EssaySubmission",
    "EssayReview",
    "PaymentConfig",
    "MembershipPlan",
    "Subscription",
    "Invoice",
    "Payment",
]
