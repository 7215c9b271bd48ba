"""Invoice arithmetic shared by manual invoicing and the auto-invoice scheduler."""

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import BillingCycle
from app.core.models import Invoice, PaymentConfig

CENTS = Decimal("0.01")

CYCLE_STEPS = {
    BillingCycle.WEEKLY: relativedelta(weeks=1),
    BillingCycle.BIWEEKLY: relativedelta(weeks=2),
    BillingCycle.MONTHLY: relativedelta(months=1),
    BillingCycle.QUARTERLY: relativedelta(months=3),
    BillingCycle.SEMI_ANNUAL: relativedelta(months=6),
    BillingCycle.ANNUAL: relativedelta(years=1),
}


@dataclass(frozen=True)
class SchoolBillingSettings:
    currency: str
    tax_rate: Decimal
    grace_period_days: int


def next_invoice_date(from_date: date, cycle: BillingCycle) -> date:
    """One billing cycle after from_date. Month steps clamp to the month end (Jan 31 + 1 month = Feb 29 in 2024)."""
    return from_date + CYCLE_STEPS[BillingCycle(cycle)]


def first_of_next_month(day: date) -> date:
    return day + relativedelta(months=1, day=1)


def first_invoice_date(start_date: date) -> date:
    """A subscription starting on the 1st is invoiced that day, otherwise on the following 1st."""
    if start_date.day == 1:
        return start_date
    return first_of_next_month(start_date)


def end_of_month(day: date) -> date:
    return day + relativedelta(day=31)


def to_cents(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_totals(subtotal: Decimal, tax_rate: Decimal) -> Tuple[Decimal, Decimal]:
    """(tax_amount, total_amount) for a subtotal and a percent tax rate, both rounded to cents."""
    subtotal = to_cents(subtotal)
    tax_amount = to_cents(subtotal * Decimal(tax_rate) / Decimal(100))
    return tax_amount, subtotal + tax_amount


async def get_school_billing_settings(db: AsyncSession, school_id: UUID) -> SchoolBillingSettings:
    """Effective billing settings for a school; platform defaults when it has no config row."""
    config: Optional[PaymentConfig] = (
        await db.execute(select(PaymentConfig).where(PaymentConfig.school_id == school_id))
    ).scalar_one_or_none()
    if config is None:
        return SchoolBillingSettings(
            currency=settings.default_currency,
            tax_rate=Decimal("0"),
            grace_period_days=settings.default_grace_period_days,
        )
    return SchoolBillingSettings(
        currency=config.currency,
        tax_rate=Decimal(config.tax_rate or 0),
        grace_period_days=(
            config.grace_period_days if config.grace_period_days is not None else settings.default_grace_period_days
        ),
    )


async def next_invoice_number(db: AsyncSession, school_id: UUID, year: int) -> str:
    """
    Next sequential number for the school and year, e.g. INV-2024-0007.
    Two writers can compute the same number; the (school_id, invoice_number) unique key rejects the loser.
    """
    prefix = f"{settings.invoice_number_prefix}-{year}-"
    count = (
        await db.execute(
            select(func.count(Invoice.id)).where(
                Invoice.school_id == school_id,
                Invoice.invoice_number.like(f"{prefix}%"),
            )
        )
    ).scalar_one()
    return f"{prefix}{count + 1:04d}"
