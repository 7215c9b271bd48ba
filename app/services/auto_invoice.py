"""
Auto-invoicing.

Runs from the arq worker on the 1st of every month and on demand from the billing
API. next_invoice_date is the only idempotence key: a subscription is invoiced only
by the caller whose conditional UPDATE moved next_invoice_date off the value it
read, so overlapping runs never double-invoice. A subscription that fell behind is
invoiced once per missed period in a single run.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.datetime_utils import utc_now, utc_today
from app.core.enums import BillingCycle, InvoiceStatus, SubscriptionStatus
from app.core.logging import get_logger
from app.core.models import Invoice, Subscription
from app.services.invoicing import (
    compute_totals,
    end_of_month,
    get_school_billing_settings,
    next_invoice_date,
    next_invoice_number,
)

logger = get_logger(__name__)


@dataclass
class GeneratedInvoice:
    invoice_id: UUID
    invoice_number: str
    subscription_id: UUID
    student_id: UUID
    student_name: Optional[str]
    plan_name: str
    total_amount: Decimal
    next_invoice_date: date


@dataclass
class GenerationResult:
    generated: int = 0
    errors: int = 0
    details: List[GeneratedInvoice] = field(default_factory=list)


@dataclass
class AutoInvoiceSummary:
    invoices_generated: int
    invoice_errors: int
    overdue_marked: int
    details: List[GeneratedInvoice] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "invoices_generated": self.invoices_generated,
            "invoice_errors": self.invoice_errors,
            "overdue_marked": self.overdue_marked,
            "details": [asdict(d) for d in self.details],
        }


async def _claim_period(db: AsyncSession, subscription_id: UUID, seen: date, advance_to: date) -> bool:
    """Compare-and-advance next_invoice_date. True only for the caller that moved it."""
    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.id == subscription_id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.next_invoice_date == seen,
        )
        .values(next_invoice_date=advance_to, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def invoice_period(
    db: AsyncSession,
    subscription_id: UUID,
    seen: date,
    today: date,
) -> Optional[GeneratedInvoice]:
    """
    Claim the billing period starting at seen and invoice it in one transaction.

    Returns None without writing anything when next_invoice_date is no longer seen.
    """
    subscription = await db.get(
        Subscription,
        subscription_id,
        options=[selectinload(Subscription.plan), selectinload(Subscription.student)],
        populate_existing=True,
    )
    plan = subscription.plan
    advance_to = next_invoice_date(seen, BillingCycle(plan.billing_cycle))

    if not await _claim_period(db, subscription_id, seen, advance_to):
        await db.rollback()
        logger.info("Subscription %s already invoiced for %s, skipping", subscription_id, seen)
        return None

    billing = await get_school_billing_settings(db, subscription.school_id)
    tax_amount, total_amount = compute_totals(plan.price, billing.tax_rate)
    invoice = Invoice(
        invoice_number=await next_invoice_number(db, subscription.school_id, today.year),
        school_id=subscription.school_id,
        student_id=subscription.student_id,
        plan_id=plan.id,
        subscription_id=subscription.id,
        subtotal=plan.price,
        tax_amount=tax_amount,
        total_amount=total_amount,
        status=InvoiceStatus.SENT.value,
        due_date=end_of_month(today),
        notes=f"Auto-generated for {plan.name} subscription",
    )
    db.add(invoice)
    await db.commit()

    return GeneratedInvoice(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        subscription_id=subscription.id,
        student_id=subscription.student_id,
        student_name=subscription.student.full_name if subscription.student else None,
        plan_name=plan.name,
        total_amount=total_amount,
        next_invoice_date=advance_to,
    )


async def generate_auto_invoices(db: AsyncSession, today: date) -> GenerationResult:
    """
    Invoice every ACTIVE subscription whose next_invoice_date is on or before today.

    Each period is its own transaction: advance next_invoice_date then insert the
    SENT invoice. Periods are claimed until next_invoice_date moves past today, so
    weekly plans are fully caught up by the monthly run. A failure rolls back that
    period, is counted, and stops the subscription until the next run.
    """
    due = (
        await db.execute(
            select(Subscription.id, Subscription.next_invoice_date)
            .where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.next_invoice_date.is_not(None),
                Subscription.next_invoice_date <= today,
            )
            .order_by(Subscription.next_invoice_date, Subscription.created_at)
        )
    ).all()
    await db.rollback()

    result = GenerationResult()
    if not due:
        logger.info("Auto-invoice: no subscriptions due on %s", today)
        return result

    logger.info("Auto-invoice: %d subscriptions due on %s", len(due), today)
    for subscription_id, seen in due:
        while seen <= today:
            try:
                generated = await invoice_period(db, subscription_id, seen, today)
            except Exception:
                await db.rollback()
                result.errors += 1
                logger.exception("Auto-invoice failed for subscription %s period %s", subscription_id, seen)
                break
            if generated is None:
                break
            result.generated += 1
            result.details.append(generated)
            logger.info(
                "Auto-invoice created %s for subscription %s period %s: %s",
                generated.invoice_number,
                subscription_id,
                seen,
                generated.total_amount,
            )
            seen = generated.next_invoice_date
    return result


async def mark_overdue_invoices(db: AsyncSession, today: date) -> int:
    """SENT invoices more than the school's grace period past due become PAST_DUE. Returns the count."""
    candidates = (
        await db.execute(
            select(Invoice.id, Invoice.school_id, Invoice.due_date).where(
                Invoice.status == InvoiceStatus.SENT.value,
                Invoice.due_date < today,
            )
        )
    ).all()

    grace_by_school: Dict[UUID, int] = {}
    overdue_ids: List[UUID] = []
    for invoice_id, school_id, due_date in candidates:
        if school_id not in grace_by_school:
            grace_by_school[school_id] = (await get_school_billing_settings(db, school_id)).grace_period_days
        if due_date + timedelta(days=grace_by_school[school_id]) < today:
            overdue_ids.append(invoice_id)

    if not overdue_ids:
        await db.rollback()
        return 0

    result = await db.execute(
        update(Invoice)
        .where(Invoice.id.in_(overdue_ids), Invoice.status == InvoiceStatus.SENT.value)
        .values(status=InvoiceStatus.PAST_DUE.value, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Marked %d invoices past due", result.rowcount)
    return result.rowcount


async def run_auto_invoice(db: AsyncSession, today: Optional[date] = None) -> AutoInvoiceSummary:
    """Generate due invoices, then sweep overdue ones."""
    today = today or utc_today()
    generation = await generate_auto_invoices(db, today)
    overdue = await mark_overdue_invoices(db, today)
    logger.info(
        "Auto-invoice run for %s complete: %d generated, %d errors, %d overdue",
        today,
        generation.generated,
        generation.errors,
        overdue,
    )
    return AutoInvoiceSummary(
        invoices_generated=generation.generated,
        invoice_errors=generation.errors,
        overdue_marked=overdue,
        details=generation.details,
    )
