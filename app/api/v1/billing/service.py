"""Billing service: per-school config, plans, subscriptions, invoices, payments and the summary dashboard."""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.v1.enrollments.service import is_on_roster
from app.auth.rbac import authorize
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.core.datetime_utils import utc_now, utc_today
from app.core.enums import InvoiceStatus, StateConflict, SubscriptionStatus
from app.core.exceptions import ServiceError
from app.core.logging import get_logger
from app.core.models import Invoice, MembershipPlan, Payment, PaymentConfig, School, Subscription, User
from app.services.auto_invoice import run_auto_invoice
from app.services.invoicing import (
    compute_totals,
    first_invoice_date,
    first_of_next_month,
    get_school_billing_settings,
    next_invoice_number,
)

from .schemas import (
    AmountBucket,
    AutoInvoiceDetail,
    AutoInvoiceRunResponse,
    BillingSummaryResponse,
    InvoiceCreate,
    InvoiceResponse,
    InvoiceStatusUpdate,
    PaymentConfigResponse,
    PaymentConfigUpsert,
    PaymentCreate,
    PaymentResponse,
    PlanCreate,
    PlanResponse,
    PlanSummary,
    PlanUpdate,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionUpdate,
)

logger = get_logger(__name__)

INVOICE_DUE_DAYS = 30


async def _get_school_or_404(db: AsyncSession, school_id: UUID) -> School:
    school = await db.get(School, school_id)
    if not school:
        raise ServiceError("School not found", status.HTTP_404_NOT_FOUND)
    return school


async def _get_active_plan(db: AsyncSession, school_id: UUID, plan_id: UUID) -> MembershipPlan:
    plan = (
        await db.execute(
            select(MembershipPlan).where(
                MembershipPlan.id == plan_id,
                MembershipPlan.school_id == school_id,
                MembershipPlan.is_active.is_(True),
            )
        )
    ).scalar_one_or_none()
    if not plan:
        raise ServiceError("Active plan not found for this school", status.HTTP_404_NOT_FOUND)
    return plan


# --- Payment config ---
def _config_to_response(config: PaymentConfig) -> PaymentConfigResponse:
    return PaymentConfigResponse(
        school_id=config.school_id,
        currency=config.currency,
        tax_rate=config.tax_rate,
        late_fee_amount=config.late_fee_amount,
        grace_period_days=config.grace_period_days,
        is_active=config.is_active,
    )


async def get_payment_config(db: AsyncSession, current_user: CurrentUser, school_id: UUID) -> PaymentConfigResponse:
    """Saved config for the school, or the platform defaults when none is saved."""
    authorize(current_user, "billing.config", school_id=school_id)
    await _get_school_or_404(db, school_id)

    config = (
        await db.execute(select(PaymentConfig).where(PaymentConfig.school_id == school_id))
    ).scalar_one_or_none()
    if config is None:
        return PaymentConfigResponse(
            school_id=school_id,
            currency=settings.default_currency,
            tax_rate=Decimal("0"),
            late_fee_amount=Decimal("0"),
            grace_period_days=settings.default_grace_period_days,
            is_active=False,
            is_default=True,
        )
    return _config_to_response(config)


async def upsert_payment_config(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    payload: PaymentConfigUpsert,
) -> PaymentConfigResponse:
    authorize(current_user, "billing.config", school_id=school_id)
    await _get_school_or_404(db, school_id)

    config = (
        await db.execute(select(PaymentConfig).where(PaymentConfig.school_id == school_id))
    ).scalar_one_or_none()
    if config is None:
        config = PaymentConfig(
            school_id=school_id,
            currency=settings.default_currency,
            tax_rate=Decimal("0"),
            late_fee_amount=Decimal("0"),
            grace_period_days=settings.default_grace_period_days,
            is_active=True,
        )
        db.add(config)

    data = payload.model_dump(exclude_unset=True)
    if data.get("currency"):
        data["currency"] = data["currency"].upper()
    for field, value in data.items():
        if value is not None:
            setattr(config, field, value)
    config.updated_at = utc_now()
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "Payment config was created concurrently; retry",
            status.HTTP_409_CONFLICT,
            code=StateConflict.DUPLICATE.value,
        )
    await db.refresh(config)
    return _config_to_response(config)


# --- Membership plans ---
async def list_plans(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    include_inactive: bool = False,
) -> List[PlanResponse]:
    authorize(current_user, "billing.plans.read", school_id=school_id)
    stmt = select(MembershipPlan).where(MembershipPlan.school_id == school_id)
    if not include_inactive or current_user.is_student:
        stmt = stmt.where(MembershipPlan.is_active.is_(True))
    result = await db.execute(stmt.order_by(MembershipPlan.price, MembershipPlan.name))
    return [PlanResponse.model_validate(p) for p in result.scalars().all()]


async def create_plan(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    payload: PlanCreate,
) -> PlanResponse:
    authorize(current_user, "billing.plans.manage", school_id=school_id)
    await _get_school_or_404(db, school_id)

    plan = MembershipPlan(
        school_id=school_id,
        name=payload.name.strip(),
        description=payload.description,
        price=payload.price,
        billing_cycle=payload.billing_cycle.value,
        class_credits=payload.class_credits,
        is_active=True,
    )
    db.add(plan)
    await db.commit()
    await db.refresh(plan)
    return PlanResponse.model_validate(plan)


async def _get_plan_or_404(db: AsyncSession, school_id: UUID, plan_id: UUID) -> MembershipPlan:
    plan = (
        await db.execute(
            select(MembershipPlan).where(MembershipPlan.id == plan_id, MembershipPlan.school_id == school_id)
        )
    ).scalar_one_or_none()
    if not plan:
        raise ServiceError("Plan not found", status.HTTP_404_NOT_FOUND)
    return plan


async def update_plan(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    plan_id: UUID,
    payload: PlanUpdate,
) -> PlanResponse:
    """Price changes apply to future invoices only; issued invoices keep their amounts."""
    authorize(current_user, "billing.plans.manage", school_id=school_id)
    plan = await _get_plan_or_404(db, school_id, plan_id)

    data = payload.model_dump(exclude_unset=True)
    if data.get("billing_cycle") is not None:
        data["billing_cycle"] = data["billing_cycle"].value
    if data.get("name") is not None:
        data["name"] = data["name"].strip()
    for field, value in data.items():
        setattr(plan, field, value)
    plan.updated_at = utc_now()
    await db.commit()
    await db.refresh(plan)
    return PlanResponse.model_validate(plan)


async def delete_plan(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    plan_id: UUID,
) -> str:
    """Deactivate a plan still referenced by subscriptions or invoices; delete it otherwise."""
    authorize(current_user, "billing.plans.manage", school_id=school_id)
    plan = await _get_plan_or_404(db, school_id, plan_id)

    referenced = (
        await db.execute(select(Subscription.id).where(Subscription.plan_id == plan_id).limit(1))
    ).scalar_one_or_none()
    if referenced is None:
        referenced = (
            await db.execute(select(Invoice.id).where(Invoice.plan_id == plan_id).limit(1))
        ).scalar_one_or_none()

    if referenced is not None:
        plan.is_active = False
        plan.updated_at = utc_now()
        await db.commit()
        return "Plan deactivated"
    await db.delete(plan)
    await db.commit()
    return "Plan deleted"


# --- Subscriptions ---
def _subscription_to_response(sub: Subscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=sub.id,
        school_id=sub.school_id,
        student_id=sub.student_id,
        student_name=sub.student.full_name if sub.student else None,
        plan=PlanSummary.model_validate(sub.plan),
        status=SubscriptionStatus(sub.status),
        start_date=sub.start_date,
        end_date=sub.end_date,
        next_invoice_date=sub.next_invoice_date,
        created_at=sub.created_at,
    )


async def _get_subscription_or_404(db: AsyncSession, school_id: UUID, subscription_id: UUID) -> Subscription:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.id == subscription_id, Subscription.school_id == school_id)
        .options(selectinload(Subscription.plan), selectinload(Subscription.student))
        .execution_options(populate_existing=True)
    )
    sub = result.scalar_one_or_none()
    if not sub:
        raise ServiceError("Subscription not found", status.HTTP_404_NOT_FOUND)
    return sub


async def list_subscriptions(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    status_filter: Optional[SubscriptionStatus] = None,
    student_id: Optional[UUID] = None,
) -> List[SubscriptionResponse]:
    authorize(current_user, "billing.subscriptions.read", school_id=school_id)
    stmt = select(Subscription).where(Subscription.school_id == school_id)
    if status_filter is not None:
        stmt = stmt.where(Subscription.status == status_filter.value)
    if current_user.is_student:
        stmt = stmt.where(Subscription.student_id == current_user.id)
    elif student_id is not None:
        stmt = stmt.where(Subscription.student_id == student_id)
    stmt = stmt.options(selectinload(Subscription.plan), selectinload(Subscription.student)).order_by(
        Subscription.created_at.desc()
    )
    result = await db.execute(stmt)
    return [_subscription_to_response(s) for s in result.scalars().all()]


async def create_subscription(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    payload: SubscriptionCreate,
) -> SubscriptionResponse:
    """
    Put a roster student on an active plan. The first invoice goes out on the start
    date when that is the 1st of a month, otherwise on the following 1st.
    """
    authorize(current_user, "billing.subscriptions.manage", school_id=school_id)
    await _get_school_or_404(db, school_id)
    plan = await _get_active_plan(db, school_id, payload.plan_id)

    if not await db.get(User, payload.student_id):
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    if not await is_on_roster(db, payload.student_id, school_id):
        raise ServiceError("Student is not actively enrolled at this school", status.HTTP_400_BAD_REQUEST)

    existing = (
        await db.execute(
            select(Subscription.id).where(
                Subscription.student_id == payload.student_id,
                Subscription.plan_id == plan.id,
                Subscription.school_id == school_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
            )
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise ServiceError(
            "Student already has an active subscription to this plan",
            status.HTTP_409_CONFLICT,
            code=StateConflict.DUPLICATE.value,
        )

    start = payload.start_date or utc_today()
    sub = Subscription(
        school_id=school_id,
        student_id=payload.student_id,
        plan_id=plan.id,
        status=SubscriptionStatus.ACTIVE.value,
        start_date=start,
        next_invoice_date=first_invoice_date(start),
    )
    db.add(sub)
    await db.commit()
    logger.info("Subscription created: %s student=%s plan=%s", sub.id, sub.student_id, plan.name)
    return _subscription_to_response(await _get_subscription_or_404(db, school_id, sub.id))


async def update_subscription(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    subscription_id: UUID,
    payload: SubscriptionUpdate,
) -> SubscriptionResponse:
    """Pause (stops auto-invoicing), resume (next invoice on the coming 1st) or switch plan."""
    authorize(current_user, "billing.subscriptions.manage", school_id=school_id)
    sub = await _get_subscription_or_404(db, school_id, subscription_id)

    if sub.status == SubscriptionStatus.CANCELLED.value:
        raise ServiceError("Cancelled subscriptions cannot be changed", status.HTTP_409_CONFLICT)

    if payload.status is not None and payload.status.value != sub.status:
        if payload.status == SubscriptionStatus.CANCELLED:
            raise ServiceError("Use the cancel endpoint to cancel a subscription", status.HTTP_400_BAD_REQUEST)
        if payload.status == SubscriptionStatus.PAUSED:
            sub.next_invoice_date = None
        elif payload.status == SubscriptionStatus.ACTIVE:
            sub.next_invoice_date = first_of_next_month(utc_today())
        sub.status = payload.status.value

    if payload.plan_id is not None and payload.plan_id != sub.plan_id:
        plan = await _get_active_plan(db, school_id, payload.plan_id)
        sub.plan_id = plan.id

    sub.updated_at = utc_now()
    await db.commit()
    return _subscription_to_response(await _get_subscription_or_404(db, school_id, subscription_id))


async def cancel_subscription(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    subscription_id: UUID,
) -> None:
    authorize(current_user, "billing.subscriptions.manage", school_id=school_id)
    sub = await _get_subscription_or_404(db, school_id, subscription_id)

    sub.status = SubscriptionStatus.CANCELLED.value
    sub.end_date = utc_today()
    sub.next_invoice_date = None
    sub.updated_at = utc_now()
    await db.commit()
    logger.info("Subscription cancelled: %s", subscription_id)


# --- Invoices ---
async def list_invoices(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    status_filter: Optional[InvoiceStatus] = None,
    student_id: Optional[UUID] = None,
) -> List[InvoiceResponse]:
    """Invoices for a school, newest first. Students only see their own."""
    authorize(current_user, "billing.invoices.read", school_id=school_id)
    stmt = select(Invoice).where(Invoice.school_id == school_id)
    if current_user.is_student:
        stmt = stmt.where(Invoice.student_id == current_user.id)
    elif student_id is not None:
        stmt = stmt.where(Invoice.student_id == student_id)
    if status_filter is not None:
        stmt = stmt.where(Invoice.status == status_filter.value)
    result = await db.execute(stmt.order_by(Invoice.created_at.desc()))
    return [InvoiceResponse.model_validate(i) for i in result.scalars().all()]


async def create_invoice(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    payload: InvoiceCreate,
) -> InvoiceResponse:
    authorize(current_user, "billing.invoices.create", school_id=school_id)
    await _get_school_or_404(db, school_id)
    if not await db.get(User, payload.student_id):
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    if not await is_on_roster(db, payload.student_id, school_id):
        raise ServiceError("Student is not actively enrolled at this school", status.HTTP_400_BAD_REQUEST)

    if payload.plan_id is not None:
        plan = await _get_plan_or_404(db, school_id, payload.plan_id)
        subtotal = Decimal(plan.price)
    elif payload.subtotal is not None:
        subtotal = payload.subtotal
    else:
        raise ServiceError("Either plan_id or subtotal is required", status.HTTP_400_BAD_REQUEST)

    billing = await get_school_billing_settings(db, school_id)
    tax_amount, total_amount = compute_totals(subtotal, billing.tax_rate)
    today = utc_today()

    invoice = Invoice(
        invoice_number=await next_invoice_number(db, school_id, today.year),
        school_id=school_id,
        student_id=payload.student_id,
        plan_id=payload.plan_id,
        subtotal=subtotal,
        tax_amount=tax_amount,
        total_amount=total_amount,
        status=InvoiceStatus.SENT.value,
        due_date=payload.due_date or today + timedelta(days=INVOICE_DUE_DAYS),
        notes=payload.notes,
    )
    db.add(invoice)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError(
            "Invoice number already taken; retry",
            status.HTTP_409_CONFLICT,
            code=StateConflict.DUPLICATE.value,
        )
    await db.refresh(invoice)
    logger.info("Invoice created: %s total=%s", invoice.invoice_number, invoice.total_amount)
    return InvoiceResponse.model_validate(invoice)


async def _get_invoice_or_404(db: AsyncSession, school_id: UUID, invoice_id: UUID) -> Invoice:
    invoice = (
        await db.execute(select(Invoice).where(Invoice.id == invoice_id, Invoice.school_id == school_id))
    ).scalar_one_or_none()
    if not invoice:
        raise ServiceError("Invoice not found", status.HTTP_404_NOT_FOUND)
    return invoice


async def update_invoice_status(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    invoice_id: UUID,
    payload: InvoiceStatusUpdate,
) -> InvoiceResponse:
    authorize(current_user, "billing.invoices.update", school_id=school_id)
    invoice = await _get_invoice_or_404(db, school_id, invoice_id)

    invoice.status = payload.status.value
    if payload.status == InvoiceStatus.PAID and invoice.paid_at is None:
        invoice.paid_at = utc_now()
    invoice.updated_at = utc_now()
    await db.commit()
    await db.refresh(invoice)
    return InvoiceResponse.model_validate(invoice)


# --- Payments ---
async def record_payment(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    payload: PaymentCreate,
) -> PaymentResponse:
    """Record a payment; the invoice becomes PAID once its payments cover total_amount."""
    invoice = await _get_invoice_or_404(db, school_id, payload.invoice_id)
    authorize(current_user, "billing.payments.record", school_id=school_id, student_id=invoice.student_id)
    if invoice.status in (InvoiceStatus.CANCELLED.value, InvoiceStatus.REFUNDED.value):
        raise ServiceError("Payments cannot be recorded on a closed invoice", status.HTTP_400_BAD_REQUEST)

    payment = Payment(
        invoice_id=invoice.id,
        student_id=invoice.student_id,
        amount=payload.amount,
        method=payload.method.value,
        gateway_transaction_id=payload.gateway_transaction_id,
        recorded_by_id=None if current_user.is_student else current_user.id,
        notes=payload.notes,
        paid_at=utc_now(),
    )
    db.add(payment)
    await db.flush()

    total_paid = (
        await db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.invoice_id == invoice.id)
        )
    ).scalar_one()
    if Decimal(str(total_paid)) >= Decimal(invoice.total_amount) and invoice.status != InvoiceStatus.PAID.value:
        invoice.status = InvoiceStatus.PAID.value
        invoice.paid_at = utc_now()
        invoice.updated_at = utc_now()

    await db.commit()
    await db.refresh(payment)
    logger.info("Payment recorded: invoice=%s amount=%s status=%s", invoice.invoice_number, payload.amount, invoice.status)
    return PaymentResponse.model_validate(payment)


async def list_payments(
    db: AsyncSession,
    current_user: CurrentUser,
    school_id: UUID,
    invoice_id: Optional[UUID] = None,
    student_id: Optional[UUID] = None,
) -> List[PaymentResponse]:
    authorize(current_user, "billing.payments.read", school_id=school_id)
    stmt = select(Payment).join(Invoice, Invoice.id == Payment.invoice_id).where(Invoice.school_id == school_id)
    if invoice_id is not None:
        stmt = stmt.where(Payment.invoice_id == invoice_id)
    if current_user.is_student:
        stmt = stmt.where(Payment.student_id == current_user.id)
    elif student_id is not None:
        stmt = stmt.where(Payment.student_id == student_id)
    result = await db.execute(stmt.order_by(Payment.paid_at.desc()))
    return [PaymentResponse.model_validate(p) for p in result.scalars().all()]


# --- Summary ---
async def _invoice_bucket(db: AsyncSession, school_id: UUID, invoice_status: InvoiceStatus) -> AmountBucket:
    count, amount = (
        await db.execute(
            select(func.count(Invoice.id), func.coalesce(func.sum(Invoice.total_amount), 0)).where(
                Invoice.school_id == school_id,
                Invoice.status == invoice_status.value,
            )
        )
    ).one()
    return AmountBucket(count=count, amount=Decimal(str(amount)))


async def billing_summary(db: AsyncSession, current_user: CurrentUser, school_id: UUID) -> BillingSummaryResponse:
    authorize(current_user, "billing.summary", school_id=school_id)

    school_payments = select(func.coalesce(func.sum(Payment.amount), 0)).join(
        Invoice, Invoice.id == Payment.invoice_id
    ).where(Invoice.school_id == school_id)
    total_revenue = (await db.execute(school_payments)).scalar_one()
    month_start = datetime.combine(utc_today().replace(day=1), time.min, tzinfo=timezone.utc)
    monthly_revenue = (await db.execute(school_payments.where(Payment.paid_at >= month_start))).scalar_one()

    active_plans = (
        await db.execute(
            select(func.count(MembershipPlan.id)).where(
                MembershipPlan.school_id == school_id, MembershipPlan.is_active.is_(True)
            )
        )
    ).scalar_one()
    active_subscriptions = (
        await db.execute(
            select(func.count(Subscription.id)).where(
                Subscription.school_id == school_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
            )
        )
    ).scalar_one()
    recent = (
        await db.execute(
            select(Payment)
            .join(Invoice, Invoice.id == Payment.invoice_id)
            .where(Invoice.school_id == school_id)
            .order_by(Payment.paid_at.desc())
            .limit(5)
        )
    ).scalars().all()

    return BillingSummaryResponse(
        total_revenue=Decimal(str(total_revenue)),
        monthly_revenue=Decimal(str(monthly_revenue)),
        outstanding=await _invoice_bucket(db, school_id, InvoiceStatus.SENT),
        overdue=await _invoice_bucket(db, school_id, InvoiceStatus.PAST_DUE),
        active_plans=active_plans,
        active_subscriptions=active_subscriptions,
        recent_payments=[PaymentResponse.model_validate(p) for p in recent],
    )


# --- Auto-invoice ---
async def trigger_auto_invoice(
    db: AsyncSession,
    current_user: CurrentUser,
    as_of: Optional[date] = None,
) -> AutoInvoiceRunResponse:
    """On-demand run of the monthly job. Safe to overlap with the scheduled run."""
    authorize(current_user, "billing.auto_invoice")
    summary = await run_auto_invoice(db, today=as_of)
    logger.info("Auto-invoice triggered manually by %s", current_user.id)
    return AutoInvoiceRunResponse(
        invoices_generated=summary.invoices_generated,
        invoice_errors=summary.invoice_errors,
        overdue_marked=summary.overdue_marked,
        details=[AutoInvoiceDetail(**d) for d in summary.as_dict()["details"]],
    )
