"""Billing router: payment config, plans, subscriptions, invoices, payments, summary and the auto-invoice trigger."""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.programs.schemas import MessageResponse
from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.enums import InvoiceStatus, SubscriptionStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
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
    PlanUpdate,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionUpdate,
)
from . import service

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


# --- Payment config ---
@router.get(
    "/config/{school_id}",
    response_model=PaymentConfigResponse,
    dependencies=[Depends(check_permission("billing.config"))],
)
async def get_payment_config(
    school_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentConfigResponse:
    try:
        return await service.get_payment_config(db, current_user, school_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put(
    "/config/{school_id}",
    response_model=PaymentConfigResponse,
    dependencies=[Depends(check_permission("billing.config"))],
)
async def upsert_payment_config(
    school_id: UUID,
    payload: PaymentConfigUpsert,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentConfigResponse:
    try:
        return await service.upsert_payment_config(db, current_user, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Membership plans ---
@router.get(
    "/plans/{school_id}",
    response_model=List[PlanResponse],
    dependencies=[Depends(check_permission("billing.plans.read"))],
)
async def list_plans(
    school_id: UUID,
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PlanResponse]:
    try:
        return await service.list_plans(db, current_user, school_id, include_inactive=include_inactive)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/plans/{school_id}",
    response_model=PlanResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("billing.plans.manage"))],
)
async def create_plan(
    school_id: UUID,
    payload: PlanCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PlanResponse:
    try:
        return await service.create_plan(db, current_user, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put(
    "/plans/{school_id}/{plan_id}",
    response_model=PlanResponse,
    dependencies=[Depends(check_permission("billing.plans.manage"))],
)
async def update_plan(
    school_id: UUID,
    plan_id: UUID,
    payload: PlanUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PlanResponse:
    try:
        return await service.update_plan(db, current_user, school_id, plan_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.delete(
    "/plans/{school_id}/{plan_id}",
    response_model=MessageResponse,
    dependencies=[Depends(check_permission("billing.plans.manage"))],
)
async def delete_plan(
    school_id: UUID,
    plan_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MessageResponse:
    try:
        message = await service.delete_plan(db, current_user, school_id, plan_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return MessageResponse(message=message)


# --- Subscriptions ---
@router.get(
    "/subscriptions/{school_id}",
    response_model=List[SubscriptionResponse],
    dependencies=[Depends(check_permission("billing.subscriptions.read"))],
)
async def list_subscriptions(
    school_id: UUID,
    status_filter: Optional[SubscriptionStatus] = Query(None, alias="status"),
    student_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[SubscriptionResponse]:
    try:
        return await service.list_subscriptions(
            db, current_user, school_id, status_filter=status_filter, student_id=student_id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/subscriptions/{school_id}",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("billing.subscriptions.manage"))],
)
async def create_subscription(
    school_id: UUID,
    payload: SubscriptionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> SubscriptionResponse:
    try:
        return await service.create_subscription(db, current_user, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.patch(
    "/subscriptions/{school_id}/{subscription_id}",
    response_model=SubscriptionResponse,
    dependencies=[Depends(check_permission("billing.subscriptions.manage"))],
)
async def update_subscription(
    school_id: UUID,
    subscription_id: UUID,
    payload: SubscriptionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> SubscriptionResponse:
    try:
        return await service.update_subscription(db, current_user, school_id, subscription_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.delete(
    "/subscriptions/{school_id}/{subscription_id}",
    response_model=MessageResponse,
    dependencies=[Depends(check_permission("billing.subscriptions.manage"))],
)
async def cancel_subscription(
    school_id: UUID,
    subscription_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MessageResponse:
    try:
        await service.cancel_subscription(db, current_user, school_id, subscription_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return MessageResponse(message="Subscription cancelled")


# --- Invoices ---
@router.get(
    "/invoices/{school_id}",
    response_model=List[InvoiceResponse],
    dependencies=[Depends(check_permission("billing.invoices.read"))],
)
async def list_invoices(
    school_id: UUID,
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    student_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[InvoiceResponse]:
    try:
        return await service.list_invoices(
            db, current_user, school_id, status_filter=status_filter, student_id=student_id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/invoices/{school_id}",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("billing.invoices.create"))],
)
async def create_invoice(
    school_id: UUID,
    payload: InvoiceCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> InvoiceResponse:
    try:
        return await service.create_invoice(db, current_user, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.patch(
    "/invoices/{school_id}/{invoice_id}/status",
    response_model=InvoiceResponse,
    dependencies=[Depends(check_permission("billing.invoices.update"))],
)
async def update_invoice_status(
    school_id: UUID,
    invoice_id: UUID,
    payload: InvoiceStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> InvoiceResponse:
    try:
        return await service.update_invoice_status(db, current_user, school_id, invoice_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Payments ---
@router.get(
    "/payments/{school_id}",
    response_model=List[PaymentResponse],
    dependencies=[Depends(check_permission("billing.payments.read"))],
)
async def list_payments(
    school_id: UUID,
    invoice_id: Optional[UUID] = Query(None),
    student_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PaymentResponse]:
    try:
        return await service.list_payments(
            db, current_user, school_id, invoice_id=invoice_id, student_id=student_id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/payments/{school_id}",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("billing.payments.record"))],
)
async def record_payment(
    school_id: UUID,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResponse:
    try:
        return await service.record_payment(db, current_user, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Summary ---
@router.get(
    "/summary/{school_id}",
    response_model=BillingSummaryResponse,
    dependencies=[Depends(check_permission("billing.summary"))],
)
async def billing_summary(
    school_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> BillingSummaryResponse:
    try:
        return await service.billing_summary(db, current_user, school_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Auto-invoice ---
@router.post(
    "/auto-invoice/run",
    response_model=AutoInvoiceRunResponse,
    dependencies=[Depends(check_permission("billing.auto_invoice"))],
)
async def trigger_auto_invoice(
    as_of: Optional[date] = Query(None, description="Run date; defaults to today (UTC)"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AutoInvoiceRunResponse:
    try:
        return await service.trigger_auto_invoice(db, current_user, as_of=as_of)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
