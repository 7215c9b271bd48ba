"""Billing schemas: payment config, membership plans, subscriptions, invoices, payments."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.api.v1.programs.schemas import reject_null
from app.core.enums import BillingCycle, InvoiceStatus, PaymentMethod, SubscriptionStatus


# --- Payment config ---
class PaymentConfigUpsert(BaseModel):
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100, description="Percent")
    late_fee_amount: Optional[Decimal] = Field(None, ge=0)
    grace_period_days: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class PaymentConfigResponse(BaseModel):
    school_id: UUID
    currency: str
    tax_rate: Decimal
    late_fee_amount: Decimal
    grace_period_days: int
    is_active: bool
    # True when the school has no saved config and platform defaults apply
    is_default: bool = False


# --- Membership plans ---
class PlanCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    class_credits: Optional[int] = Field(None, ge=0)


class PlanUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    billing_cycle: Optional[BillingCycle] = None
    class_credits: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("name", "price", "billing_cycle", "is_active", mode="before")
    @classmethod
    def not_null(cls, v):
        return reject_null(v)


class PlanResponse(BaseModel):
    id: UUID
    school_id: UUID
    name: str
    description: Optional[str] = None
    price: Decimal
    billing_cycle: BillingCycle
    class_credits: Optional[int] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PlanSummary(BaseModel):
    id: UUID
    name: str
    price: Decimal
    billing_cycle: BillingCycle

    class Config:
        from_attributes = True


# --- Subscriptions ---
class SubscriptionCreate(BaseModel):
    student_id: UUID
    plan_id: UUID
    # Defaults to today
    start_date: Optional[date] = None


class SubscriptionUpdate(BaseModel):
    status: Optional[SubscriptionStatus] = None
    plan_id: Optional[UUID] = None


class SubscriptionResponse(BaseModel):
    id: UUID
    school_id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    plan: PlanSummary
    status: SubscriptionStatus
    start_date: date
    end_date: Optional[date] = None
    next_invoice_date: Optional[date] = None
    created_at: datetime


# --- Invoices ---
class InvoiceCreate(BaseModel):
    student_id: UUID
    # Price comes from the plan when given, otherwise subtotal is required
    plan_id: Optional[UUID] = None
    subtotal: Optional[Decimal] = Field(None, ge=0)
    due_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus


class InvoiceResponse(BaseModel):
    id: UUID
    invoice_number: str
    school_id: UUID
    student_id: UUID
    plan_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    status: InvoiceStatus
    due_date: date
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# --- Payments ---
class PaymentCreate(BaseModel):
    invoice_id: UUID
    amount: Decimal = Field(..., ge=Decimal("0.01"))
    method: PaymentMethod = PaymentMethod.CASH
    gateway_transaction_id: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    id: UUID
    invoice_id: UUID
    student_id: UUID
    amount: Decimal
    method: PaymentMethod
    gateway_transaction_id: Optional[str] = None
    recorded_by_id: Optional[UUID] = None
    notes: Optional[str] = None
    paid_at: datetime

    class Config:
        from_attributes = True


# --- Summary ---
class AmountBucket(BaseModel):
    count: int
    amount: Decimal


class BillingSummaryResponse(BaseModel):
    total_revenue: Decimal
    monthly_revenue: Decimal
    outstanding: AmountBucket
    overdue: AmountBucket
    active_plans: int
    active_subscriptions: int
    recent_payments: List[PaymentResponse] = Field(default_factory=list)


# --- Auto-invoice ---
class AutoInvoiceDetail(BaseModel):
    invoice_id: UUID
    invoice_number: str
    subscription_id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    plan_name: str
    total_amount: Decimal
    next_invoice_date: date


class AutoInvoiceRunResponse(BaseModel):
    invoices_generated: int
    invoice_errors: int
    overdue_marked: int
    details: List[AutoInvoiceDetail] = Field(default_factory=list)
