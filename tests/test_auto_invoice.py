import asyncio
from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.enums import BillingCycle, InvoiceStatus, SubscriptionStatus
from app.core.models import Invoice, Subscription
from app.services.auto_invoice import invoice_period, mark_overdue_invoices, run_auto_invoice

MARCH_1 = date(2024, 3, 1)


async def _run(session_factory: async_sessionmaker, today: date):
    # The job rolls back between subscriptions, so it gets its own session
    async with session_factory() as session:
        return await run_auto_invoice(session, today)


async def _invoices(db: AsyncSession, subscription: Subscription):
    result = await db.execute(
        select(Invoice)
        .where(Invoice.subscription_id == subscription.id)
        .order_by(Invoice.invoice_number)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


@pytest.mark.asyncio
async def test_due_subscription_is_invoiced_once(
    session_factory: async_sessionmaker, db_session: AsyncSession, factory, dojo
) -> None:
    plan = await factory.plan(dojo["school"], price=Decimal("120.00"), name="Kids Karate")
    subscription = await factory.subscription(dojo["school"], dojo["student"], plan, MARCH_1)

    summary = await _run(session_factory, MARCH_1)
    assert summary.invoices_generated == 1
    assert summary.invoice_errors == 0
    assert summary.details[0].next_invoice_date == date(2024, 4, 1)

    [invoice] = await _invoices(db_session, subscription)
    assert invoice.status == InvoiceStatus.SENT.value
    assert invoice.invoice_number == "INV-2024-0001"
    assert invoice.due_date == date(2024, 3, 31)
    assert invoice.total_amount == Decimal("120.00")
    assert invoice.notes == "Auto-generated for Kids Karate subscription"

    refreshed = await db_session.get(Subscription, subscription.id, populate_existing=True)
    assert refreshed.next_invoice_date == date(2024, 4, 1)

    again = await _run(session_factory, MARCH_1)
    assert again.invoices_generated == 0
    assert len(await _invoices(db_session, subscription)) == 1


@pytest.mark.asyncio
async def test_backlog_is_caught_up_in_one_run(
    session_factory: async_sessionmaker, db_session: AsyncSession, factory, dojo
) -> None:
    plan = await factory.plan(dojo["school"])
    subscription = await factory.subscription(dojo["school"], dojo["student"], plan, date(2024, 1, 1))

    summary = await _run(session_factory, MARCH_1)
    assert summary.invoices_generated == 3
    assert [d.next_invoice_date for d in summary.details] == [date(2024, 2, 1), date(2024, 3, 1), date(2024, 4, 1)]

    refreshed = await db_session.get(Subscription, subscription.id, populate_existing=True)
    assert refreshed.next_invoice_date == date(2024, 4, 1)
    assert [i.invoice_number for i in await _invoices(db_session, subscription)] == [
        "INV-2024-0001",
        "INV-2024-0002",
        "INV-2024-0003",
    ]

    again = await _run(session_factory, MARCH_1)
    assert again.invoices_generated == 0


@pytest.mark.asyncio
async def test_weekly_plan_is_invoiced_for_every_week_of_the_month(
    session_factory: async_sessionmaker, db_session: AsyncSession, factory, dojo
) -> None:
    plan = await factory.plan(dojo["school"], price=Decimal("35.00"), billing_cycle=BillingCycle.WEEKLY)
    subscription = await factory.subscription(dojo["school"], dojo["student"], plan, MARCH_1)

    summary = await _run(session_factory, date(2024, 3, 29))
    assert summary.invoices_generated == 5
    assert summary.invoice_errors == 0

    refreshed = await db_session.get(Subscription, subscription.id, populate_existing=True)
    assert refreshed.next_invoice_date == date(2024, 4, 5)
    assert len(await _invoices(db_session, subscription)) == 5


@pytest.mark.asyncio
async def test_stale_period_is_skipped_without_invoicing(
    session_factory: async_sessionmaker, db_session: AsyncSession, factory, dojo
) -> None:
    plan = await factory.plan(dojo["school"])
    subscription = await factory.subscription(dojo["school"], dojo["student"], plan, MARCH_1)
    await _run(session_factory, MARCH_1)

    # A second worker that read next_invoice_date before the first one advanced it
    async with session_factory() as session:
        assert await invoice_period(session, subscription.id, MARCH_1, MARCH_1) is None

    assert len(await _invoices(db_session, subscription)) == 1
    refreshed = await db_session.get(Subscription, subscription.id, populate_existing=True)
    assert refreshed.next_invoice_date == date(2024, 4, 1)


@pytest.mark.asyncio
async def test_overlapping_workers_invoice_a_period_once(
    session_factory: async_sessionmaker, db_session: AsyncSession, factory, dojo
) -> None:
    plan = await factory.plan(dojo["school"])
    subscription = await factory.subscription(dojo["school"], dojo["student"], plan, MARCH_1)

    async def worker():
        async with session_factory() as session:
            return await invoice_period(session, subscription.id, MARCH_1, MARCH_1)

    outcomes = await asyncio.gather(worker(), worker())
    assert sum(1 for o in outcomes if o is not None) == 1
    assert len(await _invoices(db_session, subscription)) == 1


@pytest.mark.asyncio
async def test_paused_cancelled_and_future_subscriptions_are_skipped(
    session_factory: async_sessionmaker, factory, dojo
) -> None:
    plan = await factory.plan(dojo["school"])
    await factory.subscription(dojo["school"], dojo["student"], plan, MARCH_1, status=SubscriptionStatus.PAUSED)
    other = await factory.student(dojo["school"], first_name="Kim")
    await factory.subscription(dojo["school"], other, plan, MARCH_1, status=SubscriptionStatus.CANCELLED)
    third = await factory.student(dojo["school"], first_name="Lee")
    await factory.subscription(dojo["school"], third, plan, date(2024, 4, 1))
    fourth = await factory.student(dojo["school"], first_name="Ana")
    await factory.subscription(dojo["school"], fourth, plan, None)

    summary = await _run(session_factory, MARCH_1)
    assert summary.invoices_generated == 0


@pytest.mark.asyncio
async def test_tax_comes_from_school_config(
    session_factory: async_sessionmaker, db_session: AsyncSession, factory, dojo
) -> None:
    await factory.payment_config(dojo["school"], tax_rate=Decimal("8.25"))
    plan = await factory.plan(dojo["school"], price=Decimal("100.00"))
    subscription = await factory.subscription(dojo["school"], dojo["student"], plan, MARCH_1)

    await _run(session_factory, MARCH_1)

    [invoice] = await _invoices(db_session, subscription)
    assert invoice.subtotal == Decimal("100.00")
    assert invoice.tax_amount == Decimal("8.25")
    assert invoice.total_amount == Decimal("108.25")


@pytest.mark.asyncio
async def test_quarterly_plan_advances_three_months(
    session_factory: async_sessionmaker, db_session: AsyncSession, factory, dojo
) -> None:
    plan = await factory.plan(dojo["school"], billing_cycle=BillingCycle.QUARTERLY)
    subscription = await factory.subscription(dojo["school"], dojo["student"], plan, MARCH_1)

    await _run(session_factory, MARCH_1)

    refreshed = await db_session.get(Subscription, subscription.id, populate_existing=True)
    assert refreshed.next_invoice_date == date(2024, 6, 1)


@pytest.mark.asyncio
async def test_overdue_respects_grace_period(
    session_factory: async_sessionmaker, db_session: AsyncSession, factory, dojo
) -> None:
    await factory.payment_config(dojo["school"], grace_period_days=7)
    plan = await factory.plan(dojo["school"])
    subscription = await factory.subscription(dojo["school"], dojo["student"], plan, MARCH_1)
    await _run(session_factory, MARCH_1)

    async with session_factory() as session:
        assert await mark_overdue_invoices(session, date(2024, 4, 7)) == 0
    [invoice] = await _invoices(db_session, subscription)
    assert invoice.status == InvoiceStatus.SENT.value

    async with session_factory() as session:
        assert await mark_overdue_invoices(session, date(2024, 4, 8)) == 1
    [invoice] = await _invoices(db_session, subscription)
    assert invoice.status == InvoiceStatus.PAST_DUE.value


@pytest.mark.asyncio
async def test_paid_invoices_never_go_past_due(
    session_factory: async_sessionmaker, db_session: AsyncSession, factory, dojo
) -> None:
    plan = await factory.plan(dojo["school"])
    subscription = await factory.subscription(dojo["school"], dojo["student"], plan, MARCH_1)
    await _run(session_factory, MARCH_1)

    [invoice] = await _invoices(db_session, subscription)
    invoice.status = InvoiceStatus.PAID.value
    await db_session.commit()

    async with session_factory() as session:
        assert await mark_overdue_invoices(session, date(2024, 6, 1)) == 0


@pytest.mark.asyncio
async def test_manual_trigger_is_super_admin_only(client: AsyncClient, factory, dojo, auth) -> None:
    plan = await factory.plan(dojo["school"])
    await factory.subscription(dojo["school"], dojo["student"], plan, MARCH_1)

    denied = await client.post(
        "/api/v1/billing/auto-invoice/run", params={"as_of": "2024-03-01"}, headers=auth(dojo["owner"])
    )
    assert denied.status_code == 403

    response = await client.post(
        "/api/v1/billing/auto-invoice/run", params={"as_of": "2024-03-01"}, headers=auth(dojo["super_admin"])
    )
    assert response.status_code == 200
    body = response.json()
    assert body["invoices_generated"] == 1
    assert body["details"][0]["invoice_number"] == "INV-2024-0001"
    assert body["details"][0]["next_invoice_date"] == "2024-04-01"
    assert Decimal(body["details"][0]["total_amount"]) == Decimal("100.00")
