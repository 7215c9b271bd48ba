from datetime import date
from decimal import Decimal

import pytest

from app.core.enums import BillingCycle
from app.services.invoicing import compute_totals, end_of_month, first_invoice_date, next_invoice_date


@pytest.mark.parametrize(
    "start, cycle, expected",
    [
        (date(2024, 3, 1), BillingCycle.WEEKLY, date(2024, 3, 8)),
        (date(2024, 3, 1), BillingCycle.BIWEEKLY, date(2024, 3, 15)),
        (date(2024, 3, 1), BillingCycle.MONTHLY, date(2024, 4, 1)),
        (date(2024, 3, 1), BillingCycle.QUARTERLY, date(2024, 6, 1)),
        (date(2024, 3, 1), BillingCycle.SEMI_ANNUAL, date(2024, 9, 1)),
        (date(2024, 3, 1), BillingCycle.ANNUAL, date(2025, 3, 1)),
        (date(2024, 12, 29), BillingCycle.WEEKLY, date(2025, 1, 5)),
    ],
)
def test_next_invoice_date(start: date, cycle: BillingCycle, expected: date) -> None:
    assert next_invoice_date(start, cycle) == expected


def test_month_steps_clamp_to_month_end() -> None:
    assert next_invoice_date(date(2024, 1, 31), BillingCycle.MONTHLY) == date(2024, 2, 29)
    assert next_invoice_date(date(2023, 1, 31), BillingCycle.MONTHLY) == date(2023, 2, 28)
    assert next_invoice_date(date(2024, 2, 29), BillingCycle.ANNUAL) == date(2025, 2, 28)


def test_first_invoice_date() -> None:
    assert first_invoice_date(date(2024, 3, 1)) == date(2024, 3, 1)
    assert first_invoice_date(date(2024, 3, 15)) == date(2024, 4, 1)
    assert first_invoice_date(date(2024, 12, 31)) == date(2025, 1, 1)


def test_end_of_month() -> None:
    assert end_of_month(date(2024, 2, 1)) == date(2024, 2, 29)
    assert end_of_month(date(2024, 4, 30)) == date(2024, 4, 30)


def test_totals_round_to_cents() -> None:
    assert compute_totals(Decimal("100"), Decimal("0")) == (Decimal("0.00"), Decimal("100.00"))
    assert compute_totals(Decimal("99.99"), Decimal("8.25")) == (Decimal("8.25"), Decimal("108.24"))
