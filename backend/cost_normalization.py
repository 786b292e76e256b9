from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from backend.billing_cycle import (
    BillingCycle,
    CycleKind,
    InvalidScheduleError,
    ensure_cycle,
)

CENT = Decimal("0.01")
MONTHS_PER_YEAR = Decimal("12")
WEEKS_PER_YEAR = Decimal("52")
# Average year length for custom day intervals; 365.25 / 12 = 30.4375 days a month.
DAYS_PER_YEAR = Decimal("365.25")

YEARLY_MULTIPLIERS = {
    CycleKind.WEEKLY: WEEKS_PER_YEAR,
    CycleKind.MONTHLY: Decimal("12"),
    CycleKind.QUARTERLY: Decimal("4"),
    CycleKind.BIANNUALLY: Decimal("2"),
    CycleKind.YEARLY: Decimal("1"),
}

MONTHLY_DIVISORS = {
    CycleKind.MONTHLY: Decimal("1"),
    CycleKind.QUARTERLY: Decimal("3"),
    CycleKind.BIANNUALLY: Decimal("6"),
    CycleKind.YEARLY: Decimal("12"),
}


def to_monthly(cost: Decimal | int | float | str, cycle: BillingCycle | CycleKind | str) -> Decimal:
    """Convert a per-cycle cost into its monthly equivalent."""
    normalized_cycle = ensure_cycle(cycle)
    amount = _coerce_amount(cost)
    if normalized_cycle.kind is CycleKind.CUSTOM:
        return amount * DAYS_PER_YEAR / MONTHS_PER_YEAR / _custom_days(normalized_cycle)
    if normalized_cycle.kind is CycleKind.WEEKLY:
        return amount * WEEKS_PER_YEAR / MONTHS_PER_YEAR
    return amount / MONTHLY_DIVISORS[normalized_cycle.kind]


def to_yearly(cost: Decimal | int | float | str, cycle: BillingCycle | CycleKind | str) -> Decimal:
    """Convert a per-cycle cost into its yearly equivalent."""
    normalized_cycle = ensure_cycle(cycle)
    amount = _coerce_amount(cost)
    if normalized_cycle.kind is CycleKind.CUSTOM:
        return amount * DAYS_PER_YEAR / _custom_days(normalized_cycle)
    return amount * YEARLY_MULTIPLIERS[normalized_cycle.kind]


def round_currency(amount: Decimal | int | float | str) -> Decimal:
    return _coerce_amount(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def _custom_days(cycle: BillingCycle) -> Decimal:
    if cycle.interval_days is None or cycle.interval_days <= 0:
        raise InvalidScheduleError("Custom billing cycles require a positive number of days.")
    return Decimal(cycle.interval_days)


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
