from __future__ import annotations

from calendar import monthrange
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from backend.billing_cycle import BillingCycle, CycleKind
from backend.billing_schedule import add_months, next_payment_date, project_occurrences
from backend.cost_normalization import round_currency, to_monthly, to_yearly

ZERO = Decimal("0")
WHOLE_PERCENT = Decimal("1")
UNCATEGORIZED = "Uncategorized"
HIGH_SPENDING_THRESHOLD = Decimal("200")
CATEGORY_DOMINANCE_SHARE = Decimal("0.4")
EXPENSIVE_MONTHLY_THRESHOLD = Decimal("20")
RENEWAL_WARNING_DAYS = 7
SUPPORTED_PERIODS = {"month", "quarter", "year"}


@dataclass(frozen=True)
class SubscriptionRecord:
    id: int
    name: str
    cost: Decimal
    billing_cycle: BillingCycle
    start_date: date
    next_payment_date: Optional[date] = None
    category: Optional[str] = None
    is_active: bool = True
    logo_url: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def category_name(self) -> str:
        return self.category or UNCATEGORIZED

    @property
    def monthly_cost(self) -> Decimal:
        return to_monthly(self.cost, self.billing_cycle)

    @property
    def yearly_cost(self) -> Decimal:
        return to_yearly(self.cost, self.billing_cycle)


@dataclass(frozen=True)
class PaymentRecord:
    subscription_id: int
    amount: Decimal
    payment_date: date


@dataclass(frozen=True)
class SpendingSummary:
    total_subscriptions: int
    total_monthly: Decimal
    total_yearly: Decimal
    avg_monthly_cost: Decimal


@dataclass(frozen=True)
class CategorySpending:
    name: str
    monthly: Decimal
    yearly: Decimal
    count: int
    subscription_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class TrendBucket:
    month: date
    total: Decimal
    subscription_count: int
    projected: bool


@dataclass(frozen=True)
class UpcomingRenewal:
    subscription: SubscriptionRecord
    renewal_date: date
    days_until_renewal: int


@dataclass(frozen=True)
class Insight:
    type: str
    title: str
    message: str
    action: str


@dataclass(frozen=True)
class DashboardMetrics:
    active_subscriptions: int
    monthly_cost: Decimal
    this_month_spending: Decimal


@dataclass(frozen=True)
class PeriodSnapshot:
    start: date
    end: date
    subscription_count: int
    monthly_spending: Decimal
    new_subscriptions: int


@dataclass(frozen=True)
class CategoryChange:
    category: str
    current: Decimal
    previous: Decimal
    change: Decimal
    change_percent: Decimal


@dataclass(frozen=True)
class PeriodComparison:
    period: str
    current: PeriodSnapshot
    previous: PeriodSnapshot
    subscription_count_change: int
    monthly_spending_change: Decimal
    monthly_spending_change_percent: Decimal
    trend: str
    categories: List[CategoryChange] = field(default_factory=list)
    insights: List[str] = field(default_factory=list)


def active_only(records: Iterable[SubscriptionRecord]) -> List[SubscriptionRecord]:
    return [record for record in records if record.is_active]


def summarize_spending(records: Iterable[SubscriptionRecord]) -> SpendingSummary:
    active = active_only(records)
    total_monthly = sum((record.monthly_cost for record in active), ZERO)
    total_yearly = sum((record.yearly_cost for record in active), ZERO)
    average = total_monthly / len(active) if active else ZERO
    return SpendingSummary(
        total_subscriptions=len(active),
        total_monthly=round_currency(total_monthly),
        total_yearly=round_currency(total_yearly),
        avg_monthly_cost=round_currency(average),
    )


def category_breakdown(records: Iterable[SubscriptionRecord]) -> List[CategorySpending]:
    monthly: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    yearly: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    members: Dict[str, List[int]] = defaultdict(list)
    for record in active_only(records):
        name = record.category_name
        monthly[name] += record.monthly_cost
        yearly[name] += record.yearly_cost
        members[name].append(record.id)

    categories = [
        CategorySpending(
            name=name,
            monthly=round_currency(monthly[name]),
            yearly=round_currency(yearly[name]),
            count=len(members[name]),
            subscription_ids=tuple(members[name]),
        )
        for name in members
    ]
    categories.sort(key=lambda item: (-item.monthly, item.name))
    return categories


def projected_trends(
    records: Iterable[SubscriptionRecord], today: date, months: int
) -> List[TrendBucket]:
    """Project spending for the ``months`` calendar months ending with today's month."""
    if months <= 0:
        raise ValueError("months must be greater than zero.")
    active = active_only(records)
    current_month = today.replace(day=1)
    buckets: List[TrendBucket] = []
    for offset in range(months - 1, -1, -1):
        month_start = add_months(current_month, -offset)
        total = ZERO
        billed = 0
        for record in active:
            occurrences = _occurrences_in_month(record, month_start)
            if occurrences:
                billed += 1
                total += record.cost * len(occurrences)
        buckets.append(
            TrendBucket(
                month=month_start,
                total=round_currency(total),
                subscription_count=billed,
                projected=True,
            )
        )
    return buckets


def payment_trends(payments: Iterable[PaymentRecord]) -> List[TrendBucket]:
    totals: Dict[date, Decimal] = defaultdict(lambda: ZERO)
    counts: Dict[date, int] = defaultdict(int)
    for payment in payments:
        month = payment.payment_date.replace(day=1)
        totals[month] += payment.amount
        counts[month] += 1
    return [
        TrendBucket(
            month=month,
            total=round_currency(totals[month]),
            subscription_count=counts[month],
            projected=False,
        )
        for month in sorted(totals)
    ]


def upcoming_renewals(
    records: Iterable[SubscriptionRecord], today: date, days: int
) -> List[UpcomingRenewal]:
    """Renewals falling on or after today and within ``days`` days."""
    if days < 0:
        raise ValueError("days must not be negative.")
    horizon = today + timedelta(days=days)
    renewals: List[UpcomingRenewal] = []
    for record in active_only(records):
        renewal_date = next_renewal(record, today)
        if renewal_date <= horizon:
            renewals.append(
                UpcomingRenewal(
                    subscription=record,
                    renewal_date=renewal_date,
                    days_until_renewal=(renewal_date - today).days,
                )
            )
    renewals.sort(key=lambda item: (item.renewal_date, item.subscription.id))
    return renewals


def next_renewal(record: SubscriptionRecord, today: date) -> date:
    return next_payment_date(
        record.start_date,
        record.billing_cycle,
        today - timedelta(days=1),
        scheduled=record.next_payment_date,
    )


def most_expensive(
    records: Iterable[SubscriptionRecord], limit: int
) -> List[SubscriptionRecord]:
    if limit <= 0:
        raise ValueError("limit must be greater than zero.")
    ranked = sorted(
        active_only(records),
        key=lambda record: (-record.monthly_cost, record.id),
    )
    return ranked[:limit]


def generate_insights(records: Iterable[SubscriptionRecord], today: date) -> List[Insight]:
    active = active_only(records)
    if not active:
        return [
            Insight(
                type="info",
                title="No Active Subscriptions",
                message="You currently have no active subscriptions to analyze.",
                action="Start by adding your first subscription!",
            )
        ]

    insights: List[Insight] = []
    total_monthly = sum((record.monthly_cost for record in active), ZERO)
    if total_monthly > HIGH_SPENDING_THRESHOLD:
        insights.append(
            Insight(
                type="warning",
                title="High Monthly Spending",
                message=f"You're spending ${round_currency(total_monthly)} per month on subscriptions.",
                action="Consider reviewing and canceling unused subscriptions.",
            )
        )

    categories = category_breakdown(active)
    top = categories[0] if categories else None
    if top and total_monthly > ZERO and top.monthly > total_monthly * CATEGORY_DOMINANCE_SHARE:
        share = (top.monthly / total_monthly * 100).quantize(WHOLE_PERCENT, rounding=ROUND_HALF_UP)
        insights.append(
            Insight(
                type="info",
                title="Category Dominance",
                message=f"{top.name} accounts for {share}% of your spending.",
                action="Consider diversifying or reducing spending in this category.",
            )
        )

    renewing = upcoming_renewals(active, today, RENEWAL_WARNING_DAYS)
    if renewing:
        renewing_cost = sum((item.subscription.cost for item in renewing), ZERO)
        insights.append(
            Insight(
                type="reminder",
                title="Upcoming Renewals",
                message=(
                    f"You have {len(renewing)} subscription(s) renewing in the next "
                    f"{RENEWAL_WARNING_DAYS} days for ${round_currency(renewing_cost)}."
                ),
                action="Review these subscriptions before they renew.",
            )
        )

    expensive = [record for record in active if record.monthly_cost > EXPENSIVE_MONTHLY_THRESHOLD]
    if expensive:
        insights.append(
            Insight(
                type="suggestion",
                title="Potential Savings",
                message=(
                    f"You have {len(expensive)} subscription(s) costing more than "
                    f"${EXPENSIVE_MONTHLY_THRESHOLD}/month."
                ),
                action="Review these for potential downgrades or cancellations.",
            )
        )

    monthly_billed = [
        record for record in active if record.billing_cycle.kind is CycleKind.MONTHLY
    ]
    if len(monthly_billed) > 2:
        insights.append(
            Insight(
                type="tip",
                title="Annual Billing Savings",
                message=(
                    f"You have {len(monthly_billed)} monthly subscriptions that might "
                    "offer annual discounts."
                ),
                action="Check if switching to annual billing can save money.",
            )
        )
    return insights


def calendar_month(
    records: Iterable[SubscriptionRecord], year: int, month: int
) -> Dict[date, List[SubscriptionRecord]]:
    """Group active subscriptions by the days they bill on in the given month."""
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12.")
    month_start = date(year, month, 1)
    days: Dict[date, List[SubscriptionRecord]] = defaultdict(list)
    for record in active_only(records):
        for occurrence in _occurrences_in_month(record, month_start):
            days[occurrence].append(record)
    return dict(sorted(days.items()))


def dashboard_metrics(records: Iterable[SubscriptionRecord], today: date) -> DashboardMetrics:
    active = active_only(records)
    month_start = today.replace(day=1)
    monthly_cost = sum((record.monthly_cost for record in active), ZERO)
    this_month = sum(
        (record.cost * len(_occurrences_in_month(record, month_start)) for record in active),
        ZERO,
    )
    return DashboardMetrics(
        active_subscriptions=len(active),
        monthly_cost=round_currency(monthly_cost),
        this_month_spending=round_currency(this_month),
    )


def period_bounds(period: str, today: date) -> Tuple[Tuple[date, date], Tuple[date, date]]:
    normalized = period.strip().lower()
    if normalized not in SUPPORTED_PERIODS:
        raise ValueError("Invalid period. Use month, quarter, or year.")
    if normalized == "month":
        current_start = today.replace(day=1)
        span = 1
    elif normalized == "quarter":
        current_start = date(today.year, (today.month - 1) // 3 * 3 + 1, 1)
        span = 3
    else:
        current_start = date(today.year, 1, 1)
        span = 12
    current_end = add_months(current_start, span) - timedelta(days=1)
    previous_start = add_months(current_start, -span)
    previous_end = current_start - timedelta(days=1)
    return (current_start, current_end), (previous_start, previous_end)


def compare_periods(
    records: Iterable[SubscriptionRecord], period: str, today: date
) -> PeriodComparison:
    """Compare subscriptions created this period against the previous one."""
    all_records = list(records)
    (current_start, current_end), (previous_start, previous_end) = period_bounds(period, today)
    normalized = period.strip().lower()

    current_created = _created_between(all_records, current_start, current_end)
    previous_created = _created_between(all_records, previous_start, previous_end)
    current_active = active_only(current_created)
    previous_active = active_only(previous_created)
    current_monthly = sum((record.monthly_cost for record in current_active), ZERO)
    previous_monthly = sum((record.monthly_cost for record in previous_active), ZERO)

    count_change = len(current_active) - len(previous_active)
    spending_change = current_monthly - previous_monthly
    spending_change_percent = _percent_change(spending_change, previous_monthly)
    if spending_change > ZERO:
        trend = "increasing"
    elif spending_change < ZERO:
        trend = "decreasing"
    else:
        trend = "stable"

    current_categories = _monthly_by_category(current_active)
    previous_categories = _monthly_by_category(previous_active)
    categories: List[CategoryChange] = []
    for name in sorted(set(current_categories) | set(previous_categories)):
        current_amount = current_categories.get(name, ZERO)
        previous_amount = previous_categories.get(name, ZERO)
        change = current_amount - previous_amount
        categories.append(
            CategoryChange(
                category=name,
                current=round_currency(current_amount),
                previous=round_currency(previous_amount),
                change=round_currency(change),
                change_percent=round_currency(_percent_change(change, previous_amount)),
            )
        )
    categories.sort(key=lambda item: (-item.current, item.category))

    insights: List[str] = []
    if abs(spending_change_percent) > 20:
        direction = "increased" if spending_change > ZERO else "decreased"
        insights.append(
            f"Monthly spending {direction} by {abs(spending_change_percent):.1f}% "
            f"compared to the previous {normalized}."
        )
    if count_change > 0:
        plural = "s" if count_change > 1 else ""
        insights.append(f"You added {count_change} new subscription{plural} this {normalized}.")
    growth = [item for item in categories if item.change_percent > 50]
    if growth:
        top_growth = max(growth, key=lambda item: item.change_percent)
        insights.append(
            f"{top_growth.category} spending increased by "
            f"{top_growth.change_percent:.1f}% this {normalized}."
        )

    return PeriodComparison(
        period=normalized,
        current=PeriodSnapshot(
            start=current_start,
            end=current_end,
            subscription_count=len(current_active),
            monthly_spending=round_currency(current_monthly),
            new_subscriptions=len(current_created),
        ),
        previous=PeriodSnapshot(
            start=previous_start,
            end=previous_end,
            subscription_count=len(previous_active),
            monthly_spending=round_currency(previous_monthly),
            new_subscriptions=len(previous_created),
        ),
        subscription_count_change=count_change,
        monthly_spending_change=round_currency(spending_change),
        monthly_spending_change_percent=round_currency(spending_change_percent),
        trend=trend,
        categories=categories,
        insights=insights,
    )


def _occurrences_in_month(record: SubscriptionRecord, month_start: date) -> List[date]:
    month_end = month_start.replace(day=monthrange(month_start.year, month_start.month)[1])
    return project_occurrences(
        record.start_date,
        record.billing_cycle,
        month_start,
        month_end,
        scheduled=record.next_payment_date,
    )


def _created_between(
    records: Iterable[SubscriptionRecord], start_date: date, end_date: date
) -> List[SubscriptionRecord]:
    return [
        record
        for record in records
        if record.created_at is not None
        and start_date <= record.created_at.date() <= end_date
    ]


def _monthly_by_category(records: Iterable[SubscriptionRecord]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for record in records:
        totals[record.category_name] += record.monthly_cost
    return dict(totals)


def _percent_change(change: Decimal, baseline: Decimal) -> Decimal:
    if baseline <= ZERO:
        return ZERO
    return change / baseline * 100
