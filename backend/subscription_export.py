from __future__ import annotations

import csv
import io
from collections import Counter
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel

from backend.cost_normalization import round_currency
from backend.subscription_analytics import (
    ZERO,
    PaymentRecord,
    SubscriptionRecord,
    active_only,
)

CSV_HEADERS = [
    "Name",
    "Category",
    "Cost",
    "Billing Cycle",
    "Monthly Cost",
    "Yearly Cost",
    "Next Payment",
    "Status",
    "Start Date",
    "Created At",
]


class ExportedSubscription(BaseModel):
    id: int
    name: str
    category: str | None = None
    cost: Decimal
    billing_cycle: str
    custom_days: int | None = None
    start_date: date
    next_payment_date: date | None = None
    is_active: bool
    logo_url: str | None = None
    created_at: datetime | None = None
    monthly_cost: Decimal
    yearly_cost: Decimal


class ExportedPayment(BaseModel):
    subscription_id: int
    amount: Decimal
    payment_date: date


class CategorySummary(BaseModel):
    count: int
    monthly_total: Decimal
    subscriptions: list[str]


class ExportSummary(BaseModel):
    categories: dict[str, CategorySummary]
    billing_cycles: dict[str, int]
    monthly_spending: Decimal


class ExportInfo(BaseModel):
    user_id: int
    export_date: date
    format: str
    total_subscriptions: int
    active_subscriptions: int
    total_monthly_spending: Decimal


class ExportDocument(BaseModel):
    export_info: ExportInfo
    subscriptions: list[ExportedSubscription]
    payments: list[ExportedPayment]
    summary: ExportSummary


def build_export(
    records: Iterable[SubscriptionRecord],
    payments: Iterable[PaymentRecord],
    user_id: int,
    export_date: date,
    export_format: str = "json",
) -> ExportDocument:
    all_records = list(records)
    active = active_only(all_records)
    total_monthly = sum((record.monthly_cost for record in active), ZERO)

    category_totals: dict[str, Decimal] = {}
    category_names: dict[str, list[str]] = {}
    for record in active:
        name = record.category_name
        category_totals[name] = category_totals.get(name, ZERO) + record.monthly_cost
        category_names.setdefault(name, []).append(record.name)

    cycle_counts = Counter(record.billing_cycle.tag for record in active)

    return ExportDocument(
        export_info=ExportInfo(
            user_id=user_id,
            export_date=export_date,
            format=export_format,
            total_subscriptions=len(all_records),
            active_subscriptions=len(active),
            total_monthly_spending=round_currency(total_monthly),
        ),
        subscriptions=[_export_subscription(record) for record in all_records],
        payments=[
            ExportedPayment(
                subscription_id=payment.subscription_id,
                amount=payment.amount,
                payment_date=payment.payment_date,
            )
            for payment in payments
        ],
        summary=ExportSummary(
            categories={
                name: CategorySummary(
                    count=len(category_names[name]),
                    monthly_total=round_currency(category_totals[name]),
                    subscriptions=category_names[name],
                )
                for name in category_names
            },
            billing_cycles=dict(cycle_counts),
            monthly_spending=round_currency(total_monthly),
        ),
    )


def export_csv(records: Iterable[SubscriptionRecord]) -> str:
    """Render one quoted CSV row per subscription."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for record in records:
        writer.writerow(
            [
                record.name,
                record.category_name,
                record.cost,
                record.billing_cycle.tag,
                round_currency(record.monthly_cost),
                round_currency(record.yearly_cost),
                record.next_payment_date.isoformat() if record.next_payment_date else "",
                "Active" if record.is_active else "Inactive",
                record.start_date.isoformat(),
                record.created_at.isoformat() if record.created_at else "",
            ]
        )
    return buffer.getvalue()


def _export_subscription(record: SubscriptionRecord) -> ExportedSubscription:
    return ExportedSubscription(
        id=record.id,
        name=record.name,
        category=record.category,
        cost=record.cost,
        billing_cycle=record.billing_cycle.tag,
        custom_days=record.billing_cycle.interval_days,
        start_date=record.start_date,
        next_payment_date=record.next_payment_date,
        is_active=record.is_active,
        logo_url=record.logo_url,
        created_at=record.created_at,
        monthly_cost=round_currency(record.monthly_cost),
        yearly_cost=round_currency(record.yearly_cost),
    )
