import logging
import os
from datetime import date, datetime
from decimal import Decimal

import bcrypt
from fastapi import FastAPI, HTTPException, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError

from backend.billing_cycle import BillingCycle, BillingError, coerce_date
from backend.billing_schedule import (
    MAX_OCCURRENCES,
    add_months,
    next_payment_date,
    preview_upcoming,
)
from backend.cost_normalization import round_currency
from backend.subscription_analytics import (
    PaymentRecord,
    SubscriptionRecord,
    calendar_month,
    category_breakdown,
    compare_periods,
    dashboard_metrics,
    generate_insights,
    most_expensive,
    payment_trends,
    projected_trends,
    summarize_spending,
    upcoming_renewals,
)
from backend.subscription_export import build_export, export_csv

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./subtrack.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

subscriptions = Table(
    "subscriptions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("description", String(500)),
    Column("cost", Numeric(12, 2), nullable=False),
    Column("billing_cycle", String(20), nullable=False, server_default="monthly"),
    Column("custom_days", Integer),
    Column("start_date", Date, nullable=False),
    Column("next_payment_date", Date),
    Column("category", String(255)),
    Column("logo_url", String(1000)),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime),
)

subscription_payments = Table(
    "subscription_payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column(
        "subscription_id",
        Integer,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("payment_date", Date, nullable=False),
    Column("notes", String(500)),
)

SUBSCRIPTION_COLUMNS = (
    subscriptions.c.id,
    subscriptions.c.user_id,
    subscriptions.c.name,
    subscriptions.c.description,
    subscriptions.c.cost,
    subscriptions.c.billing_cycle,
    subscriptions.c.custom_days,
    subscriptions.c.start_date,
    subscriptions.c.next_payment_date,
    subscriptions.c.category,
    subscriptions.c.logo_url,
    subscriptions.c.is_active,
    subscriptions.c.created_at,
    subscriptions.c.updated_at,
)


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)
    logger.info("Subscription tracker started with database %s", engine.url.render_as_string())


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    logger.warning("Billing error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime | None = None


class SubscriptionPayload(BaseModel):
    name: str
    description: str | None = None
    cost: Decimal
    billing_cycle: str = "monthly"
    custom_days: int | None = None
    start_date: date | None = None
    next_payment_date: date | None = None
    category: str | None = None
    logo_url: str | None = None
    is_active: bool = True

    @classmethod
    def validate_payload(cls, payload: "SubscriptionPayload") -> "SubscriptionPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Service name is required.")
        if payload.cost < 0:
            raise ValueError("Subscription cost must not be negative.")
        cycle = BillingCycle.parse(payload.billing_cycle or "monthly", payload.custom_days)
        payload.billing_cycle = cycle.tag
        payload.custom_days = cycle.interval_days
        payload.description = payload.description.strip() if payload.description else None
        payload.category = payload.category.strip() if payload.category else None
        payload.logo_url = payload.logo_url.strip() if payload.logo_url else None
        return payload

    def cycle(self) -> BillingCycle:
        return BillingCycle.parse(self.billing_cycle, self.custom_days)


class SubscriptionUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    cost: Decimal | None = None
    billing_cycle: str | None = None
    custom_days: int | None = None
    start_date: date | None = None
    next_payment_date: date | None = None
    category: str | None = None
    logo_url: str | None = None
    is_active: bool | None = None


class SubscriptionResponse(BaseModel):
    id: int
    user_id: int
    name: str
    description: str | None = None
    cost: Decimal
    billing_cycle: str
    custom_days: int | None = None
    start_date: date
    next_payment_date: date | None = None
    category: str | None = None
    logo_url: str | None = None
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PaymentPayload(BaseModel):
    amount: Decimal
    payment_date: date | None = None
    notes: str | None = None


class PaymentResponse(BaseModel):
    id: int
    subscription_id: int
    amount: Decimal
    payment_date: date
    notes: str | None = None


class NextDatePayload(BaseModel):
    start_date: str
    billing_cycle: str
    custom_days: int | None = None
    reference_date: str | None = None


class NextDateResponse(BaseModel):
    start_date: date
    billing_cycle: str
    custom_days: int | None = None
    reference_date: date
    next_payment_date: date


class PreviewResponse(BaseModel):
    start_date: date
    billing_cycle: str
    custom_days: int | None = None
    reference_date: date
    upcoming_payments: list[date]


class SummaryResponse(BaseModel):
    total_subscriptions: int
    total_monthly: Decimal
    total_yearly: Decimal
    avg_monthly_cost: Decimal


class CategoryBreakdownEntry(BaseModel):
    name: str
    monthly: Decimal
    yearly: Decimal
    count: int
    subscription_ids: list[int]


class CategoryBreakdownResponse(BaseModel):
    categories: list[CategoryBreakdownEntry]
    total_categories: int


class TrendEntry(BaseModel):
    month: str
    month_name: str
    total: Decimal
    subscription_count: int
    projected: bool


class TrendResponse(BaseModel):
    trends: list[TrendEntry]
    total_months: int


class UpcomingRenewalEntry(BaseModel):
    id: int
    name: str
    cost: Decimal
    billing_cycle: str
    next_payment_date: date
    category: str | None = None
    logo_url: str | None = None
    days_until_renewal: int


class UpcomingRenewalsResponse(BaseModel):
    upcoming_renewals: list[UpcomingRenewalEntry]
    total_upcoming_cost: Decimal
    count: int


class ExpensiveEntry(BaseModel):
    id: int
    name: str
    cost: Decimal
    billing_cycle: str
    monthly_cost: Decimal
    yearly_cost: Decimal
    category: str | None = None
    logo_url: str | None = None
    next_payment_date: date | None = None


class ExpensiveResponse(BaseModel):
    expensive_subscriptions: list[ExpensiveEntry]
    count: int


class InsightEntry(BaseModel):
    type: str
    title: str
    message: str
    action: str


class InsightsResponse(BaseModel):
    insights: list[InsightEntry]
    total_insights: int


class DashboardResponse(BaseModel):
    active_subscriptions: int
    monthly_cost: Decimal
    this_month_spending: Decimal


class CalendarSubscription(BaseModel):
    id: int
    name: str
    cost: Decimal
    category: str | None = None
    logo_url: str | None = None


class CalendarDayResponse(BaseModel):
    date: date
    total: Decimal
    subscriptions: list[CalendarSubscription]


class PeriodSnapshotResponse(BaseModel):
    start: date
    end: date
    subscription_count: int
    monthly_spending: Decimal
    new_subscriptions: int


class PeriodChangesResponse(BaseModel):
    subscription_count: int
    monthly_spending: Decimal
    monthly_spending_percent: Decimal
    trend: str


class CategoryComparisonEntry(BaseModel):
    category: str
    current: Decimal
    previous: Decimal
    change: Decimal
    change_percent: Decimal


class ComparisonResponse(BaseModel):
    period: str
    current_period: PeriodSnapshotResponse
    previous_period: PeriodSnapshotResponse
    changes: PeriodChangesResponse
    category_comparison: list[CategoryComparisonEntry]
    insights: list[str]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def resolve_today(value: date | None) -> date:
    return value or date.today()


def coerce_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def subscription_from_row(row) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=row["id"],
        name=row["name"],
        cost=coerce_decimal(row["cost"]),
        billing_cycle=BillingCycle.parse(row["billing_cycle"], row["custom_days"]),
        start_date=row["start_date"],
        next_payment_date=row["next_payment_date"],
        category=row["category"],
        is_active=bool(row["is_active"]),
        logo_url=row["logo_url"],
        created_at=row["created_at"],
    )


def subscription_response(row) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        description=row["description"],
        cost=row["cost"],
        billing_cycle=row["billing_cycle"],
        custom_days=row["custom_days"],
        start_date=row["start_date"],
        next_payment_date=row["next_payment_date"],
        category=row["category"],
        logo_url=row["logo_url"],
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def load_subscription_records(
    conn, user_id: int, active_only: bool = False
) -> list[SubscriptionRecord]:
    conditions = [subscriptions.c.user_id == user_id]
    if active_only:
        conditions.append(subscriptions.c.is_active.is_(True))
    rows = conn.execute(
        select(*SUBSCRIPTION_COLUMNS)
        .where(*conditions)
        .order_by(subscriptions.c.created_at.desc(), subscriptions.c.id.desc())
    ).mappings().all()
    return [subscription_from_row(row) for row in rows]


def load_payment_records(
    conn, user_id: int, start_date: date | None = None, end_date: date | None = None
) -> list[PaymentRecord]:
    conditions = [subscription_payments.c.user_id == user_id]
    if start_date is not None:
        conditions.append(subscription_payments.c.payment_date >= start_date)
    if end_date is not None:
        conditions.append(subscription_payments.c.payment_date <= end_date)
    rows = conn.execute(
        select(
            subscription_payments.c.subscription_id,
            subscription_payments.c.amount,
            subscription_payments.c.payment_date,
        )
        .where(*conditions)
        .order_by(subscription_payments.c.payment_date.asc())
    ).mappings().all()
    return [
        PaymentRecord(
            subscription_id=row["subscription_id"],
            amount=coerce_decimal(row["amount"]),
            payment_date=row["payment_date"],
        )
        for row in rows
    ]


def resolve_next_payment_date(payload: SubscriptionPayload, today: date) -> date:
    if payload.next_payment_date is not None:
        return payload.next_payment_date
    return next_payment_date(payload.start_date or today, payload.cycle(), today)


def subscription_exists(conn, subscription_id: int, user_id: int) -> bool:
    return (
        conn.execute(
            select(subscriptions.c.id).where(
                subscriptions.c.id == subscription_id,
                subscriptions.c.user_id == user_id,
            )
        ).first()
        is not None
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required.")
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(email=email, hashed_password=hashed_password)
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        result = conn.execute(select(users).where(users.c.email == email))
        row = result.mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/subscriptions", response_model=list[SubscriptionResponse])
def list_subscriptions(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[SubscriptionResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = conn.execute(
            select(*SUBSCRIPTION_COLUMNS)
            .where(subscriptions.c.user_id == user_id)
            .order_by(subscriptions.c.created_at.desc(), subscriptions.c.id.desc())
        ).mappings().all()
    return [subscription_response(row) for row in rows]


@app.post("/subscriptions", response_model=SubscriptionResponse, status_code=201)
def create_subscription(
    payload: SubscriptionPayload,
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> SubscriptionResponse:
    user_id = get_user_id(x_user_id)
    reference = resolve_today(today)
    try:
        payload = SubscriptionPayload.validate_payload(payload)
        scheduled = resolve_next_payment_date(payload, reference)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(subscriptions)
        .values(
            user_id=user_id,
            name=payload.name,
            description=payload.description,
            cost=payload.cost,
            billing_cycle=payload.billing_cycle,
            custom_days=payload.custom_days,
            start_date=payload.start_date or reference,
            next_payment_date=scheduled,
            category=payload.category,
            logo_url=payload.logo_url,
            is_active=payload.is_active,
        )
        .returning(*SUBSCRIPTION_COLUMNS)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create subscription.")
    logger.info("Created subscription %s for user %s", row["id"], user_id)
    return subscription_response(row)


@app.put("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def update_subscription(
    subscription_id: int,
    payload: SubscriptionUpdate,
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> SubscriptionResponse:
    user_id = get_user_id(x_user_id)
    reference = resolve_today(today)
    changes = payload.model_dump(exclude_unset=True)

    with engine.begin() as conn:
        existing = conn.execute(
            select(*SUBSCRIPTION_COLUMNS).where(
                subscriptions.c.id == subscription_id,
                subscriptions.c.user_id == user_id,
            )
        ).mappings().first()
        if not existing:
            raise HTTPException(status_code=404, detail="Subscription not found.")

        merged = {
            field: existing[field]
            for field in SubscriptionPayload.model_fields
            if field != "next_payment_date"
        }
        merged.update(changes)
        try:
            updated = SubscriptionPayload.validate_payload(SubscriptionPayload(**merged))
            scheduled = resolve_next_payment_date(updated, reference)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        stmt = (
            update(subscriptions)
            .where(
                subscriptions.c.id == subscription_id,
                subscriptions.c.user_id == user_id,
            )
            .values(
                name=updated.name,
                description=updated.description,
                cost=updated.cost,
                billing_cycle=updated.billing_cycle,
                custom_days=updated.custom_days,
                start_date=updated.start_date or existing["start_date"],
                next_payment_date=scheduled,
                category=updated.category,
                logo_url=updated.logo_url,
                is_active=updated.is_active,
                updated_at=func.now(),
            )
            .returning(*SUBSCRIPTION_COLUMNS)
        )
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=404, detail="Subscription not found.")
    logger.info(
        "Updated subscription %s for user %s (%s)",
        subscription_id,
        user_id,
        ", ".join(sorted(changes)) or "no changes",
    )
    return subscription_response(row)


@app.delete("/subscriptions/{subscription_id}")
def delete_subscription(
    subscription_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        conn.execute(
            subscription_payments.delete().where(
                subscription_payments.c.subscription_id == subscription_id,
                subscription_payments.c.user_id == user_id,
            )
        )
        result = conn.execute(
            subscriptions.delete().where(
                subscriptions.c.id == subscription_id,
                subscriptions.c.user_id == user_id,
            )
        )
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Subscription not found.")
    logger.info("Deleted subscription %s for user %s", subscription_id, user_id)
    return {"status": "deleted"}


@app.post("/subscriptions/{subscription_id}/toggle", response_model=SubscriptionResponse)
def toggle_subscription(
    subscription_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> SubscriptionResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        current = conn.execute(
            select(subscriptions.c.is_active).where(
                subscriptions.c.id == subscription_id,
                subscriptions.c.user_id == user_id,
            )
        ).scalar_one_or_none()
        if current is None:
            raise HTTPException(status_code=404, detail="Subscription not found.")
        row = conn.execute(
            update(subscriptions)
            .where(
                subscriptions.c.id == subscription_id,
                subscriptions.c.user_id == user_id,
            )
            .values(is_active=not current, updated_at=func.now())
            .returning(*SUBSCRIPTION_COLUMNS)
        ).mappings().first()
    return subscription_response(row)


@app.post(
    "/subscriptions/{subscription_id}/payments",
    response_model=PaymentResponse,
    status_code=201,
)
def record_payment(
    subscription_id: int,
    payload: PaymentPayload,
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PaymentResponse:
    user_id = get_user_id(x_user_id)
    if payload.amount <= 0:
        raise HTTPException(status_code=400, detail="Payment amount must be greater than zero.")
    with engine.begin() as conn:
        if not subscription_exists(conn, subscription_id, user_id):
            raise HTTPException(status_code=404, detail="Subscription not found.")
        row = conn.execute(
            insert(subscription_payments)
            .values(
                user_id=user_id,
                subscription_id=subscription_id,
                amount=payload.amount,
                payment_date=payload.payment_date or resolve_today(today),
                notes=payload.notes.strip() if payload.notes else None,
            )
            .returning(
                subscription_payments.c.id,
                subscription_payments.c.subscription_id,
                subscription_payments.c.amount,
                subscription_payments.c.payment_date,
                subscription_payments.c.notes,
            )
        ).mappings().first()
    return PaymentResponse(**row)


@app.get("/subscriptions/{subscription_id}/payments", response_model=list[PaymentResponse])
def list_payments(
    subscription_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> list[PaymentResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        if not subscription_exists(conn, subscription_id, user_id):
            raise HTTPException(status_code=404, detail="Subscription not found.")
        rows = conn.execute(
            select(
                subscription_payments.c.id,
                subscription_payments.c.subscription_id,
                subscription_payments.c.amount,
                subscription_payments.c.payment_date,
                subscription_payments.c.notes,
            )
            .where(subscription_payments.c.subscription_id == subscription_id)
            .order_by(subscription_payments.c.payment_date.desc())
        ).mappings().all()
    return [PaymentResponse(**row) for row in rows]


@app.get(
    "/subscriptions/calendar/{year}/{month}",
    response_model=list[CalendarDayResponse],
)
def subscription_calendar(
    year: int,
    month: int,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CalendarDayResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        records = load_subscription_records(conn, user_id, active_only=True)
    try:
        days = calendar_month(records, year, month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [
        CalendarDayResponse(
            date=day,
            total=round_currency(sum((record.cost for record in billed), Decimal("0"))),
            subscriptions=[
                CalendarSubscription(
                    id=record.id,
                    name=record.name,
                    cost=record.cost,
                    category=record.category,
                    logo_url=record.logo_url,
                )
                for record in billed
            ],
        )
        for day, billed in days.items()
    ]


@app.post("/billing/calculate-next-date", response_model=NextDateResponse)
def calculate_next_date(
    payload: NextDatePayload,
    today: date | None = Query(None),
) -> NextDateResponse:
    cycle = BillingCycle.parse(payload.billing_cycle, payload.custom_days)
    start_date = coerce_date(payload.start_date, "start_date")
    reference = (
        coerce_date(payload.reference_date, "reference_date")
        if payload.reference_date
        else resolve_today(today)
    )
    return NextDateResponse(
        start_date=start_date,
        billing_cycle=cycle.tag,
        custom_days=cycle.interval_days,
        reference_date=reference,
        next_payment_date=next_payment_date(start_date, cycle, reference),
    )


@app.get("/billing/preview/{start_date}/{billing_cycle}", response_model=PreviewResponse)
def preview_billing_dates(
    start_date: str,
    billing_cycle: str,
    custom_days: int | None = Query(None),
    count: int = Query(12, ge=0, le=MAX_OCCURRENCES),
    reference_date: str | None = Query(None),
) -> PreviewResponse:
    cycle = BillingCycle.parse(billing_cycle, custom_days)
    anchor = coerce_date(start_date, "start_date")
    # Defaults to the anchor so the preview lists the payments after the first one.
    reference = coerce_date(reference_date, "reference_date") if reference_date else anchor
    dates = preview_upcoming(anchor, cycle, reference, count)
    return PreviewResponse(
        start_date=anchor,
        billing_cycle=cycle.tag,
        custom_days=cycle.interval_days,
        reference_date=reference,
        upcoming_payments=dates,
    )


@app.get("/analytics/summary", response_model=SummaryResponse)
def analytics_summary(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> SummaryResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        records = load_subscription_records(conn, user_id, active_only=True)
    summary = summarize_spending(records)
    return SummaryResponse(
        total_subscriptions=summary.total_subscriptions,
        total_monthly=summary.total_monthly,
        total_yearly=summary.total_yearly,
        avg_monthly_cost=summary.avg_monthly_cost,
    )


@app.get("/analytics/categories", response_model=CategoryBreakdownResponse)
def analytics_categories(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> CategoryBreakdownResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        records = load_subscription_records(conn, user_id, active_only=True)
    categories = category_breakdown(records)
    return CategoryBreakdownResponse(
        categories=[
            CategoryBreakdownEntry(
                name=category.name,
                monthly=category.monthly,
                yearly=category.yearly,
                count=category.count,
                subscription_ids=list(category.subscription_ids),
            )
            for category in categories
        ],
        total_categories=len(categories),
    )


@app.get("/analytics/trends", response_model=TrendResponse)
def analytics_trends(
    months: int = Query(6, ge=1, le=60),
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TrendResponse:
    user_id = get_user_id(x_user_id)
    reference = resolve_today(today)
    range_start = add_months(reference.replace(day=1), -(months - 1))
    with engine.begin() as conn:
        payments = load_payment_records(conn, user_id, range_start, reference)
        records = [] if payments else load_subscription_records(conn, user_id, active_only=True)
    if payments:
        buckets = payment_trends(payments)
    else:
        buckets = projected_trends(records, reference, months)
    return TrendResponse(
        trends=[
            TrendEntry(
                month=bucket.month.strftime("%Y-%m"),
                month_name=bucket.month.strftime("%B %Y"),
                total=bucket.total,
                subscription_count=bucket.subscription_count,
                projected=bucket.projected,
            )
            for bucket in buckets
        ],
        total_months=len(buckets),
    )


@app.get("/analytics/upcoming", response_model=UpcomingRenewalsResponse)
def analytics_upcoming(
    days: int = Query(30, ge=0, le=366),
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UpcomingRenewalsResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        records = load_subscription_records(conn, user_id, active_only=True)
    renewals = upcoming_renewals(records, resolve_today(today), days)
    total = sum((item.subscription.cost for item in renewals), Decimal("0"))
    return UpcomingRenewalsResponse(
        upcoming_renewals=[
            UpcomingRenewalEntry(
                id=item.subscription.id,
                name=item.subscription.name,
                cost=item.subscription.cost,
                billing_cycle=item.subscription.billing_cycle.tag,
                next_payment_date=item.renewal_date,
                category=item.subscription.category,
                logo_url=item.subscription.logo_url,
                days_until_renewal=item.days_until_renewal,
            )
            for item in renewals
        ],
        total_upcoming_cost=round_currency(total),
        count=len(renewals),
    )


@app.get("/analytics/expensive", response_model=ExpensiveResponse)
def analytics_expensive(
    limit: int = Query(10, ge=1, le=100),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ExpensiveResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        records = load_subscription_records(conn, user_id, active_only=True)
    ranked = most_expensive(records, limit)
    return ExpensiveResponse(
        expensive_subscriptions=[
            ExpensiveEntry(
                id=record.id,
                name=record.name,
                cost=record.cost,
                billing_cycle=record.billing_cycle.tag,
                monthly_cost=round_currency(record.monthly_cost),
                yearly_cost=round_currency(record.yearly_cost),
                category=record.category,
                logo_url=record.logo_url,
                next_payment_date=record.next_payment_date,
            )
            for record in ranked
        ],
        count=len(ranked),
    )


@app.get("/analytics/insights", response_model=InsightsResponse)
def analytics_insights(
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> InsightsResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        records = load_subscription_records(conn, user_id, active_only=True)
    insights = generate_insights(records, resolve_today(today))
    return InsightsResponse(
        insights=[
            InsightEntry(
                type=insight.type,
                title=insight.title,
                message=insight.message,
                action=insight.action,
            )
            for insight in insights
        ],
        total_insights=len(insights),
    )


@app.get("/analytics/dashboard", response_model=DashboardResponse)
def analytics_dashboard(
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> DashboardResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        records = load_subscription_records(conn, user_id, active_only=True)
    metrics = dashboard_metrics(records, resolve_today(today))
    return DashboardResponse(
        active_subscriptions=metrics.active_subscriptions,
        monthly_cost=metrics.monthly_cost,
        this_month_spending=metrics.this_month_spending,
    )


@app.get("/analytics/comparison", response_model=ComparisonResponse)
def analytics_comparison(
    period: str = Query("month"),
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ComparisonResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        records = load_subscription_records(conn, user_id)
    try:
        comparison = compare_periods(records, period, resolve_today(today))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ComparisonResponse(
        period=comparison.period,
        current_period=PeriodSnapshotResponse(
            start=comparison.current.start,
            end=comparison.current.end,
            subscription_count=comparison.current.subscription_count,
            monthly_spending=comparison.current.monthly_spending,
            new_subscriptions=comparison.current.new_subscriptions,
        ),
        previous_period=PeriodSnapshotResponse(
            start=comparison.previous.start,
            end=comparison.previous.end,
            subscription_count=comparison.previous.subscription_count,
            monthly_spending=comparison.previous.monthly_spending,
            new_subscriptions=comparison.previous.new_subscriptions,
        ),
        changes=PeriodChangesResponse(
            subscription_count=comparison.subscription_count_change,
            monthly_spending=comparison.monthly_spending_change,
            monthly_spending_percent=comparison.monthly_spending_change_percent,
            trend=comparison.trend,
        ),
        category_comparison=[
            CategoryComparisonEntry(
                category=item.category,
                current=item.current,
                previous=item.previous,
                change=item.change,
                change_percent=item.change_percent,
            )
            for item in comparison.categories
        ],
        insights=comparison.insights,
    )


@app.get("/reports/export")
def export_report(
    format: str = Query("json"),
    download: bool = Query(False),
    today: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Response:
    user_id = get_user_id(x_user_id)
    export_format = format.strip().lower()
    if export_format not in {"json", "csv"}:
        raise HTTPException(status_code=400, detail="Invalid format. Use json or csv.")
    reference = resolve_today(today)
    with engine.begin() as conn:
        records = load_subscription_records(conn, user_id)
        payments = load_payment_records(conn, user_id)

    filename = f"subscriptions-{user_id}-{reference.isoformat()}.{export_format}"
    if export_format == "csv":
        return Response(
            content=export_csv(records),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    document = build_export(records, payments, user_id, reference, export_format)
    headers = {}
    if download:
        headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return JSONResponse(content=document.model_dump(mode="json"), headers=headers)
