from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

WEEKLY_DAYS = 7


class BillingError(ValueError):
    """Base class for billing schedule and normalization failures."""


class InvalidDateError(BillingError):
    """Raised for a malformed or impossible calendar date."""


class InvalidScheduleError(BillingError):
    """Raised when a schedule cannot advance, e.g. a non-positive custom interval."""


class InvalidCycleError(BillingError):
    """Raised for an unrecognized billing-cycle tag."""


class CycleKind(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    BIANNUALLY = "biannually"
    YEARLY = "yearly"
    CUSTOM = "custom"


MONTH_STEPS = {
    CycleKind.MONTHLY: 1,
    CycleKind.QUARTERLY: 3,
    CycleKind.BIANNUALLY: 6,
    CycleKind.YEARLY: 12,
}

CYCLE_ALIASES = {
    "week": CycleKind.WEEKLY,
    "month": CycleKind.MONTHLY,
    "quarter": CycleKind.QUARTERLY,
    "biannual": CycleKind.BIANNUALLY,
    "semiannually": CycleKind.BIANNUALLY,
    "semiannual": CycleKind.BIANNUALLY,
    "halfyearly": CycleKind.BIANNUALLY,
    "annually": CycleKind.YEARLY,
    "annual": CycleKind.YEARLY,
}


@dataclass(frozen=True)
class BillingCycle:
    kind: CycleKind
    interval_days: int | None = None

    def __post_init__(self) -> None:
        if self.kind is CycleKind.CUSTOM:
            if (
                isinstance(self.interval_days, bool)
                or not isinstance(self.interval_days, int)
                or self.interval_days <= 0
            ):
                raise InvalidScheduleError(
                    "Custom billing cycles require a positive number of days."
                )
        elif self.interval_days is not None:
            raise InvalidScheduleError(
                f"Only custom billing cycles carry an interval, not {self.kind.value}."
            )

    @classmethod
    def parse(cls, tag: str | CycleKind, custom_days: int | str | None = None) -> BillingCycle:
        """Build a cycle from an external tag such as ``"Monthly"`` or ``"custom"``."""
        kind = parse_cycle_kind(tag)
        if kind is not CycleKind.CUSTOM:
            return cls(kind)
        if custom_days is None or custom_days == "":
            raise InvalidScheduleError("Custom days required for custom billing cycle.")
        try:
            interval = int(custom_days)
        except (TypeError, ValueError) as exc:
            raise InvalidScheduleError("Custom days must be a whole number.") from exc
        return cls(kind, interval)

    @property
    def tag(self) -> str:
        return self.kind.value

    @property
    def month_step(self) -> int | None:
        return MONTH_STEPS.get(self.kind)

    @property
    def day_step(self) -> int | None:
        if self.kind is CycleKind.WEEKLY:
            return WEEKLY_DAYS
        if self.kind is CycleKind.CUSTOM:
            return self.interval_days
        return None


def parse_cycle_kind(tag: str | CycleKind) -> CycleKind:
    if isinstance(tag, CycleKind):
        return tag
    if not isinstance(tag, str):
        raise InvalidCycleError(f"Invalid billing cycle: {tag!r}")
    normalized = _normalize_tag(tag)
    if normalized in CYCLE_ALIASES:
        return CYCLE_ALIASES[normalized]
    try:
        return CycleKind(normalized)
    except ValueError as exc:
        supported = ", ".join(kind.value for kind in CycleKind)
        raise InvalidCycleError(
            f"Invalid billing cycle: {tag!r}. Must be one of: {supported}."
        ) from exc


def ensure_cycle(cycle: BillingCycle | str | CycleKind) -> BillingCycle:
    if isinstance(cycle, BillingCycle):
        return cycle
    return BillingCycle.parse(cycle)


def coerce_date(value: date | datetime | str, field: str = "date") -> date:
    """Reduce a date-like value to a naive calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d").date()
        except ValueError as exc:
            raise InvalidDateError(f"{field} must be a valid YYYY-MM-DD date.") from exc
    raise InvalidDateError(f"{field} must be a calendar date.")


def _normalize_tag(value: str) -> str:
    return "".join(ch for ch in value.strip().lower() if ch.isalnum())
