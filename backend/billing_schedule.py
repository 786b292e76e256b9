from __future__ import annotations

from calendar import monthrange
from datetime import date, datetime, timedelta
from typing import List

from backend.billing_cycle import (
    BillingCycle,
    CycleKind,
    InvalidScheduleError,
    coerce_date,
    ensure_cycle,
)

MAX_OCCURRENCES = 10_000

DateLike = date | datetime | str
CycleLike = BillingCycle | CycleKind | str


def next_payment_date(
    start_date: DateLike,
    cycle: CycleLike,
    reference_date: DateLike,
    scheduled: DateLike | None = None,
) -> date:
    """Return the first occurrence strictly after ``reference_date``.

    A stored ``scheduled`` date later than the reference is authoritative and
    is returned as is.
    """
    anchor = coerce_date(start_date, "start_date")
    reference = coerce_date(reference_date, "reference_date")
    normalized_cycle = ensure_cycle(cycle)
    if scheduled is not None:
        override = coerce_date(scheduled, "next_payment_date")
        if override > reference:
            return override
    index = _first_index_after(anchor, normalized_cycle, reference)
    return _occurrence(anchor, normalized_cycle, index)


def project_occurrences(
    start_date: DateLike,
    cycle: CycleLike,
    window_start: DateLike,
    window_end: DateLike,
    scheduled: DateLike | None = None,
) -> List[date]:
    """List every occurrence inside ``[window_start, window_end]``, ascending.

    When ``scheduled`` is given it replaces the anchor occurrence nearest to
    it; later occurrences keep following the anchor.
    """
    anchor = coerce_date(start_date, "start_date")
    range_start = coerce_date(window_start, "window_start")
    range_end = coerce_date(window_end, "window_end")
    normalized_cycle = ensure_cycle(cycle)
    override = coerce_date(scheduled, "next_payment_date") if scheduled is not None else None
    if range_start > range_end:
        return []

    replaced_index = None
    override_pending = False
    if override is not None:
        replaced_index = _nearest_index(anchor, normalized_cycle, override)
        override_pending = range_start <= override <= range_end

    occurrences: List[date] = []
    index = _first_index_on_or_after(anchor, normalized_cycle, range_start)
    current = _bounded_occurrence(anchor, normalized_cycle, index)
    while current is not None and current <= range_end:
        if index != replaced_index:
            if override_pending and current > override:
                occurrences.append(override)
                override_pending = False
            occurrences.append(current)
        if len(occurrences) > MAX_OCCURRENCES:
            raise InvalidScheduleError(
                f"Window produces more than {MAX_OCCURRENCES} occurrences."
            )
        index += 1
        current = _bounded_occurrence(anchor, normalized_cycle, index)
    if override_pending:
        occurrences.append(override)
    return occurrences


def preview_upcoming(
    start_date: DateLike,
    cycle: CycleLike,
    reference_date: DateLike,
    count: int,
) -> List[date]:
    """Return exactly ``count`` occurrences strictly after ``reference_date``."""
    anchor = coerce_date(start_date, "start_date")
    reference = coerce_date(reference_date, "reference_date")
    normalized_cycle = ensure_cycle(cycle)
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValueError("count must be an integer.")
    if count < 0 or count > MAX_OCCURRENCES:
        raise ValueError(f"count must be between 0 and {MAX_OCCURRENCES}.")
    first_index = _first_index_after(anchor, normalized_cycle, reference)
    return [
        _occurrence(anchor, normalized_cycle, first_index + offset)
        for offset in range(count)
    ]


def add_months(start_date: date, months: int, anchor_day: int | None = None) -> date:
    """Shift by whole months, clamping the anchor day to the target month's length."""
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    day = min(anchor_day or start_date.day, last_day)
    return date(year, month, day)


def _occurrence(anchor: date, cycle: BillingCycle, index: int) -> date:
    current = _bounded_occurrence(anchor, cycle, index)
    if current is None:
        raise InvalidScheduleError("Schedule runs past the supported calendar range.")
    return current


def _bounded_occurrence(anchor: date, cycle: BillingCycle, index: int) -> date | None:
    """Return occurrence ``index``, or None once the schedule passes ``date.max``."""
    if cycle.month_step is not None:
        try:
            return add_months(anchor, cycle.month_step * index, anchor.day)
        except ValueError:
            return None
    step = _day_step(cycle)
    try:
        return anchor + timedelta(days=step * index)
    except OverflowError:
        return None


def _day_step(cycle: BillingCycle) -> int:
    step = cycle.day_step
    if step is None or step <= 0:
        raise InvalidScheduleError("Billing cycle would never advance.")
    return step


def _first_index_on_or_after(anchor: date, cycle: BillingCycle, minimum_date: date) -> int:
    if anchor >= minimum_date:
        return 0
    if cycle.month_step is None:
        step = _day_step(cycle)
        days_between = (minimum_date - anchor).days
        return (days_between + step - 1) // step
    months_between = (minimum_date.year - anchor.year) * 12 + (
        minimum_date.month - anchor.month
    )
    index = months_between // cycle.month_step
    while True:
        current = _bounded_occurrence(anchor, cycle, index)
        if current is None or current >= minimum_date:
            return index
        index += 1


def _first_index_after(anchor: date, cycle: BillingCycle, reference_date: date) -> int:
    if anchor > reference_date:
        return 0
    index = _first_index_on_or_after(anchor, cycle, reference_date)
    if _bounded_occurrence(anchor, cycle, index) == reference_date:
        index += 1
    return index


def _nearest_index(anchor: date, cycle: BillingCycle, target: date) -> int:
    following = _first_index_on_or_after(anchor, cycle, target)
    if following == 0:
        return 0
    following_date = _bounded_occurrence(anchor, cycle, following)
    if following_date is None:
        return following - 1
    previous_gap = target - _occurrence(anchor, cycle, following - 1)
    following_gap = following_date - target
    return following - 1 if previous_gap < following_gap else following
