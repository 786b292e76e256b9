import unittest
from datetime import date, timedelta

from backend.billing_cycle import (
    BillingCycle,
    CycleKind,
    InvalidDateError,
    InvalidScheduleError,
)
from backend.billing_schedule import (
    next_payment_date,
    preview_upcoming,
    project_occurrences,
)

MONTHLY = BillingCycle(CycleKind.MONTHLY)
WEEKLY = BillingCycle(CycleKind.WEEKLY)
YEARLY = BillingCycle(CycleKind.YEARLY)


class NextPaymentDateTests(unittest.TestCase):
    def test_monthly_clamps_to_end_of_february_in_leap_year(self) -> None:
        result = next_payment_date(date(2024, 1, 31), MONTHLY, date(2024, 2, 1))

        self.assertEqual(result, date(2024, 2, 29))

    def test_yearly_leap_day_clamps_to_february_28(self) -> None:
        result = next_payment_date(date(2024, 2, 29), YEARLY, date(2025, 1, 1))

        self.assertEqual(result, date(2025, 2, 28))

    def test_accepts_iso_strings_and_cycle_tags(self) -> None:
        result = next_payment_date("2024-01-31", "Monthly", "2024-02-01")

        self.assertEqual(result, date(2024, 2, 29))

    def test_reference_before_start_returns_start(self) -> None:
        result = next_payment_date(date(2024, 5, 10), MONTHLY, date(2024, 1, 1))

        self.assertEqual(result, date(2024, 5, 10))

    def test_reference_on_occurrence_is_exclusive(self) -> None:
        self.assertEqual(
            next_payment_date(date(2024, 1, 15), MONTHLY, date(2024, 3, 15)),
            date(2024, 4, 15),
        )
        self.assertEqual(
            next_payment_date(date(2024, 1, 15), MONTHLY, date(2024, 1, 15)),
            date(2024, 2, 15),
        )

    def test_weekly_keeps_start_weekday(self) -> None:
        result = next_payment_date(date(2024, 1, 3), WEEKLY, date(2024, 2, 10))

        self.assertEqual(result, date(2024, 2, 14))
        self.assertEqual(result.weekday(), date(2024, 1, 3).weekday())

    def test_biannual_clamps_day_of_month(self) -> None:
        result = next_payment_date(
            date(2024, 8, 31), BillingCycle(CycleKind.BIANNUALLY), date(2024, 9, 1)
        )

        self.assertEqual(result, date(2025, 2, 28))

    def test_custom_interval_counts_days_from_start(self) -> None:
        result = next_payment_date(
            date(2024, 1, 1), BillingCycle(CycleKind.CUSTOM, 10), date(2024, 1, 25)
        )

        self.assertEqual(result, date(2024, 1, 31))

    def test_scheduled_date_is_authoritative_when_in_future(self) -> None:
        result = next_payment_date(
            date(2024, 1, 15), MONTHLY, date(2024, 3, 1), scheduled=date(2024, 3, 20)
        )

        self.assertEqual(result, date(2024, 3, 20))

    def test_stale_scheduled_date_falls_back_to_cycle(self) -> None:
        result = next_payment_date(
            date(2024, 1, 15), MONTHLY, date(2024, 3, 1), scheduled=date(2024, 2, 20)
        )

        self.assertEqual(result, date(2024, 3, 15))

    def test_custom_zero_interval_is_rejected(self) -> None:
        with self.assertRaises(InvalidScheduleError):
            next_payment_date(
                date(2024, 1, 1), BillingCycle(CycleKind.CUSTOM, 0), date(2024, 2, 1)
            )
        with self.assertRaises(InvalidScheduleError):
            next_payment_date(date(2024, 1, 1), "custom", date(2024, 2, 1))

    def test_impossible_start_date_is_rejected(self) -> None:
        with self.assertRaises(InvalidDateError):
            next_payment_date("2023-02-29", MONTHLY, "2024-01-01")
        with self.assertRaises(InvalidDateError):
            next_payment_date("soon", MONTHLY, "2024-01-01")

    def test_malformed_reference_date_is_rejected(self) -> None:
        with self.assertRaises(InvalidDateError):
            next_payment_date(date(2024, 1, 1), MONTHLY, "2024-13-01")
        with self.assertRaises(InvalidDateError):
            next_payment_date(date(2024, 1, 1), MONTHLY, 20240101)

    def test_next_date_past_supported_range_is_rejected(self) -> None:
        with self.assertRaises(InvalidScheduleError):
            next_payment_date(date(9999, 12, 1), MONTHLY, date(9999, 12, 15))

    def test_repeated_calls_are_identical(self) -> None:
        first = next_payment_date(date(2023, 3, 31), MONTHLY, date(2024, 2, 2))
        second = next_payment_date(date(2023, 3, 31), MONTHLY, date(2024, 2, 2))

        self.assertEqual(first, second)
        self.assertEqual(first, date(2024, 2, 29))


class ProjectOccurrencesTests(unittest.TestCase):
    def test_monthly_uses_anchor_day_after_clamped_month(self) -> None:
        result = project_occurrences(
            date(2024, 1, 31), MONTHLY, date(2024, 1, 1), date(2024, 5, 31)
        )

        self.assertEqual(
            result,
            [
                date(2024, 1, 31),
                date(2024, 2, 29),
                date(2024, 3, 31),
                date(2024, 4, 30),
                date(2024, 5, 31),
            ],
        )

    def test_quarterly_window_skips_to_first_occurrence(self) -> None:
        result = project_occurrences(
            date(2023, 11, 30),
            BillingCycle(CycleKind.QUARTERLY),
            date(2024, 1, 1),
            date(2024, 12, 31),
        )

        self.assertEqual(
            result,
            [
                date(2024, 2, 29),
                date(2024, 5, 30),
                date(2024, 8, 30),
                date(2024, 11, 30),
            ],
        )

    def test_window_bounds_are_inclusive(self) -> None:
        result = project_occurrences(
            date(2024, 1, 15), MONTHLY, date(2024, 2, 15), date(2024, 4, 15)
        )

        self.assertEqual(result, [date(2024, 2, 15), date(2024, 3, 15), date(2024, 4, 15)])

    def test_window_ending_before_start_is_empty(self) -> None:
        result = project_occurrences(
            date(2024, 6, 1), MONTHLY, date(2024, 1, 1), date(2024, 5, 31)
        )

        self.assertEqual(result, [])

    def test_inverted_window_is_empty(self) -> None:
        result = project_occurrences(
            date(2024, 1, 1), MONTHLY, date(2024, 5, 1), date(2024, 4, 1)
        )

        self.assertEqual(result, [])

    def test_malformed_window_bounds_are_rejected(self) -> None:
        with self.assertRaises(InvalidDateError):
            project_occurrences(date(2024, 1, 1), MONTHLY, "2024-02-30", date(2024, 3, 31))
        with self.assertRaises(InvalidDateError):
            project_occurrences(date(2024, 1, 1), MONTHLY, date(2024, 1, 1), "end of march")

    def test_window_in_last_supported_month(self) -> None:
        monthly = project_occurrences(
            date(9999, 12, 1), MONTHLY, date(9999, 12, 1), date(9999, 12, 31)
        )
        weekly = project_occurrences(
            date(9999, 12, 6), WEEKLY, date(9999, 12, 1), date(9999, 12, 31)
        )
        past_last = project_occurrences(
            date(9999, 12, 1), MONTHLY, date(9999, 12, 5), date(9999, 12, 31)
        )

        self.assertEqual(monthly, [date(9999, 12, 1)])
        self.assertEqual(
            weekly,
            [date(9999, 12, 6), date(9999, 12, 13), date(9999, 12, 20), date(9999, 12, 27)],
        )
        self.assertEqual(past_last, [])

    def test_weekly_occurrences_share_start_weekday(self) -> None:
        starts = [date(2024, 1, 3), date(2023, 12, 31), date(2024, 2, 29)]
        windows = [
            (date(2024, 1, 1), date(2024, 3, 31)),
            (date(2024, 2, 28), date(2024, 6, 1)),
            (date(2025, 1, 1), date(2025, 12, 31)),
        ]
        for start in starts:
            for window_start, window_end in windows:
                occurrences = project_occurrences(start, WEEKLY, window_start, window_end)
                self.assertTrue(occurrences)
                for occurrence in occurrences:
                    self.assertEqual(occurrence.weekday(), start.weekday())

    def test_scheduled_date_replaces_nearest_occurrence(self) -> None:
        later = project_occurrences(
            date(2024, 1, 15),
            MONTHLY,
            date(2024, 3, 1),
            date(2024, 5, 31),
            scheduled=date(2024, 3, 20),
        )
        earlier = project_occurrences(
            date(2024, 1, 15),
            MONTHLY,
            date(2024, 3, 1),
            date(2024, 5, 31),
            scheduled=date(2024, 3, 10),
        )

        self.assertEqual(later, [date(2024, 3, 20), date(2024, 4, 15), date(2024, 5, 15)])
        self.assertEqual(earlier, [date(2024, 3, 10), date(2024, 4, 15), date(2024, 5, 15)])

    def test_scheduled_date_outside_window_still_suppresses_replaced_occurrence(self) -> None:
        result = project_occurrences(
            date(2024, 1, 15),
            MONTHLY,
            date(2024, 3, 1),
            date(2024, 3, 24),
            scheduled=date(2024, 3, 25),
        )

        self.assertEqual(result, [])

    def test_oversized_window_is_rejected(self) -> None:
        with self.assertRaises(InvalidScheduleError):
            project_occurrences(
                date(2000, 1, 1),
                BillingCycle(CycleKind.CUSTOM, 1),
                date(2000, 1, 1),
                date(2040, 1, 1),
            )


class PreviewUpcomingTests(unittest.TestCase):
    def test_preview_lists_payments_after_reference(self) -> None:
        result = preview_upcoming(date(2024, 1, 31), MONTHLY, date(2024, 1, 31), 3)

        self.assertEqual(result, [date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)])

    def test_preview_of_thousand_daily_payments_is_bounded(self) -> None:
        start = date(2024, 1, 1)
        result = preview_upcoming(start, BillingCycle(CycleKind.CUSTOM, 1), start, 1000)

        self.assertEqual(len(result), 1000)
        self.assertEqual(result[0], date(2024, 1, 2))
        self.assertEqual(result[-1], start + timedelta(days=1000))

    def test_preview_of_thousand_payments_for_every_cycle(self) -> None:
        cycles = [
            WEEKLY,
            MONTHLY,
            BillingCycle(CycleKind.QUARTERLY),
            BillingCycle(CycleKind.BIANNUALLY),
            YEARLY,
            BillingCycle(CycleKind.CUSTOM, 3),
        ]
        for cycle in cycles:
            result = preview_upcoming(date(2024, 2, 29), cycle, date(2024, 3, 1), 1000)
            self.assertEqual(len(result), 1000)
            self.assertEqual(result, sorted(set(result)))
            self.assertGreater(result[0], date(2024, 3, 1))

    def test_zero_count_is_empty(self) -> None:
        self.assertEqual(preview_upcoming(date(2024, 1, 1), MONTHLY, date(2024, 1, 1), 0), [])

    def test_negative_count_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            preview_upcoming(date(2024, 1, 1), MONTHLY, date(2024, 1, 1), -1)

    def test_custom_negative_interval_is_rejected(self) -> None:
        with self.assertRaises(InvalidScheduleError):
            preview_upcoming(
                date(2024, 1, 1), BillingCycle(CycleKind.CUSTOM, -5), date(2024, 1, 1), 3
            )


if __name__ == "__main__":
    unittest.main()
