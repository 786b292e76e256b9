import unittest
from decimal import Decimal

from backend.billing_cycle import BillingCycle, CycleKind, InvalidScheduleError
from backend.cost_normalization import round_currency, to_monthly, to_yearly

ALL_CYCLES = [
    BillingCycle(CycleKind.WEEKLY),
    BillingCycle(CycleKind.MONTHLY),
    BillingCycle(CycleKind.QUARTERLY),
    BillingCycle(CycleKind.BIANNUALLY),
    BillingCycle(CycleKind.YEARLY),
    BillingCycle(CycleKind.CUSTOM, 7),
    BillingCycle(CycleKind.CUSTOM, 45),
]


class CostNormalizationTests(unittest.TestCase):
    def test_monthly_equivalents(self) -> None:
        self.assertEqual(to_monthly(Decimal("9.99"), BillingCycle(CycleKind.MONTHLY)), Decimal("9.99"))
        self.assertEqual(to_monthly(Decimal("30"), BillingCycle(CycleKind.QUARTERLY)), Decimal("10"))
        self.assertEqual(to_monthly(Decimal("60"), BillingCycle(CycleKind.BIANNUALLY)), Decimal("10"))
        self.assertEqual(to_monthly(Decimal("120"), BillingCycle(CycleKind.YEARLY)), Decimal("10"))

    def test_weekly_uses_fifty_two_weeks_a_year(self) -> None:
        weekly = BillingCycle(CycleKind.WEEKLY)

        self.assertEqual(to_yearly(Decimal("10"), weekly), Decimal("520"))
        self.assertEqual(round_currency(to_monthly(Decimal("10"), weekly)), Decimal("43.33"))

    def test_custom_uses_average_year_length(self) -> None:
        custom = BillingCycle(CycleKind.CUSTOM, 30)

        self.assertEqual(to_yearly(Decimal("10"), custom), Decimal("121.75"))
        self.assertEqual(round_currency(to_monthly(Decimal("10"), custom)), Decimal("10.15"))

    def test_yearly_equivalents(self) -> None:
        self.assertEqual(to_yearly(Decimal("15"), BillingCycle(CycleKind.MONTHLY)), Decimal("180"))
        self.assertEqual(to_yearly(Decimal("15"), BillingCycle(CycleKind.QUARTERLY)), Decimal("60"))
        self.assertEqual(to_yearly(Decimal("15"), BillingCycle(CycleKind.BIANNUALLY)), Decimal("30"))
        self.assertEqual(to_yearly(Decimal("15"), BillingCycle(CycleKind.YEARLY)), Decimal("15"))

    def test_twelve_months_match_one_year_for_every_cycle(self) -> None:
        for cost in (Decimal("9.99"), Decimal("15"), Decimal("100")):
            for cycle in ALL_CYCLES:
                with self.subTest(cost=cost, cycle=cycle):
                    self.assertEqual(
                        round_currency(to_monthly(cost, cycle) * 12),
                        round_currency(to_yearly(cost, cycle)),
                    )

    def test_accepts_plain_numbers_and_tags(self) -> None:
        self.assertEqual(to_monthly("120", "Yearly"), Decimal("10"))
        self.assertEqual(to_yearly(10, "monthly"), Decimal("120"))

    def test_round_currency_rounds_half_up(self) -> None:
        self.assertEqual(round_currency(Decimal("2.675")), Decimal("2.68"))
        self.assertEqual(round_currency(Decimal("2.665")), Decimal("2.67"))
        self.assertEqual(round_currency(2.675), Decimal("2.68"))
        self.assertEqual(round_currency(Decimal("-1.005")), Decimal("-1.01"))

    def test_non_positive_custom_interval_is_rejected(self) -> None:
        with self.assertRaises(InvalidScheduleError):
            to_monthly(Decimal("10"), BillingCycle(CycleKind.CUSTOM, -5))
        with self.assertRaises(InvalidScheduleError):
            to_yearly(Decimal("10"), BillingCycle(CycleKind.CUSTOM, 0))


if __name__ == "__main__":
    unittest.main()
