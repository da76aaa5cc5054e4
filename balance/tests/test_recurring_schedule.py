import unittest
from datetime import date

from balance.recurring_schedule import (
    RecurringRule,
    due_occurrences,
    next_occurrence,
    normalize_frequency,
    occurrences_between,
)


def make_rule(**overrides) -> RecurringRule:
    values = {
        "id": 1,
        "name": "Rent",
        "amount": 1000,
        "frequency": "monthly",
        "start_date": date(2024, 1, 1),
    }
    values.update(overrides)
    return RecurringRule(**values)


class NextOccurrenceTests(unittest.TestCase):
    def test_weekly_advances_to_first_date_on_or_after(self) -> None:
        rule = make_rule(frequency="weekly")

        self.assertEqual(next_occurrence(rule, date(2024, 1, 3)), date(2024, 1, 8))

    def test_returns_reference_day_when_it_is_an_occurrence(self) -> None:
        rule = make_rule(frequency="weekly")

        self.assertEqual(next_occurrence(rule, date(2024, 1, 15)), date(2024, 1, 15))

    def test_returns_anchor_when_anchor_is_in_the_future(self) -> None:
        rule = make_rule(frequency="monthly", start_date=date(2024, 3, 1))

        self.assertEqual(next_occurrence(rule, date(2024, 2, 1)), date(2024, 3, 1))

    def test_biweekly_uses_fourteen_day_steps(self) -> None:
        rule = make_rule(frequency="biweekly", start_date=date(2024, 1, 5))

        self.assertEqual(next_occurrence(rule, date(2024, 1, 6)), date(2024, 1, 19))

    def test_monthly_clamps_to_last_day_and_restores_anchor_day(self) -> None:
        rule = make_rule(frequency="monthly", start_date=date(2024, 1, 31))

        self.assertEqual(next_occurrence(rule, date(2024, 2, 1)), date(2024, 2, 29))
        self.assertEqual(next_occurrence(rule, date(2024, 3, 1)), date(2024, 3, 31))
        self.assertEqual(next_occurrence(rule, date(2024, 4, 1)), date(2024, 4, 30))

    def test_yearly_leap_day_clamps_in_common_years(self) -> None:
        rule = make_rule(frequency="yearly", start_date=date(2024, 2, 29))

        self.assertEqual(next_occurrence(rule, date(2024, 3, 1)), date(2025, 2, 28))
        self.assertEqual(next_occurrence(rule, date(2027, 3, 1)), date(2028, 2, 29))

    def test_yearly_skips_to_next_year_after_anniversary(self) -> None:
        rule = make_rule(frequency="yearly", start_date=date(2024, 3, 15))

        self.assertEqual(next_occurrence(rule, date(2025, 2, 10)), date(2025, 3, 15))
        self.assertEqual(next_occurrence(rule, date(2025, 3, 20)), date(2026, 3, 15))

    def test_normalizes_frequency_spelling(self) -> None:
        rule = make_rule(frequency="Bi-Weekly", start_date=date(2024, 1, 5))

        self.assertEqual(next_occurrence(rule, date(2024, 1, 6)), date(2024, 1, 19))
        self.assertEqual(normalize_frequency(" byweekly "), "biweekly")

    def test_unknown_frequency_has_no_occurrence(self) -> None:
        rule = make_rule(frequency="quarterly")

        self.assertIsNone(next_occurrence(rule, date(2024, 1, 1)))

    def test_respects_end_date(self) -> None:
        rule = make_rule(frequency="monthly", end_date=date(2024, 3, 15))

        self.assertEqual(next_occurrence(rule, date(2024, 2, 15)), date(2024, 3, 1))
        self.assertIsNone(next_occurrence(rule, date(2024, 3, 2)))

    def test_calendar_overflow_has_no_occurrence(self) -> None:
        monthly = make_rule(frequency="monthly", start_date=date(9999, 12, 1))
        weekly = make_rule(frequency="weekly", start_date=date(9999, 12, 30))

        self.assertIsNone(next_occurrence(monthly, date(9999, 12, 2)))
        self.assertIsNone(next_occurrence(weekly, date(9999, 12, 31)))


class OccurrencesBetweenTests(unittest.TestCase):
    def test_lists_weekly_occurrences_in_range(self) -> None:
        rule = make_rule(frequency="weekly")

        self.assertEqual(
            occurrences_between(rule, date(2024, 1, 1), date(2024, 1, 20)),
            [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)],
        )

    def test_inverted_range_is_empty(self) -> None:
        rule = make_rule(frequency="weekly")

        self.assertEqual(occurrences_between(rule, date(2024, 2, 1), date(2024, 1, 1)), [])

    def test_stops_at_end_date(self) -> None:
        rule = make_rule(frequency="monthly", end_date=date(2024, 2, 10))

        self.assertEqual(
            occurrences_between(rule, date(2024, 1, 1), date(2024, 6, 30)),
            [date(2024, 1, 1), date(2024, 2, 1)],
        )


class DueOccurrencesTests(unittest.TestCase):
    def test_catches_up_from_anchor_when_never_generated(self) -> None:
        rule = make_rule(frequency="weekly", start_date=date(2024, 1, 10))

        self.assertEqual(
            due_occurrences(rule, date(2024, 1, 24)),
            [date(2024, 1, 10), date(2024, 1, 17), date(2024, 1, 24)],
        )

    def test_resumes_after_last_generated(self) -> None:
        rule = make_rule(
            frequency="weekly",
            start_date=date(2024, 1, 10),
            last_generated=date(2024, 1, 17),
        )

        self.assertEqual(due_occurrences(rule, date(2024, 1, 24)), [date(2024, 1, 24)])

    def test_inactive_rule_has_nothing_due(self) -> None:
        rule = make_rule(frequency="weekly", is_active=False)

        self.assertEqual(due_occurrences(rule, date(2024, 2, 1)), [])


if __name__ == "__main__":
    unittest.main()
