import unittest
from datetime import date

from balance.recurring_schedule import RecurringRule
from balance.upcoming_payments import (
    MonthlyCashFlow,
    UpcomingPayment,
    UpcomingSummary,
    monthly_cash_flow,
    monthly_total,
    relative_day_label,
    summarize,
    upcoming_payments,
)

AS_OF = date(2024, 1, 3)


def make_rule(rule_id: int, **overrides) -> RecurringRule:
    values = {
        "id": rule_id,
        "name": f"Rule {rule_id}",
        "amount": 100,
        "frequency": "weekly",
        "start_date": date(2024, 1, 1),
    }
    values.update(overrides)
    return RecurringRule(**values)


class UpcomingPaymentsTests(unittest.TestCase):
    def test_monthly_and_weekly_scenario(self) -> None:
        rent = make_rule(1, amount=1000, frequency="monthly")
        gym = make_rule(2, amount=500, frequency="weekly")

        payments = upcoming_payments([rent, gym], AS_OF, horizon_days=7)

        self.assertEqual(payments, [UpcomingPayment(rule=gym, date=date(2024, 1, 8))])
        self.assertEqual(
            summarize(payments),
            UpcomingSummary(count=1, total_amount=500, earliest_date=date(2024, 1, 8)),
        )

    def test_empty_rules_give_empty_result(self) -> None:
        payments = upcoming_payments([], AS_OF)

        self.assertEqual(payments, [])
        self.assertEqual(summarize(payments), UpcomingSummary(count=0, total_amount=0))
        self.assertIsNone(summarize(payments).earliest_date)

    def test_inactive_rules_are_excluded(self) -> None:
        rules = [
            make_rule(1, start_date=date(2024, 1, 4), is_active=False),
            make_rule(2, frequency="monthly", start_date=date(2024, 1, 4), is_active=False),
        ]

        self.assertEqual(upcoming_payments(rules, AS_OF), [])
        self.assertEqual(monthly_total(rules), 0)

    def test_horizon_day_is_inclusive(self) -> None:
        on_boundary = make_rule(1, start_date=date(2024, 1, 10))
        past_boundary = make_rule(2, start_date=date(2024, 1, 11))

        payments = upcoming_payments([on_boundary, past_boundary], AS_OF, horizon_days=7)

        self.assertEqual([payment.rule.id for payment in payments], [1])

    def test_sorted_by_date_then_rule_id(self) -> None:
        rules = [
            make_rule(3, start_date=date(2024, 1, 5)),
            make_rule(1, start_date=date(2024, 1, 5)),
            make_rule(2, start_date=date(2024, 1, 4)),
        ]

        payments = upcoming_payments(rules, AS_OF, limit=None)

        self.assertEqual([payment.rule.id for payment in payments], [2, 1, 3])
        dates = [payment.date for payment in payments]
        self.assertEqual(dates, sorted(dates))

    def test_truncates_to_earliest_entries(self) -> None:
        rules = [make_rule(index, start_date=date(2024, 1, 8 - index)) for index in range(1, 6)]

        payments = upcoming_payments(rules, AS_OF)

        self.assertEqual(
            [payment.date for payment in payments],
            [date(2024, 1, 3), date(2024, 1, 4), date(2024, 1, 5)],
        )
        self.assertEqual(len(upcoming_payments(rules, AS_OF, limit=None)), 5)
        self.assertEqual(upcoming_payments(rules, AS_OF, limit=0), [])

    def test_each_rule_contributes_once(self) -> None:
        daily_like = make_rule(1, start_date=date(2024, 1, 3))

        payments = upcoming_payments([daily_like], AS_OF, horizon_days=30, limit=None)

        self.assertEqual(payments, [UpcomingPayment(rule=daily_like, date=AS_OF)])

    def test_is_deterministic_and_leaves_input_untouched(self) -> None:
        rules = [
            make_rule(2, start_date=date(2024, 1, 6)),
            make_rule(1, start_date=date(2024, 1, 6)),
            make_rule(3, frequency="monthly", start_date=date(2023, 12, 5)),
        ]
        snapshot = list(rules)

        first = upcoming_payments(rules, AS_OF)
        second = upcoming_payments(rules, AS_OF)

        self.assertEqual(first, second)
        self.assertEqual(rules, snapshot)

    def test_summary_total_matches_returned_payments(self) -> None:
        rules = [
            make_rule(index, amount=index * 125, start_date=date(2024, 1, 3 + index))
            for index in range(1, 5)
        ]

        payments = upcoming_payments(rules, AS_OF)
        summary = summarize(payments)

        self.assertEqual(summary.count, 3)
        self.assertEqual(summary.total_amount, sum(p.rule.amount for p in payments))
        self.assertEqual(summary.earliest_date, date(2024, 1, 4))


class MonthlyTotalTests(unittest.TestCase):
    def test_only_monthly_rules_count(self) -> None:
        rules = [
            make_rule(1, amount=1000, frequency="monthly"),
            make_rule(2, amount=1000, frequency="yearly"),
            make_rule(3, amount=250, frequency="weekly"),
            make_rule(4, amount=75, frequency="biweekly"),
        ]

        self.assertEqual(monthly_total(rules), 1000)

    def test_cash_flow_normalizes_to_monthly_amounts(self) -> None:
        rules = [
            make_rule(1, amount=100, frequency="weekly"),
            make_rule(2, amount=100, frequency="biweekly"),
            make_rule(3, amount=1200, frequency="yearly", kind="income"),
            make_rule(4, amount=3000, frequency="monthly", kind="income"),
            make_rule(5, amount=9999, frequency="monthly", is_active=False),
        ]

        self.assertEqual(monthly_cash_flow(rules), MonthlyCashFlow(income=3100, expense=600))


class RelativeDayLabelTests(unittest.TestCase):
    def test_labels(self) -> None:
        self.assertEqual(relative_day_label(date(2024, 1, 3), AS_OF), "Today")
        self.assertEqual(relative_day_label(date(2024, 1, 4), AS_OF), "Tomorrow")
        self.assertEqual(relative_day_label(date(2024, 1, 6), AS_OF), "in 3 days")
        self.assertEqual(relative_day_label(date(2024, 1, 10), AS_OF), "in 7 days")
        self.assertEqual(relative_day_label(date(2024, 1, 11), AS_OF), "Jan 11")
        self.assertEqual(relative_day_label(date(2024, 1, 1), AS_OF), "Jan 1")


if __name__ == "__main__":
    unittest.main()
