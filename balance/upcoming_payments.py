from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, NamedTuple, Optional, Sequence

from balance.recurring_schedule import RecurringRule, next_occurrence, normalize_frequency

DEFAULT_HORIZON_DAYS = 7
DEFAULT_LIMIT = 3

# Monthly equivalents: multiplier, divisor.
MONTHLY_FACTORS = {
    "weekly": (4, 1),
    "biweekly": (2, 1),
    "monthly": (1, 1),
    "yearly": (1, 12),
}


class UpcomingPayment(NamedTuple):
    rule: RecurringRule
    date: date


@dataclass(frozen=True)
class UpcomingSummary:
    count: int
    total_amount: int
    earliest_date: Optional[date] = None


@dataclass(frozen=True)
class MonthlyCashFlow:
    income: int
    expense: int


def upcoming_payments(
    rules: Iterable[RecurringRule],
    as_of: date,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
    limit: Optional[int] = DEFAULT_LIMIT,
) -> List[UpcomingPayment]:
    """Next occurrence of each active rule that falls within ``horizon_days``.

    The window is counted in whole days and includes its last day. Results are
    ordered by date, then rule id, and cut to ``limit`` entries; ``None``
    keeps them all.
    """
    upcoming: List[UpcomingPayment] = []
    for rule in rules:
        if not rule.is_active:
            continue
        occurrence = next_occurrence(rule, as_of)
        if occurrence is None:
            continue
        if (occurrence - as_of).days > horizon_days:
            continue
        upcoming.append(UpcomingPayment(rule=rule, date=occurrence))

    upcoming.sort(key=lambda payment: (payment.date, payment.rule.id))
    if limit is None:
        return upcoming
    return upcoming[: max(limit, 0)]


def summarize(payments: Sequence[UpcomingPayment]) -> UpcomingSummary:
    if not payments:
        return UpcomingSummary(count=0, total_amount=0)
    return UpcomingSummary(
        count=len(payments),
        total_amount=sum(payment.rule.amount for payment in payments),
        earliest_date=payments[0].date,
    )


def monthly_total(rules: Iterable[RecurringRule]) -> int:
    # Only rules billed monthly count here; weekly or yearly charges that land
    # in the month are left out.
    return sum(
        rule.amount
        for rule in rules
        if rule.is_active and normalize_frequency(rule.frequency) == "monthly"
    )


def monthly_cash_flow(rules: Iterable[RecurringRule]) -> MonthlyCashFlow:
    income = 0
    expense = 0
    for rule in rules:
        if not rule.is_active:
            continue
        factors = MONTHLY_FACTORS.get(normalize_frequency(rule.frequency))
        if factors is None:
            continue
        multiplier, divisor = factors
        monthly_amount = rule.amount * multiplier // divisor
        if rule.kind.strip().lower() == "income":
            income += monthly_amount
        else:
            expense += monthly_amount
    return MonthlyCashFlow(income=income, expense=expense)


def relative_day_label(
    occurrence: date, as_of: date, horizon_days: int = DEFAULT_HORIZON_DAYS
) -> str:
    days = (occurrence - as_of).days
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    if 1 < days <= horizon_days:
        return f"in {days} days"
    return f"{occurrence:%b} {occurrence.day}"
