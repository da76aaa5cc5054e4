from __future__ import annotations

from dataclasses import dataclass
from calendar import monthrange
from datetime import date, timedelta
from typing import Iterator, List, Optional

WEEKLY_DAYS = 7
BIWEEKLY_DAYS = 14
SUPPORTED_FREQUENCIES = {"weekly", "biweekly", "monthly", "yearly"}
SUPPORTED_KINDS = {"income", "expense"}

INTERVAL_DAYS = {
    "weekly": WEEKLY_DAYS,
    "biweekly": BIWEEKLY_DAYS,
}
MONTH_STEPS = {
    "monthly": 1,
    "yearly": 12,
}


@dataclass(frozen=True)
class RecurringRule:
    id: int
    name: str
    amount: int
    frequency: str
    start_date: date
    category: str | None = None
    kind: str = "expense"
    is_active: bool = True
    end_date: date | None = None
    last_generated: date | None = None
    notes: str | None = None


def normalize_frequency(value: str) -> str:
    normalized = "".join(ch for ch in value.strip().lower() if ch.isalnum())
    if normalized == "byweekly":
        return "biweekly"
    return normalized


def next_occurrence(rule: RecurringRule, as_of: date) -> Optional[date]:
    """Return the first occurrence of ``rule`` on or after ``as_of``.

    Monthly and yearly dates are clamped to the last day of shorter months and
    always recomputed from the anchor, so a rule anchored on the 31st lands on
    the 31st again whenever the month has one. ``None`` means the rule has no
    such occurrence: unknown frequency, past its end date, or beyond the
    calendar.
    """
    for occurrence in _iter_occurrences(rule, as_of):
        return occurrence
    return None


def occurrences_between(rule: RecurringRule, start: date, end: date) -> List[date]:
    if start > end:
        return []
    occurrences: List[date] = []
    for occurrence in _iter_occurrences(rule, start):
        if occurrence > end:
            break
        occurrences.append(occurrence)
    return occurrences


def due_occurrences(rule: RecurringRule, as_of: date) -> List[date]:
    """Occurrences up to ``as_of`` that have not been materialized yet."""
    if not rule.is_active:
        return []
    if rule.last_generated is None:
        start = rule.start_date
    else:
        start = rule.last_generated + timedelta(days=1)
    return occurrences_between(rule, start, as_of)


def _iter_occurrences(rule: RecurringRule, minimum_date: date) -> Iterator[date]:
    frequency = normalize_frequency(rule.frequency)
    if frequency not in SUPPORTED_FREQUENCIES:
        return
    try:
        if frequency in MONTH_STEPS:
            occurrences = _iter_calendar_occurrences(
                rule.start_date, minimum_date, MONTH_STEPS[frequency]
            )
        else:
            occurrences = _iter_interval_occurrences(
                rule.start_date, minimum_date, INTERVAL_DAYS[frequency]
            )
        for occurrence in occurrences:
            if rule.end_date is not None and occurrence > rule.end_date:
                return
            yield occurrence
    except (OverflowError, ValueError):
        # date arithmetic left year 9999
        return


def _iter_interval_occurrences(
    start_date: date, minimum_date: date, interval_days: int
) -> Iterator[date]:
    current = _first_occurrence_on_or_after(start_date, minimum_date, interval_days)
    step = timedelta(days=interval_days)
    while True:
        yield current
        current += step


def _iter_calendar_occurrences(
    start_date: date, minimum_date: date, month_step: int
) -> Iterator[date]:
    current, month_offset = _first_calendar_on_or_after(
        start_date, minimum_date, month_step
    )
    while True:
        yield current
        month_offset += month_step
        current = _add_months(start_date, month_offset, start_date.day)


def _first_occurrence_on_or_after(
    start_date: date, minimum_date: date, interval_days: int
) -> date:
    if start_date >= minimum_date:
        return start_date
    days_between = (minimum_date - start_date).days
    intervals = (days_between + interval_days - 1) // interval_days
    return start_date + timedelta(days=interval_days * intervals)


def _first_calendar_on_or_after(
    start_date: date, minimum_date: date, month_step: int
) -> tuple[date, int]:
    if start_date >= minimum_date:
        return start_date, 0
    months_between = (minimum_date.year - start_date.year) * 12 + (
        minimum_date.month - start_date.month
    )
    month_offset = months_between - months_between % month_step
    candidate = _add_months(start_date, month_offset, start_date.day)
    if candidate < minimum_date:
        month_offset += month_step
        candidate = _add_months(start_date, month_offset, start_date.day)
    return candidate, month_offset


def _add_months(start_date: date, months: int, anchor_day: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    day = min(anchor_day, last_day)
    return date(year, month, day)
