"""Recurrence rule evaluation.

Pure calendar math over `RecurrenceRule`: next occurrence after an instant,
a run of occurrences, and whether a given day belongs to a series. Every
computation happens in the rule's own zone. Series-level policy (end date,
occurrence cap) lives in the scheduler, not here.
"""

import calendar
from datetime import UTC, date, datetime, timedelta, tzinfo

from dateutil.relativedelta import relativedelta

from .core.models import Frequency, RecurrenceRule, RepeatMode
from .lib.dates import WEEKDAY_NAMES, parse_time, resolve_zone, week_start, weekday_number

__all__ = [
    "WEEKDAYS",
    "WEEKENDS",
    "daily",
    "describe",
    "expected_per_week",
    "is_due_on",
    "local_date",
    "matches",
    "monthly",
    "next_occurrence",
    "occurrences",
    "weekly",
    "yearly",
    "zone",
]

WEEKDAYS = frozenset({2, 3, 4, 5, 6})
WEEKENDS = frozenset({1, 7})

MAX_MONTH_DAY = 28
_DAYS_PER_YEAR = 365.25


# ── evaluation ───────────────────────────────────────────────────────────────


def zone(rule: RecurrenceRule) -> tzinfo:
    return resolve_zone(rule.time_zone)


def _localize(instant: datetime, tz: tzinfo) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=tz)
    return instant.astimezone(tz)


def _normalize(dt: datetime, tz: tzinfo) -> datetime:
    # round-trip through UTC so wall times inside a DST gap land on a real instant
    return dt.astimezone(UTC).astimezone(tz)


def local_date(rule: RecurrenceRule, instant: datetime) -> date:
    return _localize(instant, zone(rule)).date()


def _next_weekly(rule: RecurrenceRule, base: datetime) -> datetime:
    days = sorted(rule.days_of_week or ())
    current = weekday_number(base.date())
    later = next((d for d in days if d > current), None)
    if later is not None:
        return base + timedelta(days=later - current)
    return base + timedelta(days=7 * rule.interval + days[0] - current)


def _next_monthly(rule: RecurrenceRule, base: datetime) -> datetime:
    if rule.day_of_month is None:
        return base + relativedelta(months=rule.interval)
    target = min(rule.day_of_month, MAX_MONTH_DAY)
    return base + relativedelta(months=rule.interval, day=target)


def next_occurrence(rule: RecurrenceRule, after: datetime) -> datetime | None:
    """Next calendar occurrence strictly after `after`, in the rule's zone.

    Naive inputs are read as wall time in the rule's zone. Returns None for
    invalid rules or when the result falls outside the representable range.
    """
    if not rule.is_valid:
        return None
    tz = zone(rule)
    base = _localize(after, tz)

    try:
        if rule.frequency in (Frequency.DAILY, Frequency.CUSTOM):
            nxt = base + relativedelta(days=rule.interval)
        elif rule.frequency == Frequency.WEEKLY:
            nxt = _next_weekly(rule, base)
        elif rule.frequency == Frequency.MONTHLY:
            nxt = _next_monthly(rule, base)
        else:
            nxt = base + relativedelta(years=rule.interval)
    except (OverflowError, ValueError):
        return None

    preferred = rule.preferred_time
    if preferred is not None:
        nxt = nxt.replace(hour=preferred[0], minute=preferred[1], second=0, microsecond=0)
    return _normalize(nxt, tz)


def occurrences(
    rule: RecurrenceRule, start: datetime, limit: int = 50, until: datetime | None = None
) -> list[datetime]:
    """Up to `limit` consecutive occurrences after `start`, optionally bounded by `until`."""
    result: list[datetime] = []
    current = start
    for _ in range(limit):
        nxt = next_occurrence(rule, current)
        if nxt is None:
            break
        if until is not None and nxt > until:
            break
        result.append(nxt)
        current = nxt
    return result


def _anniversary(anchor: date, year: int) -> date:
    if anchor.month == 2 and anchor.day == 29 and not calendar.isleap(year):
        return date(year, 2, 28)
    return anchor.replace(year=year)


def _month_target(rule: RecurrenceRule, anchor: date, day: date) -> int:
    if rule.day_of_month is not None:
        return min(rule.day_of_month, MAX_MONTH_DAY)
    return min(anchor.day, calendar.monthrange(day.year, day.month)[1])


def matches(rule: RecurrenceRule, day: date, relative_to: date) -> bool:
    """Whether the series that started on `relative_to` schedules `day`."""
    if day < relative_to or not rule.is_valid:
        return False

    if rule.frequency in (Frequency.DAILY, Frequency.CUSTOM):
        return (day - relative_to).days % rule.interval == 0

    if rule.frequency == Frequency.WEEKLY:
        weeks = (week_start(day) - week_start(relative_to)).days // 7
        return weeks % rule.interval == 0 and weekday_number(day) in (rule.days_of_week or ())

    if rule.frequency == Frequency.MONTHLY:
        months = (day.year - relative_to.year) * 12 + day.month - relative_to.month
        return months % rule.interval == 0 and day.day == _month_target(rule, relative_to, day)

    years = day.year - relative_to.year
    return years % rule.interval == 0 and day == _anniversary(relative_to, day.year)


def is_due_on(rule: RecurrenceRule | None, day: date, relative_to: date) -> bool:
    """No rule means every day."""
    if rule is None:
        return True
    return matches(rule, day, relative_to)


def expected_per_week(rule: RecurrenceRule | None) -> float:
    if rule is None:
        return 7.0
    if rule.frequency in (Frequency.DAILY, Frequency.CUSTOM):
        return 7.0 / rule.interval
    if rule.frequency == Frequency.WEEKLY:
        return len(rule.days_of_week or ()) / rule.interval or 1.0 / rule.interval
    if rule.frequency == Frequency.MONTHLY:
        return 7.0 * 12 / _DAYS_PER_YEAR / rule.interval
    return 7.0 / _DAYS_PER_YEAR / rule.interval


# ── construction ─────────────────────────────────────────────────────────────


def _time_kwargs(time: str | None) -> dict[str, int | None]:
    parsed = parse_time(time)
    if parsed is None:
        return {"preferred_hour": None, "preferred_minute": None}
    return {"preferred_hour": parsed[0], "preferred_minute": parsed[1]}


def daily(
    interval: int = 1,
    time_zone: str = "UTC",
    end_date: date | None = None,
    time: str | None = None,
    repeat_mode: RepeatMode = RepeatMode.FROM_ORIGINAL,
    recreate_if_incomplete: bool = True,
    max_occurrences: int | None = None,
) -> RecurrenceRule:
    return RecurrenceRule(
        frequency=Frequency.DAILY,
        time_zone=time_zone,
        interval=max(1, interval),
        end_date=end_date,
        repeat_mode=repeat_mode,
        recreate_if_incomplete=recreate_if_incomplete,
        max_occurrences=max_occurrences,
        **_time_kwargs(time),
    )


def weekly(
    days_of_week: set[int] | frozenset[int],
    interval: int = 1,
    time_zone: str = "UTC",
    end_date: date | None = None,
    time: str | None = None,
    repeat_mode: RepeatMode = RepeatMode.FROM_ORIGINAL,
    recreate_if_incomplete: bool = True,
    max_occurrences: int | None = None,
) -> RecurrenceRule:
    return RecurrenceRule(
        frequency=Frequency.WEEKLY,
        time_zone=time_zone,
        interval=max(1, interval),
        days_of_week=frozenset(days_of_week),
        end_date=end_date,
        repeat_mode=repeat_mode,
        recreate_if_incomplete=recreate_if_incomplete,
        max_occurrences=max_occurrences,
        **_time_kwargs(time),
    )


def monthly(
    day_of_month: int,
    interval: int = 1,
    time_zone: str = "UTC",
    end_date: date | None = None,
    time: str | None = None,
    repeat_mode: RepeatMode = RepeatMode.FROM_ORIGINAL,
    recreate_if_incomplete: bool = True,
    max_occurrences: int | None = None,
) -> RecurrenceRule:
    return RecurrenceRule(
        frequency=Frequency.MONTHLY,
        time_zone=time_zone,
        interval=max(1, interval),
        day_of_month=day_of_month,
        end_date=end_date,
        repeat_mode=repeat_mode,
        recreate_if_incomplete=recreate_if_incomplete,
        max_occurrences=max_occurrences,
        **_time_kwargs(time),
    )


def yearly(
    interval: int = 1,
    time_zone: str = "UTC",
    end_date: date | None = None,
    time: str | None = None,
    repeat_mode: RepeatMode = RepeatMode.FROM_ORIGINAL,
    recreate_if_incomplete: bool = True,
    max_occurrences: int | None = None,
) -> RecurrenceRule:
    return RecurrenceRule(
        frequency=Frequency.YEARLY,
        time_zone=time_zone,
        interval=max(1, interval),
        end_date=end_date,
        repeat_mode=repeat_mode,
        recreate_if_incomplete=recreate_if_incomplete,
        max_occurrences=max_occurrences,
        **_time_kwargs(time),
    )


# ── display ──────────────────────────────────────────────────────────────────


def _ordinal(day: int) -> str:
    if day in (1, 21, 31):
        return f"{day}st"
    if day in (2, 22):
        return f"{day}nd"
    if day in (3, 23):
        return f"{day}rd"
    return f"{day}th"


def describe(rule: RecurrenceRule) -> str:
    n = rule.interval
    if rule.frequency == Frequency.DAILY:
        text = "Daily" if n == 1 else f"Every {n} days"
    elif rule.frequency == Frequency.WEEKLY:
        if rule.days_of_week:
            names = ", ".join(WEEKDAY_NAMES[d].capitalize() for d in sorted(rule.days_of_week))
            prefix = "Weekly on" if n == 1 else f"Every {n} weeks on"
            text = f"{prefix} {names}"
        else:
            text = "Weekly" if n == 1 else f"Every {n} weeks"
    elif rule.frequency == Frequency.MONTHLY:
        if rule.day_of_month is not None:
            prefix = "Monthly on the" if n == 1 else f"Every {n} months on the"
            text = f"{prefix} {_ordinal(rule.day_of_month)}"
        else:
            text = "Monthly" if n == 1 else f"Every {n} months"
    elif rule.frequency == Frequency.YEARLY:
        text = "Yearly" if n == 1 else f"Every {n} years"
    else:
        text = f"Every {n} days (custom)"

    preferred = rule.preferred_time
    if preferred is not None:
        text += f" at {preferred[0]:02d}:{preferred[1]:02d}"
    if rule.repeat_mode == RepeatMode.FROM_COMPLETION:
        text += " after completion"
    return text
