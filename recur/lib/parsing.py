from datetime import date

from recur import config, rules
from recur.core.errors import ValidationError
from recur.core.models import RecurrenceRule, RepeatMode

from .dates import parse_days, parse_time, system_zone_name

__all__ = ["build_rule", "default_zone_name", "parse_hhmm", "validate_title"]

_FREQUENCIES = ("daily", "weekly", "weekdays", "weekends", "monthly", "yearly")


def validate_title(title: str) -> str:
    """Raises ValidationError if title is empty or whitespace-only."""
    if not title or not title.strip():
        raise ValidationError("title cannot be empty")
    return title.strip()


def default_zone_name() -> str:
    """Configured IANA zone, else the machine zone name, else UTC."""
    return config.get_default_timezone() or system_zone_name()


def parse_hhmm(value: str) -> tuple[int, int]:
    parsed = parse_time(value)
    if parsed is None:
        raise ValidationError(f"invalid time '{value}', use HH:MM")
    return parsed


def build_rule(
    every: str | None,
    interval: int = 1,
    days: str | None = None,
    dom: int | None = None,
    at: str | None = None,
    from_completion: bool = False,
    no_recreate: bool = False,
    max_occurrences: int | None = None,
    until: str | None = None,
    time_zone: str | None = None,
) -> RecurrenceRule | None:
    """Build a rule from CLI flags. No `every` means a one-off item."""
    if not every:
        return None
    every = every.lower()
    if every not in _FREQUENCIES:
        raise ValidationError(f"unknown frequency '{every}', use one of {', '.join(_FREQUENCIES)}")
    if at is not None:
        parse_hhmm(at)
    try:
        end_date = date.fromisoformat(until) if until else None
    except ValueError as e:
        raise ValidationError(f"invalid end date '{until}', use YYYY-MM-DD") from e

    common = {
        "interval": interval,
        "time_zone": time_zone if time_zone is not None else default_zone_name(),
        "end_date": end_date,
        "time": at,
        "repeat_mode": RepeatMode.FROM_COMPLETION if from_completion else RepeatMode.FROM_ORIGINAL,
        "recreate_if_incomplete": not no_recreate,
        "max_occurrences": max_occurrences,
    }

    if every == "daily":
        rule = rules.daily(**common)
    elif every in ("weekly", "weekdays", "weekends"):
        if every == "weekdays":
            weekdays = rules.WEEKDAYS
        elif every == "weekends":
            weekdays = rules.WEEKENDS
        else:
            try:
                weekdays = parse_days(days or "")
            except ValueError as e:
                raise ValidationError(str(e)) from e
        rule = rules.weekly(weekdays, **common)
    elif every == "monthly":
        if dom is None:
            raise ValidationError("monthly rules need --dom")
        rule = rules.monthly(dom, **common)
    else:
        rule = rules.yearly(**common)

    if not rule.is_valid:
        raise ValidationError(f"invalid rule: {rules.describe(rule)}")
    return rule
