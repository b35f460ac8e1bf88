import dataclasses
from datetime import UTC, date, datetime, timedelta
from typing import TypeVar, cast

from recur.core.models import (
    Frequency,
    Habit,
    HabitCompletion,
    HabitSkip,
    HabitSubtask,
    PendingRecurrence,
    Priority,
    RecurrenceRule,
    RepeatMode,
    Task,
)

Row = tuple[object, ...]

T = TypeVar("T", Task, Habit, PendingRecurrence)


def to_ts(dt: datetime | None) -> str | None:
    """Serialize an instant as UTC ISO-8601 so that string comparison orders correctly."""
    if dt is None:
        return None
    return dt.astimezone(UTC).isoformat(timespec="seconds")


def parse_ts(val) -> datetime | None:
    """Parse a stored instant. Naive values are read as UTC."""
    if isinstance(val, (int, float)):
        return datetime.fromtimestamp(val, UTC)
    if isinstance(val, str) and val:
        try:
            dt = datetime.fromisoformat(val)
        except ValueError:
            dt = datetime.combine(date.fromisoformat(val), datetime.min.time())
        return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)
    return None


def _parse_date(val) -> date | None:
    if isinstance(val, str) and val:
        return date.fromisoformat(val.split("T")[0])
    return None


def _timedelta(val) -> timedelta | None:
    return timedelta(seconds=cast(int, val)) if val is not None else None


def _opt_int(val) -> int | None:
    return cast(int, val) if val is not None else None


def days_to_text(days: frozenset[int] | None) -> str | None:
    if not days:
        return None
    return ",".join(str(d) for d in sorted(days))


def text_to_days(val) -> frozenset[int] | None:
    if not isinstance(val, str) or not val:
        return None
    return frozenset(int(p) for p in val.split(",") if p)


def rule_to_row(rule: RecurrenceRule) -> Row:
    """
    Flattens a rule into recurrence_rules column order:
    (id, frequency, interval, days_of_week, day_of_month, repeat_mode, recreate_if_incomplete,
     max_occurrences, end_date, preferred_hour, preferred_minute, time_zone)
    """
    return (
        rule.id,
        rule.frequency.value,
        rule.interval,
        days_to_text(rule.days_of_week),
        rule.day_of_month,
        rule.repeat_mode.value,
        int(rule.recreate_if_incomplete),
        rule.max_occurrences,
        rule.end_date.isoformat() if rule.end_date else None,
        rule.preferred_hour,
        rule.preferred_minute,
        rule.time_zone,
    )


def row_to_rule(row: Row) -> RecurrenceRule:
    return RecurrenceRule(
        id=cast(str, row[0]),
        frequency=Frequency(row[1]),
        interval=cast(int, row[2]),
        days_of_week=text_to_days(row[3]),
        day_of_month=_opt_int(row[4]),
        repeat_mode=RepeatMode(row[5]),
        recreate_if_incomplete=bool(row[6]),
        max_occurrences=_opt_int(row[7]),
        end_date=_parse_date(row[8]),
        preferred_hour=_opt_int(row[9]),
        preferred_minute=_opt_int(row[10]),
        time_zone=cast(str, row[11]),
    )


def row_to_task(row: Row, rule: RecurrenceRule | None = None) -> Task:
    """
    Converts a raw row from the tasks table into a Task object.
    Expected row format: (id, title, description, priority, due_date, created, completed_at,
    rule_id, occurrence_index, reminder_offset, source_ticket_id, source_task_id)
    """
    return Task(
        id=cast(str, row[0]),
        title=cast(str, row[1]),
        description=cast(str, row[2]) or "",
        priority=Priority(row[3] or Priority.NONE.value),
        due_date=parse_ts(row[4]),
        created=parse_ts(row[5]) or datetime.min.replace(tzinfo=UTC),
        completed_at=parse_ts(row[6]),
        rule=rule,
        occurrence_index=cast(int, row[8]) if row[8] is not None else 1,
        reminder_offset=_timedelta(row[9]),
        source_ticket_id=cast(str, row[10]) if row[10] is not None else None,
        source_task_id=cast(str, row[11]) if row[11] is not None else None,
    )


def row_to_pending(row: Row, rule: RecurrenceRule | None = None) -> PendingRecurrence:
    """
    Converts a raw row from pending_recurrences into a PendingRecurrence.
    Expected row format: (id, scheduled_date, source_task_id, title, description, priority,
    rule_id, occurrence_index, reminder_offset, created)
    """
    return PendingRecurrence(
        id=cast(str, row[0]),
        scheduled_date=cast(datetime, parse_ts(row[1])),
        source_task_id=cast(str, row[2]),
        title=cast(str, row[3]),
        description=cast(str, row[4]) or "",
        priority=Priority(row[5] or Priority.NONE.value),
        rule=rule,
        occurrence_index=cast(int, row[7]),
        reminder_offset=_timedelta(row[8]),
        created=parse_ts(row[9]) or datetime.min.replace(tzinfo=UTC),
    )


def row_to_habit(row: Row, rule: RecurrenceRule | None = None) -> Habit:
    """
    Converts a raw row from the habits table into a Habit object.
    Expected row format: (id, title, created, rule_id, archived_at, current_instance_date,
    notification_fired, snoozed_until, last_completed_date, current_streak, longest_streak)
    """
    return Habit(
        id=cast(str, row[0]),
        title=cast(str, row[1]),
        created=parse_ts(row[2]) or datetime.min.replace(tzinfo=UTC),
        rule=rule,
        archived_at=parse_ts(row[4]),
        current_instance_date=_parse_date(row[5]),
        notification_fired=bool(row[6]),
        snoozed_until=parse_ts(row[7]),
        last_completed_date=parse_ts(row[8]),
        current_streak=cast(int, row[9]) or 0,
        longest_streak=cast(int, row[10]) or 0,
    )


def row_to_completion(row: Row) -> HabitCompletion:
    """Expected row format: (id, habit_id, completed_at, notes, mood, duration)"""
    return HabitCompletion(
        id=cast(str, row[0]),
        habit_id=cast(str, row[1]),
        completed_at=cast(datetime, parse_ts(row[2])),
        notes=cast(str, row[3]) or "",
        mood=_opt_int(row[4]),
        duration=_timedelta(row[5]),
    )


def row_to_skip(row: Row) -> HabitSkip:
    """Expected row format: (id, habit_id, skipped_at, reason)"""
    return HabitSkip(
        id=cast(str, row[0]),
        habit_id=cast(str, row[1]),
        skipped_at=cast(datetime, parse_ts(row[2])),
        reason=cast(str, row[3]) if row[3] is not None else None,
    )


def row_to_subtask(row: Row) -> HabitSubtask:
    """Expected row format: (id, habit_id, title, position, completed_at)"""
    return HabitSubtask(
        id=cast(str, row[0]),
        habit_id=cast(str, row[1]),
        title=cast(str, row[2]),
        position=cast(int, row[3]) or 0,
        completed_at=parse_ts(row[4]),
    )


def duration_seconds(td: timedelta | None) -> int | None:
    return int(td.total_seconds()) if td is not None else None


def hydrate_tags_onto(item: T, tags: list[str]) -> T:
    """
    Attaches tags list to a Task, Habit or PendingRecurrence.
    Returns a new frozen dataclass instance with tags populated.
    """
    return dataclasses.replace(item, tags=tags)
