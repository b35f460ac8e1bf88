import dataclasses
import sqlite3
import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta

from fncli import UsageError, cli

from . import analytics, db, rules
from .core.errors import NotFoundError, ValidationError
from .core.models import Habit, HabitCompletion, HabitSkip, HabitSubtask, RecurrenceRule
from .lib import clock
from .lib.converters import (
    duration_seconds,
    row_to_completion,
    row_to_habit,
    row_to_skip,
    row_to_subtask,
    to_ts,
)
from .lib.dates import local_date
from .lib.errors import echo, exit_error
from .lib.fuzzy import find_in_pool
from .lib.parsing import build_rule, validate_title
from .rule_store import load_rules, save_rule
from .tag import copy_tags, load_tags

__all__ = [
    "add_habit",
    "add_subtask",
    "archive_habit",
    "check_habit",
    "complete_subtask",
    "fetch_habits",
    "find_habit",
    "get_habit",
    "get_habits",
    "refresh_streaks",
    "skip_habit",
]


# ── domain ───────────────────────────────────────────────────────────────────

_HABIT_COLS = (
    "id, title, created, rule_id, archived_at, current_instance_date, notification_fired, "
    "snoozed_until, last_completed_date, current_streak, longest_streak"
)


def _children(
    conn: sqlite3.Connection, query: str, habit_ids: list[str], convert
) -> dict[str, list]:
    placeholders = ",".join("?" * len(habit_ids))
    grouped: defaultdict[str, list] = defaultdict(list)
    for row in conn.execute(query.format(placeholders=placeholders), habit_ids).fetchall():
        grouped[row[1]].append(convert(row))
    return grouped


def fetch_habits(
    conn: sqlite3.Connection, where: str, params: tuple[object, ...] = ()
) -> list[Habit]:
    """Fetch habits matching a WHERE clause and hydrate rule, history, subtasks + tags."""
    rows = conn.execute(f"SELECT {_HABIT_COLS} FROM habits WHERE {where}", params).fetchall()  # noqa: S608
    if not rows:
        return []
    ids = [row[0] for row in rows]
    rule_map = load_rules(conn, [row[3] for row in rows])
    completions = _children(
        conn,
        "SELECT id, habit_id, completed_at, notes, mood, duration FROM habit_completions "
        "WHERE habit_id IN ({placeholders}) ORDER BY completed_at",
        ids,
        row_to_completion,
    )
    skips = _children(
        conn,
        "SELECT id, habit_id, skipped_at, reason FROM habit_skips "
        "WHERE habit_id IN ({placeholders}) ORDER BY skipped_at",
        ids,
        row_to_skip,
    )
    subtasks = _children(
        conn,
        "SELECT id, habit_id, title, position, completed_at FROM habit_subtasks "
        "WHERE habit_id IN ({placeholders}) ORDER BY position, title",
        ids,
        row_to_subtask,
    )
    tags_map = load_tags("habit_id", ids, conn=conn)
    return [
        dataclasses.replace(
            row_to_habit(row, rule_map.get(row[3])),
            completions=completions.get(row[0], []),
            skips=skips.get(row[0], []),
            subtasks=subtasks.get(row[0], []),
            tags=tags_map.get(row[0], []),
        )
        for row in rows
    ]


def add_habit(
    title: str,
    rule: RecurrenceRule | None = None,
    tags: list[str] | None = None,
    subtasks: list[str] | None = None,
    created: datetime | None = None,
) -> Habit:
    if rule is not None and not rule.is_valid:
        raise ValidationError(f"invalid rule: {rules.describe(rule)}")
    habit_id = str(uuid.uuid4())
    with db.get_db() as conn:
        try:
            rule_id = save_rule(conn, rule)
            conn.execute(
                "INSERT INTO habits (id, title, created, rule_id) VALUES (?, ?, ?, ?)",
                (habit_id, validate_title(title), to_ts(created or clock.now()), rule_id),
            )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Failed to add habit: {e}") from e
        copy_tags(conn, tags or [], habit_id=habit_id)
        for position, sub in enumerate(subtasks or []):
            conn.execute(
                "INSERT INTO habit_subtasks (id, habit_id, title, position) VALUES (?, ?, ?, ?)",
                (str(uuid.uuid4()), habit_id, validate_title(sub), position),
            )
    habit = get_habit(habit_id)
    if habit is None:
        raise NotFoundError(f"habit {habit_id} vanished after insert")
    return habit


def get_habit(habit_id: str) -> Habit | None:
    with db.get_db() as conn:
        found = fetch_habits(conn, "id = ?", (habit_id,))
    return found[0] if found else None


def get_habits(include_archived: bool = False) -> list[Habit]:
    where = "1 = 1" if include_archived else "archived_at IS NULL"
    with db.get_db() as conn:
        return fetch_habits(conn, f"{where} ORDER BY created ASC")


def _require(habit_id: str) -> Habit:
    habit = get_habit(habit_id)
    if habit is None:
        raise NotFoundError(f"No habit found: '{habit_id}'")
    return habit


def refresh_streaks(habit_id: str, today: date | None = None) -> Habit:
    """Recompute the stored streak counters from history."""
    habit = _require(habit_id)
    if today is None:
        today = local_date(clock.now(), analytics.habit_zone(habit))
    current = analytics.current_streak(habit, today)
    longest = max(analytics.longest_streak(habit, today), current)
    with db.get_db() as conn:
        conn.execute(
            "UPDATE habits SET current_streak = ?, longest_streak = ? WHERE id = ?",
            (current, longest, habit_id),
        )
    return dataclasses.replace(habit, current_streak=current, longest_streak=longest)


def check_habit(
    habit_id: str,
    at: datetime | None = None,
    notes: str = "",
    mood: int | None = None,
    duration: timedelta | None = None,
) -> Habit:
    """Log a completion and refresh streaks."""
    if mood is not None and not 1 <= mood <= 5:
        raise ValidationError("mood must be between 1 and 5")
    habit = _require(habit_id)
    completed_at = at or clock.now()
    completion = HabitCompletion(
        id=str(uuid.uuid4()),
        habit_id=habit_id,
        completed_at=completed_at,
        notes=notes,
        mood=mood,
        duration=duration,
    )
    last = habit.last_completed_date
    latest = completed_at if last is None or completed_at > last else last
    with db.get_db() as conn:
        conn.execute(
            "INSERT INTO habit_completions (id, habit_id, completed_at, notes, mood, duration) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                completion.id,
                habit_id,
                to_ts(completed_at),
                notes,
                mood,
                duration_seconds(duration),
            ),
        )
        conn.execute(
            "UPDATE habits SET last_completed_date = ? WHERE id = ?",
            (to_ts(latest), habit_id),
        )
    today = local_date(max(completed_at, clock.now()), analytics.habit_zone(habit))
    return refresh_streaks(habit_id, today)


def skip_habit(habit_id: str, at: datetime | None = None, reason: str | None = None) -> Habit:
    _require(habit_id)
    skip = HabitSkip(
        id=str(uuid.uuid4()), habit_id=habit_id, skipped_at=at or clock.now(), reason=reason
    )
    with db.get_db() as conn:
        conn.execute(
            "INSERT INTO habit_skips (id, habit_id, skipped_at, reason) VALUES (?, ?, ?, ?)",
            (skip.id, habit_id, to_ts(skip.skipped_at), reason),
        )
    return refresh_streaks(habit_id)


def add_subtask(habit_id: str, title: str) -> HabitSubtask:
    habit = _require(habit_id)
    position = max((s.position for s in habit.subtasks), default=-1) + 1
    subtask = HabitSubtask(
        id=str(uuid.uuid4()), habit_id=habit_id, title=validate_title(title), position=position
    )
    with db.get_db() as conn:
        conn.execute(
            "INSERT INTO habit_subtasks (id, habit_id, title, position) VALUES (?, ?, ?, ?)",
            (subtask.id, habit_id, subtask.title, position),
        )
    return subtask


def complete_subtask(subtask_id: str, at: datetime | None = None) -> None:
    with db.get_db() as conn:
        cursor = conn.execute(
            "UPDATE habit_subtasks SET completed_at = ? WHERE id = ?",
            (to_ts(at or clock.now()), subtask_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"No subtask found: '{subtask_id}'")


def archive_habit(habit_id: str) -> Habit | None:
    with db.get_db() as conn:
        conn.execute(
            "UPDATE habits SET archived_at = ? WHERE id = ?",
            (to_ts(clock.now()), habit_id),
        )
    return get_habit(habit_id)


def find_habit(ref: str) -> Habit | None:
    return find_in_pool(ref, get_habits())


def resolve_habit(ref: str) -> Habit:
    habit = find_habit(ref)
    if not habit:
        exit_error(f"No habit found: '{ref}'")
    return habit


def format_habit(habit: Habit, today: date | None = None) -> str:
    zone = analytics.habit_zone(habit)
    today = today or local_date(clock.now(), zone)
    done_today = any(local_date(c.completed_at, zone) == today for c in habit.completions)
    mark = "✓" if done_today else "□"
    parts = [f"{mark} {habit.title}"]
    if habit.rule:
        parts.append(f"↻ {rules.describe(habit.rule)}")
    if habit.current_streak:
        parts.append(f"{habit.current_streak}🔥")
    if habit.tags:
        parts.append(" ".join(f"#{t}" for t in habit.tags))
    parts.append(habit.id[:8])
    return "  ".join(parts)


# ── cli ──────────────────────────────────────────────────────────────────────


@cli(
    "recur habit",
    name="add",
    flags={
        "every": ["-e", "--every"],
        "interval": ["-n", "--interval"],
        "days": ["--days"],
        "dom": ["--dom"],
        "at": ["--at"],
        "tag": ["-t", "--tag"],
        "sub": ["-s", "--sub"],
    },
)
def habit_add(
    title: list[str],
    every: str | None = None,
    interval: int = 1,
    days: str | None = None,
    dom: int | None = None,
    at: str | None = None,
    tag: list[str] | None = None,
    sub: list[str] | None = None,
):
    """Add a habit (daily unless --every is given)"""
    title_str = " ".join(title) if title else ""
    if not title_str:
        raise UsageError("Usage: recur habit add <title> [-e weekly --days mon,wed,fri]")
    rule = build_rule(every, interval=interval, days=days, dom=dom, at=at)
    habit = add_habit(
        title_str, rule=rule, tags=list(tag) if tag else [], subtasks=list(sub) if sub else []
    )
    echo(format_habit(habit))


@cli("recur habit", name="check", flags={"notes": ["--notes"], "mood": ["-m", "--mood"], "minutes": ["--minutes"]})
def habit_check(
    ref: list[str], notes: str | None = None, mood: int | None = None, minutes: int | None = None
):
    """Log a habit completion"""
    habit = resolve_habit(" ".join(ref))
    duration = timedelta(minutes=minutes) if minutes else None
    updated = check_habit(habit.id, notes=notes or "", mood=mood, duration=duration)
    echo(format_habit(updated))


@cli("recur habit", name="skip", flags={"reason": ["-r", "--reason"]})
def habit_skip(ref: list[str], reason: str | None = None):
    """Skip the current window without breaking the streak"""
    habit = resolve_habit(" ".join(ref))
    skip_habit(habit.id, reason=reason)
    echo(f"⤼ {habit.title}  skipped")


@cli("recur habit", name="ls")
def habit_ls():
    """List habits"""
    habits = get_habits()
    if not habits:
        echo("no habits")
        return
    for h in habits:
        echo(format_habit(h))


@cli("recur habit", name="archive")
def habit_archive(ref: list[str]):
    """Archive a habit"""
    habit = resolve_habit(" ".join(ref))
    archive_habit(habit.id)
    echo(f"{habit.title}  archived")


@cli("recur habit", name="replenish")
def habit_replenish(ref: list[str]):
    """Open a new window for a habit now, ignoring the usual checks"""
    from .replenish import HabitReplenishmentService

    habit = resolve_habit(" ".join(ref))
    HabitReplenishmentService().replenish_habit(habit.id)
    echo(f"↻ {habit.title}  replenished")


@cli("recur", flags={"period": ["-p", "--period"]})
def stats(ref: list[str], period: int = 30):
    """Show streaks, consistency and momentum for a habit"""
    habit = resolve_habit(" ".join(ref))
    today = local_date(clock.now(), analytics.habit_zone(habit))
    metrics = analytics.progress_metrics(habit, today, period)
    milestone = analytics.milestone_progress(metrics.current_streak)
    echo(habit.title)
    echo(f"  streak       {metrics.current_streak} (best {metrics.longest_streak})")
    echo(f"  milestone    {milestone.current}/{milestone.next_milestone} {milestone.kind or ''}".rstrip())
    echo(f"  completion   {metrics.completion_rate:.0%} over {period}d ({metrics.total_completions} done)")
    echo(f"  consistency  {metrics.consistency:.2f}")
    echo(f"  momentum     {metrics.momentum.value}")
    echo(f"  trend        {metrics.trend.value}")
    echo(f"  mood         {metrics.average_mood:.1f}")
