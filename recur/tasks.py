import dataclasses
import sqlite3
import uuid
from datetime import datetime, timedelta

from fncli import UsageError, cli

from . import db, rules
from .core.errors import ValidationError
from .core.models import Priority, RecurrenceRule, Task
from .lib import clock
from .lib.converters import duration_seconds, row_to_task, to_ts
from .lib.dates import parse_when, resolve_zone
from .lib.errors import echo, exit_error
from .lib.fuzzy import find_in_pool
from .lib.parsing import build_rule, default_zone_name, validate_title
from .rule_store import load_rules, save_rule
from .tag import copy_tags, hydrate_tags, load_tags

__all__ = [
    "add_task",
    "complete_task",
    "delete_task",
    "detach_rule",
    "fetch_tasks",
    "find_task",
    "get_all_tasks",
    "get_task",
    "get_tasks",
    "insert_task",
    "uncomplete_task",
]


# ── domain ───────────────────────────────────────────────────────────────────

_TASK_COLS = (
    "id, title, description, priority, due_date, created, completed_at, rule_id, "
    "occurrence_index, reminder_offset, source_ticket_id, source_task_id"
)


def fetch_tasks(
    conn: sqlite3.Connection, where: str, params: tuple[object, ...] = ()
) -> list[Task]:
    """Fetch tasks matching a WHERE clause and hydrate rules + tags."""
    rows = conn.execute(f"SELECT {_TASK_COLS} FROM tasks WHERE {where}", params).fetchall()  # noqa: S608
    rule_map = load_rules(conn, [row[7] for row in rows])
    tasks = [row_to_task(row, rule_map.get(row[7])) for row in rows]
    tags_map = load_tags("task_id", [t.id for t in tasks], conn=conn)
    return hydrate_tags(tasks, tags_map)


def insert_task(conn: sqlite3.Connection, task: Task, ignore_duplicate: bool = False) -> bool:
    """Insert a task with its rule and tags. Returns False when ignored as a duplicate."""
    rule_id = save_rule(conn, task.rule)
    verb = "INSERT OR IGNORE" if ignore_duplicate else "INSERT"
    cursor = conn.execute(
        f"{verb} INTO tasks ({_TASK_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",  # noqa: S608
        (
            task.id,
            task.title,
            task.description,
            task.priority.value,
            to_ts(task.due_date),
            to_ts(task.created),
            to_ts(task.completed_at),
            rule_id,
            task.occurrence_index,
            duration_seconds(task.reminder_offset),
            task.source_ticket_id,
            task.source_task_id,
        ),
    )
    if cursor.rowcount == 0:
        return False
    copy_tags(conn, task.tags, task_id=task.id)
    return True


def _task_sort_key(task: Task) -> tuple[bool, object, object]:
    return (task.due_date is None, task.due_date, task.created)


def add_task(
    title: str,
    due_date: datetime | None = None,
    rule: RecurrenceRule | None = None,
    description: str = "",
    priority: Priority = Priority.NONE,
    tags: list[str] | None = None,
    reminder_offset: timedelta | None = None,
    created: datetime | None = None,
) -> Task:
    if rule is not None and not rule.is_valid:
        raise ValidationError(f"invalid rule: {rules.describe(rule)}")
    task = Task(
        id=str(uuid.uuid4()),
        title=validate_title(title),
        created=created or clock.now(),
        description=description,
        priority=priority,
        due_date=due_date,
        rule=rule,
        reminder_offset=reminder_offset,
        tags=[t.lower() for t in tags or []],
    )
    with db.get_db() as conn:
        try:
            insert_task(conn, task)
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Failed to add task: {e}") from e
    return task


def get_task(task_id: str) -> Task | None:
    with db.get_db() as conn:
        found = fetch_tasks(conn, "id = ?", (task_id,))
    return found[0] if found else None


def get_tasks() -> list[Task]:
    """Open tasks, soonest due first."""
    with db.get_db() as conn:
        tasks = fetch_tasks(conn, "completed_at IS NULL")
    return sorted(tasks, key=_task_sort_key)


def get_all_tasks() -> list[Task]:
    with db.get_db() as conn:
        tasks = fetch_tasks(conn, "1 = 1")
    return sorted(tasks, key=_task_sort_key)


def complete_task(task_id: str, at: datetime | None = None) -> Task | None:
    """Mark done. Completing an already completed task returns it unchanged."""
    task = get_task(task_id)
    if not task or task.completed_at:
        return task
    completed_at = at or clock.now()
    with db.get_db() as conn:
        conn.execute(
            "UPDATE tasks SET completed_at = ? WHERE id = ?",
            (to_ts(completed_at), task_id),
        )
    return dataclasses.replace(task, completed_at=completed_at.replace(microsecond=0))


def uncomplete_task(task_id: str) -> Task | None:
    with db.get_db() as conn:
        conn.execute("UPDATE tasks SET completed_at = NULL WHERE id = ?", (task_id,))
    return get_task(task_id)


def detach_rule(task_id: str) -> Task | None:
    with db.get_db() as conn:
        conn.execute("UPDATE tasks SET rule_id = NULL WHERE id = ?", (task_id,))
    return get_task(task_id)


def delete_task(task_id: str) -> None:
    with db.get_db() as conn:
        conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))


def find_task(ref: str, include_completed: bool = False) -> Task | None:
    pool = get_all_tasks() if include_completed else get_tasks()
    return find_in_pool(ref, pool)


def resolve_task(ref: str, include_completed: bool = False) -> Task:
    task = find_task(ref, include_completed=include_completed)
    if not task:
        exit_error(f"No task found: '{ref}'")
    return task


def format_task(task: Task) -> str:
    mark = "✓" if task.completed_at else "□"
    parts = [f"{mark} {task.title}"]
    if task.due_date:
        zone = rules.zone(task.rule) if task.rule else resolve_zone(default_zone_name())
        parts.append(task.due_date.astimezone(zone).strftime("%Y-%m-%d %H:%M"))
    if task.rule:
        parts.append(f"↻ {rules.describe(task.rule)}")
    if task.tags:
        parts.append(" ".join(f"#{t}" for t in task.tags))
    parts.append(task.id[:8])
    return "  ".join(parts)


# ── cli ──────────────────────────────────────────────────────────────────────


@cli(
    "recur task",
    name="add",
    flags={
        "due": ["-d", "--due"],
        "every": ["-e", "--every"],
        "interval": ["-n", "--interval"],
        "days": ["--days"],
        "dom": ["--dom"],
        "at": ["--at"],
        "from_completion": ["--from-completion"],
        "no_recreate": ["--no-recreate"],
        "max_occurrences": ["--max"],
        "until": ["--until"],
        "tag": ["-t", "--tag"],
    },
)
def task_add(
    title: list[str],
    due: str | None = None,
    every: str | None = None,
    interval: int = 1,
    days: str | None = None,
    dom: int | None = None,
    at: str | None = None,
    from_completion: bool = False,
    no_recreate: bool = False,
    max_occurrences: int | None = None,
    until: str | None = None,
    tag: list[str] | None = None,
):
    """Add a task, optionally repeating"""
    title_str = " ".join(title) if title else ""
    if not title_str:
        raise UsageError("Usage: recur task add <title> [-d due] [-e daily|weekly|monthly|yearly]")
    rule = build_rule(
        every,
        interval=interval,
        days=days,
        dom=dom,
        at=at,
        from_completion=from_completion,
        no_recreate=no_recreate,
        max_occurrences=max_occurrences,
        until=until,
    )
    zone = rules.zone(rule) if rule else resolve_zone(default_zone_name())
    due_date = None
    if due:
        due_date = parse_when(due, zone)
        if due_date is None:
            raise ValidationError(f"could not parse due date '{due}'")
    task = add_task(title_str, due_date=due_date, rule=rule, tags=list(tag) if tag else [])
    echo(format_task(task))


@cli("recur task", name="done")
def task_done(ref: list[str]):
    """Complete a task and schedule its next occurrence"""
    from .engine import Engine

    task = resolve_task(" ".join(ref))
    if task.completed_at:
        exit_error(f"'{task.title}' is already done")
    completed = complete_task(task.id)
    if completed is None:
        exit_error(f"No task found: '{task.title}'")
    echo(format_task(completed))
    ticket = Engine().on_task_completed(completed)
    if ticket is not None:
        zone = rules.zone(ticket.rule) if ticket.rule else resolve_zone(default_zone_name())
        echo(f"  next {ticket.scheduled_date.astimezone(zone).strftime('%Y-%m-%d %H:%M')}")


@cli("recur task", name="ls", flags={"all_tasks": ["-a", "--all"]})
def task_ls(all_tasks: bool = False):
    """List open tasks"""
    tasks = get_all_tasks() if all_tasks else get_tasks()
    if not tasks:
        echo("no tasks")
        return
    for t in tasks:
        echo(format_task(t))


@cli("recur task", name="unrule")
def task_unrule(ref: list[str]):
    """Stop a task repeating and drop its pending occurrence"""
    from .engine import Engine

    task = resolve_task(" ".join(ref), include_completed=True)
    if task.rule is None:
        exit_error(f"'{task.title}' does not repeat")
    detach_rule(task.id)
    removed = Engine().on_rule_detached(task.id)
    suffix = f", {removed} pending cancelled" if removed else ""
    echo(f"□ {task.title}  no longer repeats{suffix}")
