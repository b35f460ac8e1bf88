"""Deferred recurrence for tasks.

Completing a repeating task does not create the next task. It writes a
ticket (`pending_recurrences` row) carrying a snapshot of the task, and a
later pass turns every due ticket into a task. Per series:

    NoPending -> Pending -> Materialized | Cancelled

A pass consumes all due tickets in one transaction. The new task's
`source_ticket_id` is unique, so a ticket that somehow survives a consumed
pass is detected and dropped instead of producing a duplicate task. The new
task also records `source_task_id`, so a task that already has a successor
is never scheduled again.
"""

import sqlite3
import uuid
from datetime import datetime
from pathlib import Path

from fncli import cli

from . import db, rules
from .core.errors import (
    AlreadyRecurred,
    IncompleteNotAllowed,
    InvalidRecurrenceRule,
    NoNextOccurrence,
    NoRecurrenceRule,
    OccurrenceLimitReached,
    PersistenceError,
)
from .core.models import PendingRecurrence, RepeatMode, Task
from .events import EventBus
from .lib import clock
from .lib.converters import duration_seconds, row_to_pending, to_ts
from .lib.errors import echo, exit_error
from .lib.log import log
from .rule_store import load_rules, save_rule
from .tag import copy_tags, hydrate_tags, load_tags
from .tasks import insert_task

__all__ = ["RecurrenceScheduler"]

_PENDING_COLS = (
    "id, scheduled_date, source_task_id, title, description, priority, rule_id, "
    "occurrence_index, reminder_offset, created"
)

# upper bound on occurrences walked to catch a late completion up to the present
MAX_CATCH_UP = 5000


def _fetch_tickets(
    conn: sqlite3.Connection, where: str, params: tuple[object, ...] = ()
) -> list[PendingRecurrence]:
    rows = conn.execute(
        f"SELECT {_PENDING_COLS} FROM pending_recurrences WHERE {where}",  # noqa: S608
        params,
    ).fetchall()
    rule_map = load_rules(conn, [row[6] for row in rows])
    tickets = [row_to_pending(row, rule_map.get(row[6])) for row in rows]
    tags_map = load_tags("pending_id", [t.id for t in tickets], conn=conn)
    return hydrate_tags(tickets, tags_map)


def _materialize(ticket: PendingRecurrence, now: datetime) -> Task:
    return Task(
        id=str(uuid.uuid4()),
        title=ticket.title,
        created=now,
        description=ticket.description,
        priority=ticket.priority,
        due_date=ticket.scheduled_date,
        rule=ticket.rule,
        occurrence_index=ticket.occurrence_index,
        reminder_offset=ticket.reminder_offset,
        source_ticket_id=ticket.id,
        source_task_id=ticket.source_task_id,
        tags=list(ticket.tags),
    )


class RecurrenceScheduler:
    def __init__(self, events: EventBus | None = None, db_path: Path | None = None):
        self.events = events if events is not None else EventBus()
        self.db_path = db_path

    def _db(self):
        return db.get_db(self.db_path)

    # ── next occurrence ──────────────────────────────────────────────────────

    def next_due(self, task: Task, now: datetime | None = None) -> datetime | None:
        """When the task's next occurrence falls, or None if the series has ended.

        from_completion anchors on the completion instant. from_original walks
        the task's own series past the day it was completed, so a Monday task
        done on Friday lands on the following scheduled day, not Friday + 7.
        """
        rule = task.rule
        if rule is None or not rule.is_valid:
            return None
        now = now or clock.now()
        finished = task.completed_at or now

        if rule.repeat_mode == RepeatMode.FROM_COMPLETION:
            nxt = rules.next_occurrence(rule, finished)
        else:
            finished_day = rules.local_date(rule, finished)
            nxt = rules.next_occurrence(rule, task.due_date or task.created)
            for _ in range(MAX_CATCH_UP):
                if nxt is None or rules.local_date(rule, nxt) > finished_day:
                    break
                nxt = rules.next_occurrence(rule, nxt)
            else:
                return None

        if nxt is None:
            return None
        if rule.end_date is not None and rules.local_date(rule, nxt) >= rule.end_date:
            return None
        return nxt

    # ── scheduling ───────────────────────────────────────────────────────────

    def schedule_pending_recurrence(
        self, task: Task, now: datetime | None = None
    ) -> PendingRecurrence:
        """Write the ticket for the task's next occurrence.

        Raises a SchedulingError subclass when the series should not continue;
        nothing is written in that case. Scheduling a task that already has a
        ticket returns the existing ticket and publishes nothing. A task whose
        next occurrence was already created raises AlreadyRecurred.
        """
        rule = task.rule
        if rule is None:
            raise NoRecurrenceRule(f"task {task.id[:8]} has no recurrence rule")
        if not rule.is_valid:
            raise InvalidRecurrenceRule(f"task {task.id[:8]}: {rules.describe(rule)} is not valid")
        if not task.is_completed and not rule.recreate_if_incomplete:
            raise IncompleteNotAllowed(f"task {task.id[:8]} is not completed")
        if rule.max_occurrences is not None and task.occurrence_index >= rule.max_occurrences:
            raise OccurrenceLimitReached(
                f"task {task.id[:8]} reached {rule.max_occurrences} occurrences"
            )
        scheduled = self.next_due(task, now)
        if scheduled is None:
            raise NoNextOccurrence(f"task {task.id[:8]} has no further occurrence")

        ticket = PendingRecurrence(
            id=str(uuid.uuid4()),
            scheduled_date=scheduled,
            source_task_id=task.id,
            title=task.title,
            created=now or clock.now(),
            description=task.description,
            priority=task.priority,
            rule=rule,
            occurrence_index=task.occurrence_index + 1,
            reminder_offset=task.reminder_offset,
            tags=list(task.tags),
        )

        try:
            with self._db() as conn:
                existing = _fetch_tickets(conn, "source_task_id = ?", (task.id,))
                if existing:
                    return existing[0]
                successor = conn.execute(
                    "SELECT id FROM tasks WHERE source_task_id = ?", (task.id,)
                ).fetchone()
                if successor:
                    raise AlreadyRecurred(
                        f"task {task.id[:8]} already recurred as {successor[0][:8]}"
                    )
                rule_id = save_rule(conn, rule)
                conn.execute(
                    f"INSERT INTO pending_recurrences ({_PENDING_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",  # noqa: S608
                    (
                        ticket.id,
                        to_ts(ticket.scheduled_date),
                        ticket.source_task_id,
                        ticket.title,
                        ticket.description,
                        ticket.priority.value,
                        rule_id,
                        ticket.occurrence_index,
                        duration_seconds(ticket.reminder_offset),
                        to_ts(ticket.created),
                    ),
                )
                copy_tags(conn, ticket.tags, pending_id=ticket.id)
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to schedule task {task.id[:8]}: {e}") from e

        log(
            "scheduler",
            f"ticket {ticket.id[:8]} for '{task.title}' #{ticket.occurrence_index} at {to_ts(scheduled)}",
        )
        self.events.pending_recurrence_created(ticket.id)
        return ticket

    def process_pending_recurrences(self, now: datetime | None = None) -> list[Task]:
        """Turn every ticket due at `now` into a task, oldest first, in one transaction."""
        now = now or clock.now()
        created: list[Task] = []
        skipped = 0
        try:
            with self._db() as conn:
                tickets = _fetch_tickets(
                    conn, "scheduled_date <= ? ORDER BY scheduled_date ASC", (to_ts(now),)
                )
                for ticket in tickets:
                    task = _materialize(ticket, now)
                    if insert_task(conn, task, ignore_duplicate=True):
                        created.append(task)
                    else:
                        skipped += 1
                    conn.execute("DELETE FROM pending_recurrences WHERE id = ?", (ticket.id,))
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to process pending recurrences: {e}") from e

        if created or skipped:
            log("scheduler", f"materialized {len(created)} task(s), dropped {skipped} duplicate(s)")
        for task in created:
            self.events.task_changed(task.id)
        return created

    # ── cancellation ─────────────────────────────────────────────────────────

    def cancel_pending_recurrence(self, source_task_id: str) -> int:
        try:
            with self._db() as conn:
                cursor = conn.execute(
                    "DELETE FROM pending_recurrences WHERE source_task_id = ?", (source_task_id,)
                )
                removed = cursor.rowcount
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to cancel recurrence: {e}") from e
        if removed:
            log("scheduler", f"cancelled {removed} ticket(s) for task {source_task_id[:8]}")
        return removed

    def cancel_all(self) -> int:
        try:
            with self._db() as conn:
                removed = conn.execute("DELETE FROM pending_recurrences").rowcount
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to cancel recurrences: {e}") from e
        log("scheduler", f"cancelled all tickets ({removed})")
        return removed

    # ── queries ──────────────────────────────────────────────────────────────

    def pending(self) -> list[PendingRecurrence]:
        with self._db() as conn:
            return _fetch_tickets(conn, "1 = 1 ORDER BY scheduled_date ASC")

    def ready(self, now: datetime | None = None) -> list[PendingRecurrence]:
        now = now or clock.now()
        with self._db() as conn:
            return _fetch_tickets(
                conn, "scheduled_date <= ? ORDER BY scheduled_date ASC", (to_ts(now),)
            )

    def pending_count(self) -> int:
        with self._db() as conn:
            return conn.execute("SELECT COUNT(*) FROM pending_recurrences").fetchone()[0]

    def ready_count(self, now: datetime | None = None) -> int:
        now = now or clock.now()
        with self._db() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM pending_recurrences WHERE scheduled_date <= ?",
                (to_ts(now),),
            ).fetchone()[0]

    def get_ticket(self, ticket_id: str) -> PendingRecurrence | None:
        with self._db() as conn:
            found = _fetch_tickets(conn, "id = ?", (ticket_id,))
        return found[0] if found else None


# ── cli ──────────────────────────────────────────────────────────────────────


@cli("recur")
def pending():
    """Show scheduled occurrences that have not been created yet"""
    tickets = RecurrenceScheduler().pending()
    if not tickets:
        echo("no pending occurrences")
        return
    now = clock.now()
    for t in tickets:
        zone = rules.zone(t.rule) if t.rule else None
        when = t.scheduled_date.astimezone(zone).strftime("%Y-%m-%d %H:%M")
        mark = "●" if t.is_ready(now) else "○"
        echo(f"{mark} {when}  {t.title}  #{t.occurrence_index}  {t.id[:8]}")


@cli("recur")
def cancel(ref: list[str]):
    """Cancel the pending occurrence of a task"""
    from .tasks import resolve_task

    task = resolve_task(" ".join(ref), include_completed=True)
    removed = RecurrenceScheduler().cancel_pending_recurrence(task.id)
    if not removed:
        exit_error(f"'{task.title}' has no pending occurrence")
    echo(f"✗ {task.title}  next occurrence cancelled")
