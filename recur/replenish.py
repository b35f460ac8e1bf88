"""Daily window reset for habits.

A habit is one persistent row. Each scheduled day it gets a fresh window:
`current_instance_date` moves to today, notification and snooze state are
cleared and subtasks are unchecked. A habit replenishes when all hold:

1. now is at or past today's cutoff (config `replenish_time`, default 06:00)
2. it has not already replenished today
3. it has no prior window, or the prior window was completed or skipped
4. its rule schedules today (no rule means every day)

All days are calendar days in the habit's zone.
"""

import dataclasses
import sqlite3
from datetime import date, datetime, time
from pathlib import Path

from . import config, db, rules
from .analytics import habit_zone, series_start
from .core.errors import NotFoundError, PersistenceError
from .core.models import Habit
from .events import EventBus
from .habits import fetch_habits
from .lib import clock
from .lib.dates import local_date
from .lib.log import log

__all__ = ["HabitReplenishmentService"]


def _window_closed(habit: Habit, prior: date) -> bool:
    tz = habit_zone(habit)
    last = habit.last_completed_date
    if last is not None and local_date(last, tz) >= prior:
        return True
    return any(local_date(s.skipped_at, tz) >= prior for s in habit.skips)


def _reset_window(conn: sqlite3.Connection, habit: Habit, today: date) -> Habit:
    conn.execute(
        "UPDATE habits SET current_instance_date = ?, notification_fired = 0, snoozed_until = NULL "
        "WHERE id = ?",
        (today.isoformat(), habit.id),
    )
    conn.execute("UPDATE habit_subtasks SET completed_at = NULL WHERE habit_id = ?", (habit.id,))
    return dataclasses.replace(
        habit,
        current_instance_date=today,
        notification_fired=False,
        snoozed_until=None,
        subtasks=[dataclasses.replace(s, completed_at=None) for s in habit.subtasks],
    )


class HabitReplenishmentService:
    def __init__(self, events: EventBus | None = None, db_path: Path | None = None):
        self.events = events if events is not None else EventBus()
        self.db_path = db_path

    def _db(self):
        return db.get_db(self.db_path)

    def should_replenish(self, habit: Habit, now: datetime) -> bool:
        if habit.archived_at is not None:
            return False
        tz = habit_zone(habit)
        local_now = now.astimezone(tz)
        today = local_now.date()

        hour, minute = config.get_replenish_time()
        if local_now < datetime.combine(today, time(hour, minute), tz):
            return False

        prior = habit.current_instance_date
        if prior is not None:
            if prior >= today:
                return False
            if not _window_closed(habit, prior):
                return False

        return rules.is_due_on(habit.rule, today, series_start(habit, tz))

    def process_replenishments(self, now: datetime | None = None) -> list[Habit]:
        """Replenish every eligible habit in one transaction, then publish per habit."""
        now = now or clock.now()
        replenished: list[Habit] = []
        try:
            with self._db() as conn:
                for habit in fetch_habits(conn, "archived_at IS NULL"):
                    if not self.should_replenish(habit, now):
                        continue
                    today = local_date(now, habit_zone(habit))
                    replenished.append(_reset_window(conn, habit, today))
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to replenish habits: {e}") from e

        if replenished:
            log("replenish", f"replenished {len(replenished)} habit(s)")
        for habit in replenished:
            self.events.habit_replenished(habit.id)
        return replenished

    def replenish_habit(self, habit_id: str, now: datetime | None = None) -> Habit:
        """Reset one habit's window unconditionally."""
        now = now or clock.now()
        try:
            with self._db() as conn:
                found = fetch_habits(conn, "id = ?", (habit_id,))
                if not found:
                    raise NotFoundError(f"No habit found: '{habit_id}'")
                habit = found[0]
                updated = _reset_window(conn, habit, local_date(now, habit_zone(habit)))
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to replenish habit {habit_id[:8]}: {e}") from e

        log("replenish", f"manual replenish of '{habit.title}'")
        self.events.habit_replenished(habit.id)
        return updated
