from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from fncli import cli

from .core.errors import SchedulingError
from .core.models import Habit, PendingRecurrence, Task
from .events import EventBus
from .lib import clock
from .lib.errors import echo
from .lib.log import log
from .replenish import HabitReplenishmentService
from .scheduler import RecurrenceScheduler

__all__ = ["Engine", "TickResult"]


@dataclass(frozen=True)
class TickResult:
    tasks: list[Task] = field(default_factory=list)
    habits: list[Habit] = field(default_factory=list)


class Engine:
    """Entry points the host application calls into.

    Both services share one event bus, so a subscriber registered on
    `engine.events` sees everything this engine publishes and nothing else.
    """

    def __init__(self, events: EventBus | None = None, db_path: Path | None = None):
        self.events = events if events is not None else EventBus()
        self.scheduler = RecurrenceScheduler(self.events, db_path)
        self.replenisher = HabitReplenishmentService(self.events, db_path)

    def on_task_completed(
        self, task: Task, now: datetime | None = None
    ) -> PendingRecurrence | None:
        """Schedule the next occurrence. A series that should not continue yields None."""
        if task.rule is None:
            return None
        try:
            return self.scheduler.schedule_pending_recurrence(task, now)
        except SchedulingError as e:
            log("engine", f"not rescheduling task {task.id[:8]} ({e.reason}): {e}")
            return None

    def on_app_foregrounded(self, now: datetime | None = None) -> TickResult:
        now = now or clock.now()
        tasks = self.scheduler.process_pending_recurrences(now)
        habits = self.replenisher.process_replenishments(now)
        return TickResult(tasks=tasks, habits=habits)

    def on_rule_detached(self, task_id: str) -> int:
        return self.scheduler.cancel_pending_recurrence(task_id)


# ── cli ──────────────────────────────────────────────────────────────────────


@cli("recur")
def tick():
    """Materialize due tasks and replenish habits"""
    result = Engine().on_app_foregrounded()
    for task in result.tasks:
        echo(f"+ {task.title}  {task.id[:8]}")
    for habit in result.habits:
        echo(f"↻ {habit.title}  {habit.id[:8]}")
    if not result.tasks and not result.habits:
        echo("nothing due")
