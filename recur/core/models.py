import dataclasses
import uuid
from datetime import date, datetime, timedelta
from enum import Enum


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class RepeatMode(str, Enum):
    FROM_ORIGINAL = "from_original"
    FROM_COMPLETION = "from_completion"


class Priority(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Momentum(str, Enum):
    ACCELERATING = "accelerating"
    STRONG = "strong"
    STEADY = "steady"
    SLOWING = "slowing"
    STAGNANT = "stagnant"


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclasses.dataclass(frozen=True)
class RecurrenceRule:
    """Immutable description of a repeating schedule.

    Weekdays use 1=Sunday..7=Saturday. Calendar math is always done in
    `time_zone`, never in the zone of the machine evaluating the rule.
    """

    frequency: Frequency
    time_zone: str
    interval: int = 1
    days_of_week: frozenset[int] | None = None
    day_of_month: int | None = None
    repeat_mode: RepeatMode = RepeatMode.FROM_ORIGINAL
    recreate_if_incomplete: bool = True
    max_occurrences: int | None = None
    end_date: date | None = None
    preferred_hour: int | None = None
    preferred_minute: int | None = None
    id: str = dataclasses.field(default_factory=_new_id, compare=False)

    @property
    def preferred_time(self) -> tuple[int, int] | None:
        if self.preferred_hour is None or self.preferred_minute is None:
            return None
        return (self.preferred_hour, self.preferred_minute)

    @property
    def is_valid(self) -> bool:
        if self.interval < 1:
            return False
        if self.frequency == Frequency.WEEKLY:
            if not self.days_of_week:
                return False
            if not all(1 <= d <= 7 for d in self.days_of_week):
                return False
        if self.day_of_month is not None and not 1 <= self.day_of_month <= 31:
            return False
        if self.preferred_hour is not None and not 0 <= self.preferred_hour <= 23:
            return False
        if self.preferred_minute is not None and not 0 <= self.preferred_minute <= 59:
            return False
        return self.max_occurrences is None or self.max_occurrences >= 1


@dataclasses.dataclass(frozen=True)
class Task:
    id: str
    title: str
    created: datetime
    description: str = ""
    priority: Priority = Priority.NONE
    due_date: datetime | None = None
    completed_at: datetime | None = None
    rule: RecurrenceRule | None = None
    occurrence_index: int = 1
    reminder_offset: timedelta | None = None
    source_ticket_id: str | None = None
    source_task_id: str | None = None
    tags: list[str] = dataclasses.field(default_factory=list, hash=False)

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


@dataclasses.dataclass(frozen=True)
class PendingRecurrence:
    id: str
    scheduled_date: datetime
    source_task_id: str
    title: str
    created: datetime
    description: str = ""
    priority: Priority = Priority.NONE
    rule: RecurrenceRule | None = None
    occurrence_index: int = 2
    reminder_offset: timedelta | None = None
    tags: list[str] = dataclasses.field(default_factory=list, hash=False)

    def is_ready(self, now: datetime) -> bool:
        return now >= self.scheduled_date


@dataclasses.dataclass(frozen=True)
class HabitCompletion:
    id: str
    habit_id: str
    completed_at: datetime
    notes: str = ""
    mood: int | None = None
    duration: timedelta | None = None


@dataclasses.dataclass(frozen=True)
class HabitSkip:
    id: str
    habit_id: str
    skipped_at: datetime
    reason: str | None = None


@dataclasses.dataclass(frozen=True)
class HabitSubtask:
    id: str
    habit_id: str
    title: str
    position: int = 0
    completed_at: datetime | None = None


@dataclasses.dataclass(frozen=True)
class Habit:
    id: str
    title: str
    created: datetime
    rule: RecurrenceRule | None = None
    archived_at: datetime | None = None
    current_instance_date: date | None = None
    notification_fired: bool = False
    snoozed_until: datetime | None = None
    last_completed_date: datetime | None = None
    current_streak: int = 0
    longest_streak: int = 0
    completions: list[HabitCompletion] = dataclasses.field(default_factory=list, hash=False)
    skips: list[HabitSkip] = dataclasses.field(default_factory=list, hash=False)
    subtasks: list[HabitSubtask] = dataclasses.field(default_factory=list, hash=False)
    tags: list[str] = dataclasses.field(default_factory=list, hash=False)


@dataclasses.dataclass(frozen=True)
class MilestoneProgress:
    current: int
    next_milestone: int
    progress: float
    kind: str | None = None


@dataclasses.dataclass(frozen=True)
class ProgressMetrics:
    completion_rate: float
    current_streak: int
    longest_streak: int
    total_completions: int
    average_mood: float
    consistency: float
    momentum: Momentum
    trend: Trend
