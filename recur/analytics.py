"""Streak and consistency derivations over habit history.

Everything here is read-only. The only place results are written back is
`habits.refresh_streaks`, which stores `current_streak`/`longest_streak`.
Days are calendar days in the habit's zone; "consecutive" means consecutive
scheduled days, so unscheduled days never break a chain.
"""

import statistics
from collections.abc import Iterator
from datetime import date, timedelta, tzinfo

from . import config, rules
from .core.models import Habit, MilestoneProgress, Momentum, ProgressMetrics, Trend
from .lib.dates import local_date, resolve_zone, system_zone_name

__all__ = [
    "MILESTONES",
    "completion_rate",
    "completion_trend",
    "consistency_score",
    "current_streak",
    "habit_zone",
    "longest_streak",
    "milestone_progress",
    "series_start",
    "momentum",
    "progress_metrics",
]

MILESTONES = (7, 14, 21, 30, 50, 75, 100, 150, 200, 365)

_MILESTONE_KINDS = {
    7: "week",
    14: "multi_week",
    21: "multi_week",
    30: "month",
    50: "extended",
    75: "extended",
    100: "century",
    150: "exceptional",
    200: "exceptional",
    365: "year",
}

_MOMENTUM_BUCKETS = (
    (1.0, Momentum.ACCELERATING),
    (0.8, Momentum.STRONG),
    (0.6, Momentum.STEADY),
    (0.3, Momentum.SLOWING),
)

TREND_THRESHOLD = 0.05
DEFAULT_MOOD = 3.0


def habit_zone(habit: Habit) -> tzinfo:
    """Rule zone, else the configured default zone, else the machine zone."""
    if habit.rule is not None:
        return rules.zone(habit.rule)
    return resolve_zone(config.get_default_timezone() or system_zone_name())


def _completion_days(habit: Habit, tz: tzinfo) -> set[date]:
    return {local_date(c.completed_at, tz) for c in habit.completions}


def _skip_days(habit: Habit, tz: tzinfo) -> set[date]:
    return {local_date(s.skipped_at, tz) for s in habit.skips}


def series_start(habit: Habit, tz: tzinfo | None = None) -> date:
    """First scheduled day: creation day, or an earlier backdated completion."""
    tz = tz or habit_zone(habit)
    done = _completion_days(habit, tz)
    start = local_date(habit.created, tz)
    return min(start, min(done)) if done else start


def _scheduled_days(habit: Habit, start: date, end: date, anchor: date) -> Iterator[date]:
    day = start
    while day <= end:
        if rules.is_due_on(habit.rule, day, anchor):
            yield day
        day += timedelta(days=1)


# ── streaks ──────────────────────────────────────────────────────────────────


def current_streak(habit: Habit, today: date) -> int:
    """Consecutive completed scheduled days ending today (or the last scheduled day before it).

    Today may still be open. A skipped day is neutral: it neither extends nor breaks the chain.
    """
    tz = habit_zone(habit)
    done = _completion_days(habit, tz)
    if not done:
        return 0
    skipped = _skip_days(habit, tz) - done
    anchor = series_start(habit, tz)

    streak = 0
    day = today
    while day >= anchor:
        if rules.is_due_on(habit.rule, day, anchor):
            if day in done:
                streak += 1
            elif day not in skipped and day != today:
                break
        day -= timedelta(days=1)
    return streak


def longest_streak(habit: Habit, today: date) -> int:
    tz = habit_zone(habit)
    done = _completion_days(habit, tz)
    if not done:
        return 0
    skipped = _skip_days(habit, tz) - done
    anchor = series_start(habit, tz)

    best = run = 0
    for day in _scheduled_days(habit, anchor, today, anchor):
        if day in done:
            run += 1
            best = max(best, run)
        elif day not in skipped and day != today:
            run = 0
    return best


def milestone_progress(streak: int) -> MilestoneProgress:
    for milestone in MILESTONES:
        if streak < milestone:
            return MilestoneProgress(
                current=streak,
                next_milestone=milestone,
                progress=streak / milestone,
                kind=_MILESTONE_KINDS[milestone],
            )
    return MilestoneProgress(
        current=streak, next_milestone=streak + 1, progress=1.0, kind="exceptional"
    )


# ── consistency ──────────────────────────────────────────────────────────────


def consistency_score(habit: Habit, today: date, period: int | None = None) -> float:
    """1 - (stdev / mean) of the gaps between completion days, clamped to [0, 1].

    Fewer than two completion days gives 0.0.
    """
    tz = habit_zone(habit)
    days = sorted(_completion_days(habit, tz))
    if period is not None:
        since = today - timedelta(days=period - 1)
        days = [d for d in days if since <= d <= today]
    if len(days) < 2:
        return 0.0

    gaps = [(b - a).days for a, b in zip(days, days[1:], strict=False)]
    mean = statistics.fmean(gaps)
    if mean <= 0:
        return 0.0
    score = 1.0 - statistics.pstdev(gaps) / mean
    return max(0.0, min(1.0, score))


def momentum(habit: Habit, today: date) -> Momentum:
    tz = habit_zone(habit)
    since = today - timedelta(days=6)
    recent = sum(1 for d in _completion_days(habit, tz) if since <= d <= today)
    expected = rules.expected_per_week(habit.rule)
    ratio = recent / expected if expected > 0 else 0.0
    for floor, bucket in _MOMENTUM_BUCKETS:
        if ratio >= floor:
            return bucket
    return Momentum.STAGNANT


# ── completion rate ──────────────────────────────────────────────────────────


def _rate_between(habit: Habit, tz: tzinfo, start: date, end: date) -> float | None:
    done = _completion_days(habit, tz)
    anchor = series_start(habit, tz)
    due = list(_scheduled_days(habit, max(start, anchor), end, anchor))
    if not due:
        return None
    hits = sum(1 for d in due if d in done)
    return hits / len(due)


def completion_rate(habit: Habit, today: date, period: int = 30) -> float:
    """Share of scheduled days in the last `period` days that have a completion."""
    tz = habit_zone(habit)
    rate = _rate_between(habit, tz, today - timedelta(days=period - 1), today)
    return rate if rate is not None else 0.0


def completion_trend(habit: Habit, today: date, period: int = 30) -> Trend:
    """Compare the last `period` days with the `period` days before them."""
    tz = habit_zone(habit)
    current_start = today - timedelta(days=period - 1)
    previous_end = current_start - timedelta(days=1)
    previous = _rate_between(habit, tz, previous_end - timedelta(days=period - 1), previous_end)
    if previous is None:
        return Trend.INSUFFICIENT_DATA
    current = _rate_between(habit, tz, current_start, today) or 0.0

    if current > previous + TREND_THRESHOLD:
        return Trend.INCREASING
    if current < previous - TREND_THRESHOLD:
        return Trend.DECREASING
    return Trend.STABLE


def progress_metrics(habit: Habit, today: date, period: int = 30) -> ProgressMetrics:
    tz = habit_zone(habit)
    since = today - timedelta(days=period - 1)
    recent = [c for c in habit.completions if since <= local_date(c.completed_at, tz) <= today]
    moods = [c.mood for c in recent if c.mood is not None]
    return ProgressMetrics(
        completion_rate=completion_rate(habit, today, period),
        current_streak=current_streak(habit, today),
        longest_streak=longest_streak(habit, today),
        total_completions=len(recent),
        average_mood=statistics.fmean(moods) if moods else DEFAULT_MOOD,
        consistency=consistency_score(habit, today, period),
        momentum=momentum(habit, today),
        trend=completion_trend(habit, today, period),
    )
