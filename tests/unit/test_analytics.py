from datetime import date, datetime

import pytest

from recur import analytics, rules
from recur.core.models import Habit, HabitCompletion, HabitSkip, Momentum, Trend
from tests.conftest import at

MWF = {2, 4, 6}


def _habit(
    rule,
    created: datetime,
    done: list[datetime] | None = None,
    skipped: list[datetime] | None = None,
    moods: list[int | None] | None = None,
) -> Habit:
    done = done or []
    moods = moods or [None] * len(done)
    return Habit(
        id="h1",
        title="stretch",
        created=created,
        rule=rule,
        completions=[
            HabitCompletion(id=f"c{i}", habit_id="h1", completed_at=d, mood=m)
            for i, (d, m) in enumerate(zip(done, moods, strict=True))
        ],
        skips=[HabitSkip(id=f"s{i}", habit_id="h1", skipped_at=d) for i, d in enumerate(skipped or [])],
    )


def _daily_run(first: int, last: int, month: int = 1) -> list[datetime]:
    return [at(2025, month, d, 8) for d in range(first, last + 1)]


# ── streaks ──────────────────────────────────────────────────────────────────


def test_mwf_streak_spans_unscheduled_tuesday():
    habit = _habit(rules.weekly(MWF), at(2025, 1, 6, 7), [at(2025, 1, 6, 9), at(2025, 1, 8, 9)])
    assert analytics.current_streak(habit, date(2025, 1, 8)) == 2
    assert analytics.current_streak(habit, date(2025, 1, 9)) == 2


def test_open_today_does_not_break_streak():
    habit = _habit(rules.weekly(MWF), at(2025, 1, 6, 7), [at(2025, 1, 6, 9), at(2025, 1, 8, 9)])
    assert analytics.current_streak(habit, date(2025, 1, 10)) == 2


def test_missed_scheduled_day_breaks_streak():
    habit = _habit(rules.weekly(MWF), at(2025, 1, 6, 7), [at(2025, 1, 6, 9), at(2025, 1, 8, 9)])
    assert analytics.current_streak(habit, date(2025, 1, 11)) == 0


def test_daily_gap_resets_streak():
    done = [at(2025, 1, d, 8) for d in (1, 2, 4, 5)]
    habit = _habit(rules.daily(), at(2025, 1, 1), done)
    assert analytics.current_streak(habit, date(2025, 1, 5)) == 2
    assert analytics.longest_streak(habit, date(2025, 1, 5)) == 2


def test_skip_neither_breaks_nor_extends():
    done = [at(2025, 1, 1, 8), at(2025, 1, 2, 8), at(2025, 1, 4, 8)]
    habit = _habit(rules.daily(), at(2025, 1, 1), done, skipped=[at(2025, 1, 3, 8)])
    assert analytics.current_streak(habit, date(2025, 1, 4)) == 3
    assert analytics.longest_streak(habit, date(2025, 1, 4)) == 3


def test_no_completions_means_no_streak():
    habit = _habit(rules.daily(), at(2025, 1, 1))
    assert analytics.current_streak(habit, date(2025, 1, 3)) == 0
    assert analytics.longest_streak(habit, date(2025, 1, 3)) == 0


def test_longest_streak_remembers_earlier_run():
    done = _daily_run(1, 3) + _daily_run(5, 6)
    habit = _habit(rules.daily(), at(2025, 1, 1), done)
    assert analytics.longest_streak(habit, date(2025, 1, 6)) == 3
    assert analytics.current_streak(habit, date(2025, 1, 6)) == 2


def test_streak_days_follow_habit_zone():
    # 22:00 in Los Angeles is already the next day in UTC
    done = [at(2025, 1, 2, 6), at(2025, 1, 3, 6)]
    habit = _habit(rules.daily(time_zone="America/Los_Angeles"), at(2025, 1, 1, 8), done)
    assert analytics.current_streak(habit, date(2025, 1, 2)) == 2


def test_ruleless_habit_uses_configured_zone(tmp_recur_dir):
    from recur import config

    config.set_default_timezone("America/Los_Angeles")
    done = [at(2025, 1, 2, 6), at(2025, 1, 3, 6)]
    habit = _habit(None, at(2025, 1, 1, 8), done)
    assert analytics.current_streak(habit, date(2025, 1, 2)) == 2


# ── milestones ───────────────────────────────────────────────────────────────


def test_milestone_from_zero():
    progress = analytics.milestone_progress(0)
    assert progress.next_milestone == 7
    assert progress.progress == 0.0
    assert progress.kind == "week"


def test_milestone_mid_ladder():
    progress = analytics.milestone_progress(10)
    assert progress.next_milestone == 14
    assert progress.progress == pytest.approx(10 / 14)
    assert progress.kind == "multi_week"


def test_milestone_reached_moves_to_next_rung():
    assert analytics.milestone_progress(30).next_milestone == 50
    assert analytics.milestone_progress(30).kind == "extended"


def test_milestone_beyond_ladder():
    progress = analytics.milestone_progress(400)
    assert progress.next_milestone == 401
    assert progress.progress == 1.0
    assert progress.kind == "exceptional"


# ── consistency & momentum ───────────────────────────────────────────────────


def test_consistency_needs_two_completions():
    habit = _habit(rules.daily(), at(2025, 1, 1), [at(2025, 1, 1, 8)])
    assert analytics.consistency_score(habit, date(2025, 1, 10)) == 0.0


def test_consistency_even_spacing_is_perfect():
    done = [at(2025, 1, d, 8) for d in (1, 3, 5, 7)]
    habit = _habit(rules.daily(), at(2025, 1, 1), done)
    assert analytics.consistency_score(habit, date(2025, 1, 7)) == 1.0


def test_consistency_irregular_gaps():
    done = [at(2025, 1, d, 8) for d in (1, 2, 5)]
    habit = _habit(rules.daily(), at(2025, 1, 1), done)
    assert analytics.consistency_score(habit, date(2025, 1, 5)) == pytest.approx(0.5)


def test_consistency_same_day_counts_once():
    done = [at(2025, 1, 1, 8), at(2025, 1, 1, 20)]
    habit = _habit(rules.daily(), at(2025, 1, 1), done)
    assert analytics.consistency_score(habit, date(2025, 1, 1)) == 0.0


@pytest.mark.parametrize(
    ("days", "expected"),
    [
        ((6, 8, 10), Momentum.ACCELERATING),
        ((6, 8), Momentum.STEADY),
        ((8,), Momentum.SLOWING),
        ((), Momentum.STAGNANT),
    ],
)
def test_momentum_against_expected_weekly_count(days, expected):
    habit = _habit(rules.weekly(MWF), at(2025, 1, 1), [at(2025, 1, d, 9) for d in days])
    assert analytics.momentum(habit, date(2025, 1, 11)) == expected


def test_momentum_strong_daily():
    habit = _habit(rules.daily(), at(2025, 1, 1), _daily_run(2, 7))
    assert analytics.momentum(habit, date(2025, 1, 7)) == Momentum.STRONG


# ── completion rate & trend ──────────────────────────────────────────────────


def test_completion_rate_over_scheduled_days():
    habit = _habit(rules.daily(), at(2025, 1, 1), _daily_run(1, 5))
    assert analytics.completion_rate(habit, date(2025, 1, 10), period=10) == 0.5


def test_completion_rate_counts_only_scheduled_days():
    done = [at(2025, 1, d, 9) for d in (6, 8)]
    habit = _habit(rules.weekly(MWF), at(2025, 1, 6), done)
    assert analytics.completion_rate(habit, date(2025, 1, 10), period=7) == pytest.approx(2 / 3)


def test_trend_decreasing():
    habit = _habit(rules.daily(), at(2025, 1, 1), _daily_run(1, 13))
    assert analytics.completion_trend(habit, date(2025, 1, 20), period=10) == Trend.DECREASING


def test_trend_increasing():
    habit = _habit(rules.daily(), at(2025, 1, 1), _daily_run(1, 2) + _daily_run(11, 20))
    assert analytics.completion_trend(habit, date(2025, 1, 20), period=10) == Trend.INCREASING


def test_trend_stable_within_threshold():
    habit = _habit(rules.daily(), at(2025, 1, 1), _daily_run(1, 5) + _daily_run(11, 15))
    assert analytics.completion_trend(habit, date(2025, 1, 20), period=10) == Trend.STABLE


def test_trend_without_previous_period():
    habit = _habit(rules.daily(), at(2025, 1, 11), _daily_run(11, 20))
    assert analytics.completion_trend(habit, date(2025, 1, 20), period=10) == Trend.INSUFFICIENT_DATA


def test_progress_metrics_bundle():
    done = _daily_run(1, 4)
    habit = _habit(rules.daily(), at(2025, 1, 1), done, moods=[5, 4, None, None])
    metrics = analytics.progress_metrics(habit, date(2025, 1, 4), period=4)
    assert metrics.current_streak == 4
    assert metrics.longest_streak == 4
    assert metrics.total_completions == 4
    assert metrics.completion_rate == 1.0
    assert metrics.average_mood == 4.5
    assert metrics.consistency == 1.0


def test_progress_metrics_default_mood():
    habit = _habit(rules.daily(), at(2025, 1, 1), _daily_run(1, 2))
    assert analytics.progress_metrics(habit, date(2025, 1, 2)).average_mood == 3.0
