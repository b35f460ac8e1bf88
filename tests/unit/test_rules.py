from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

from dateutil import tz as dateutil_tz

from recur import rules
from recur.core.models import Frequency, RecurrenceRule, RepeatMode
from tests.conftest import at

MON, TUE, WED, THU, FRI = 2, 3, 4, 5, 6
MWF = {MON, WED, FRI}


def test_daily_adds_interval_days():
    rule = rules.daily(interval=3)
    assert rules.next_occurrence(rule, at(2025, 1, 6, 9)) == at(2025, 1, 9, 9)


def test_custom_behaves_as_daily():
    rule = RecurrenceRule(frequency=Frequency.CUSTOM, time_zone="UTC", interval=4)
    assert rules.next_occurrence(rule, at(2025, 1, 1, 12)) == at(2025, 1, 5, 12)


def test_preferred_time_snaps_hour_and_minute():
    rule = rules.daily(time="07:30")
    assert rules.next_occurrence(rule, at(2025, 1, 6, 22, 15)) == at(2025, 1, 7, 7, 30)


def test_weekly_next_listed_day_in_same_week():
    rule = rules.weekly(MWF)
    assert rules.next_occurrence(rule, at(2025, 1, 6, 9)) == at(2025, 1, 8, 9)


def test_weekly_wraps_to_first_day_of_next_week():
    rule = rules.weekly(MWF)
    assert rules.next_occurrence(rule, at(2025, 1, 10, 9)) == at(2025, 1, 13, 9)


def test_weekly_interval_skips_weeks_on_wrap():
    rule = rules.weekly(MWF, interval=2)
    assert rules.next_occurrence(rule, at(2025, 1, 10, 9)) == at(2025, 1, 20, 9)


def test_weekly_from_unlisted_day():
    rule = rules.weekly({MON})
    assert rules.next_occurrence(rule, at(2025, 1, 8, 9)) == at(2025, 1, 13, 9)


def test_weekly_without_days_is_invalid():
    rule = RecurrenceRule(frequency=Frequency.WEEKLY, time_zone="UTC", days_of_week=frozenset())
    assert not rule.is_valid
    assert rules.next_occurrence(rule, at(2025, 1, 6)) is None


def test_monthly_day_over_28_clamps_to_28():
    rule = rules.monthly(31)
    assert rules.next_occurrence(rule, at(2025, 1, 31, 8)) == at(2025, 2, 28, 8)
    assert rules.next_occurrence(rule, at(2025, 3, 28, 8)) == at(2025, 4, 28, 8)


def test_monthly_moves_to_day_of_month():
    rule = rules.monthly(15)
    assert rules.next_occurrence(rule, at(2025, 1, 20)) == at(2025, 2, 15)


def test_monthly_without_day_keeps_anchor_day_clamped_to_month_end():
    rule = RecurrenceRule(frequency=Frequency.MONTHLY, time_zone="UTC")
    assert rules.next_occurrence(rule, at(2025, 1, 31)) == at(2025, 2, 28)


def test_yearly_feb_29_shifts_to_feb_28():
    rule = rules.yearly()
    assert rules.next_occurrence(rule, at(2024, 2, 29, 10)) == at(2025, 2, 28, 10)


def test_yearly_interval():
    rule = rules.yearly(interval=2)
    assert rules.next_occurrence(rule, at(2025, 6, 1)) == at(2027, 6, 1)


def test_end_date_and_limit_are_not_evaluated_here():
    rule = rules.daily(end_date=date(2025, 1, 1), max_occurrences=1)
    assert rules.next_occurrence(rule, at(2025, 1, 5)) == at(2025, 1, 6)


def test_occurrences_returns_consecutive_run():
    rule = rules.daily()
    assert rules.occurrences(rule, at(2025, 1, 1), limit=3) == [
        at(2025, 1, 2),
        at(2025, 1, 3),
        at(2025, 1, 4),
    ]


def test_occurrences_bounded_by_until():
    rule = rules.weekly(MWF)
    result = rules.occurrences(rule, at(2025, 1, 6), limit=50, until=at(2025, 1, 13))
    assert [d.day for d in result] == [8, 10, 13]


def test_factories_coerce_interval_below_one():
    assert rules.daily(interval=0).interval == 1
    assert rules.weekly(MWF, interval=-2).interval == 1


# ── time zones ───────────────────────────────────────────────────────────────


def test_weekday_evaluated_in_rule_zone_not_input_zone():
    # 20:00 UTC Monday is already 09:00 Tuesday in Auckland
    rule = rules.weekly({WED}, time_zone="Pacific/Auckland")
    result = rules.next_occurrence(rule, at(2025, 1, 6, 20))
    assert result == at(2025, 1, 7, 20)
    assert result.tzinfo == ZoneInfo("Pacific/Auckland")
    assert (result.hour, result.day) == (9, 8)


def test_naive_input_read_as_rule_wall_time():
    rule = rules.daily(time_zone="Asia/Tokyo")
    result = rules.next_occurrence(rule, datetime(2025, 1, 1, 8, 0))
    assert result == datetime(2025, 1, 1, 23, 0, tzinfo=UTC)


def test_daily_keeps_wall_clock_across_dst():
    rule = rules.daily(time_zone="America/New_York")
    result = rules.next_occurrence(rule, at(2025, 3, 8, 9, tz="America/New_York"))
    assert result is not None
    assert result.hour == 9
    assert result.utcoffset() == timedelta(hours=-4)


def test_preferred_time_inside_dst_gap_lands_on_real_instant():
    rule = rules.daily(time_zone="America/New_York", time="02:30")
    result = rules.next_occurrence(rule, at(2025, 3, 8, 2, 30, tz="America/New_York"))
    assert result is not None
    assert result.date() == date(2025, 3, 9)
    assert result.hour == 3


def test_unknown_zone_falls_back_to_system_zone():
    rule = rules.daily(time_zone="Mars/Olympus_Mons")
    assert isinstance(rules.zone(rule), dateutil_tz.tzlocal)
    assert rules.next_occurrence(rule, at(2025, 1, 1)) is not None


def test_local_date_uses_rule_zone():
    rule = rules.daily(time_zone="America/Los_Angeles")
    assert rules.local_date(rule, at(2025, 1, 2, 6)) == date(2025, 1, 1)


# ── matching ─────────────────────────────────────────────────────────────────


def test_matches_weekly_days():
    rule = rules.weekly(MWF)
    start = date(2025, 1, 6)
    assert rules.matches(rule, date(2025, 1, 8), start)
    assert not rules.matches(rule, date(2025, 1, 7), start)


def test_matches_weekly_interval_counts_calendar_weeks():
    rule = rules.weekly({MON}, interval=2)
    start = date(2025, 1, 6)
    assert rules.matches(rule, date(2025, 1, 20), start)
    assert not rules.matches(rule, date(2025, 1, 13), start)


def test_matches_daily_interval_from_start():
    rule = rules.daily(interval=3)
    start = date(2025, 1, 1)
    assert rules.matches(rule, date(2025, 1, 4), start)
    assert not rules.matches(rule, date(2025, 1, 5), start)


def test_matches_never_before_start():
    assert not rules.matches(rules.daily(), date(2024, 12, 31), date(2025, 1, 1))


def test_matches_monthly_clamped_day():
    rule = rules.monthly(31)
    assert rules.matches(rule, date(2025, 2, 28), date(2025, 1, 1))
    assert not rules.matches(rule, date(2025, 1, 31), date(2025, 1, 1))


def test_matches_yearly_leap_anchor():
    rule = rules.yearly()
    assert rules.matches(rule, date(2025, 2, 28), date(2024, 2, 29))
    assert rules.matches(rule, date(2028, 2, 29), date(2024, 2, 29))


def test_no_rule_is_due_every_day():
    assert rules.is_due_on(None, date(2025, 1, 7), date(2025, 1, 1))


def test_expected_per_week():
    assert rules.expected_per_week(None) == 7.0
    assert rules.expected_per_week(rules.daily()) == 7.0
    assert rules.expected_per_week(rules.weekly(MWF)) == 3.0
    assert rules.expected_per_week(rules.weekly(MWF, interval=3)) == 1.0


# ── display ──────────────────────────────────────────────────────────────────


def test_describe_weekly_with_time_and_mode():
    rule = rules.weekly(MWF, time="09:00", repeat_mode=RepeatMode.FROM_COMPLETION)
    assert rules.describe(rule) == "Weekly on Mon, Wed, Fri at 09:00 after completion"


def test_describe_intervals():
    assert rules.describe(rules.daily()) == "Daily"
    assert rules.describe(rules.daily(interval=3)) == "Every 3 days"
    assert rules.describe(rules.monthly(22, interval=2)) == "Every 2 months on the 22nd"
    assert rules.describe(rules.yearly()) == "Yearly"


def test_weekday_patterns():
    assert rules.expected_per_week(rules.weekly(rules.WEEKDAYS)) == 5.0
    assert rules.WEEKENDS == frozenset({1, 7})
