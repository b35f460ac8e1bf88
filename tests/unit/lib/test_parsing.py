from zoneinfo import ZoneInfo

import pytest

from recur import config
from recur.core.errors import ValidationError
from recur.core.models import Frequency
from recur.lib.parsing import build_rule, default_zone_name, parse_hhmm


def test_rule_stores_configured_zone(tmp_recur_dir):
    config.set_default_timezone("Europe/Lisbon")
    rule = build_rule("daily")
    assert rule.time_zone == "Europe/Lisbon"


def test_rule_without_configured_zone_stores_machine_zone(tmp_recur_dir, monkeypatch):
    monkeypatch.setenv("TZ", "America/Chicago")
    assert default_zone_name() == "America/Chicago"
    assert build_rule("weekly", days="mon").time_zone == "America/Chicago"


def test_rule_zone_is_never_blank(tmp_recur_dir, monkeypatch):
    monkeypatch.delenv("TZ", raising=False)
    rule = build_rule("monthly", dom=15)
    assert rule.frequency == Frequency.MONTHLY
    assert rule.time_zone
    assert ZoneInfo(rule.time_zone).key == rule.time_zone


def test_explicit_zone_wins(tmp_recur_dir):
    config.set_default_timezone("Europe/Lisbon")
    assert build_rule("daily", time_zone="Asia/Seoul").time_zone == "Asia/Seoul"


def test_parse_hhmm_rejects_garbage():
    assert parse_hhmm("7:05") == (7, 5)
    with pytest.raises(ValidationError):
        parse_hhmm("25:00")
