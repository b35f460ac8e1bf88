import sqlite3

from .core.models import RecurrenceRule
from .lib.converters import row_to_rule, rule_to_row

__all__ = ["load_rules", "save_rule"]

_RULE_COLS = (
    "id, frequency, interval, days_of_week, day_of_month, repeat_mode, recreate_if_incomplete, "
    "max_occurrences, end_date, preferred_hour, preferred_minute, time_zone"
)


def save_rule(conn: sqlite3.Connection, rule: RecurrenceRule | None) -> str | None:
    """Store a rule once. Rules are immutable, so an existing row with the same id is left alone."""
    if rule is None:
        return None
    conn.execute(
        f"INSERT OR IGNORE INTO recurrence_rules ({_RULE_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",  # noqa: S608
        rule_to_row(rule),
    )
    return rule.id


def load_rules(conn: sqlite3.Connection, rule_ids: list[str | None]) -> dict[str, RecurrenceRule]:
    """Batch load rules by id. Returns dict mapping rule_id -> RecurrenceRule."""
    ids = sorted({r for r in rule_ids if r})
    if not ids:
        return {}
    placeholders = ",".join("?" * len(ids))
    rows = conn.execute(
        f"SELECT {_RULE_COLS} FROM recurrence_rules WHERE id IN ({placeholders})",  # noqa: S608
        ids,
    ).fetchall()
    return {row[0]: row_to_rule(row) for row in rows}
