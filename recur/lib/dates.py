import os
import re
from datetime import date, datetime, timedelta, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as dateutil_parser
from dateutil import tz as dateutil_tz
from dateutil.parser import ParserError

__all__ = [
    "WEEKDAY_NAMES",
    "local_date",
    "parse_days",
    "parse_time",
    "parse_when",
    "resolve_zone",
    "system_zone_name",
    "week_start",
    "weekday_number",
]

# index 0 unused so that WEEKDAY_NAMES[1] == "sun"
WEEKDAY_NAMES = ["", "sun", "mon", "tue", "wed", "thu", "fri", "sat"]

_DAY_ALIASES = {
    "sunday": "sun",
    "monday": "mon",
    "tuesday": "tue",
    "wednesday": "wed",
    "thursday": "thu",
    "friday": "fri",
    "saturday": "sat",
}


def resolve_zone(name: str | None) -> tzinfo:
    """Zone for an IANA identifier, falling back to the system zone if unrecognized."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return dateutil_tz.tzlocal()


def _is_zone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def system_zone_name() -> str:
    """IANA name of the machine zone: $TZ, else the /etc/localtime link, else UTC."""
    candidates = [os.environ.get("TZ", "").lstrip(":")]
    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        target = str(localtime.resolve())
        if "zoneinfo/" in target:
            candidates.append(target.split("zoneinfo/", 1)[1])
    for name in candidates:
        if name and _is_zone(name):
            return name
    return "UTC"


def weekday_number(d: date) -> int:
    """1=Sunday..7=Saturday."""
    return d.isoweekday() % 7 + 1


def week_start(d: date) -> date:
    """Sunday that opens the week containing d."""
    return d - timedelta(days=weekday_number(d) - 1)


def local_date(instant: datetime, zone: tzinfo) -> date:
    if instant.tzinfo is None:
        return instant.date()
    return instant.astimezone(zone).date()


def parse_time(value: str | None) -> tuple[int, int] | None:
    """Parse 'HH:MM' into (hour, minute). Returns None when malformed."""
    if not value:
        return None
    match = re.match(r"^(\d{1,2}):(\d{2})$", value.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23) or not (0 <= minute <= 59):
        return None
    return hour, minute


def parse_days(value: str) -> frozenset[int]:
    """Parse 'mon,wed,fri' (or full names) into weekday numbers."""
    days: set[int] = set()
    for part in value.split(","):
        name = part.strip().lower()
        if not name:
            continue
        name = _DAY_ALIASES.get(name, name)
        if name not in WEEKDAY_NAMES[1:]:
            raise ValueError(f"unknown weekday '{part.strip()}'")
        days.add(WEEKDAY_NAMES.index(name))
    return frozenset(days)


def parse_when(value: str, zone: tzinfo, now: datetime | None = None) -> datetime | None:
    """Parses 'today', 'tomorrow', 'mon', 'YYYY-MM-DD' or 'YYYY-MM-DD HH:MM' into an aware datetime."""
    now = (now or datetime.now(zone)).astimezone(zone)
    today = now.date()
    lowered = value.strip().lower()

    if lowered == "now":
        return now
    if lowered == "today":
        return datetime.combine(today, datetime.min.time(), zone)
    if lowered == "tomorrow":
        return datetime.combine(today + timedelta(days=1), datetime.min.time(), zone)
    lowered = _DAY_ALIASES.get(lowered, lowered)
    if lowered in WEEKDAY_NAMES[1:]:
        target = WEEKDAY_NAMES.index(lowered)
        days_ahead = (target - weekday_number(today) + 7) % 7 or 7
        return datetime.combine(today + timedelta(days=days_ahead), datetime.min.time(), zone)
    try:
        parsed = dateutil_parser.parse(value, default=datetime(today.year, today.month, today.day))
    except (ParserError, ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed
