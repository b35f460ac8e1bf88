import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import fncli
from fncli import cli

from . import config, db
from .core.errors import RecurError, ValidationError
from .lib.errors import echo
from .lib.parsing import parse_hhmm


@cli("recur config", name="replenish", flags={"time": []})
def config_replenish(time: str | None = None):
    """Show or set the daily habit cutoff (HH:MM)"""
    if time is None:
        hour, minute = config.get_replenish_time()
        echo(f"{hour:02d}:{minute:02d}")
        return
    hour, minute = parse_hhmm(time)
    config.set_replenish_time(hour, minute)
    echo(f"replenish at {hour:02d}:{minute:02d}")


@cli("recur config", name="tz", flags={"zone": []})
def config_tz(zone: str | None = None):
    """Show or set the default IANA time zone"""
    if zone is None:
        echo(config.get_default_timezone() or "system")
        return
    try:
        ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"unknown time zone '{zone}'") from e
    config.set_default_timezone(zone)
    echo(f"time zone {zone}")


def main():
    db.init()
    fncli.autodiscover(Path(__file__).parent, "recur")

    argv = ["recur", *sys.argv[1:]]
    try:
        code = fncli.dispatch(argv)
    except RecurError as e:
        sys.stderr.write(f"{e}\n")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
