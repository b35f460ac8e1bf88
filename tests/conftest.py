from datetime import UTC, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import fncli
import pytest

import recur
from recur import config, db
from recur.core.errors import RecurError
from recur.events import Event, EventBus


def at(year: int, month: int, day: int, hour: int = 0, minute: int = 0, tz: str = "UTC") -> datetime:
    """Aware datetime in the named zone."""
    zone = UTC if tz == "UTC" else ZoneInfo(tz)
    return datetime(year, month, day, hour, minute, tzinfo=zone)


class RecordingBus(EventBus):
    def __init__(self) -> None:
        super().__init__()
        self.seen: list[Event] = []

    def publish(self, topic: str, entity_id: str) -> Event:
        event = super().publish(topic, entity_id)
        self.seen.append(event)
        return event

    def topics(self) -> list[str]:
        return [e.topic for e in self.seen]

    def ids(self, topic: str) -> list[str]:
        return [e.entity_id for e in self.seen if e.topic == topic]


class FnCLIRunner:
    def __init__(self) -> None:
        fncli.autodiscover(Path(recur.__file__).parent, "recur")

    def invoke(self, args: list[str]) -> fncli.Result:
        try:
            return fncli.invoke(["recur", *args])
        except RecurError as e:
            return fncli.Result(1, "", f"{e}\n")


@pytest.fixture
def tmp_recur_dir(tmp_path, monkeypatch):
    recur_dir = tmp_path / ".recur"
    recur_dir.mkdir()
    monkeypatch.setattr(config, "RECUR_DIR", recur_dir)
    monkeypatch.setattr(config, "DB_PATH", recur_dir / "recur.db")
    monkeypatch.setattr(config, "CONFIG_PATH", recur_dir / "config.yaml")
    monkeypatch.setattr(config, "LOG_PATH", recur_dir / "recur.log")
    monkeypatch.setattr(config, "BACKUP_DIR", tmp_path / ".recur_backups")
    monkeypatch.setattr(config._config, "_data", {})
    db.init()
    return recur_dir


@pytest.fixture
def bus():
    return RecordingBus()
