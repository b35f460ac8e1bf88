from pathlib import Path

import yaml

from .lib.dates import parse_time

RECUR_DIR = Path.home() / ".recur"
DB_PATH = RECUR_DIR / "recur.db"
CONFIG_PATH = RECUR_DIR / "config.yaml"
LOG_PATH = RECUR_DIR / "recur.log"
BACKUP_DIR = Path.home() / ".recur_backups"

DEFAULT_REPLENISH_TIME = (6, 0)


class Config:
    """Single-instance config manager. Load once, cache in memory."""

    _instance: "Config | None" = None
    _data: dict[str, object]

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._data = {}
            cls._instance._load()
        return cls._instance

    def _load(self) -> None:
        """Load config from disk."""
        if not CONFIG_PATH.exists():
            self._data = {}
            return
        try:
            with CONFIG_PATH.open() as f:
                self._data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError):
            self._data = {}

    def _save(self) -> None:
        """Persist config to disk."""
        CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
        with CONFIG_PATH.open("w") as f:
            yaml.dump(self._data, f, default_flow_style=False, allow_unicode=True)

    def reload(self) -> None:
        self._load()

    def get(self, key: str, default: object = None) -> object:
        """Get config value."""
        return self._data.get(key, default)

    def set(self, key: str, value: object) -> None:
        """Set config value and persist."""
        self._data[key] = value
        self._save()


_config = Config()


def get_replenish_time() -> tuple[int, int]:
    """Daily cutoff (hour, minute) after which habits may start a new instance."""
    val = _config.get("replenish_time")
    return (parse_time(str(val)) if val else None) or DEFAULT_REPLENISH_TIME


def set_replenish_time(hour: int, minute: int) -> None:
    hour = max(0, min(23, hour))
    minute = max(0, min(59, minute))
    _config.set("replenish_time", f"{hour:02d}:{minute:02d}")


def get_default_timezone() -> str | None:
    """IANA zone for habits without a rule. None = system zone."""
    val = _config.get("timezone")
    return str(val).strip() if val else None


def set_default_timezone(zone: str) -> None:
    _config.set("timezone", zone)
