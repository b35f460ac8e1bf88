import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from fncli import cli

from . import config
from .lib.errors import echo
from .lib.log import log

MIGRATIONS_TABLE = "_migrations"
MIGRATIONS_DIR = Path(__file__).parent / "migrations"

Migration = tuple[str, str]


def _connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def get_db(db_path: Path | None = None):
    """One connection, one transaction: commit on success, roll back and re-raise on error."""
    conn = _connect(db_path or config.DB_PATH)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# ── migrations ───────────────────────────────────────────────────────────────


def load_migrations() -> list[Migration]:
    """Ordered (name, sql) pairs from the bundled migrations directory."""
    return [(path.stem, path.read_text()) for path in sorted(MIGRATIONS_DIR.glob("*.sql"))]


def _snapshot(db_path: Path) -> Path:
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    target_dir = config.BACKUP_DIR / "migrations"
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / f"recur.{stamp}.backup"
    src = sqlite3.connect(db_path, timeout=30)
    dst = sqlite3.connect(target)
    try:
        src.backup(dst)
    except sqlite3.Error:
        target.unlink(missing_ok=True)
        raise
    finally:
        dst.close()
        src.close()
    return target


@contextmanager
def _restorable(conn: sqlite3.Connection, db_path: Path) -> Iterator[None]:
    """Snapshot the database, put it back if the body fails, drop the snapshot if it succeeds."""
    backup = _snapshot(db_path)
    try:
        yield
    except Exception:
        src = sqlite3.connect(backup)
        try:
            src.backup(conn)
        finally:
            src.close()
        log("db", f"migration failed, restored {backup.name}")
        raise
    backup.unlink(missing_ok=True)


def _row_counts(conn: sqlite3.Connection) -> dict[str, int]:
    tables = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name != ? AND name NOT LIKE 'sqlite_%'",
        (MIGRATIONS_TABLE,),
    ).fetchall()
    return {
        name: conn.execute(f'SELECT COUNT(*) FROM "{name}"').fetchone()[0]  # noqa: S608
        for (name,) in tables
    }


def _guard_rows(conn: sqlite3.Connection, before: dict[str, int]) -> None:
    after = _row_counts(conn)
    for table, count in before.items():
        if after.get(table, 0) < count:
            raise ValueError(f"migration data loss: {table} had {count} rows, now {after.get(table, 0)}")


def _pending(conn: sqlite3.Connection) -> list[Migration]:
    conn.execute(
        f"CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} "
        "(id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL UNIQUE, applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
    )
    conn.commit()
    applied = {name for (name,) in conn.execute(f"SELECT name FROM {MIGRATIONS_TABLE}")}  # noqa: S608
    return [(name, sql) for name, sql in load_migrations() if name not in applied]


def _apply(conn: sqlite3.Connection, db_path: Path) -> list[str]:
    pending = _pending(conn)
    if not pending:
        return []

    with _restorable(conn, db_path):
        for name, sql in pending:
            before = _row_counts(conn)
            try:
                conn.executescript(sql)
                _guard_rows(conn, before)
                conn.execute(f"INSERT INTO {MIGRATIONS_TABLE} (name) VALUES (?)", (name,))  # noqa: S608
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    names = [name for name, _ in pending]
    log("db", f"applied {', '.join(names)}")
    return names


def init(db_path: Path | None = None) -> list[str]:
    db_path = db_path or config.DB_PATH
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(db_path)
    try:
        return _apply(conn, db_path)
    finally:
        conn.close()


def migrate(db_path: Path | None = None) -> list[str]:
    return init(db_path)


# ── cli ──────────────────────────────────────────────────────────────────────


@cli("recur db", name="migrate")
def db_migrate():
    """Run pending database migrations"""
    applied = migrate()
    if not applied:
        echo("no pending migrations")
        return
    for name in applied:
        echo(f"applied {name}")
