import sqlite3
from collections import defaultdict
from typing import TypeVar

from . import db
from .core.models import Habit, PendingRecurrence, Task
from .lib.converters import hydrate_tags_onto

T = TypeVar("T", Task, Habit, PendingRecurrence)

__all__ = [
    "add_tag",
    "copy_tags",
    "hydrate_tags",
    "load_tags",
]

_OWNER_COLUMNS = ("task_id", "habit_id", "pending_id")


def _owner(
    task_id: str | None, habit_id: str | None, pending_id: str | None
) -> tuple[str, str]:
    owners = [
        (col, val)
        for col, val in zip(_OWNER_COLUMNS, (task_id, habit_id, pending_id), strict=True)
        if val is not None
    ]
    if len(owners) != 1:
        raise ValueError("Exactly one of (task_id, habit_id, pending_id) must be not None")
    return owners[0]


def add_tag(
    conn: sqlite3.Connection,
    tag: str,
    task_id: str | None = None,
    habit_id: str | None = None,
    pending_id: str | None = None,
) -> None:
    col, owner_id = _owner(task_id, habit_id, pending_id)
    conn.execute(
        f"INSERT INTO tags ({col}, tag) VALUES (?, ?) ON CONFLICT DO NOTHING",  # noqa: S608
        (owner_id, tag.lower()),
    )


def copy_tags(conn: sqlite3.Connection, tags: list[str], **owner: str) -> None:
    for tag in tags:
        add_tag(conn, tag, **owner)


def load_tags(
    column: str, owner_ids: list[str], conn: sqlite3.Connection | None = None
) -> dict[str, list[str]]:
    """Batch load all tags for multiple owners of one kind.

    Returns dict mapping owner id -> list of tag strings.
    """
    if column not in _OWNER_COLUMNS:
        raise ValueError(f"unknown tag owner column '{column}'")
    if not owner_ids:
        return {}

    placeholders = ",".join("?" * len(owner_ids))
    query = f"SELECT {column}, tag FROM tags WHERE {column} IN ({placeholders}) ORDER BY tag"  # noqa: S608

    def _run(c: sqlite3.Connection) -> dict[str, list[str]]:
        cursor = c.execute(query, owner_ids)
        tags_map: defaultdict[str, list[str]] = defaultdict(list)
        for owner_id, tag in cursor.fetchall():
            tags_map[owner_id].append(tag)
        return dict(tags_map)

    if conn is not None:
        return _run(conn)
    with db.get_db() as c:
        return _run(c)


def hydrate_tags(
    items: list[T], tag_map: dict[str, list[str]]
) -> list[T]:
    """Apply tags to a list of items using a pre-loaded tag map."""
    return [hydrate_tags_onto(item, tag_map.get(item.id, [])) for item in items]
