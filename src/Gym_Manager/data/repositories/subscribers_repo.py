"""
Gym_Manager.data.repositories.subscribers_repo

SQLite-backed persistence for Subscriber objects.

Function-based like the other repositories; every function takes the live
connection from PersistenceAdapter.transaction() (or .connection for reads)
and never commits on its own.

Table (from schema):
subscribers(
  id INTEGER PK, name, gender, age, height, weight, fitness_goal, custom_goal,
  phone, subscription_date, subscription_duration, expiry_date, residence,
  price, debt, notes, frozen 0/1, shower 0/1, created_at
)

Attendance lives in its own table (attendance_repo); the Subscriber objects
returned here carry an empty attendance tuple and the default derived fields.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from Gym_Manager.data.row_mapping import (
    ColumnMap,
    delete_row,
    insert_row,
    row_to_fields,
    select_list,
    update_row,
)
from Gym_Manager.domain.models import Subscriber

TABLE = "subscribers"

COLUMNS: ColumnMap = (
    ("id", "id"),
    ("name", "name"),
    ("gender", "gender"),
    ("age", "age"),
    ("height", "height"),
    ("weight", "weight"),
    ("fitness_goal", "fitness_goal"),
    ("custom_goal", "custom_goal"),
    ("phone", "phone"),
    ("subscription_date", "subscription_date"),
    ("subscription_duration", "subscription_duration"),
    ("expiry_date", "expiry_date"),
    ("residence", "residence"),
    ("price", "price"),
    ("debt", "debt"),
    ("notes", "notes"),
    ("frozen", "frozen"),
    ("shower", "shower"),
    ("created_at", "created_at"),
)


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _row_to_subscriber(row: sqlite3.Row) -> Subscriber:
    fields = row_to_fields(row, COLUMNS)
    fields["id"] = int(fields["id"])
    fields["residence"] = fields["residence"] or ""
    fields["price"] = float(fields["price"] or 0)
    fields["debt"] = float(fields["debt"] or 0)
    fields["subscription_duration"] = int(fields["subscription_duration"] or 0)
    fields["frozen"] = bool(fields["frozen"])
    fields["shower"] = bool(fields["shower"])
    return Subscriber(**fields)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def insert_subscriber(conn: sqlite3.Connection, values: Dict[str, Any]) -> int:
    """
    Insert a subscriber row from a field dict and return the new id.
    """
    return insert_row(conn, TABLE, COLUMNS, values)


def update_subscriber(conn: sqlite3.Connection, subscriber_id: int, values: Dict[str, Any]) -> bool:
    return update_row(conn, TABLE, COLUMNS, subscriber_id, values) > 0


def set_frozen(conn: sqlite3.Connection, subscriber_id: int, frozen: bool) -> bool:
    cur = conn.execute(
        "UPDATE subscribers SET frozen = ? WHERE id = ?",
        (1 if frozen else 0, int(subscriber_id)),
    )
    return cur.rowcount > 0


def delete_subscriber(conn: sqlite3.Connection, subscriber_id: int) -> bool:
    """
    Hard delete; attendance rows go with it (ON DELETE CASCADE).
    """
    return delete_row(conn, TABLE, subscriber_id) > 0


def get_subscriber_by_id(conn: sqlite3.Connection, subscriber_id: int) -> Optional[Subscriber]:
    row = conn.execute(
        f"SELECT {select_list(COLUMNS)} FROM subscribers WHERE id = ?",
        (int(subscriber_id),),
    ).fetchone()
    return _row_to_subscriber(row) if row else None


def list_subscribers(conn: sqlite3.Connection) -> List[Subscriber]:
    """
    All subscribers, newest first.
    """
    rows = conn.execute(
        f"SELECT {select_list(COLUMNS)} FROM subscribers ORDER BY id DESC"
    ).fetchall()
    return [_row_to_subscriber(r) for r in rows]


def find_by_name(conn: sqlite3.Connection, name: str) -> List[Subscriber]:
    """
    Case-insensitive exact name match.

    Names are NOT unique in the schema; this query backs the
    "no duplicate active subscriber" policy check at creation time.
    """
    name_clean = " ".join((name or "").split())
    if not name_clean:
        return []
    rows = conn.execute(
        f"""
        SELECT {select_list(COLUMNS)}
        FROM subscribers
        WHERE lower(name) = lower(?)
        ORDER BY id ASC
        """,
        (name_clean,),
    ).fetchall()
    return [_row_to_subscriber(r) for r in rows]
