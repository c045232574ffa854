"""
Gym_Manager.data.repositories.classes_repo

SQLite-backed persistence for IndividualClass objects (one-off paid
sessions for non-subscribers).
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
from Gym_Manager.domain.models import IndividualClass

TABLE = "individual_classes"

COLUMNS: ColumnMap = (
    ("id", "id"),
    ("name", "name"),
    ("age", "age"),
    ("date", "date"),
    ("price", "price"),
    ("created_at", "created_at"),
)


def _row_to_class(row: sqlite3.Row) -> IndividualClass:
    fields = row_to_fields(row, COLUMNS)
    fields["id"] = int(fields["id"])
    fields["price"] = float(fields["price"] or 0)
    return IndividualClass(**fields)


def insert_class(conn: sqlite3.Connection, values: Dict[str, Any]) -> int:
    return insert_row(conn, TABLE, COLUMNS, values)


def update_class(conn: sqlite3.Connection, class_id: int, values: Dict[str, Any]) -> bool:
    return update_row(conn, TABLE, COLUMNS, class_id, values) > 0


def delete_class(conn: sqlite3.Connection, class_id: int) -> bool:
    return delete_row(conn, TABLE, class_id) > 0


def get_class_by_id(conn: sqlite3.Connection, class_id: int) -> Optional[IndividualClass]:
    row = conn.execute(
        f"SELECT {select_list(COLUMNS)} FROM individual_classes WHERE id = ?",
        (int(class_id),),
    ).fetchone()
    return _row_to_class(row) if row else None


def list_classes(conn: sqlite3.Connection) -> List[IndividualClass]:
    rows = conn.execute(
        f"SELECT {select_list(COLUMNS)} FROM individual_classes ORDER BY date DESC, id DESC"
    ).fetchall()
    return [_row_to_class(r) for r in rows]
