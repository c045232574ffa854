"""
Gym_Manager.data.row_mapping

Named column <-> field mapping shared by the repositories.

Each repository declares a ColumnMap: an ordered tuple of
(column name, dataclass field name) pairs. SELECT lists, INSERT/UPDATE
statements and row conversion are all generated from that table, and rows
are always read by column NAME (sqlite3.Row), never by position.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, Iterable, List, Tuple

ColumnMap = Tuple[Tuple[str, str], ...]


def select_list(columns: ColumnMap) -> str:
    return ", ".join(column for column, _ in columns)


def row_to_fields(row: sqlite3.Row, columns: ColumnMap) -> Dict[str, Any]:
    return {field: row[column] for column, field in columns}


def write_params(
    columns: ColumnMap,
    values: Dict[str, Any],
    skip: Iterable[str] = ("id", "created_at"),
) -> Tuple[List[str], List[Any]]:
    """
    Return (column names, parameters) for every mapped field present in
    `values`, in ColumnMap order.
    """
    skipped = set(skip)
    names: List[str] = []
    params: List[Any] = []
    for column, field in columns:
        if column in skipped or field not in values:
            continue
        value = values[field]
        if isinstance(value, bool):
            value = 1 if value else 0
        names.append(column)
        params.append(value)
    return names, params


def insert_row(conn: sqlite3.Connection, table: str, columns: ColumnMap, values: Dict[str, Any]) -> int:
    names, params = write_params(columns, values)
    placeholders = ", ".join("?" for _ in names)
    cur = conn.execute(
        f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
        params,
    )
    return int(cur.lastrowid)


def update_row(
    conn: sqlite3.Connection,
    table: str,
    columns: ColumnMap,
    row_id: int,
    values: Dict[str, Any],
) -> int:
    """
    Update the mapped fields present in `values`; returns affected row count.
    """
    names, params = write_params(columns, values)
    if not names:
        return 0
    assignments = ", ".join(f"{name} = ?" for name in names)
    cur = conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id = ?",
        [*params, int(row_id)],
    )
    return int(cur.rowcount)


def delete_row(conn: sqlite3.Connection, table: str, row_id: int) -> int:
    cur = conn.execute(f"DELETE FROM {table} WHERE id = ?", (int(row_id),))
    return int(cur.rowcount)
