"""
Gym_Manager.data.repositories.expenses_repo

SQLite-backed persistence for Expense objects. Plain CRUD.
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
from Gym_Manager.domain.models import Expense

TABLE = "expenses"

COLUMNS: ColumnMap = (
    ("id", "id"),
    ("name", "name"),
    ("amount", "amount"),
    ("category", "category"),
    ("description", "description"),
    ("date", "date"),
    ("created_at", "created_at"),
)


def _row_to_expense(row: sqlite3.Row) -> Expense:
    fields = row_to_fields(row, COLUMNS)
    fields["id"] = int(fields["id"])
    fields["amount"] = float(fields["amount"] or 0)
    return Expense(**fields)


def insert_expense(conn: sqlite3.Connection, values: Dict[str, Any]) -> int:
    return insert_row(conn, TABLE, COLUMNS, values)


def update_expense(conn: sqlite3.Connection, expense_id: int, values: Dict[str, Any]) -> bool:
    return update_row(conn, TABLE, COLUMNS, expense_id, values) > 0


def delete_expense(conn: sqlite3.Connection, expense_id: int) -> bool:
    return delete_row(conn, TABLE, expense_id) > 0


def get_expense_by_id(conn: sqlite3.Connection, expense_id: int) -> Optional[Expense]:
    row = conn.execute(
        f"SELECT {select_list(COLUMNS)} FROM expenses WHERE id = ?",
        (int(expense_id),),
    ).fetchone()
    return _row_to_expense(row) if row else None


def list_expenses(conn: sqlite3.Connection) -> List[Expense]:
    rows = conn.execute(
        f"SELECT {select_list(COLUMNS)} FROM expenses ORDER BY date DESC, id DESC"
    ).fetchall()
    return [_row_to_expense(r) for r in rows]
