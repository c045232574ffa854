"""
Gym_Manager.data.repositories.sales_repo

Sales are insert-only: a row is written as part of a stock-decrementing sale
and never updated or deleted afterwards.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from Gym_Manager.data.row_mapping import ColumnMap, insert_row, row_to_fields, select_list
from Gym_Manager.domain.models import Sale

TABLE = "sales"

COLUMNS: ColumnMap = (
    ("id", "id"),
    ("product_id", "product_id"),
    ("product_name", "product_name"),
    ("quantity_sold", "quantity_sold"),
    ("purchase_price", "purchase_price"),
    ("selling_price", "selling_price"),
    ("profit", "profit"),
    ("sale_date", "sale_date"),
    ("created_at", "created_at"),
)


def _row_to_sale(row: sqlite3.Row) -> Sale:
    fields = row_to_fields(row, COLUMNS)
    fields["id"] = int(fields["id"])
    fields["product_id"] = int(fields["product_id"])
    fields["quantity_sold"] = int(fields["quantity_sold"])
    for key in ("purchase_price", "selling_price", "profit"):
        fields[key] = float(fields[key] or 0)
    return Sale(**fields)


def insert_sale(conn: sqlite3.Connection, values: Dict[str, Any]) -> int:
    return insert_row(conn, TABLE, COLUMNS, values)


def get_sale_by_id(conn: sqlite3.Connection, sale_id: int) -> Optional[Sale]:
    row = conn.execute(
        f"SELECT {select_list(COLUMNS)} FROM sales WHERE id = ?",
        (int(sale_id),),
    ).fetchone()
    return _row_to_sale(row) if row else None


def list_sales(conn: sqlite3.Connection) -> List[Sale]:
    """
    Newest sale first.
    """
    rows = conn.execute(
        f"SELECT {select_list(COLUMNS)} FROM sales ORDER BY sale_date DESC, id DESC"
    ).fetchall()
    return [_row_to_sale(r) for r in rows]
