"""
Gym_Manager.data.repositories.products_repo

SQLite-backed persistence for Product objects (the shop inventory).
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
from Gym_Manager.domain.models import Product

TABLE = "products"

COLUMNS: ColumnMap = (
    ("id", "id"),
    ("name", "name"),
    ("quantity", "quantity"),
    ("purchase_price", "purchase_price"),
    ("selling_price", "selling_price"),
    ("description", "description"),
    ("created_at", "created_at"),
)


def _row_to_product(row: sqlite3.Row) -> Product:
    fields = row_to_fields(row, COLUMNS)
    fields["id"] = int(fields["id"])
    fields["quantity"] = int(fields["quantity"] or 0)
    fields["purchase_price"] = float(fields["purchase_price"] or 0)
    fields["selling_price"] = float(fields["selling_price"] or 0)
    return Product(**fields)


# ---------- CRUD operations ----------

def insert_product(conn: sqlite3.Connection, values: Dict[str, Any]) -> int:
    return insert_row(conn, TABLE, COLUMNS, values)


def update_product(conn: sqlite3.Connection, product_id: int, values: Dict[str, Any]) -> bool:
    return update_row(conn, TABLE, COLUMNS, product_id, values) > 0


def delete_product(conn: sqlite3.Connection, product_id: int) -> bool:
    """
    Past sales keep their product_id/product_name snapshot.
    """
    return delete_row(conn, TABLE, product_id) > 0


def get_product_by_id(conn: sqlite3.Connection, product_id: int) -> Optional[Product]:
    row = conn.execute(
        f"SELECT {select_list(COLUMNS)} FROM products WHERE id = ?",
        (int(product_id),),
    ).fetchone()
    return _row_to_product(row) if row else None


def list_products(conn: sqlite3.Connection) -> List[Product]:
    rows = conn.execute(
        f"SELECT {select_list(COLUMNS)} FROM products ORDER BY id DESC"
    ).fetchall()
    return [_row_to_product(r) for r in rows]


# ---------- Stock movements ----------

def decrement_quantity(conn: sqlite3.Connection, product_id: int, quantity: int) -> bool:
    """
    Take `quantity` units out of stock. The WHERE clause makes this a single
    check-and-decrement: returns False (nothing changed) when stock is short.
    """
    cur = conn.execute(
        """
        UPDATE products
        SET quantity = quantity - ?
        WHERE id = ? AND quantity >= ?
        """,
        (int(quantity), int(product_id), int(quantity)),
    )
    return cur.rowcount > 0


def increment_quantity(conn: sqlite3.Connection, product_id: int, quantity: int) -> bool:
    cur = conn.execute(
        "UPDATE products SET quantity = quantity + ? WHERE id = ?",
        (int(quantity), int(product_id)),
    )
    return cur.rowcount > 0
