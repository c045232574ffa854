"""
Gym_Manager.data.schema

SQLite schema definition, initialization and verification for the
Gym Manager database image.

The schema is fixed and versionless: six tables, created on first run.
create_tables() only creates what is missing; verify_schema() rejects images
(e.g. foreign exports) that lack a table or a column the repositories read.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Dict, List, Set, Tuple

from Gym_Manager.domain.errors import SchemaMismatch

log = logging.getLogger(__name__)


# Order matters: attendance references subscribers
TABLES: Tuple[Tuple[str, str], ...] = (
    (
        "subscribers",
        """
        CREATE TABLE IF NOT EXISTS subscribers (
            id                    INTEGER PRIMARY KEY AUTOINCREMENT,
            name                  TEXT NOT NULL,
            gender                TEXT NOT NULL DEFAULT 'male',
            age                   INTEGER,
            height                REAL,              -- cm
            weight                REAL,              -- kg
            fitness_goal          TEXT,              -- 'bulking' | 'cutting' | 'custom'
            custom_goal           TEXT,
            phone                 TEXT,
            subscription_date     TEXT NOT NULL,     -- 'YYYY-MM-DD'
            subscription_duration INTEGER NOT NULL DEFAULT 30,
            expiry_date           TEXT NOT NULL,     -- subscription_date + duration days
            residence             TEXT NOT NULL DEFAULT '',
            price                 REAL NOT NULL DEFAULT 0,
            debt                  REAL NOT NULL DEFAULT 0,
            notes                 TEXT,
            frozen                INTEGER NOT NULL DEFAULT 0,  -- 0/1, only stored status override
            shower                INTEGER NOT NULL DEFAULT 0,  -- 0/1
            created_at            TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """,
    ),
    (
        "attendance",
        """
        CREATE TABLE IF NOT EXISTS attendance (
            id             INTEGER PRIMARY KEY AUTOINCREMENT,
            subscriber_id  INTEGER NOT NULL,
            date           TEXT NOT NULL,            -- 'YYYY-MM-DD'
            training_types TEXT NOT NULL DEFAULT '[]',  -- JSON list of strings
            created_at     TEXT NOT NULL DEFAULT (datetime('now')),
            UNIQUE (subscriber_id, date),
            FOREIGN KEY (subscriber_id) REFERENCES subscribers(id) ON DELETE CASCADE
        );
        """,
    ),
    (
        "products",
        """
        CREATE TABLE IF NOT EXISTS products (
            id             INTEGER PRIMARY KEY AUTOINCREMENT,
            name           TEXT NOT NULL,
            quantity       INTEGER NOT NULL DEFAULT 0 CHECK (quantity >= 0),
            purchase_price REAL NOT NULL DEFAULT 0,
            selling_price  REAL NOT NULL DEFAULT 0,
            description    TEXT,
            created_at     TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """,
    ),
    (
        # product_id is a weak reference: sales outlive deleted products
        "sales",
        """
        CREATE TABLE IF NOT EXISTS sales (
            id             INTEGER PRIMARY KEY AUTOINCREMENT,
            product_id     INTEGER NOT NULL,
            product_name   TEXT NOT NULL,
            quantity_sold  INTEGER NOT NULL CHECK (quantity_sold > 0),
            purchase_price REAL NOT NULL,
            selling_price  REAL NOT NULL,
            profit         REAL NOT NULL,
            sale_date      TEXT NOT NULL,            -- ISO datetime
            created_at     TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """,
    ),
    (
        "expenses",
        """
        CREATE TABLE IF NOT EXISTS expenses (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            name        TEXT NOT NULL,
            amount      REAL NOT NULL,
            category    TEXT NOT NULL CHECK (
                category IN ('rent','equipment','salary','utilities','maintenance','other')
            ),
            description TEXT,
            date        TEXT NOT NULL,               -- 'YYYY-MM-DD'
            created_at  TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """,
    ),
    (
        "individual_classes",
        """
        CREATE TABLE IF NOT EXISTS individual_classes (
            id         INTEGER PRIMARY KEY AUTOINCREMENT,
            name       TEXT NOT NULL,
            age        INTEGER,
            date       TEXT NOT NULL,                -- 'YYYY-MM-DD'
            price      REAL NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """,
    ),
)

INDEXES: Tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS idx_subscribers_name ON subscribers(lower(name));",
    "CREATE INDEX IF NOT EXISTS idx_attendance_subscriber ON attendance(subscriber_id, date);",
    "CREATE INDEX IF NOT EXISTS idx_sales_date ON sales(sale_date);",
    "CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(date);",
    "CREATE INDEX IF NOT EXISTS idx_classes_date ON individual_classes(date);",
)

TABLE_NAMES: Tuple[str, ...] = tuple(name for name, _ in TABLES)

# Columns the repositories read by name; every image must carry them
EXPECTED_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "subscribers": (
        "id", "name", "gender", "age", "height", "weight", "fitness_goal",
        "custom_goal", "phone", "subscription_date", "subscription_duration",
        "expiry_date", "residence", "price", "debt", "notes", "frozen",
        "shower", "created_at",
    ),
    "attendance": ("id", "subscriber_id", "date", "training_types", "created_at"),
    "products": (
        "id", "name", "quantity", "purchase_price", "selling_price",
        "description", "created_at",
    ),
    "sales": (
        "id", "product_id", "product_name", "quantity_sold", "purchase_price",
        "selling_price", "profit", "sale_date", "created_at",
    ),
    "expenses": ("id", "name", "amount", "category", "description", "date", "created_at"),
    "individual_classes": ("id", "name", "age", "date", "price", "created_at"),
}


def existing_tables(conn: sqlite3.Connection) -> Set[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
    ).fetchall()
    return {str(r[0]) for r in rows}


def create_tables(conn: sqlite3.Connection) -> List[str]:
    """
    Create all tables that do not exist yet and return their names.

    Safe to call on every startup: existing tables are never touched.
    """
    present = existing_tables(conn)
    created: List[str] = []

    cur = conn.cursor()
    for name, ddl in TABLES:
        if name in present:
            continue
        cur.execute(ddl)
        created.append(name)

    for ddl in INDEXES:
        cur.execute(ddl)

    conn.commit()
    if created:
        log.info("Created tables: %s", ", ".join(created))
    return created


def verify_schema(conn: sqlite3.Connection) -> None:
    """
    Raise SchemaMismatch when a table or a mapped column is missing.

    Extra tables or columns are tolerated (they are simply never read).
    """
    present = existing_tables(conn)
    missing_tables = [name for name in TABLE_NAMES if name not in present]

    missing_columns: List[str] = []
    for table, columns in EXPECTED_COLUMNS.items():
        if table not in present:
            continue
        info = conn.execute(f'PRAGMA table_info("{table}")').fetchall()
        have = {str(r[1]) for r in info}
        missing_columns.extend(f"{table}.{col}" for col in columns if col not in have)

    if missing_tables or missing_columns:
        raise SchemaMismatch(missing_tables, missing_columns)
