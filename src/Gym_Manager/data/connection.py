"""
Gym_Manager.data.connection

SQLite connection utilities for the Gym Manager backend.

The live database is an in-memory SQLite image. It is loaded from and dumped
to raw bytes (Connection.deserialize / Connection.serialize), which is what
the storage backends persist and what export/import move around.
"""

from __future__ import annotations

import sqlite3
from datetime import date
from pathlib import Path
from typing import Optional

from Gym_Manager.config_store import get_data_dir
from Gym_Manager.domain.errors import CorruptImage

# Name of the SQLite file and the engine's native extension
DB_EXTENSION = "sqlite"
DB_FILENAME = f"gym_database.{DB_EXTENSION}"

# Every SQLite 3 image starts with this header
SQLITE_HEADER = b"SQLite format 3\x00"


def get_db_path(base_dir: Optional[Path] = None) -> Path:
    """
    Return the full path to the DB file.

    If base_dir is None, the environment decides (see config_store.get_data_dir).
    """
    return get_data_dir(base_dir) / DB_FILENAME


def default_export_filename(day: Optional[date] = None) -> str:
    day = day or date.today()
    return f"gym_database_{day.isoformat()}.{DB_EXTENSION}"


def open_memory_connection() -> sqlite3.Connection:
    """
    Open an empty in-memory database.

    check_same_thread is off because the autosave task serializes the image
    from its own thread; callers serialize access with the adapter lock.
    """
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row  # nicer dict-like access
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def load_image(data: bytes) -> sqlite3.Connection:
    """
    Open a connection over a copy of the given image bytes.

    Raises CorruptImage when the bytes are not a readable SQLite database.
    """
    if not data or bytes(data[: len(SQLITE_HEADER)]) != SQLITE_HEADER:
        raise CorruptImage("Not an SQLite database image (bad header).")

    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        conn.deserialize(bytes(data))
        row = conn.execute("PRAGMA integrity_check").fetchone()
        if row is None or str(row[0]).lower() != "ok":
            raise CorruptImage(f"Database image failed integrity check: {row[0] if row else 'no result'}")
        conn.execute("PRAGMA foreign_keys = ON")
    except sqlite3.DatabaseError as exc:
        conn.close()
        raise CorruptImage(f"Database image cannot be opened: {exc}") from exc
    except CorruptImage:
        conn.close()
        raise
    return conn


def dump_image(conn: sqlite3.Connection) -> bytes:
    return bytes(conn.serialize())
