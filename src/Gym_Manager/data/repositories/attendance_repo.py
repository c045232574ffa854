"""
Gym_Manager.data.repositories.attendance_repo

Attendance records: at most one row per subscriber per calendar day
(UNIQUE(subscriber_id, date) in the schema). training_types is stored as a
JSON list.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Dict, Iterable, List, Tuple

from Gym_Manager.domain.models import AttendanceRecord


def _decode_types(raw) -> Tuple[str, ...]:
    try:
        values = json.loads(raw or "[]")
    except ValueError:
        return ()
    if not isinstance(values, list):
        return ()
    return tuple(str(v) for v in values)


def _row_to_record(row: sqlite3.Row) -> AttendanceRecord:
    return AttendanceRecord(date=str(row["date"]), training_types=_decode_types(row["training_types"]))


def insert_attendance(
    conn: sqlite3.Connection,
    subscriber_id: int,
    day: str,
    training_types: Iterable[str],
) -> AttendanceRecord:
    """
    Raises sqlite3.IntegrityError when the day is already recorded.
    """
    types = tuple(training_types)
    conn.execute(
        "INSERT INTO attendance (subscriber_id, date, training_types) VALUES (?, ?, ?)",
        (int(subscriber_id), day, json.dumps(list(types))),
    )
    return AttendanceRecord(date=day, training_types=types)


def delete_attendance(conn: sqlite3.Connection, subscriber_id: int, day: str) -> int:
    cur = conn.execute(
        "DELETE FROM attendance WHERE subscriber_id = ? AND date = ?",
        (int(subscriber_id), day),
    )
    return int(cur.rowcount)


def list_all_grouped(conn: sqlite3.Connection) -> Dict[int, Tuple[AttendanceRecord, ...]]:
    """
    Every attendance record, grouped by subscriber id, in date order.
    """
    rows = conn.execute(
        """
        SELECT subscriber_id, date, training_types
        FROM attendance
        ORDER BY subscriber_id ASC, date ASC, id ASC
        """
    ).fetchall()

    grouped: Dict[int, List[AttendanceRecord]] = {}
    for r in rows:
        grouped.setdefault(int(r["subscriber_id"]), []).append(_row_to_record(r))
    return {sid: tuple(records) for sid, records in grouped.items()}
