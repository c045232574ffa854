"""
Persistence adapter: image lifecycle, save triggers, degraded mode,
export / import.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from datetime import date

import pytest

from Gym_Manager.data.connection import SQLITE_HEADER, load_image
from Gym_Manager.data.persistence import PersistenceAdapter
from Gym_Manager.data.schema import TABLE_NAMES, create_tables, existing_tables
from Gym_Manager.data.storage import FileImageStorage, KeyValueImageStorage, MemoryImageStorage
from Gym_Manager.domain.errors import CorruptImage, SchemaMismatch, StorageUnavailable
from Gym_Manager.services.gym_data_service import GymDataService


class FlakyStorage(MemoryImageStorage):
    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False

    def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise StorageUnavailable("disk full")
        super().write(data)


class UnreadableStorage(MemoryImageStorage):
    def read(self):
        raise StorageUnavailable("permission denied")


class SlowFirstWriteStorage(MemoryImageStorage):
    """Holds one write open until the test releases it."""

    def __init__(self) -> None:
        super().__init__()
        self.hold_next_write = False
        self.write_started = threading.Event()
        self.release_write = threading.Event()

    def write(self, data: bytes) -> None:
        if self.hold_next_write:
            self.hold_next_write = False
            self.write_started.set()
            self.release_write.wait(5)
        super().write(data)


def _image_with(sql: str) -> bytes:
    conn = sqlite3.connect(":memory:")
    conn.executescript(sql)
    data = bytes(conn.serialize())
    conn.close()
    return data


# ---------------------------------------------------------------------------
# initialize
# ---------------------------------------------------------------------------


def test_initialize_creates_schema_and_saves(storage, adapter):
    assert adapter.is_ready
    assert set(TABLE_NAMES) <= existing_tables(adapter.connection)
    assert storage.writes == 1
    assert storage.data.startswith(SQLITE_HEADER)
    assert not adapter.has_unsaved_changes


def test_initialize_is_idempotent(storage, adapter):
    conn = adapter.connection
    adapter.initialize()
    assert adapter.connection is conn
    assert create_tables(conn) == []
    assert storage.writes == 1


def test_saved_image_is_loaded_on_next_start(storage, service, make_subscriber, clock):
    ali = make_subscriber("Ali")
    service.adapter.shutdown()

    reopened = PersistenceAdapter(MemoryImageStorage(storage.data), autosave_interval=None)
    reopened.initialize()
    try:
        restored = GymDataService(reopened, clock=clock)
        assert restored.list_subscribers() == [ali]
    finally:
        reopened.shutdown()


def test_corrupt_saved_image_is_quarantined():
    storage = MemoryImageStorage(b"definitely not sqlite")
    adapter = PersistenceAdapter(storage, autosave_interval=None)
    adapter.initialize()
    try:
        assert storage.quarantined == b"definitely not sqlite"
        assert adapter.quarantined_to == "memory"
        assert storage.data.startswith(SQLITE_HEADER)
        assert not adapter.is_degraded
    finally:
        adapter.shutdown()


def test_saved_image_missing_columns_is_quarantined():
    broken = _image_with("CREATE TABLE subscribers (id INTEGER PRIMARY KEY, name TEXT);")
    storage = MemoryImageStorage(broken)
    adapter = PersistenceAdapter(storage, autosave_interval=None)
    adapter.initialize()
    try:
        assert storage.quarantined == broken
        cols = {r[1] for r in adapter.connection.execute("PRAGMA table_info(subscribers)")}
        assert "expiry_date" in cols
    finally:
        adapter.shutdown()


def test_corrupt_file_is_moved_aside_not_deleted(tmp_path):
    path = tmp_path / "gym_database.sqlite"
    path.write_bytes(b"garbage")
    adapter = PersistenceAdapter(FileImageStorage(path), autosave_interval=None)
    adapter.initialize()
    try:
        aside = list(tmp_path.glob("gym_database.sqlite.corrupt-*"))
        assert len(aside) == 1
        assert aside[0].read_bytes() == b"garbage"
        assert path.read_bytes().startswith(SQLITE_HEADER)
        assert not list(tmp_path.glob("*.tmp"))
    finally:
        adapter.shutdown()


def test_unreadable_storage_runs_memory_only():
    storage = UnreadableStorage()
    adapter = PersistenceAdapter(storage, autosave_interval=None)
    adapter.initialize()
    try:
        assert adapter.is_ready
        assert adapter.is_degraded
        assert adapter.is_memory_only
        assert adapter.save() is False
        assert storage.writes == 0
    finally:
        adapter.shutdown()


def test_saved_image_with_unreadable_rows_is_quarantined(clock):
    source = PersistenceAdapter(MemoryImageStorage(), autosave_interval=None)
    source.initialize()
    GymDataService(source, clock=clock).add_subscriber({"name": "Ali", "subscription_date": "2024-01-01"})
    source.connection.execute("UPDATE subscribers SET expiry_date = 'not-a-date'")
    source.connection.commit()
    bad = source.export_bytes()
    source.shutdown()

    storage = MemoryImageStorage(bad)
    adapter = PersistenceAdapter(storage, autosave_interval=None)
    adapter.initialize()
    try:
        service = GymDataService(adapter, clock=clock)
        assert service.list_subscribers() == []
        assert storage.quarantined == bad
        assert storage.data.startswith(SQLITE_HEADER)
        assert adapter.quarantined_to == "memory"
    finally:
        adapter.shutdown()


# ---------------------------------------------------------------------------
# save / degraded mode
# ---------------------------------------------------------------------------


def test_every_mutation_saves(storage, service, make_subscriber):
    before = storage.writes
    ali = make_subscriber()
    service.freeze_subscriber(ali.id)
    assert storage.writes == before + 2
    assert not service.adapter.has_unsaved_changes


def test_failed_save_degrades_then_recovers(clock):
    storage = FlakyStorage()
    adapter = PersistenceAdapter(storage, autosave_interval=None)
    adapter.initialize()
    service = GymDataService(adapter, clock=clock)
    try:
        storage.fail_writes = True
        sub = service.add_subscriber({"name": "Sara", "subscription_date": "2024-01-05"})
        assert service.get_subscriber(sub.id) == sub
        assert adapter.is_degraded
        assert "disk full" in adapter.degraded_reason
        assert adapter.has_unsaved_changes

        storage.fail_writes = False
        assert adapter.save() is True
        assert not adapter.is_degraded
        reloaded = load_image(storage.data)
        assert reloaded.execute("SELECT name FROM subscribers").fetchone()[0] == "Sara"
        reloaded.close()
    finally:
        adapter.shutdown()


def test_transaction_rolls_back_on_error(adapter):
    with pytest.raises(RuntimeError):
        with adapter.transaction() as conn:
            conn.execute("INSERT INTO products (name, quantity) VALUES ('Towel', 1)")
            raise RuntimeError("boom")
    assert adapter.connection.execute("SELECT COUNT(*) FROM products").fetchone()[0] == 0


def test_shutdown_saves_and_is_repeatable(storage):
    adapter = PersistenceAdapter(storage, autosave_interval=None)
    adapter.initialize()
    with adapter.transaction() as conn:
        conn.execute("INSERT INTO products (name, quantity) VALUES ('Towel', 1)")
    writes = storage.writes

    adapter.shutdown()
    adapter.shutdown()

    assert storage.writes == writes + 1
    assert not adapter.is_ready
    conn = load_image(storage.data)
    assert conn.execute("SELECT COUNT(*) FROM products").fetchone()[0] == 1
    conn.close()


def test_autosave_task_picks_up_requested_save():
    storage = MemoryImageStorage()
    adapter = PersistenceAdapter(storage, autosave_interval=0.05)
    adapter.initialize()
    try:
        writes = storage.writes
        with adapter.transaction() as conn:
            conn.execute("INSERT INTO products (name, quantity) VALUES ('Towel', 1)")
        adapter.request_save()

        deadline = time.monotonic() + 3
        while storage.writes == writes and time.monotonic() < deadline:
            time.sleep(0.02)
        assert storage.writes > writes
    finally:
        adapter.shutdown()


def test_overlapping_saves_keep_the_newest_image(clock):
    storage = SlowFirstWriteStorage()
    adapter = PersistenceAdapter(storage, autosave_interval=None)
    adapter.initialize()
    service = GymDataService(adapter, clock=clock)
    try:
        storage.hold_next_write = True
        background = threading.Thread(target=adapter.save)
        background.start()
        assert storage.write_started.wait(5)

        adder = threading.Thread(
            target=service.add_product,
            args=({"name": "Water", "quantity": 5, "purchase_price": 10, "selling_price": 20},),
        )
        adder.start()
        time.sleep(0.05)
        storage.release_write.set()
        background.join(5)
        adder.join(5)

        saved = load_image(storage.data)
        try:
            assert saved.execute("SELECT COUNT(*) FROM products").fetchone()[0] == 1
        finally:
            saved.close()
        assert not adapter.has_unsaved_changes
    finally:
        storage.release_write.set()
        adapter.shutdown()


# ---------------------------------------------------------------------------
# export / import
# ---------------------------------------------------------------------------


def test_export_writes_identical_copy_with_default_name(tmp_path, adapter, make_subscriber):
    make_subscriber()
    target = adapter.export(tmp_path, day=date(2024, 1, 10))
    assert target.name == "gym_database_2024-01-10.sqlite"
    assert target.read_bytes() == adapter.export_bytes()


def test_export_import_round_trip_keeps_cache(tmp_path, service, make_subscriber, make_product):
    ali = make_subscriber()
    service.record_attendance(ali.id, ["chest"])
    bar = make_product()
    service.sell_product(bar.id, 2)
    service.add_expense({"name": "Rent", "amount": 5000, "category": "rent", "date": "2024-01-02"})
    service.add_class({"name": "Karim", "price": 500, "date": "2024-01-03"})

    snapshot = (
        service.list_subscribers(),
        service.list_products(),
        service.list_sales(),
        service.list_expenses(),
        service.list_classes(),
    )
    exported = service.adapter.export(tmp_path / "backup.sqlite")
    service.adapter.import_file(exported)

    assert (
        service.list_subscribers(),
        service.list_products(),
        service.list_sales(),
        service.list_expenses(),
        service.list_classes(),
    ) == snapshot


def test_import_replaces_cache(service, make_subscriber):
    empty = service.adapter.export_bytes()
    make_subscriber()
    changes = []
    service.add_change_listener(changes.append)

    service.adapter.import_image(empty)

    assert service.list_subscribers() == []
    assert "reload" in changes


def test_import_rejects_corrupt_bytes(service, make_subscriber):
    ali = make_subscriber()
    with pytest.raises(CorruptImage):
        service.adapter.import_image(b"SQLite format 3\x00" + b"\x00" * 50)
    with pytest.raises(CorruptImage):
        service.adapter.import_image(b"hello")
    assert service.list_subscribers() == [ali]


def test_import_rejects_foreign_schema(service, make_subscriber):
    ali = make_subscriber()
    foreign = _image_with("CREATE TABLE members (id INTEGER PRIMARY KEY, full_name TEXT);")
    with pytest.raises(SchemaMismatch) as info:
        service.adapter.import_image(foreign)
    assert "subscribers" in info.value.missing_tables
    assert service.list_subscribers() == [ali]


def test_import_tolerates_extra_tables(service, make_subscriber):
    make_subscriber()
    conn = load_image(service.adapter.export_bytes())
    conn.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT)")
    conn.commit()
    data = bytes(conn.serialize())
    conn.close()

    service.adapter.import_image(data)
    assert len(service.list_subscribers()) == 1


def test_import_rejects_rows_that_cannot_be_read(service, make_subscriber):
    ali = make_subscriber("Ali")
    conn = load_image(service.adapter.export_bytes())
    conn.execute("UPDATE subscribers SET name = 'Bad', expiry_date = 'not-a-date'")
    conn.commit()
    bad = bytes(conn.serialize())
    conn.close()

    with pytest.raises(CorruptImage):
        service.adapter.import_image(bad)

    stored = [r[0] for r in service.adapter.connection.execute("SELECT name FROM subscribers")]
    assert stored == ["Ali"]
    assert service.list_subscribers() == [ali]


# ---------------------------------------------------------------------------
# key-value backend
# ---------------------------------------------------------------------------


def test_keyvalue_storage_keeps_other_keys(tmp_path):
    path = tmp_path / "local_storage.json"
    path.write_text('{"gym_view_mode": "\\"cards\\""}', encoding="utf-8")
    storage = KeyValueImageStorage(path)

    adapter = PersistenceAdapter(storage, autosave_interval=None)
    adapter.initialize()
    adapter.shutdown()

    assert storage.read().startswith(SQLITE_HEADER)
    assert "gym_view_mode" in path.read_text(encoding="utf-8")


def test_keyvalue_quarantine_renames_key(tmp_path):
    storage = KeyValueImageStorage(tmp_path / "local_storage.json")
    storage.write(b"not a database")
    where = storage.quarantine()
    assert "gym_database.corrupt-" in where
    assert storage.read() is None
