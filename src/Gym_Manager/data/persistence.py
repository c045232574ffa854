"""
Gym_Manager.data.persistence

Owns the lifecycle of the binary database image.

- initialize(): load the saved image (or create a fresh one) and make sure the
  schema is there
- save(): serialize the live image to the storage backend
- export()/import_image(): whole-image backup and restore
- transaction(): the only way callers write to the live connection

Saving happens on a fixed interval, after each mutation (request_save) and on
interpreter exit; saves are serialized with each other and with writes. A
failed save never stops the app: the adapter switches to degraded mode and
keeps retrying on the next tick.

All access to the connection goes through one re-entrant lock, so a save can
never serialize a half-applied write.
"""

from __future__ import annotations

import atexit
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from Gym_Manager.data.connection import (
    default_export_filename,
    dump_image,
    load_image,
    open_memory_connection,
)
from Gym_Manager.data.schema import create_tables, verify_schema
from Gym_Manager.data.storage import ImageStorage, write_bytes_atomic
from Gym_Manager.domain.errors import (
    CorruptImage,
    SchemaMismatch,
    StorageError,
    StorageUnavailable,
)
from Gym_Manager.utils.periodic import PeriodicTask

log = logging.getLogger(__name__)

DEFAULT_AUTOSAVE_INTERVAL = 30.0

# Reads a whole image and raises CorruptImage when its rows are unusable
ImageCheck = Callable[[sqlite3.Connection], object]


class PersistenceAdapter:
    def __init__(
        self,
        storage: ImageStorage,
        autosave_interval: Optional[float] = DEFAULT_AUTOSAVE_INTERVAL,
    ) -> None:
        """
        autosave_interval=None disables the background task; request_save()
        then saves synchronously.
        """
        self.storage = storage
        self.autosave_interval = autosave_interval
        self.lock = threading.RLock()

        self._conn: Optional[sqlite3.Connection] = None
        self._autosave: Optional[PeriodicTask] = None
        self._exit_hook_registered = False
        self._reload_listeners: List[Callable[[], None]] = []
        self._image_checks: List[ImageCheck] = []

        self._dirty = False
        self._memory_only = False
        self.degraded_reason: Optional[str] = None
        self.last_saved_at: Optional[datetime] = None
        self.quarantined_to: Optional[str] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._conn is not None

    @property
    def is_degraded(self) -> bool:
        return self.degraded_reason is not None

    @property
    def has_unsaved_changes(self) -> bool:
        return self._dirty

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("PersistenceAdapter.initialize() has not been called")
        return self._conn

    def add_reload_listener(self, callback: Callable[[], None]) -> None:
        """Called after import_image() replaced the live image."""
        self._reload_listeners.append(callback)

    def add_image_check(self, check: ImageCheck) -> None:
        """
        Register a row-level check. It runs on every saved image at startup
        and on every import candidate before it replaces the live image.

        The live image is checked right away: if it fails, the stored copy is
        moved aside and a fresh empty image takes its place.
        """
        self._image_checks.append(check)
        with self.lock:
            if self._conn is None:
                return
            try:
                check(self._conn)
            except CorruptImage as exc:
                self._replace_unusable_live_image(exc)

    def _run_image_checks(self, conn: sqlite3.Connection) -> None:
        for check in list(self._image_checks):
            check(conn)

    @property
    def is_memory_only(self) -> bool:
        return self._memory_only

    def _mark_degraded(self, reason: str, memory_only: bool = False) -> None:
        """
        memory_only: the stored image could not be read (or moved aside), so
        it must never be overwritten by this session.
        """
        if self.degraded_reason is None:
            log.warning("Persistence degraded, changes may be lost: %s", reason)
        self.degraded_reason = reason
        self._memory_only = self._memory_only or memory_only

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Load the saved image, or create a new one with the fixed schema.

        Idempotent: a second call on a ready adapter does nothing.
        """
        with self.lock:
            if self._conn is not None:
                return

            data: Optional[bytes] = None
            try:
                data = self.storage.read()
            except StorageUnavailable as exc:
                log.error("Cannot read saved database from %s", self.storage.describe(), exc_info=True)
                self._mark_degraded(str(exc), memory_only=True)

            conn: Optional[sqlite3.Connection] = None
            if data:
                conn = self._open_saved_image(data)

            if conn is None:
                log.info("Creating a new database image")
                conn = open_memory_connection()
                self._dirty = True
            else:
                log.info("Loaded database image from %s (%d bytes)", self.storage.describe(), len(data))

            # Existing tables are left alone; only missing ones are created
            if create_tables(conn):
                self._dirty = True
            verify_schema(conn)
            self._conn = conn

        if self._dirty and not self.is_degraded:
            self.save()
        self.start_autosave()
        self._register_exit_hook()

    def _open_saved_image(self, data: bytes) -> Optional[sqlite3.Connection]:
        conn = None
        try:
            conn = load_image(data)
            create_tables(conn)
            verify_schema(conn)
            self._run_image_checks(conn)
            return conn
        except (CorruptImage, SchemaMismatch) as exc:
            if conn is not None:
                conn.close()
            log.error("Saved database image is unusable: %s", exc)
            self._quarantine_stored_image()
            return None

    def _quarantine_stored_image(self) -> None:
        try:
            self.quarantined_to = self.storage.quarantine()
            log.warning("Moved unusable image aside to %s", self.quarantined_to)
        except StorageUnavailable as q_exc:
            # Cannot move it: do not overwrite it either
            log.error("Could not quarantine the unusable image", exc_info=True)
            self._mark_degraded(str(q_exc), memory_only=True)

    def _replace_unusable_live_image(self, exc: CorruptImage) -> None:
        """
        The live image passed the schema check but its rows cannot be read.
        Same treatment as at startup: move the stored copy aside, start empty.
        """
        with self.lock:
            log.error("Live database image is unusable: %s", exc)
            if not self._memory_only:
                self._quarantine_stored_image()
            if self._conn is not None:
                self._conn.close()
            conn = open_memory_connection()
            create_tables(conn)
            self._conn = conn
            self._dirty = True

            if not self.is_degraded:
                self.save()

    def start_autosave(self) -> None:
        if not self.autosave_interval or self._conn is None:
            return
        if self._autosave is None:
            self._autosave = PeriodicTask("gym-autosave", self.autosave_interval, self._autosave_tick)
        self._autosave.start()

    def stop_autosave(self) -> None:
        if self._autosave is not None:
            self._autosave.stop()
            self._autosave = None

    def _autosave_tick(self) -> None:
        if self._memory_only:
            return
        if self._dirty or self.is_degraded:
            self.save()

    def _register_exit_hook(self) -> None:
        if not self._exit_hook_registered:
            atexit.register(self._on_exit)
            self._exit_hook_registered = True

    def _on_exit(self) -> None:
        if self._conn is not None and self._dirty:
            log.info("Saving database on exit")
            self.save()

    def shutdown(self) -> None:
        """
        Stop autosave, write a final save and close the image. Safe to call twice.
        """
        self.stop_autosave()
        if self._exit_hook_registered:
            atexit.unregister(self._on_exit)
            self._exit_hook_registered = False

        with self.lock:
            if self._conn is None:
                return
            if self._dirty or self.is_degraded:
                self.save()
            self._conn.close()
            self._conn = None
        log.info("Persistence adapter shut down")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Hold the lock for one unit of work: commit on success, roll back on
        any exception (which is re-raised).
        """
        with self.lock:
            conn = self.connection
            try:
                yield conn
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
            self._dirty = True

    def request_save(self) -> None:
        """
        Ask for a save after a mutation. Non-blocking when the autosave task
        is running; synchronous otherwise.
        """
        self._dirty = True
        if self._autosave is not None and self._autosave.is_running:
            self._autosave.trigger()
        else:
            self.save()

    def save(self) -> bool:
        """
        Serialize the live image to storage. Returns False (and degrades)
        when storage refuses the write.

        The write happens under the lock too: two saves can never land out of
        order, so an older image never overwrites a newer one.
        """
        with self.lock:
            if self._conn is None or self._memory_only:
                return False
            data = dump_image(self._conn)

            try:
                self.storage.write(data)
            except StorageError as exc:
                self._dirty = True
                log.error("Saving database to %s failed", self.storage.describe(), exc_info=True)
                self._mark_degraded(str(exc))
                return False

            self._dirty = False
            self.last_saved_at = datetime.now()
            if self.degraded_reason is not None:
                log.info("Storage recovered; database saved to %s", self.storage.describe())
                self.degraded_reason = None

        log.debug("Saved database image (%d bytes)", len(data))
        return True

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_bytes(self) -> bytes:
        with self.lock:
            return dump_image(self.connection)

    def export(self, destination: Optional[Path] = None, day: Optional[date] = None) -> Path:
        """
        Write a copy of the live image.

        destination may be a file path, a directory (the default filename
        gym_database_<date>.sqlite is used inside it) or None (current dir).
        The live image is not touched.
        """
        data = self.export_bytes()
        filename = default_export_filename(day)
        if destination is None:
            target = Path.cwd() / filename
        else:
            target = Path(destination)
            if target.is_dir():
                target = target / filename

        try:
            write_bytes_atomic(target, data)
        except StorageUnavailable:
            log.error("Export to %s failed", target, exc_info=True)
            raise
        log.info("Exported database image to %s (%d bytes)", target, len(data))
        return target

    def import_image(self, data: bytes) -> None:
        """
        Replace the live image wholesale with `data`.

        The bytes are fully validated first (header, integrity, schema and the
        registered row checks); on CorruptImage / SchemaMismatch the current
        image stays in place. On success every reload listener runs so cached
        state is rebuilt from the new image.
        """
        try:
            candidate = load_image(data)
        except CorruptImage:
            log.error("Rejected import: not a loadable database image")
            raise

        try:
            verify_schema(candidate)
            self._run_image_checks(candidate)
        except (CorruptImage, SchemaMismatch) as exc:
            candidate.close()
            log.error("Rejected import: %s", exc)
            raise

        with self.lock:
            old = self._conn
            self._conn = candidate
            self._dirty = True
            if old is not None:
                old.close()
            log.info("Imported database image (%d bytes)", len(data))

            for callback in list(self._reload_listeners):
                callback()

        self.save()

    def import_file(self, path: Path) -> None:
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            log.error("Cannot read import file %s", path, exc_info=True)
            raise StorageUnavailable(f"Cannot read {path}: {exc}") from exc
        self.import_image(data)
