"""
Gym_Manager.data.storage

Durable homes for the binary database image.

- FileImageStorage:     a plain .sqlite file (desktop)
- KeyValueImageStorage: a JSON document holding the image under one key,
                        base64-encoded (the local-storage style of keeping it)
- MemoryImageStorage:   nothing durable at all (memory-only mode, tests)

All backends expose the same three calls: read(), write(data), quarantine().
OSError is translated to StorageUnavailable so callers only handle one type.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from Gym_Manager.data.connection import DB_FILENAME
from Gym_Manager.domain.errors import StorageUnavailable

log = logging.getLogger(__name__)

STORAGE_KEY = "gym_database"


def _stamp() -> str:
    return datetime.now().strftime("%Y%m%d%H%M%S")


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """
    Write to a sibling temp file and rename over the target, so a crash
    mid-write never leaves a truncated image behind.
    """
    path = Path(path)
    tmp = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tmp.open("wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError as exc:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise StorageUnavailable(f"Cannot write {path}: {exc}") from exc


class ImageStorage:
    """
    Base class for image backends.
    """

    def read(self) -> Optional[bytes]:
        """Return the stored image, or None when nothing was saved yet."""
        raise NotImplementedError

    def write(self, data: bytes) -> None:
        raise NotImplementedError

    def quarantine(self) -> Optional[str]:
        """
        Move an unusable stored image out of the way (never delete it) and
        return a description of where it went.
        """
        raise NotImplementedError

    def describe(self) -> str:
        return self.__class__.__name__


class FileImageStorage(ImageStorage):
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def read(self) -> Optional[bytes]:
        try:
            if not self.path.exists():
                return None
            return self.path.read_bytes()
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read {self.path}: {exc}") from exc

    def write(self, data: bytes) -> None:
        write_bytes_atomic(self.path, data)

    def quarantine(self) -> Optional[str]:
        if not self.path.exists():
            return None
        target = self.path.with_name(f"{self.path.name}.corrupt-{_stamp()}")
        try:
            os.replace(self.path, target)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot move {self.path} aside: {exc}") from exc
        return str(target)

    def describe(self) -> str:
        return str(self.path)


class KeyValueImageStorage(ImageStorage):
    """
    Keeps the image inside a JSON key-value document:
        {"gym_database": "<base64>", ...other keys untouched...}
    """

    def __init__(self, path: Path, key: str = STORAGE_KEY) -> None:
        self.path = Path(path)
        self.key = key

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read {self.path}: {exc}") from exc
        except ValueError:
            log.warning("Key-value store %s is not valid JSON; treating it as empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _store(self, data: Dict[str, Any]) -> None:
        payload = json.dumps(data, indent=2, sort_keys=True).encode("utf-8")
        write_bytes_atomic(self.path, payload)

    def read(self) -> Optional[bytes]:
        encoded = self._load().get(self.key)
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError, TypeError):
            # Undecodable entry: hand back garbage so the adapter quarantines it
            return str(encoded).encode("utf-8", errors="replace")

    def write(self, data: bytes) -> None:
        doc = self._load()
        doc[self.key] = base64.b64encode(data).decode("ascii")
        self._store(doc)

    def quarantine(self) -> Optional[str]:
        doc = self._load()
        if self.key not in doc:
            return None
        aside = f"{self.key}.corrupt-{_stamp()}"
        doc[aside] = doc.pop(self.key)
        self._store(doc)
        return f"{self.path}#{aside}"

    def describe(self) -> str:
        return f"{self.path}#{self.key}"


class MemoryImageStorage(ImageStorage):
    def __init__(self, data: Optional[bytes] = None) -> None:
        self.data = data
        self.quarantined: Optional[bytes] = None
        self.writes = 0

    def read(self) -> Optional[bytes]:
        return self.data

    def write(self, data: bytes) -> None:
        self.data = bytes(data)
        self.writes += 1

    def quarantine(self) -> Optional[str]:
        if self.data is None:
            return None
        self.quarantined, self.data = self.data, None
        return "memory"

    def describe(self) -> str:
        return "memory"


def storage_for_backend(backend: str, data_dir: Path) -> ImageStorage:
    """
    Build the configured backend rooted at data_dir.
    """
    backend = (backend or "file").lower()
    if backend == "memory":
        return MemoryImageStorage()
    if backend == "keyvalue":
        return KeyValueImageStorage(Path(data_dir) / "local_storage.json")
    return FileImageStorage(Path(data_dir) / DB_FILENAME)
