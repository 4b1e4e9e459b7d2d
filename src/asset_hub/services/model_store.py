"""Content-addressed storage for uploaded 3D model files.

Model bytes live under ``objects/<aa>/<sha256>`` and each stored upload gets
an opaque file id with a JSON descriptor under ``files/<file_id>.json``.
Identical uploads share one object; the object is removed when its last
descriptor is deleted.
"""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Iterator
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

_OBJECTS_DIR_NAME = "objects"
_FILES_DIR_NAME = "files"
_STREAM_CHUNK_SIZE = 1024 * 1024
_FILE_ID_LENGTH = 32


@dataclass(slots=True)
class StoredFile:
    """Descriptor of a stored model file."""

    file_id: str
    filename: str
    content_type: str
    length: int
    content_hash: str
    uploaded_at: str


def _write_stream_and_hash(source: BinaryIO, destination: BinaryIO) -> tuple[str, int]:
    hasher = hashlib.sha256()
    size = 0
    for chunk in iter(lambda: source.read(_STREAM_CHUNK_SIZE), b""):
        destination.write(chunk)
        hasher.update(chunk)
        size += len(chunk)
    destination.flush()
    os.fsync(destination.fileno())
    return hasher.hexdigest(), size


class ModelStore:
    """Stores model files and serves them back by id, including byte ranges."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._lock = threading.Lock()

    @property
    def objects_root(self) -> Path:
        return self.root / _OBJECTS_DIR_NAME

    @property
    def files_root(self) -> Path:
        return self.root / _FILES_DIR_NAME

    def _object_path(self, content_hash: str) -> Path:
        return self.objects_root / content_hash[:2] / content_hash

    def _descriptor_path(self, file_id: str) -> Path | None:
        if len(file_id) != _FILE_ID_LENGTH or not all(c in "0123456789abcdef" for c in file_id):
            return None
        return self.files_root / f"{file_id}.json"

    def put(self, source: BinaryIO, filename: str, content_type: str | None = None) -> StoredFile:
        """Stream *source* into the store and return its descriptor."""
        self.objects_root.mkdir(parents=True, exist_ok=True)
        self.files_root.mkdir(parents=True, exist_ok=True)

        temp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="wb", dir=self.objects_root, suffix=".tmp", delete=False
            ) as temp_file:
                temp_path = Path(temp_file.name)
                content_hash, size = _write_stream_and_hash(source, temp_file)
            stored = StoredFile(
                file_id=uuid.uuid4().hex,
                filename=Path(filename).name or "model.bin",
                content_type=content_type or "application/octet-stream",
                length=size,
                content_hash=content_hash,
                uploaded_at=datetime.now(UTC).isoformat(),
            )
            object_path = self._object_path(content_hash)
            # The descriptor must land before the lock is released, otherwise a
            # concurrent delete of a twin file id sees the hash as unused.
            with self._lock:
                if object_path.exists():
                    temp_path.unlink(missing_ok=True)
                else:
                    object_path.parent.mkdir(parents=True, exist_ok=True)
                    os.replace(temp_path, object_path)
                self._write_descriptor(stored)
        except Exception:
            if temp_path is not None:
                with contextlib.suppress(FileNotFoundError):
                    temp_path.unlink()
            raise

        logger.info("Stored model file %s as %s (%d bytes)", stored.filename, stored.file_id, size)
        return stored

    def _write_descriptor(self, stored: StoredFile) -> None:
        descriptor = self.files_root / f"{stored.file_id}.json"
        temp_descriptor = descriptor.with_suffix(".tmp")
        temp_descriptor.write_text(json.dumps(asdict(stored), ensure_ascii=False), encoding="utf-8")
        temp_descriptor.replace(descriptor)

    def stat(self, file_id: str) -> StoredFile | None:
        """Return the descriptor for *file_id*, or None if unknown."""
        descriptor = self._descriptor_path(file_id)
        if descriptor is None or not descriptor.exists():
            return None
        try:
            return StoredFile(**json.loads(descriptor.read_text(encoding="utf-8")))
        except (OSError, TypeError, json.JSONDecodeError):
            return None

    def open_range(self, file_id: str, start: int = 0, end: int | None = None) -> Iterator[bytes]:
        """Yield the bytes of *file_id* from *start* to *end* inclusive.

        Raises:
            FileNotFoundError: If the file id or its object is missing.
        """
        stored = self.stat(file_id)
        if stored is None:
            raise FileNotFoundError(file_id)
        object_path = self._object_path(stored.content_hash)
        last = stored.length - 1 if end is None else min(end, stored.length - 1)
        remaining = last - start + 1
        with object_path.open("rb") as source:
            source.seek(start)
            while remaining > 0:
                block = source.read(min(_STREAM_CHUNK_SIZE, remaining))
                if not block:
                    break
                remaining -= len(block)
                yield block

    def delete(self, file_id: str) -> bool:
        """Delete *file_id*. Returns False if it did not exist."""
        stored = self.stat(file_id)
        descriptor = self._descriptor_path(file_id)
        if stored is None or descriptor is None:
            return False
        with self._lock:
            descriptor.unlink(missing_ok=True)
            if not self._hash_in_use(stored.content_hash):
                self._object_path(stored.content_hash).unlink(missing_ok=True)
        logger.info("Deleted model file %s", file_id)
        return True

    def _hash_in_use(self, content_hash: str) -> bool:
        for descriptor in self.files_root.glob("*.json"):
            try:
                data = json.loads(descriptor.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                continue
            if data.get("content_hash") == content_hash:
                return True
        return False
