"""Receive large files as independently uploaded chunks.

Each upload session owns a directory under the chunk staging root::

    chunk_root/<upload_id>/session.json
    chunk_root/<upload_id>/chunk_000000.part
    chunk_root/<upload_id>/<original_name>      (after assembly)

A session is complete when the number of distinct chunk files equals the
chunk count the client declared. The completing request assembles the file
while holding the session lock, so assembly happens exactly once.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import re
import secrets
import shutil
import time
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

from asset_hub.models.upload import (
    ChunkReceipt,
    ClientInputError,
    SessionInfo,
    StorageUnavailableError,
)
from asset_hub.services.assembler import (
    PARTIAL_SUFFIX,
    PROGRESS_FILE_NAME,
    assemble,
    chunk_filename,
    count_received,
    parse_chunk_index,
)
from asset_hub.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

SESSION_FILE_NAME = "session.json"
_UPLOAD_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
_RESERVED_NAMES = {SESSION_FILE_NAME, PROGRESS_FILE_NAME}


def generate_upload_id() -> str:
    """Return a fresh upload id: millisecond timestamp plus a random suffix."""
    return f"{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def validate_upload_id(upload_id: str) -> str:
    """Return *upload_id* if it is safe to use as a directory name.

    Raises:
        ClientInputError: If the id contains anything but letters, digits,
            ``_`` or ``-``.
    """
    if not _UPLOAD_ID_RE.match(upload_id or ""):
        raise ClientInputError("Invalid upload id.")
    return upload_id


def _validate_original_name(original_name: str | None) -> str:
    name = Path((original_name or "").replace("\\", "/")).name.strip()
    if not name or name in {".", ".."}:
        raise ClientInputError("Missing original file name.")
    if (
        name in _RESERVED_NAMES
        or parse_chunk_index(name) is not None
        or name.endswith(PARTIAL_SUFFIX)
    ):
        raise ClientInputError(f"File name {name!r} is reserved.")
    return name


class ChunkReceiver:
    """Stores chunks for upload sessions and assembles completed ones.

    Args:
        chunk_root: Staging directory that holds one subdirectory per session.
        max_chunk_bytes: Largest accepted chunk.
        locks: Session locks shared with the temporary-storage reaper.
    """

    def __init__(self, chunk_root: Path, max_chunk_bytes: int, locks: KeyedLocks) -> None:
        self.chunk_root = chunk_root
        self.max_chunk_bytes = max_chunk_bytes
        self.locks = locks

    def session_dir(self, upload_id: str) -> Path:
        return self.chunk_root / validate_upload_id(upload_id)

    def receive_chunk(
        self,
        *,
        upload_id: str | None,
        chunk_index: int | None,
        expected_chunk_count: int | None,
        original_name: str | None,
        data: bytes,
        file_key: str | None = None,
        file_size: int | None = None,
    ) -> ChunkReceipt:
        """Persist one chunk and assemble the file once every chunk is present.

        Raises:
            ClientInputError: For invalid fields or an oversized chunk.
            StorageUnavailableError: If the chunk could not be written.
            AssemblyIntegrityError: If assembly found a missing chunk.
        """
        if expected_chunk_count is None or expected_chunk_count < 1:
            raise ClientInputError("totalChunks must be a positive integer.")
        if chunk_index is None or not 0 <= chunk_index < expected_chunk_count:
            raise ClientInputError(
                f"chunkIndex must be between 0 and {expected_chunk_count - 1}."
            )
        if len(data) > self.max_chunk_bytes:
            raise ClientInputError(
                f"Chunk of {len(data)} bytes exceeds the {self.max_chunk_bytes} byte limit."
            )
        name = _validate_original_name(original_name)
        current_id = validate_upload_id(upload_id) if upload_id else generate_upload_id()
        session_dir = self.chunk_root / current_id

        with self.locks.hold(current_id):
            info = self._load_info(session_dir)
            if info is not None:
                if info.expected_chunk_count != expected_chunk_count:
                    raise ClientInputError(
                        f"Upload {current_id} was started with "
                        f"{info.expected_chunk_count} chunks, not {expected_chunk_count}."
                    )
                if info.original_name != name:
                    raise ClientInputError(
                        f"Upload {current_id} belongs to {info.original_name!r}."
                    )
                assembled = session_dir / info.original_name
                if assembled.exists():
                    return ChunkReceipt(
                        upload_id=current_id,
                        chunk_index=chunk_index,
                        received_count=expected_chunk_count,
                        complete=False,
                        assembled_path=assembled,
                        already_assembled=True,
                    )
            else:
                info = SessionInfo(
                    upload_id=current_id,
                    original_name=name,
                    expected_chunk_count=expected_chunk_count,
                    created_at=datetime.now(UTC),
                    file_key=file_key,
                    file_size=file_size,
                )

            self._write_chunk(session_dir, info, chunk_index, data)
            logger.info(
                "Saved chunk %d/%d for %s (upload %s)",
                chunk_index + 1,
                expected_chunk_count,
                name,
                current_id,
            )

            received = count_received(session_dir)
            if received != expected_chunk_count:
                return ChunkReceipt(
                    upload_id=current_id,
                    chunk_index=chunk_index,
                    received_count=received,
                    complete=False,
                )

            logger.info("All chunks uploaded for %s, assembling", name)
            assembled = assemble(session_dir, name, expected_chunk_count)
            return ChunkReceipt(
                upload_id=current_id,
                chunk_index=chunk_index,
                received_count=received,
                complete=True,
                assembled_path=assembled,
            )

    def _write_chunk(
        self, session_dir: Path, info: SessionInfo, chunk_index: int, data: bytes
    ) -> None:
        created_dir = not session_dir.exists()
        chunk_path = session_dir / chunk_filename(chunk_index)
        temp_path = session_dir / f".{chunk_path.name}.{uuid.uuid4().hex}.tmp"
        try:
            session_dir.mkdir(parents=True, exist_ok=True)
            if not (session_dir / SESSION_FILE_NAME).exists():
                self._write_info(session_dir, info)
            with temp_path.open("wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, chunk_path)
            # Directory mtime is the session's last-activity time.
            os.utime(session_dir)
        except OSError as exc:
            with contextlib.suppress(OSError):
                temp_path.unlink(missing_ok=True)
            if created_dir:
                shutil.rmtree(session_dir, ignore_errors=True)
            logger.warning(
                "Could not store chunk %d of upload %s: %s", chunk_index, info.upload_id, exc
            )
            raise StorageUnavailableError(
                f"Could not store chunk {chunk_index}: {exc.strerror or exc}"
            ) from exc

    @staticmethod
    def _write_info(session_dir: Path, info: SessionInfo) -> None:
        payload = {
            "upload_id": info.upload_id,
            "original_name": info.original_name,
            "expected_chunk_count": info.expected_chunk_count,
            "file_key": info.file_key,
            "file_size": info.file_size,
            "created_at": info.created_at.isoformat(),
        }
        info_path = session_dir / SESSION_FILE_NAME
        temp_path = info_path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        temp_path.replace(info_path)

    @staticmethod
    def _load_info(session_dir: Path) -> SessionInfo | None:
        info_path = session_dir / SESSION_FILE_NAME
        if not info_path.exists():
            return None
        try:
            data = json.loads(info_path.read_text(encoding="utf-8"))
            return SessionInfo(
                upload_id=str(data["upload_id"]),
                original_name=str(data["original_name"]),
                expected_chunk_count=int(data["expected_chunk_count"]),
                created_at=datetime.fromisoformat(data["created_at"]),
                file_key=data.get("file_key"),
                file_size=data.get("file_size"),
            )
        except (OSError, ValueError, KeyError, TypeError):
            logger.warning("Ignoring unreadable session descriptor in %s", session_dir)
            return None

    def session_info(self, upload_id: str) -> SessionInfo | None:
        return self._load_info(self.session_dir(upload_id))

    def assembled_file(self, upload_id: str) -> Path | None:
        """Return the assembled file of a session, or None if it is not complete."""
        session_dir = self.session_dir(upload_id)
        info = self._load_info(session_dir)
        if info is None:
            return None
        assembled = session_dir / info.original_name
        return assembled if assembled.is_file() else None

    @contextlib.contextmanager
    def claim_assembled(self, upload_id: str) -> Iterator[Path | None]:
        """Hold the session lock while the caller reads the assembled file."""
        validate_upload_id(upload_id)
        with self.locks.hold(upload_id):
            yield self.assembled_file(upload_id)

    def cleanup(self, upload_id: str) -> bool:
        """Delete a session directory. Returns False if it was already gone."""
        session_dir = self.session_dir(upload_id)
        with self.locks.hold(upload_id):
            if not session_dir.exists():
                return False
            shutil.rmtree(session_dir)
        logger.info("Cleaned up upload %s", upload_id)
        return True
