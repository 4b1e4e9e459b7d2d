"""Data models for chunked upload sessions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path


class ClientInputError(Exception):
    """Raised when a request is malformed and must be rejected before touching storage."""


class StorageUnavailableError(Exception):
    """Raised when a write fails because storage is full or denied.

    The operation is safe to retry; the session is left as it was before the
    failed write.
    """


class AssemblyIntegrityError(Exception):
    """Raised when a completed session is missing a chunk index at assembly time."""


@dataclass(slots=True)
class SessionInfo:
    """Descriptor persisted alongside the chunks of an upload session.

    Attributes:
        upload_id: Opaque session identifier.
        original_name: Filename supplied by the client.
        expected_chunk_count: Number of chunks that make up the file.
        file_key: Form field the assembled file stands in for, if any.
        file_size: Total file size reported by the client, if any.
        created_at: UTC timestamp of the first chunk write.
    """

    upload_id: str
    original_name: str
    expected_chunk_count: int
    created_at: datetime
    file_key: str | None = None
    file_size: int | None = None


@dataclass(slots=True)
class ChunkReceipt:
    """Outcome of storing a single chunk.

    Attributes:
        upload_id: Session the chunk belongs to.
        chunk_index: Index of the stored chunk.
        received_count: Distinct chunk indices received so far.
        complete: True only for the chunk whose arrival assembled the file.
        assembled_path: Location of the assembled file when it exists.
        already_assembled: The chunk arrived after assembly and was ignored.
    """

    upload_id: str
    chunk_index: int
    received_count: int
    complete: bool
    assembled_path: Path | None = None
    already_assembled: bool = False
