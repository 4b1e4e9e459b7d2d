"""Concatenate the chunks of a completed upload session into one file.

Chunks are appended in ascending index order to ``<name>.partial``. After
each chunk is flushed to disk a small progress record is updated and the
chunk is deleted, so an interrupted assembly can resume at the next index
without duplicating or losing data. The partial file is renamed to its final
name only once every chunk has been appended.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path

from asset_hub.models.upload import AssemblyIntegrityError, StorageUnavailableError

logger = logging.getLogger(__name__)

CHUNK_PREFIX = "chunk_"
CHUNK_SUFFIX = ".part"
PROGRESS_FILE_NAME = ".assembly.json"
PARTIAL_SUFFIX = ".partial"
_STREAM_CHUNK_SIZE = 1024 * 1024
_CHUNK_NAME_RE = re.compile(rf"^{CHUNK_PREFIX}(\d+){re.escape(CHUNK_SUFFIX)}$")


def chunk_filename(index: int) -> str:
    """Return the deterministic fragment name for a chunk index."""
    return f"{CHUNK_PREFIX}{index:06d}{CHUNK_SUFFIX}"


def parse_chunk_index(filename: str) -> int | None:
    """Return the chunk index encoded in *filename*, or None for other files."""
    match = _CHUNK_NAME_RE.match(filename)
    if match is None:
        return None
    return int(match.group(1))


def list_chunk_indices(session_dir: Path) -> set[int]:
    """Return the distinct chunk indices currently stored in *session_dir*."""
    indices: set[int] = set()
    try:
        entries = list(session_dir.iterdir())
    except FileNotFoundError:
        return indices
    for entry in entries:
        index = parse_chunk_index(entry.name)
        if index is not None and entry.is_file():
            indices.add(index)
    return indices


def count_received(session_dir: Path) -> int:
    """Return how many distinct chunks the session has received.

    Chunks already consumed by an interrupted assembly still count.
    """
    present = list_chunk_indices(session_dir)
    try:
        next_index, _ = _load_progress(session_dir)
    except AssemblyIntegrityError:
        next_index = 0
    return len(present | set(range(next_index)))


def _load_progress(session_dir: Path) -> tuple[int, int]:
    progress_path = session_dir / PROGRESS_FILE_NAME
    if not progress_path.exists():
        return 0, 0
    try:
        data = json.loads(progress_path.read_text(encoding="utf-8"))
        return int(data["next_index"]), int(data["size"])
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise AssemblyIntegrityError(
            f"Assembly progress record in {session_dir.name} is unreadable"
        ) from exc


def _write_progress(session_dir: Path, next_index: int, size: int) -> None:
    progress_path = session_dir / PROGRESS_FILE_NAME
    temp_path = progress_path.with_suffix(".tmp")
    temp_path.write_text(json.dumps({"next_index": next_index, "size": size}), encoding="utf-8")
    temp_path.replace(progress_path)


def assemble(session_dir: Path, original_name: str, expected_chunk_count: int) -> Path:
    """Assemble a session's chunks into ``session_dir / original_name``.

    Args:
        session_dir: Directory holding the session's chunk files.
        original_name: Final filename of the assembled artifact.
        expected_chunk_count: Number of chunks that make up the file.

    Returns:
        Path of the assembled file.

    Raises:
        AssemblyIntegrityError: If a chunk index is missing or resume state
            is inconsistent. Nothing is deleted in that case.
        StorageUnavailableError: If writing fails. Chunks not yet appended
            are left in place so the call can be retried.
    """
    target = session_dir / original_name
    partial = session_dir / f"{original_name}{PARTIAL_SUFFIX}"
    progress_path = session_dir / PROGRESS_FILE_NAME

    # The final name only ever appears through the rename below.
    if target.exists():
        progress_path.unlink(missing_ok=True)
        return target

    next_index, assembled_size = _load_progress(session_dir)
    present = list_chunk_indices(session_dir)
    missing = [index for index in range(next_index, expected_chunk_count) if index not in present]
    if missing:
        raise AssemblyIntegrityError(
            f"Upload {session_dir.name} is missing chunk(s) {missing[:10]} "
            f"of {expected_chunk_count}"
        )

    if next_index > 0:
        if not partial.exists() or partial.stat().st_size < assembled_size:
            raise AssemblyIntegrityError(
                f"Partial assembly for upload {session_dir.name} is shorter than recorded"
            )
        # Chunks already appended but not yet removed before an interruption.
        for index in sorted(present):
            if index < next_index:
                (session_dir / chunk_filename(index)).unlink(missing_ok=True)

    try:
        with partial.open("r+b" if next_index > 0 else "wb") as output:
            output.truncate(assembled_size)
            output.seek(assembled_size)
            for index in range(next_index, expected_chunk_count):
                chunk_path = session_dir / chunk_filename(index)
                with chunk_path.open("rb") as source:
                    for block in iter(lambda: source.read(_STREAM_CHUNK_SIZE), b""):
                        output.write(block)
                output.flush()
                os.fsync(output.fileno())
                assembled_size = output.tell()
                _write_progress(session_dir, index + 1, assembled_size)
                chunk_path.unlink()
        os.replace(partial, target)
        progress_path.unlink(missing_ok=True)
    except OSError as exc:
        logger.exception("Assembly of upload %s failed", session_dir.name)
        raise StorageUnavailableError(
            f"Failed to assemble {original_name}: {exc.strerror or exc}"
        ) from exc

    logger.info(
        "Assembled %s from %d chunks (%d bytes)", target, expected_chunk_count, assembled_size
    )
    return target
