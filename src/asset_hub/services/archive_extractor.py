"""Build archive extraction and executable discovery."""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
import zlib
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import BinaryIO
from zipfile import BadZipFile, ZipFile, ZipInfo

from asset_hub.models.build import (
    ArchiveFormatError,
    BuildArtifact,
    BuildConfig,
    ExecutableNotFoundError,
)
from asset_hub.models.upload import ClientInputError, StorageUnavailableError
from asset_hub.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

MARKER_FILE_NAME = ".asset_build.json"
_STREAM_CHUNK_SIZE = 1024 * 1024
_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")


def slugify(name: str) -> str:
    """Return a filesystem-safe directory name for *name*.

    Whitespace runs collapse to a single ``_``; any other character outside
    ``[A-Za-z0-9._-]`` is dropped.

    Raises:
        ClientInputError: If nothing usable is left.
    """
    collapsed = re.sub(r"\s+", "_", name.strip())
    slug = _UNSAFE_CHARS_RE.sub("", collapsed).lstrip(".")
    if not slug:
        raise ClientInputError(f"Name {name!r} cannot be used as a directory name.")
    return slug


def build_directory(root: Path, category: str, project_name: str, build_name: str) -> Path:
    """Return ``root/<category>/<project-slug>/<build-slug>``."""
    return root / slugify(category) / slugify(project_name) / slugify(build_name)


def find_executable(directory: Path, suffix: str) -> Path | None:
    """Depth-first search for the first file ending in *suffix*.

    Entries of each directory are visited in name order and subdirectories
    are descended into as they are met, so repeated searches over the same
    tree always return the same file.
    """
    try:
        entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
    except OSError:
        return None
    for entry in entries:
        if entry.is_symlink():
            continue
        if entry.is_dir():
            found = find_executable(entry, suffix)
            if found is not None:
                return found
        elif entry.is_file() and entry.name.lower().endswith(suffix.lower()):
            return entry
    return None


def read_marker(directory: Path) -> str | None:
    """Return the executable path recorded in a build directory's marker."""
    marker = directory / MARKER_FILE_NAME
    if not marker.is_file():
        return None
    try:
        data = json.loads(marker.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    value = data.get("executable_path")
    return str(value) if value else None


def write_marker(directory: Path, executable_path: str, build_name: str) -> None:
    marker = directory / MARKER_FILE_NAME
    temp_path = marker.with_suffix(".tmp")
    payload = {
        "build_name": build_name,
        "executable_path": executable_path,
        "extracted_at": datetime.now(UTC).isoformat(),
    }
    temp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    temp_path.replace(marker)


def _entry_parts(info: ZipInfo) -> tuple[str, ...]:
    normalized = info.filename.replace("\\", "/").lstrip("/")
    parts = tuple(part for part in PurePosixPath(normalized).parts if part not in {"", "."})
    if any(part == ".." or part.endswith(":") for part in parts):
        raise ArchiveFormatError(f"Archive entry escapes the build directory: {info.filename}")
    return parts


def _extract_all(archive: ZipFile, target: Path) -> int:
    file_count = 0
    for info in archive.infolist():
        parts = _entry_parts(info)
        if not parts:
            continue
        destination = target.joinpath(*parts)
        if info.is_dir():
            destination.mkdir(parents=True, exist_ok=True)
            continue
        destination.parent.mkdir(parents=True, exist_ok=True)
        with archive.open(info) as source, destination.open("wb") as output:
            for block in iter(lambda: source.read(_STREAM_CHUNK_SIZE), b""):
                output.write(block)
        mode = (info.external_attr >> 16) & 0o777
        if mode:
            os.chmod(destination, mode)
        file_count += 1
    return file_count


class ArchiveExtractor:
    """Unpacks build archives under the storage root.

    Args:
        root: Storage root chosen at startup.
        executable_suffix: Extension identifying the runnable binary.
        locks: Per-build locks shared with project deletion and the reaper.
        spool_dir: Where non-seekable archive streams are copied before
            extraction.
    """

    def __init__(
        self, root: Path, executable_suffix: str, locks: KeyedLocks, spool_dir: Path
    ) -> None:
        self.root = root
        self.executable_suffix = executable_suffix
        self.locks = locks
        self.spool_dir = spool_dir

    def lock_key(self, directory: Path) -> str:
        return directory.relative_to(self.root).as_posix()

    def extract_build(
        self,
        source: Path | BinaryIO,
        category: str,
        project_name: str,
        build_config: BuildConfig,
    ) -> BuildArtifact:
        """Extract *source* into the build's directory and locate its executable.

        Any previous tree for the same (category, project, build) is removed
        first. When no executable is found the extracted tree is kept for
        inspection.

        Raises:
            ArchiveFormatError: If the archive is corrupt or unsafe.
            ExecutableNotFoundError: If no executable exists in the archive.
            StorageUnavailableError: If writing the tree fails.
        """
        target = build_directory(self.root, category, project_name, build_config.name)
        with self.locks.hold(self.lock_key(target)), self._seekable(source) as archive_file:
            try:
                if target.exists():
                    logger.info("Removing previous build tree %s", target)
                    shutil.rmtree(target)
                target.mkdir(parents=True)
                with ZipFile(archive_file) as archive:
                    file_count = _extract_all(archive, target)
            except (BadZipFile, zlib.error, EOFError, NotImplementedError) as exc:
                logger.warning("Extraction into %s failed: %s", target, exc)
                raise ArchiveFormatError(f"Failed to extract build archive: {exc}") from exc
            except OSError as exc:
                logger.warning("Extraction into %s failed: %s", target, exc)
                raise StorageUnavailableError(
                    f"Failed to write build files: {exc.strerror or exc}"
                ) from exc

            executable = find_executable(target, self.executable_suffix)
            if executable is None:
                raise ExecutableNotFoundError(
                    f"No {self.executable_suffix} file found in build {build_config.name!r}."
                )

            relative_path = executable.relative_to(self.root).as_posix()
            write_marker(target, relative_path, build_config.name)

        logger.info(
            "Extracted %d files for build %r into %s (executable %s)",
            file_count,
            build_config.name,
            target,
            relative_path,
        )
        return BuildArtifact(
            category=category,
            project_name=project_name,
            build_name=build_config.name,
            directory=target,
            executable_relative_path=relative_path,
        )

    @contextmanager
    def _seekable(self, source: Path | BinaryIO) -> Iterator[Path | BinaryIO]:
        if isinstance(source, Path):
            if not source.is_file():
                raise ArchiveFormatError(f"Build archive {source.name} does not exist.")
            yield source
            return
        if source.seekable():
            source.seek(0)
            yield source
            return
        self.spool_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryFile(dir=self.spool_dir) as spool:
            for block in iter(lambda: source.read(_STREAM_CHUNK_SIZE), b""):
                spool.write(block)
            spool.seek(0)
            yield spool

    def move_build(
        self, category: str, project_name: str, old_name: str, new_name: str
    ) -> Path | None:
        """Rename a build's directory after its build was renamed.

        Returns the new directory, or None when there was nothing to move.

        Raises:
            ClientInputError: If another build already occupies the new directory.
        """
        source = build_directory(self.root, category, project_name, old_name)
        target = build_directory(self.root, category, project_name, new_name)
        if source == target:
            return target
        if not self._move_tree(source, target, new_name):
            return None
        return target

    def move_project(
        self,
        category: str,
        project_name: str,
        new_category: str,
        new_project_name: str,
        build_names: list[str],
    ) -> list[str]:
        """Move every listed build tree after a project rename or category change.

        Returns the names of the builds whose trees were moved. Trees already
        moved are put back when a later one fails.

        Raises:
            ClientInputError: If a target build directory is already occupied.
            OSError: If a tree cannot be moved.
        """
        moved: list[str] = []
        try:
            for name in build_names:
                source = build_directory(self.root, category, project_name, name)
                target = build_directory(self.root, new_category, new_project_name, name)
                if source != target and self._move_tree(source, target, name):
                    moved.append(name)
        except (OSError, ClientInputError):
            self._restore_project(category, project_name, new_category, new_project_name, moved)
            raise
        if moved:
            old_directory = self.root / slugify(category) / slugify(project_name)
            with suppress(OSError):
                old_directory.rmdir()
        return moved

    def _restore_project(
        self,
        category: str,
        project_name: str,
        new_category: str,
        new_project_name: str,
        moved: list[str],
    ) -> None:
        for name in moved:
            source = build_directory(self.root, new_category, new_project_name, name)
            target = build_directory(self.root, category, project_name, name)
            try:
                self._move_tree(source, target, name)
            except (OSError, ClientInputError):
                logger.exception("Failed to move build tree %s back to %s", source, target)

    def _move_tree(self, source: Path, target: Path, build_name: str) -> bool:
        with self.locks.hold_all([self.lock_key(source), self.lock_key(target)]):
            if not source.exists():
                return False
            if target.exists():
                raise ClientInputError(f"A build named {build_name!r} already exists.")
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, target)
            recorded = read_marker(target)
            if recorded:
                old_prefix = source.relative_to(self.root).as_posix()
                new_prefix = target.relative_to(self.root).as_posix()
                write_marker(target, new_prefix + recorded[len(old_prefix) :], build_name)
        logger.info("Moved build tree %s to %s", source, target)
        return True

    def remove_build(self, category: str, project_name: str, build_name: str) -> bool:
        """Delete an extracted build tree. Returns False if it did not exist."""
        target = build_directory(self.root, category, project_name, build_name)
        with self.locks.hold(self.lock_key(target)):
            if not target.exists():
                return False
            shutil.rmtree(target)
        logger.info("Deleted build tree %s", target)
        return True
