"""Background sweep of expired temporary storage.

Two kinds of cleanup happen on each sweep:

* Entries under the staging roots (chunk sessions, spooled uploads) whose
  last-modified time is older than the retention threshold are deleted. A
  session directory's mtime is bumped on every chunk write, so a slow but
  active upload is never considered expired.
* Under the build root, stray ``chunk_*.part`` fragments left by interrupted
  runs and directories emptied by their removal are pruned. Committed build
  trees, recognised by their marker file or by a database reference, are
  never entered.

Every deletion is made while holding the same per-session or per-build lock
that requests use; busy entries are skipped until the next sweep.
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from asset_hub.services.archive_extractor import MARKER_FILE_NAME
from asset_hub.services.assembler import CHUNK_PREFIX, CHUNK_SUFFIX
from asset_hub.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

# root/<category>/<project>/<build>
_BUILD_DEPTH = 3


@dataclass(slots=True)
class ReapReport:
    """What a single sweep removed or left alone."""

    removed: list[Path] = field(default_factory=list)
    skipped_busy: list[Path] = field(default_factory=list)
    fragments_removed: list[Path] = field(default_factory=list)
    empty_dirs_removed: list[Path] = field(default_factory=list)


def _is_fragment(name: str) -> bool:
    return name.startswith(CHUNK_PREFIX) and name.endswith(CHUNK_SUFFIX)


class TemporaryStorageReaper:
    """Deletes expired staging entries and prunes stray fragments.

    Args:
        staging_roots: Directories whose direct children are temporary.
        build_root: Storage root holding committed build trees.
        retention_seconds: Age after which a staging entry expires.
        session_locks: Locks keyed by staging entry name (upload id).
        build_locks: Locks keyed by build directory relative to ``build_root``.
        committed_dirs: Returns build directories referenced by stored builds.
        interval_seconds: Delay between background sweeps.
    """

    def __init__(
        self,
        staging_roots: Iterable[Path],
        build_root: Path,
        retention_seconds: float,
        session_locks: KeyedLocks,
        build_locks: KeyedLocks,
        committed_dirs: Callable[[], set[Path]] | None = None,
        interval_seconds: float = 30 * 60,
    ) -> None:
        self.staging_roots = list(staging_roots)
        self.build_root = build_root
        self.retention_seconds = retention_seconds
        self.session_locks = session_locks
        self.build_locks = build_locks
        self.committed_dirs = committed_dirs or set
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._sweep_lock = threading.Lock()

    def sweep(self, now: float | None = None) -> ReapReport:
        """Run one cleanup pass and return what it did."""
        current = time.time() if now is None else now
        report = ReapReport()
        with self._sweep_lock:
            committed = {path.resolve() for path in self.committed_dirs()}
            for root in self.staging_roots:
                self._sweep_staging_root(root, current, committed, report)
            if self.build_root.is_dir():
                self._prune_directory(self.build_root, 0, committed, report)

        if report.removed or report.fragments_removed or report.empty_dirs_removed:
            logger.info(
                "Reaped %d temporary items, %d stray fragments, %d empty directories",
                len(report.removed),
                len(report.fragments_removed),
                len(report.empty_dirs_removed),
            )
        return report

    def _is_committed(self, directory: Path, committed: set[Path]) -> bool:
        return (directory / MARKER_FILE_NAME).exists() or directory.resolve() in committed

    def _is_expired(self, entry: Path, now: float) -> bool:
        try:
            return now - entry.stat().st_mtime > self.retention_seconds
        except FileNotFoundError:
            return False

    def _sweep_staging_root(
        self, root: Path, now: float, committed: set[Path], report: ReapReport
    ) -> None:
        try:
            entries = sorted(root.iterdir())
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Cannot scan %s: %s", root, exc)
            return

        for entry in entries:
            if not self._is_expired(entry, now):
                continue
            with self.session_locks.try_hold(entry.name) as acquired:
                if not acquired:
                    report.skipped_busy.append(entry)
                    continue
                # Activity may have happened while waiting for the lock.
                if not self._is_expired(entry, now):
                    continue
                try:
                    if entry.is_dir() and not entry.is_symlink():
                        if self._is_committed(entry, committed):
                            logger.warning("Not reaping committed build data in %s", entry)
                            continue
                        shutil.rmtree(entry)
                    else:
                        entry.unlink()
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    logger.warning("Failed to reap %s: %s", entry, exc)
                    continue
            report.removed.append(entry)
            logger.info("Reaped expired temporary item %s", entry)

    def _prune_directory(
        self, directory: Path, depth: int, committed: set[Path], report: ReapReport
    ) -> None:
        try:
            entries = sorted(directory.iterdir())
        except OSError as exc:
            logger.warning("Cannot scan %s: %s", directory, exc)
            return

        for entry in entries:
            if entry.is_symlink():
                continue
            if entry.is_dir():
                if self._is_committed(entry, committed):
                    continue
                if depth + 1 == _BUILD_DEPTH:
                    key = entry.relative_to(self.build_root).as_posix()
                    with self.build_locks.try_hold(key) as acquired:
                        if not acquired:
                            report.skipped_busy.append(entry)
                            continue
                        self._prune_directory(entry, depth + 1, committed, report)
                        self._remove_if_empty(entry, report)
                    continue
                self._prune_directory(entry, depth + 1, committed, report)
                self._remove_if_empty(entry, report)
            elif _is_fragment(entry.name):
                try:
                    entry.unlink()
                except OSError as exc:
                    logger.warning("Failed to remove stray fragment %s: %s", entry, exc)
                    continue
                report.fragments_removed.append(entry)
                logger.info("Removed stray chunk fragment %s", entry)

    @staticmethod
    def _remove_if_empty(directory: Path, report: ReapReport) -> None:
        try:
            directory.rmdir()
        except OSError:
            return
        report.empty_dirs_removed.append(directory)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start sweeping every ``interval_seconds`` on a daemon thread."""
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="temporary-storage-reaper", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception("Temporary storage sweep failed")
