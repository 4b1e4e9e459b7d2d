"""Pick a storage volume for extracted builds.

Candidates are enumerated per platform, measured with a real free-space
query, and the roomiest one is turned into a verified, writable root
directory. Selection never raises: when nothing usable is found the
configured fallback root is used instead.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import string
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path

from asset_hub.config import BUILD_ROOT_DIR_NAME

logger = logging.getLogger(__name__)

_BYTES_PER_GB = 1024**3
_WINDOWS_DRIVE_LETTERS = string.ascii_uppercase[2:10]  # C: .. J:
_UNIX_MOUNT_PARENTS = ("/Volumes", "/mnt", "/media")


@dataclass(frozen=True, slots=True)
class DriveStats:
    """Free space measured for one candidate volume."""

    path: Path
    free_bytes: int

    @property
    def free_gb(self) -> float:
        return self.free_bytes / _BYTES_PER_GB


def list_candidate_drives() -> list[Path]:
    """Return platform-appropriate candidate volumes, including the cwd when it exists.

    Locations that cannot be resolved are skipped; this never raises.
    """
    candidates: list[Path] = []

    if sys.platform.startswith("win"):
        for letter in _WINDOWS_DRIVE_LETTERS:
            drive = Path(f"{letter}:\\")
            if drive.exists():
                candidates.append(drive)
    else:
        for parent in _UNIX_MOUNT_PARENTS:
            base = Path(parent)
            try:
                entries = sorted(base.iterdir())
            except OSError:
                continue
            candidates.extend(entry for entry in entries if _is_accessible_dir(entry))
        try:
            home = Path.home()
        except (RuntimeError, KeyError, OSError) as exc:
            logger.info("Skipping home directory: %s", exc)
        else:
            if _is_accessible_dir(home):
                candidates.append(home)

    try:
        cwd = Path.cwd()
    except OSError as exc:
        logger.info("Skipping working directory: %s", exc)
        return candidates
    if cwd not in candidates:
        candidates.append(cwd)
    return candidates


def _is_accessible_dir(path: Path) -> bool:
    try:
        return path.is_dir()
    except OSError:
        return False


def measure_free_space(path: Path) -> int:
    """Return the free bytes available on the volume holding *path*.

    Raises:
        OSError: If the volume cannot be queried.
    """
    return shutil.disk_usage(path).free


def probe_writable(directory: Path) -> bool:
    """Return True if a small file can be created, written and removed in *directory*."""
    probe = directory / f".write_probe_{uuid.uuid4().hex}.tmp"
    try:
        probe.write_bytes(b"probe")
        probe.unlink()
    except OSError:
        with contextlib.suppress(OSError):
            probe.unlink(missing_ok=True)
        return False
    return True


def pick_best_drive(candidates: list[Path], minimum_free_gb: float) -> DriveStats | None:
    """Return the candidate with the most free space.

    Candidates meeting ``minimum_free_gb`` win over those that do not; when
    none qualifies, the roomiest one is still returned and a warning logged.
    Returns None only when no candidate could be measured.
    """
    stats: list[DriveStats] = []
    for candidate in candidates:
        try:
            stats.append(DriveStats(path=candidate, free_bytes=measure_free_space(candidate)))
        except OSError as exc:
            logger.info("Skipping drive %s: %s", candidate, exc)
            continue
        logger.info("Drive %s: %.2fGB free", candidate, stats[-1].free_gb)

    if not stats:
        return None

    minimum_bytes = minimum_free_gb * _BYTES_PER_GB
    suitable = [entry for entry in stats if entry.free_bytes >= minimum_bytes]
    if suitable:
        best = max(suitable, key=lambda entry: entry.free_bytes)
        logger.info("Selected %s with %.2fGB free", best.path, best.free_gb)
        return best

    best = max(stats, key=lambda entry: entry.free_bytes)
    logger.warning(
        "No drive has %.2fGB free; using %s with %.2fGB (may run out of space)",
        minimum_free_gb,
        best.path,
        best.free_gb,
    )
    return best


def _prepare_root(root: Path) -> bool:
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning("Cannot create storage root %s: %s", root, exc)
        return False
    if not os.access(root, os.W_OK) or not probe_writable(root):
        logger.warning("Storage root %s is not writable", root)
        return False
    return True


def select_root(
    minimum_free_gb: float,
    fallback_root: Path,
    candidates: list[Path] | None = None,
) -> Path:
    """Choose and prepare the storage root for build trees.

    Args:
        minimum_free_gb: Free space a drive should offer to be preferred.
        fallback_root: Root used when the selected drive is unusable.
        candidates: Volumes to consider; defaults to ``list_candidate_drives()``.

    Returns:
        Absolute path of an existing directory. Writability of the fallback is
        attempted but not guaranteed.
    """
    drives = candidates if candidates is not None else list_candidate_drives()
    best = pick_best_drive(drives, minimum_free_gb)

    if best is not None:
        root = (best.path / BUILD_ROOT_DIR_NAME).resolve()
        if _prepare_root(root):
            logger.info("Write permissions verified for %s", root)
            return root

    fallback = fallback_root.resolve()
    logger.warning("Using fallback storage root %s", fallback)
    if not _prepare_root(fallback):
        logger.warning("Fallback storage root %s could not be verified", fallback)
    return fallback
