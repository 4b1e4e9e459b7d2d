"""Process-wide storage wiring.

``StorageContext`` is created once at startup. It resolves the storage root
(pinned by configuration or chosen by the drive selector) and builds the
services that depend on it, all sharing the same session and build locks.
Project locks serialize changes to a project identity (category and name).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from asset_hub.config import Settings
from asset_hub.services.archive_extractor import ArchiveExtractor
from asset_hub.services.chunk_receiver import ChunkReceiver
from asset_hub.services.drive_selector import select_root
from asset_hub.services.locks import KeyedLocks
from asset_hub.services.model_store import ModelStore
from asset_hub.services.reaper import TemporaryStorageReaper

logger = logging.getLogger(__name__)


def resolve_storage_root(settings: Settings) -> Path:
    """Return the pinned build root, or select one from the available drives."""
    if settings.build_root is not None:
        settings.build_root.mkdir(parents=True, exist_ok=True)
        logger.info("Using configured storage root %s", settings.build_root)
        return settings.build_root
    return select_root(settings.min_free_gb, settings.fallback_root)


class StorageContext:
    """Holds the storage root and the services bound to it."""

    def __init__(
        self,
        settings: Settings,
        root: Path | None = None,
        committed_dirs: Callable[[Path], set[Path]] | None = None,
    ) -> None:
        self.settings = settings
        self.session_locks = KeyedLocks()
        self.build_locks = KeyedLocks()
        self.project_locks = KeyedLocks()
        self._committed_dirs = committed_dirs
        self.model_store = ModelStore(settings.model_root)
        self.receiver = ChunkReceiver(
            settings.chunk_root, settings.max_chunk_bytes, self.session_locks
        )
        settings.chunk_root.mkdir(parents=True, exist_ok=True)
        settings.temp_root.mkdir(parents=True, exist_ok=True)
        self._bind(root if root is not None else resolve_storage_root(settings))

    def _bind(self, root: Path) -> None:
        self.root = root
        self.extractor = ArchiveExtractor(
            root, self.settings.executable_suffix, self.build_locks, self.settings.temp_root
        )
        committed = self._committed_dirs
        self.reaper = TemporaryStorageReaper(
            staging_roots=[self.settings.chunk_root, self.settings.temp_root],
            build_root=root,
            retention_seconds=self.settings.retention_seconds,
            session_locks=self.session_locks,
            build_locks=self.build_locks,
            committed_dirs=(lambda: committed(root)) if committed else None,
            interval_seconds=self.settings.reap_interval_seconds,
        )

    def reselect(self) -> Path:
        """Run drive selection again and rebind the build services to the result."""
        was_running = self.reaper.is_running
        self.reaper.stop()
        self._bind(resolve_storage_root(self.settings))
        if was_running:
            self.reaper.start()
        logger.info("Storage root is now %s", self.root)
        return self.root
