"""Services"""

from asset_hub.services.archive_extractor import ArchiveExtractor, find_executable
from asset_hub.services.chunk_receiver import ChunkReceiver
from asset_hub.services.drive_selector import select_root
from asset_hub.services.executable_resolver import resolve_executable
from asset_hub.services.reaper import TemporaryStorageReaper
from asset_hub.services.storage import StorageContext

__all__ = [
    "ArchiveExtractor",
    "ChunkReceiver",
    "StorageContext",
    "TemporaryStorageReaper",
    "find_executable",
    "resolve_executable",
    "select_root",
]
