"""Data models and type definitions"""

from asset_hub.models.build import (
    ArchiveFormatError,
    BuildArtifact,
    BuildArtifactMissingError,
    BuildConfig,
    BuildNotFoundError,
    ExecutableNotFoundError,
    LaunchFailure,
    LaunchResult,
    ProjectNotFoundError,
)
from asset_hub.models.upload import (
    AssemblyIntegrityError,
    ChunkReceipt,
    ClientInputError,
    SessionInfo,
    StorageUnavailableError,
)

__all__ = [
    "ArchiveFormatError",
    "AssemblyIntegrityError",
    "BuildArtifact",
    "BuildArtifactMissingError",
    "BuildConfig",
    "BuildNotFoundError",
    "ChunkReceipt",
    "ClientInputError",
    "ExecutableNotFoundError",
    "LaunchFailure",
    "LaunchResult",
    "ProjectNotFoundError",
    "SessionInfo",
    "StorageUnavailableError",
]
