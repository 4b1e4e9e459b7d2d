"""Data models for extracted builds and launches."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


class ArchiveFormatError(Exception):
    """Raised when a build archive cannot be decompressed."""


class ExecutableNotFoundError(Exception):
    """Raised when a build tree contains no runnable executable."""


class BuildArtifactMissingError(ExecutableNotFoundError):
    """Raised when a stored build can no longer be located on disk.

    This usually means the extracted tree was removed or extraction never
    completed.
    """


class LaunchFailure(Exception):
    """Raised when the operating system refuses to start an executable."""


class ProjectNotFoundError(LookupError):
    """Raised when a project id does not exist."""


class BuildNotFoundError(LookupError):
    """Raised when a build id does not exist or a project has no main build."""


@dataclass(slots=True)
class BuildConfig:
    """Client-supplied metadata for a build archive."""

    name: str
    description: str = ""
    version: str = "1.0.0"
    is_main: bool = False


@dataclass(slots=True)
class BuildArtifact:
    """Result of extracting one build archive.

    Attributes:
        category: Project category the build is filed under.
        project_name: Human-readable project name.
        build_name: Human-readable build name.
        directory: Absolute directory holding the extracted tree.
        executable_relative_path: Executable location relative to the
            storage root, using forward slashes.
    """

    category: str
    project_name: str
    build_name: str
    directory: Path
    executable_relative_path: str


@dataclass(slots=True)
class LaunchResult:
    """Outcome reported by the process launcher."""

    success: bool
    message: str
    pid: int | None = None
