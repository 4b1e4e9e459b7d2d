"""Locate the runnable executable of a stored build.

Build rows store ``executable_path`` relative to the storage root. When that
file has moved (the tree was re-extracted or rearranged) the build directory
is searched again and the row is corrected, so the next lookup is direct.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.orm import Session

from asset_hub.data.models import Build, Project
from asset_hub.models.build import BuildArtifactMissingError, BuildNotFoundError
from asset_hub.services.archive_extractor import build_directory, find_executable, read_marker

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ResolvedExecutable:
    """A verified executable location."""

    path: Path
    build: Build
    repaired: bool = False


def select_build(project: Project, build_id: int | None = None) -> Build:
    """Return the requested build, or the project's main build.

    When several builds are flagged main, the one with the lowest id wins.

    Raises:
        BuildNotFoundError: If the build does not exist or no main build is set.
    """
    if build_id is not None:
        for build in project.builds:
            if build.id == build_id:
                return build
        raise BuildNotFoundError("Build not found.")

    main_builds = sorted((build for build in project.builds if build.is_main), key=lambda b: b.id)
    if not main_builds:
        raise BuildNotFoundError("No main build found for this project.")
    if len(main_builds) > 1:
        logger.warning(
            "Project %s has %d main builds; using build %s",
            project.id,
            len(main_builds),
            main_builds[0].id,
        )
    return main_builds[0]


def set_main_build(project: Project, main: Build) -> None:
    """Flag *main* as the project's only main build."""
    for build in project.builds:
        build.is_main = build is main
    main.is_main = True


def _within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def repair(session: Session, build: Build, found_path: Path, root: Path) -> None:
    """Persist *found_path* as the build's executable location."""
    relative_path = found_path.relative_to(root).as_posix()
    logger.info(
        "Executable for build %s moved from %s to %s",
        build.id,
        build.executable_path,
        relative_path,
    )
    build.executable_path = relative_path
    session.flush()


def resolve_executable(
    session: Session,
    project: Project,
    root: Path,
    executable_suffix: str,
    build_id: int | None = None,
) -> ResolvedExecutable:
    """Return the absolute executable path for a project's build.

    Raises:
        BuildNotFoundError: If the build cannot be selected.
        BuildArtifactMissingError: If the build tree or its executable is gone.
    """
    build = select_build(project, build_id)
    expected = root / build.executable_path
    if build.executable_path and _within(expected, root) and expected.is_file():
        return ResolvedExecutable(path=expected, build=build)

    logger.info("Executable for build %s not found at %s", build.id, expected)
    build_dir = build_directory(root, build.category, project.name, build.name)
    if not build_dir.is_dir():
        raise BuildArtifactMissingError(
            "Build files not found. They may have expired or been cleaned up."
        )

    found: Path | None = None
    recorded = read_marker(build_dir)
    if recorded:
        candidate = root / recorded
        if _within(candidate, build_dir) and candidate.is_file():
            found = candidate
    if found is None:
        found = find_executable(build_dir, executable_suffix)
    if found is None:
        raise BuildArtifactMissingError(
            f"No {executable_suffix} file found in the files of build {build.name!r}."
        )

    repair(session, build, found, root)
    return ResolvedExecutable(path=found, build=build, repaired=True)
