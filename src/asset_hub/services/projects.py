"""Project service: creating projects from uploads and managing their builds.

A project owns one main 3D model, optional sub-models and one or more
extracted builds. Model files go to the model store; build archives are
extracted under the storage root. Parts too large for a single request are
uploaded through the chunk receiver first and referenced by upload id.
"""

from __future__ import annotations

import contextlib
import json
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO

from sqlalchemy.orm import Session, selectinload

from asset_hub.data.db import get_session
from asset_hub.data.models import PROJECT_CATEGORIES, Build, Project, SubModel
from asset_hub.models.build import (
    ArchiveFormatError,
    BuildArtifact,
    BuildConfig,
    BuildNotFoundError,
    ExecutableNotFoundError,
    LaunchResult,
    ProjectNotFoundError,
)
from asset_hub.models.upload import ClientInputError, StorageUnavailableError
from asset_hub.services.archive_extractor import build_directory, slugify
from asset_hub.services.chunk_receiver import validate_upload_id
from asset_hub.services.executable_resolver import resolve_executable, set_main_build
from asset_hub.services.launcher import ProcessLauncher
from asset_hub.services.storage import StorageContext

logger = logging.getLogger(__name__)

__all__ = [
    "BUILD_ARCHIVE_EXTENSIONS",
    "MODEL_EXTENSIONS",
    "ChunkedFileRef",
    "IncomingFile",
    "ProjectChanges",
    "ProjectDraft",
    "add_build",
    "committed_build_dirs",
    "create_project",
    "delete_project",
    "get_build",
    "get_project",
    "launch_build",
    "list_builds",
    "list_projects",
    "model_content_type",
    "parse_build_config",
    "parse_chunked_files",
    "parse_form_bool",
    "parse_json_field",
    "parse_sub_build_configs",
    "project_lock_key",
    "update_build",
    "update_project",
]

MODEL_EXTENSIONS = (".glb", ".gltf", ".fbx", ".obj")
BUILD_ARCHIVE_EXTENSIONS = (".zip",)

_MODEL_CONTENT_TYPES = {
    ".glb": "model/gltf-binary",
    ".gltf": "model/gltf+json",
    ".fbx": "application/octet-stream",
    ".obj": "model/obj",
}

MAIN_BUILD_KEY = "mainBuildZip"
MODEL_FILE_KEY = "modelFile"
_SUB_BUILD_KEY_RE = re.compile(r"^subBuildZips_(\d+)$")


def model_content_type(filename: str, fallback: str | None = None) -> str:
    """Return the MIME type served for a model file name."""
    content_type = _MODEL_CONTENT_TYPES.get(Path(filename).suffix.lower())
    return content_type or fallback or "application/octet-stream"


@dataclass(slots=True)
class IncomingFile:
    """A file part received directly or assembled from chunks."""

    filename: str
    source: Path | BinaryIO
    content_type: str | None = None

    @property
    def suffix(self) -> str:
        return Path(self.filename).suffix.lower()

    @contextlib.contextmanager
    def open(self) -> Iterator[BinaryIO]:
        if isinstance(self.source, Path):
            with self.source.open("rb") as handle:
                yield handle
            return
        if self.source.seekable():
            self.source.seek(0)
        yield self.source


@dataclass(slots=True)
class ChunkedFileRef:
    """Reference from a create request to a finished chunk upload."""

    upload_id: str
    file_key: str
    original_name: str = ""


@dataclass(slots=True)
class ProjectDraft:
    """Everything submitted in a project creation request."""

    name: str
    category: str
    description: str = ""
    model_name: str = ""
    created_by: str | None = None
    main_build: BuildConfig | None = None
    sub_builds: list[BuildConfig] = field(default_factory=list)
    sub_models: list[dict[str, Any]] = field(default_factory=list)
    model_file: IncomingFile | None = None
    main_build_file: IncomingFile | None = None
    sub_build_files: list[IncomingFile] = field(default_factory=list)
    sub_model_files: list[IncomingFile] = field(default_factory=list)
    chunked_files: list[ChunkedFileRef] = field(default_factory=list)


@dataclass(slots=True)
class ProjectChanges:
    """Fields of a project update request. Empty fields keep the stored value."""

    name: str | None = None
    description: str | None = None
    model_name: str | None = None
    category: str | None = None
    model_file: IncomingFile | None = None
    sub_models: list[dict[str, Any]] | None = None
    sub_model_files: list[IncomingFile] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Form parsing
# ---------------------------------------------------------------------------


def parse_json_field(raw: str | None, field_name: str, default: Any = None) -> Any:
    """Decode a JSON-encoded form field.

    Raises:
        ClientInputError: If the value is not valid JSON.
    """
    if raw is None or not raw.strip():
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ClientInputError(f"Field {field_name} is not valid JSON.") from exc


def parse_form_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def parse_build_config(
    data: Any, *, default_name: str, default_description: str = "", is_main: bool = False
) -> BuildConfig:
    """Turn a decoded build object into a ``BuildConfig``."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ClientInputError("Build metadata must be a JSON object.")
    return BuildConfig(
        name=str(data.get("name") or default_name).strip(),
        description=str(data.get("description") or default_description),
        version=str(data.get("version") or "1.0.0"),
        is_main=is_main,
    )


def parse_sub_build_configs(data: Any) -> list[BuildConfig]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ClientInputError("Field subBuilds must be a JSON array.")
    return [
        parse_build_config(
            item,
            default_name=f"Sub Build {index + 1}",
            default_description=f"Additional build variant {index + 1}",
        )
        for index, item in enumerate(data)
    ]


def parse_chunked_files(data: Any) -> list[ChunkedFileRef]:
    """Validate the ``chunkedFiles`` form field.

    Raises:
        ClientInputError: If an entry is malformed or uses an unknown key.
    """
    if data is None:
        return []
    if not isinstance(data, list):
        raise ClientInputError("Field chunkedFiles must be a JSON array.")
    refs: list[ChunkedFileRef] = []
    for item in data:
        if not isinstance(item, dict):
            raise ClientInputError("Each chunkedFiles entry must be a JSON object.")
        file_key = str(item.get("fileKey") or "")
        if file_key not in {MAIN_BUILD_KEY, MODEL_FILE_KEY} and not _SUB_BUILD_KEY_RE.match(
            file_key
        ):
            raise ClientInputError(f"Unknown chunked file key {file_key!r}.")
        refs.append(
            ChunkedFileRef(
                upload_id=validate_upload_id(str(item.get("uploadId") or "")),
                file_key=file_key,
                original_name=str(item.get("originalName") or ""),
            )
        )
    return refs


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def build_to_dict(build: Build) -> dict[str, Any]:
    return {
        "id": build.id,
        "name": build.name,
        "description": build.description,
        "executable_path": build.executable_path,
        "is_main": build.is_main,
        "category": build.category,
        "version": build.version,
        "created_at": build.created_at,
    }


def _sub_model_to_dict(sub_model: SubModel) -> dict[str, Any]:
    return {
        "id": sub_model.id,
        "name": sub_model.name,
        "description": sub_model.description,
        "file_id": sub_model.file_id,
        "file_name": sub_model.file_name,
        "content_type": sub_model.content_type,
    }


def project_to_dict(project: Project) -> dict[str, Any]:
    return {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "model_name": project.model_name,
        "category": project.category,
        "model_file_id": project.model_file_id,
        "model_file_name": project.model_file_name,
        "model_file_content_type": project.model_file_content_type,
        "created_by": project.created_by,
        "created_at": project.created_at,
        "updated_at": project.updated_at,
        "builds": [build_to_dict(build) for build in project.builds],
        "sub_models": [_sub_model_to_dict(sub_model) for sub_model in project.sub_models],
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def _load_project(session: Session, project_id: int) -> Project:
    project = (
        session.query(Project)
        .options(selectinload(Project.builds), selectinload(Project.sub_models))
        .filter(Project.id == project_id)
        .first()
    )
    if project is None:
        raise ProjectNotFoundError("Project not found.")
    return project


def _find_build(project: Project, build_id: int) -> Build:
    for build in project.builds:
        if build.id == build_id:
            return build
    raise BuildNotFoundError("Build not found.")


@contextlib.contextmanager
def _locked_project(
    storage: StorageContext,
    project_id: int,
    retarget: Callable[[str, str], tuple[str, str]] | None = None,
) -> Iterator[tuple[str, str]]:
    """Hold the identity lock of an existing project and yield its (category, name).

    *retarget* maps the current identity to the one the caller is about to
    give the project; that identity is locked as well. The identity is read
    again once the locks are held, and if a concurrent update changed it in
    between the new one is locked instead.
    """
    while True:
        with get_session() as session:
            project = _load_project(session, project_id)
            identity = (project.category, project.name)
        keys = [project_lock_key(*identity)]
        if retarget is not None:
            keys.append(project_lock_key(*retarget(*identity)))
        with storage.project_locks.hold_all(keys):
            with get_session() as session:
                project = _load_project(session, project_id)
                unchanged = (project.category, project.name) == identity
            if unchanged:
                yield identity
                return


def list_projects() -> list[dict[str, Any]]:
    """Return all projects, most recently updated first."""
    with get_session() as session:
        projects = (
            session.query(Project)
            .options(selectinload(Project.builds), selectinload(Project.sub_models))
            .order_by(Project.updated_at.desc(), Project.id.desc())
            .all()
        )
        return [project_to_dict(project) for project in projects]


def get_project(project_id: int) -> dict[str, Any]:
    with get_session() as session:
        return project_to_dict(_load_project(session, project_id))


def list_builds(project_id: int) -> dict[str, Any]:
    with get_session() as session:
        project = _load_project(session, project_id)
        return {
            "project_name": project.name,
            "project_category": project.category,
            "builds": [build_to_dict(build) for build in project.builds],
        }


def get_build(project_id: int, build_id: int) -> dict[str, Any]:
    with get_session() as session:
        project = _load_project(session, project_id)
        build = _find_build(project, build_id)
        return {
            "build": build_to_dict(build),
            "project": {"name": project.name, "category": project.category},
        }


def committed_build_dirs(root: Path) -> set[Path]:
    """Return the build directories referenced by stored builds."""
    directories: set[Path] = set()
    with get_session() as session:
        rows = (
            session.query(Build.category, Project.name, Build.name)
            .join(Project, Build.project_id == Project.id)
            .all()
        )
    for category, project_name, build_name in rows:
        try:
            directories.add(build_directory(root, category, project_name, build_name))
        except ClientInputError:
            logger.warning("Skipping build %r with an unusable directory name", build_name)
    return directories


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def _check_extension(incoming: IncomingFile, allowed: tuple[str, ...], label: str) -> None:
    if incoming.suffix not in allowed:
        raise ClientInputError(
            f"{label} {incoming.filename!r} must be one of: {', '.join(allowed)}."
        )


def _validate_draft_fields(draft: ProjectDraft) -> None:
    if not draft.name or not draft.name.strip():
        raise ClientInputError("Project name is required.")
    if draft.category not in PROJECT_CATEGORIES:
        raise ClientInputError(
            f"Category must be one of: {', '.join(PROJECT_CATEGORIES)}."
        )
    slugify(draft.name)


def project_lock_key(category: str, name: str) -> str:
    """Return the lock key shared by every project that maps to the same directory."""
    return f"{slugify(category)}/{slugify(name)}"


def _ensure_unique_project(session: Session, category: str, name: str, exclude_id: int | None = None
) -> None:
    slug = slugify(name)
    query = session.query(Project.name).filter(Project.category == category)
    if exclude_id is not None:
        query = query.filter(Project.id != exclude_id)
    if any(slugify(other) == slug for (other,) in query.all()):
        raise ClientInputError(f"A {category} project named {name!r} already exists.")


def _attach_chunked_files(
    draft: ProjectDraft, assembled: dict[str, Path]
) -> tuple[IncomingFile | None, IncomingFile | None, list[IncomingFile]]:
    """Fill missing direct parts with assembled chunk uploads.

    Chunked sub-builds are appended after the directly uploaded ones, in
    ascending order of their ``subBuildZips_<n>`` key.
    """
    model_file = draft.model_file
    main_build_file = draft.main_build_file
    chunked_subs: list[tuple[int, IncomingFile]] = []

    for ref in draft.chunked_files:
        path = assembled[ref.upload_id]
        incoming = IncomingFile(filename=path.name, source=path)
        if ref.file_key == MAIN_BUILD_KEY:
            if main_build_file is None:
                main_build_file = incoming
        elif ref.file_key == MODEL_FILE_KEY:
            if model_file is None:
                model_file = IncomingFile(
                    filename=path.name,
                    source=path,
                    content_type=model_content_type(path.name),
                )
        else:
            match = _SUB_BUILD_KEY_RE.match(ref.file_key)
            if match:
                chunked_subs.append((int(match.group(1)), incoming))

    sub_build_files = list(draft.sub_build_files)
    sub_build_files.extend(incoming for _, incoming in sorted(chunked_subs, key=lambda p: p[0]))
    return model_file, main_build_file, sub_build_files


def _sub_build_configs(draft: ProjectDraft, count: int) -> list[BuildConfig]:
    configs: list[BuildConfig] = []
    for index in range(count):
        if index < len(draft.sub_builds):
            config = draft.sub_builds[index]
            config.is_main = False
            configs.append(config)
        else:
            configs.append(
                BuildConfig(
                    name=f"Sub Build {index + 1}",
                    description=f"Additional build variant {index + 1}",
                )
            )
    return configs


def _discard_stored_files(storage: StorageContext, file_ids: list[str]) -> None:
    for file_id in file_ids:
        try:
            storage.model_store.delete(file_id)
        except OSError:
            logger.warning("Could not remove stored model file %s", file_id, exc_info=True)


def _discard_build_trees(storage: StorageContext, artifacts: list[BuildArtifact]) -> None:
    for artifact in artifacts:
        try:
            storage.extractor.remove_build(
                artifact.category, artifact.project_name, artifact.build_name
            )
        except OSError:
            logger.warning("Could not remove build tree %s", artifact.directory, exc_info=True)


def _store_model(storage: StorageContext, incoming: IncomingFile) -> tuple[str, str]:
    content_type = model_content_type(incoming.filename, incoming.content_type)
    try:
        with incoming.open() as handle:
            stored = storage.model_store.put(handle, incoming.filename, content_type)
    except OSError as exc:
        raise StorageUnavailableError(
            f"Could not store model file {incoming.filename}: {exc.strerror or exc}"
        ) from exc
    return stored.file_id, content_type


def _sweep_after_create(storage: StorageContext, upload_ids: list[str]) -> None:
    for upload_id in upload_ids:
        try:
            storage.receiver.cleanup(upload_id)
        except OSError:
            logger.warning("Could not clean up upload %s", upload_id, exc_info=True)
    try:
        storage.reaper.sweep()
    except Exception:
        logger.exception("Temporary storage sweep after project creation failed")


def create_project(storage: StorageContext, draft: ProjectDraft) -> dict[str, Any]:
    """Create a project from its model files and build archives.

    The project identity lock is held from the duplicate check until the
    project is persisted, so two requests for the same category and name
    cannot both pass the check.

    Chunk sessions referenced by the draft stay locked until the project is
    persisted, then they are removed and a reaper sweep runs. If the request
    fails they are kept so a retry can reuse them.

    Raises:
        ClientInputError: For missing parts, bad extensions or bad metadata.
        ArchiveFormatError: If the main build archive is corrupt.
        ExecutableNotFoundError: If the main build has no executable.
        StorageUnavailableError: If files could not be written.
    """
    _validate_draft_fields(draft)
    with storage.project_locks.hold(project_lock_key(draft.category, draft.name)):
        with get_session() as session:
            _ensure_unique_project(session, draft.category, draft.name)

        upload_ids = sorted({ref.upload_id for ref in draft.chunked_files})
        with contextlib.ExitStack() as stack:
            assembled: dict[str, Path] = {}
            for upload_id in upload_ids:
                path = stack.enter_context(storage.receiver.claim_assembled(upload_id))
                if path is None:
                    raise ClientInputError(f"Upload {upload_id} has not been fully assembled.")
                assembled[upload_id] = path

            model_file, main_build_file, sub_build_files = _attach_chunked_files(draft, assembled)
            if model_file is None:
                raise ClientInputError("Main model file is required for all project categories.")
            if main_build_file is None:
                raise ClientInputError("Main build zip file is required.")
            _check_extension(model_file, MODEL_EXTENSIONS, "Model file")
            for incoming in draft.sub_model_files:
                _check_extension(incoming, MODEL_EXTENSIONS, "Sub-model file")
            for incoming in [main_build_file, *sub_build_files]:
                _check_extension(incoming, BUILD_ARCHIVE_EXTENSIONS, "Build archive")

            main_config = draft.main_build or BuildConfig(
                name="Main Build", description="Primary build for this project"
            )
            main_config.is_main = True
            sub_configs = _sub_build_configs(draft, len(sub_build_files))
            slugs = [slugify(config.name) for config in [main_config, *sub_configs]]
            if len(set(slugs)) != len(slugs):
                raise ClientInputError("Build names must be unique within a project.")

            stored_ids: list[str] = []
            artifacts: list[BuildArtifact] = []
            try:
                model_file_id, model_content = _store_model(storage, model_file)
                stored_ids.append(model_file_id)
                sub_model_rows = _store_sub_models(
                    storage, draft.sub_models, draft.sub_model_files, stored_ids
                )

                artifacts.append(
                    storage.extractor.extract_build(
                        main_build_file.source, draft.category, draft.name, main_config
                    )
                )
                built_configs = [main_config]
                for config, incoming in zip(sub_configs, sub_build_files, strict=True):
                    try:
                        artifact = storage.extractor.extract_build(
                            incoming.source, draft.category, draft.name, config
                        )
                    except (ArchiveFormatError, ExecutableNotFoundError, StorageUnavailableError):
                        logger.warning("Skipping sub-build %r", config.name, exc_info=True)
                        continue
                    artifacts.append(artifact)
                    built_configs.append(config)

                with get_session() as session:
                    project = Project(
                        name=draft.name.strip(),
                        description=draft.description,
                        model_name=draft.model_name,
                        category=draft.category,
                        model_file_id=model_file_id,
                        model_file_name=model_file.filename,
                        model_file_content_type=model_content,
                        created_by=draft.created_by,
                    )
                    project.builds = [
                        Build(
                            name=config.name,
                            description=config.description,
                            executable_path=artifact.executable_relative_path,
                            is_main=config.is_main,
                            category=draft.category,
                            version=config.version,
                        )
                        for config, artifact in zip(built_configs, artifacts, strict=True)
                    ]
                    project.sub_models = sub_model_rows
                    session.add(project)
                    session.flush()
                    result = project_to_dict(project)
            except Exception:
                _discard_stored_files(storage, stored_ids)
                _discard_build_trees(storage, artifacts)
                raise

    logger.info(
        "Created project %s (%s) with %d builds", result["id"], result["name"], len(artifacts)
    )
    _sweep_after_create(storage, upload_ids)
    return result


def _store_sub_models(
    storage: StorageContext,
    entries: list[dict[str, Any]],
    files: list[IncomingFile],
    stored_ids: list[str],
    reusable: dict[str, SubModel] | None = None,
) -> list[SubModel]:
    """Store sub-model files, pairing the n-th file with the n-th entry.

    An entry without a file of its own keeps the stored file named by its
    ``fileId`` when that file belongs to one of the *reusable* sub-models.
    """
    rows: list[SubModel] = []
    count = max(len(entries), len(files))
    for index in range(count):
        entry = entries[index] if index < len(entries) else {}
        if not isinstance(entry, dict):
            raise ClientInputError("Each subModels entry must be a JSON object.")
        incoming = files[index] if index < len(files) else None
        fallback_name = Path(incoming.filename).stem if incoming else f"Sub Model {index + 1}"
        row = SubModel(
            name=str(entry.get("name") or fallback_name),
            description=entry.get("description"),
        )
        if incoming is not None:
            file_id, content_type = _store_model(storage, incoming)
            stored_ids.append(file_id)
            row.file_id = file_id
            row.file_name = incoming.filename
            row.content_type = content_type
        elif reusable and isinstance(entry.get("fileId"), str) and entry["fileId"] in reusable:
            previous = reusable[entry["fileId"]]
            row.file_id = previous.file_id
            row.file_name = previous.file_name
            row.content_type = previous.content_type
        rows.append(row)
    return rows


# ---------------------------------------------------------------------------
# Project updates
# ---------------------------------------------------------------------------


def _apply_model_changes(
    storage: StorageContext, project: Project, changes: ProjectChanges, stored_ids: list[str]
) -> list[str]:
    """Store replacement model files on *project*; return the file ids they replace."""
    released: list[str] = []
    if changes.model_file is not None:
        file_id, content_type = _store_model(storage, changes.model_file)
        stored_ids.append(file_id)
        if project.model_file_id:
            released.append(project.model_file_id)
        project.model_file_id = file_id
        project.model_file_name = changes.model_file.filename
        project.model_file_content_type = content_type

    if changes.sub_models or changes.sub_model_files:
        previous = {sub.file_id: sub for sub in project.sub_models if sub.file_id}
        rows = _store_sub_models(
            storage, changes.sub_models or [], changes.sub_model_files, stored_ids, previous
        )
        in_use = {row.file_id for row in rows if row.file_id}
        released.extend(file_id for file_id in previous if file_id not in in_use)
        project.sub_models = rows
    return released


def _rebase_executable_paths(
    storage: StorageContext, project: Project, old: tuple[str, str], new: tuple[str, str]
) -> None:
    for build in project.builds:
        old_prefix = build_directory(storage.root, *old, build.name)
        new_prefix = build_directory(storage.root, *new, build.name)
        old_posix = old_prefix.relative_to(storage.root).as_posix()
        if build.executable_path.startswith(f"{old_posix}/"):
            build.executable_path = (
                new_prefix.relative_to(storage.root).as_posix()
                + build.executable_path[len(old_posix) :]
            )
        build.category = new[0]


def update_project(
    storage: StorageContext, project_id: int, changes: ProjectChanges
) -> dict[str, Any]:
    """Update project metadata and replace its model files.

    Empty fields leave the stored value unchanged. A rename or category change
    moves every build tree and rewrites the stored executable paths. When
    ``sub_models`` or sub-model files are given the sub-model list is replaced;
    model files no longer referenced are removed afterwards, best-effort.

    Raises:
        ProjectNotFoundError: If the project does not exist.
        ClientInputError: For a bad category, name or model extension, or when
            another project already has the new category and name.
        StorageUnavailableError: If files could not be written or moved.
    """
    new_name = (changes.name or "").strip() or None
    new_category = changes.category or None
    if new_category is not None and new_category not in PROJECT_CATEGORIES:
        raise ClientInputError(f"Category must be one of: {', '.join(PROJECT_CATEGORIES)}.")
    if new_name is not None:
        slugify(new_name)
    if changes.model_file is not None:
        _check_extension(changes.model_file, MODEL_EXTENSIONS, "Model file")
    for incoming in changes.sub_model_files:
        _check_extension(incoming, MODEL_EXTENSIONS, "Sub-model file")

    def retarget(category: str, name: str) -> tuple[str, str]:
        return new_category or category, new_name or name

    with _locked_project(storage, project_id, retarget) as identity:
        target = retarget(*identity)
        relocating = project_lock_key(*target) != project_lock_key(*identity)
        stored_ids: list[str] = []
        moved: list[str] = []
        try:
            with get_session() as session:
                project = _load_project(session, project_id)
                if relocating:
                    _ensure_unique_project(session, *target, exclude_id=project_id)
                released = _apply_model_changes(storage, project, changes, stored_ids)
                if relocating:
                    try:
                        moved = storage.extractor.move_project(
                            *identity, *target, [build.name for build in project.builds]
                        )
                    except OSError as exc:
                        raise StorageUnavailableError(
                            f"Could not move build files: {exc.strerror or exc}"
                        ) from exc
                    _rebase_executable_paths(storage, project, identity, target)
                project.category, project.name = target
                if changes.description:
                    project.description = changes.description
                if changes.model_name:
                    project.model_name = changes.model_name
                session.flush()
                result = project_to_dict(project)
        except Exception:
            if moved:
                try:
                    storage.extractor.move_project(*target, *identity, moved)
                except (OSError, ClientInputError):
                    logger.exception("Could not move build trees of project %s back", project_id)
            _discard_stored_files(storage, stored_ids)
            raise

    _discard_stored_files(storage, released)
    logger.info(
        "Updated project %s (%s, %d build trees moved, %d model files replaced)",
        project_id,
        result["name"],
        len(moved),
        len(released),
    )
    return result


# ---------------------------------------------------------------------------
# Build management
# ---------------------------------------------------------------------------


def add_build(
    storage: StorageContext,
    project_id: int,
    archive: IncomingFile,
    *,
    name: str | None = None,
    description: str | None = None,
    version: str | None = None,
    is_main: bool = False,
) -> dict[str, Any]:
    """Extract a new build archive into an existing project.

    A build whose name maps to the same directory as an existing build
    replaces it. The new build becomes main when requested, when it replaces
    the main build, or when the project has no main build.

    Raises:
        ProjectNotFoundError: If the project does not exist.
        ClientInputError: If the archive is not a zip file.
        ArchiveFormatError: If the archive is corrupt.
        ExecutableNotFoundError: If the archive holds no executable.
    """
    _check_extension(archive, BUILD_ARCHIVE_EXTENSIONS, "Build archive")
    with _locked_project(storage, project_id) as (category, project_name):
        with get_session() as session:
            build_count = len(_load_project(session, project_id).builds)

        config = BuildConfig(
            name=(name or "").strip() or f"Build {build_count + 1}",
            description=description or "",
            version=version or "1.0.0",
            is_main=is_main,
        )
        slug = slugify(config.name)
        artifact = storage.extractor.extract_build(archive.source, category, project_name, config)

        with get_session() as session:
            project = _load_project(session, project_id)
            replaced = [build for build in project.builds if slugify(build.name) == slug]
            make_main = config.is_main or any(build.is_main for build in replaced)
            for build in replaced:
                logger.info("Build %s of project %s replaced by a new upload", build.id, project_id)
                project.builds.remove(build)
            build = Build(
                name=config.name,
                description=config.description,
                executable_path=artifact.executable_relative_path,
                is_main=False,
                category=category,
                version=config.version,
            )
            project.builds.append(build)
            if make_main or not any(other.is_main for other in project.builds):
                set_main_build(project, build)
            session.flush()
            result = build_to_dict(build)

    logger.info("Added build %s (%s) to project %s", result["id"], config.name, project_id)
    return result


def update_build(
    storage: StorageContext,
    project_id: int,
    build_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    version: str | None = None,
    is_main: bool | None = None,
) -> dict[str, Any]:
    """Update build metadata.

    Renaming a build moves its directory and rewrites the stored executable
    path. Setting ``is_main`` clears the flag on every other build; a main
    build cannot be demoted directly, another build has to be promoted.

    Raises:
        ProjectNotFoundError: If the project does not exist.
        BuildNotFoundError: If the build does not belong to the project.
        ClientInputError: If the new name collides with another build.
    """
    with _locked_project(storage, project_id):
        with get_session() as session:
            project = _load_project(session, project_id)
            build = _find_build(project, build_id)

            new_name = (name or "").strip() or build.name
            old_name = build.name
            moved = False
            if slugify(new_name) != slugify(old_name):
                if any(
                    slugify(other.name) == slugify(new_name)
                    for other in project.builds
                    if other is not build
                ):
                    raise ClientInputError(f"A build named {new_name!r} already exists.")
                target = storage.extractor.move_build(
                    build.category, project.name, old_name, new_name
                )
                if target is not None:
                    moved = True
                    old_prefix = build_directory(
                        storage.root, build.category, project.name, old_name
                    ).relative_to(storage.root).as_posix()
                    new_prefix = target.relative_to(storage.root).as_posix()
                    if build.executable_path.startswith(f"{old_prefix}/"):
                        build.executable_path = (
                            new_prefix + build.executable_path[len(old_prefix) :]
                        )

            try:
                build.name = new_name
                if description is not None:
                    build.description = description
                if version:
                    build.version = version
                if is_main:
                    set_main_build(project, build)
                session.flush()
            except Exception:
                if moved:
                    with contextlib.suppress(OSError, ClientInputError):
                        storage.extractor.move_build(
                            build.category, project.name, new_name, old_name
                        )
                raise
            result = build_to_dict(build)

    logger.info("Updated build %s of project %s", build_id, project_id)
    return result


# ---------------------------------------------------------------------------
# Deletion and launch
# ---------------------------------------------------------------------------


def delete_project(storage: StorageContext, project_id: int) -> dict[str, Any]:
    """Delete a project record, then its model files and build trees.

    File removal after the record is gone is best-effort; anything left
    behind is logged.

    Raises:
        ProjectNotFoundError: If the project does not exist.
    """
    with _locked_project(storage, project_id):
        with get_session() as session:
            project = _load_project(session, project_id)
            summary = {"id": project.id, "name": project.name, "category": project.category}
            file_ids = [project.model_file_id] if project.model_file_id else []
            file_ids.extend(sub.file_id for sub in project.sub_models if sub.file_id)
            build_keys = [(build.category, project.name, build.name) for build in project.builds]
            session.delete(project)

        removed_builds = 0
        for category, project_name, build_name in build_keys:
            try:
                if storage.extractor.remove_build(category, project_name, build_name):
                    removed_builds += 1
            except OSError:
                logger.warning(
                    "Could not remove build %r of %s", build_name, project_name, exc_info=True
                )
    _discard_stored_files(storage, file_ids)

    logger.info(
        "Deleted project %s with %d build trees and %d model files",
        project_id,
        removed_builds,
        len(file_ids),
    )
    return {**summary, "removed_builds": removed_builds, "removed_files": len(file_ids)}


def launch_build(
    storage: StorageContext,
    launcher: ProcessLauncher,
    project_id: int,
    build_id: int | None = None,
) -> LaunchResult:
    """Locate a build's executable, repairing its stored path if needed, and start it.

    Raises:
        ProjectNotFoundError: If the project does not exist.
        BuildNotFoundError: If the build does not exist or no main build is set.
        BuildArtifactMissingError: If the executable cannot be found on disk.
        LaunchFailure: If the process could not be started.
    """
    with get_session() as session:
        project = _load_project(session, project_id)
        resolved = resolve_executable(
            session, project, storage.root, storage.settings.executable_suffix, build_id
        )
        executable = resolved.path
    return launcher.launch(executable)
