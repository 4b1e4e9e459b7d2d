"""Project routes for the API."""

from __future__ import annotations

import re
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile, status
from fastapi.responses import StreamingResponse

from asset_hub.api.dependencies import get_current_username, get_storage
from asset_hub.api.errors import DOMAIN_ERRORS, to_http_exception
from asset_hub.api.schemas.projects import (
    ProjectCreateResponse,
    ProjectDeleteResponse,
    ProjectDetail,
    ProjectUpdateResponse,
)
from asset_hub.models import ClientInputError
from asset_hub.services import projects as project_service
from asset_hub.services.projects import IncomingFile, ProjectChanges, ProjectDraft
from asset_hub.services.storage import StorageContext

router = APIRouter(prefix="/projects", tags=["projects"])

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")
_RANGE_NOT_SATISFIABLE = 416


def _incoming(upload: UploadFile) -> IncomingFile:
    return IncomingFile(
        filename=upload.filename or "upload.bin",
        source=upload.file,
        content_type=upload.content_type,
    )


def _parse_range(header: str, length: int) -> tuple[int, int]:
    """Return the inclusive byte range requested by a ``Range`` header."""
    match = _RANGE_RE.match(header.strip())
    start: int | None = None
    end: int | None = None
    if match and (match.group(1) or match.group(2)):
        if match.group(1):
            start = int(match.group(1))
            end = int(match.group(2)) if match.group(2) else length - 1
        else:
            suffix = int(match.group(2))
            start = max(length - suffix, 0)
            end = length - 1
    if start is None or end is None or start > end or start >= length:
        raise HTTPException(
            status_code=_RANGE_NOT_SATISFIABLE,
            detail="Requested range not satisfiable.",
            headers={"Content-Range": f"bytes */{length}"},
        )
    return start, min(end, length - 1)


@router.get(
    "",
    response_model=list[ProjectDetail],
    summary="List projects",
    description="Return all projects with their builds, most recently updated first.",
)
def list_projects() -> list[ProjectDetail]:
    return [ProjectDetail(**project) for project in project_service.list_projects()]


@router.post(
    "/create",
    response_model=ProjectCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a project",
    description=(
        "Create a project from a main model file, a main build archive and optional "
        "sub-models and sub-builds. Large parts may be uploaded in chunks first and "
        "referenced through chunkedFiles."
    ),
    responses={
        400: {"description": "Missing or invalid fields"},
        422: {"description": "Build archive is corrupt or has no executable"},
        507: {"description": "Files could not be stored"},
    },
)
def create_project(
    storage: Annotated[StorageContext, Depends(get_storage)],
    username: Annotated[str, Depends(get_current_username)],
    name: Annotated[str, Form()] = "",
    category: Annotated[str, Form()] = "",
    description: Annotated[str, Form()] = "",
    model_name: Annotated[str, Form(alias="modelName")] = "",
    main_build: Annotated[str | None, Form(alias="mainBuild")] = None,
    sub_builds: Annotated[str | None, Form(alias="subBuilds")] = None,
    sub_models: Annotated[str | None, Form(alias="subModels")] = None,
    chunked_files: Annotated[str | None, Form(alias="chunkedFiles")] = None,
    main_build_zip: Annotated[UploadFile | None, File(alias="mainBuildZip")] = None,
    sub_build_zips: Annotated[list[UploadFile] | None, File(alias="subBuildZips")] = None,
    model_file: Annotated[UploadFile | None, File(alias="modelFile")] = None,
    sub_model_files: Annotated[list[UploadFile] | None, File(alias="subModelFiles")] = None,
) -> ProjectCreateResponse:
    try:
        sub_model_entries = project_service.parse_json_field(sub_models, "subModels", [])
        if not isinstance(sub_model_entries, list):
            raise ClientInputError("Field subModels must be a JSON array.")
        draft = ProjectDraft(
            name=name,
            category=category,
            description=description,
            model_name=model_name,
            created_by=username,
            main_build=project_service.parse_build_config(
                project_service.parse_json_field(main_build, "mainBuild"),
                default_name="Main Build",
                default_description="Primary build for this project",
                is_main=True,
            ),
            sub_builds=project_service.parse_sub_build_configs(
                project_service.parse_json_field(sub_builds, "subBuilds")
            ),
            sub_models=sub_model_entries,
            model_file=_incoming(model_file) if model_file else None,
            main_build_file=_incoming(main_build_zip) if main_build_zip else None,
            sub_build_files=[_incoming(upload) for upload in sub_build_zips or []],
            sub_model_files=[_incoming(upload) for upload in sub_model_files or []],
            chunked_files=project_service.parse_chunked_files(
                project_service.parse_json_field(chunked_files, "chunkedFiles")
            ),
        )
        project = project_service.create_project(storage, draft)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ProjectCreateResponse(
        message="Project created successfully", project=ProjectDetail(**project)
    )


@router.get(
    "/file/{file_id}",
    summary="Download a model file",
    description=(
        "Stream a stored model file. Supports single byte ranges and "
        "?download=true for an attachment."
    ),
    responses={
        206: {"description": "Partial content"},
        404: {"description": "File not found"},
        416: {"description": "Range not satisfiable"},
    },
)
def get_model_file(
    file_id: str,
    storage: Annotated[StorageContext, Depends(get_storage)],
    download: bool = False,
    range_header: Annotated[str | None, Header(alias="Range")] = None,
) -> StreamingResponse:
    stored = storage.model_store.stat(file_id)
    if stored is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found.")

    headers = {
        "Accept-Ranges": "bytes",
        "Cache-Control": "public, max-age=86400, immutable",
        "Cross-Origin-Resource-Policy": "cross-origin",
    }
    if download:
        headers["Content-Disposition"] = f'attachment; filename="{stored.filename}"'

    status_code = status.HTTP_200_OK
    start, end = 0, stored.length - 1
    if range_header:
        start, end = _parse_range(range_header, stored.length)
        status_code = status.HTTP_206_PARTIAL_CONTENT
        headers["Content-Range"] = f"bytes {start}-{end}/{stored.length}"
    headers["Content-Length"] = str(max(end - start + 1, 0))

    try:
        body = storage.model_store.open_range(file_id, start, end)
        first = next(body, b"")
    except FileNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="File not found."
        ) from exc

    def _stream():
        if first:
            yield first
        yield from body

    return StreamingResponse(
        _stream(),
        status_code=status_code,
        media_type=project_service.model_content_type(stored.filename, stored.content_type),
        headers=headers,
    )


@router.get(
    "/{project_id}",
    response_model=ProjectDetail,
    summary="Get a project",
    description="Return a single project with its builds and sub-models.",
    responses={404: {"description": "Project not found"}},
)
def get_project(project_id: int) -> ProjectDetail:
    try:
        return ProjectDetail(**project_service.get_project(project_id))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc


@router.put(
    "/{project_id}",
    response_model=ProjectUpdateResponse,
    summary="Update a project",
    description=(
        "Update name, description, model name or category and replace model files. "
        "Empty fields keep their stored value; a rename or category change moves the "
        "extracted builds. subModels, when given, replaces the sub-model list."
    ),
    responses={
        400: {"description": "Invalid fields or duplicate project"},
        404: {"description": "Project not found"},
        507: {"description": "Files could not be stored or moved"},
    },
    dependencies=[Depends(get_current_username)],
)
def update_project(
    project_id: int,
    storage: Annotated[StorageContext, Depends(get_storage)],
    name: Annotated[str, Form()] = "",
    category: Annotated[str, Form()] = "",
    description: Annotated[str, Form()] = "",
    model_name: Annotated[str, Form(alias="modelName")] = "",
    sub_models: Annotated[str | None, Form(alias="subModels")] = None,
    model_file: Annotated[UploadFile | None, File(alias="modelFile")] = None,
    sub_model_files: Annotated[list[UploadFile] | None, File(alias="subModelFiles")] = None,
) -> ProjectUpdateResponse:
    try:
        sub_model_entries = project_service.parse_json_field(sub_models, "subModels")
        if sub_model_entries is not None and not isinstance(sub_model_entries, list):
            raise ClientInputError("Field subModels must be a JSON array.")
        changes = ProjectChanges(
            name=name,
            category=category,
            description=description,
            model_name=model_name,
            model_file=_incoming(model_file) if model_file else None,
            sub_models=sub_model_entries,
            sub_model_files=[_incoming(upload) for upload in sub_model_files or []],
        )
        project = project_service.update_project(storage, project_id, changes)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ProjectUpdateResponse(
        message="Project updated successfully", project=ProjectDetail(**project)
    )


@router.delete(
    "/{project_id}",
    response_model=ProjectDeleteResponse,
    summary="Delete a project",
    description="Delete a project, its model files and its extracted builds.",
    responses={404: {"description": "Project not found"}},
    dependencies=[Depends(get_current_username)],
)
def delete_project(
    project_id: int,
    storage: Annotated[StorageContext, Depends(get_storage)],
) -> ProjectDeleteResponse:
    try:
        summary = project_service.delete_project(storage, project_id)
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return ProjectDeleteResponse(
        message="Project and all associated files deleted successfully", **summary
    )
