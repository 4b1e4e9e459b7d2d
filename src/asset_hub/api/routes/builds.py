"""Build routes for the API."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from asset_hub.api.dependencies import get_current_username, get_storage
from asset_hub.api.errors import DOMAIN_ERRORS, to_http_exception
from asset_hub.api.schemas.projects import (
    BuildDetailResponse,
    BuildMutationResponse,
    BuildSummary,
    BuildUpdateRequest,
    ProjectBuildsResponse,
)
from asset_hub.models import ClientInputError
from asset_hub.services import projects as project_service
from asset_hub.services.projects import IncomingFile, parse_form_bool
from asset_hub.services.storage import StorageContext

router = APIRouter(prefix="/projects", tags=["builds"])


@router.get(
    "/{project_id}/builds",
    response_model=ProjectBuildsResponse,
    summary="List builds",
    description="Return the builds of a project.",
    responses={404: {"description": "Project not found"}},
)
def list_builds(project_id: int) -> ProjectBuildsResponse:
    try:
        return ProjectBuildsResponse(**project_service.list_builds(project_id))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/{project_id}/builds",
    response_model=BuildMutationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a build",
    description=(
        "Extract a build archive into an existing project. A build with the same "
        "name is replaced."
    ),
    responses={
        400: {"description": "Missing or invalid build archive"},
        404: {"description": "Project not found"},
        422: {"description": "Build archive is corrupt or has no executable"},
    },
    dependencies=[Depends(get_current_username)],
)
def add_build(
    project_id: int,
    storage: Annotated[StorageContext, Depends(get_storage)],
    build_zip: Annotated[UploadFile | None, File(alias="buildZip")] = None,
    name: Annotated[str | None, Form()] = None,
    description: Annotated[str | None, Form()] = None,
    version: Annotated[str | None, Form()] = None,
    is_main: Annotated[str | None, Form(alias="isMain")] = None,
) -> BuildMutationResponse:
    try:
        if build_zip is None:
            raise ClientInputError("Build zip file is required.")
        build = project_service.add_build(
            storage,
            project_id,
            IncomingFile(filename=build_zip.filename or "build.zip", source=build_zip.file),
            name=name,
            description=description,
            version=version,
            is_main=parse_form_bool(is_main),
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return BuildMutationResponse(message="Build added successfully", build=BuildSummary(**build))


@router.get(
    "/{project_id}/builds/{build_id}",
    response_model=BuildDetailResponse,
    summary="Get a build",
    responses={404: {"description": "Project or build not found"}},
)
def get_build(project_id: int, build_id: int) -> BuildDetailResponse:
    try:
        return BuildDetailResponse(**project_service.get_build(project_id, build_id))
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc


@router.put(
    "/{project_id}/builds/{build_id}",
    response_model=BuildMutationResponse,
    summary="Update a build",
    description=(
        "Update build metadata. Setting isMain makes this the project's only main "
        "build; renaming moves the build's files."
    ),
    responses={
        400: {"description": "Name collides with another build"},
        404: {"description": "Project or build not found"},
    },
    dependencies=[Depends(get_current_username)],
)
def update_build(
    project_id: int,
    build_id: int,
    update: BuildUpdateRequest,
    storage: Annotated[StorageContext, Depends(get_storage)],
) -> BuildMutationResponse:
    try:
        build = project_service.update_build(
            storage, project_id, build_id, **update.model_dump(exclude_unset=True)
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return BuildMutationResponse(
        message="Build updated successfully", build=BuildSummary(**build)
    )
