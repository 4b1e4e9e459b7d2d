"""Pydantic schemas for project and build API responses."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BuildSummary(BaseModel):
    """Public-facing build metadata."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    executable_path: str
    is_main: bool
    category: str
    version: str
    created_at: datetime


class SubModelSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    file_id: str | None
    file_name: str | None
    content_type: str | None


class ProjectDetail(BaseModel):
    """Project with its builds and sub-models."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    model_name: str | None
    category: str
    model_file_id: str | None
    model_file_name: str | None
    model_file_content_type: str | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime
    builds: list[BuildSummary]
    sub_models: list[SubModelSummary]


class ProjectCreateResponse(BaseModel):
    message: str
    project: ProjectDetail


class ProjectUpdateResponse(BaseModel):
    message: str
    project: ProjectDetail


class ProjectDeleteResponse(BaseModel):
    """Summary of a deleted project."""

    message: str
    id: int
    name: str
    category: str
    removed_builds: int
    removed_files: int


class ProjectBuildsResponse(BaseModel):
    project_name: str
    project_category: str
    builds: list[BuildSummary]


class ProjectRef(BaseModel):
    name: str
    category: str


class BuildDetailResponse(BaseModel):
    build: BuildSummary
    project: ProjectRef


class BuildMutationResponse(BaseModel):
    message: str
    build: BuildSummary


class BuildUpdateRequest(BaseModel):
    """Fields allowed to be updated for a build."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str | None = None
    description: str | None = None
    version: str | None = None
    is_main: bool | None = Field(default=None, alias="isMain")


class LaunchBuildRequest(BaseModel):
    """Which build to start; the project's main build when ``build_id`` is omitted."""

    model_config = ConfigDict(populate_by_name=True)

    project_id: int = Field(alias="projectId")
    build_id: int | None = Field(default=None, alias="buildId")


class LaunchBuildResponse(BaseModel):
    success: bool
    message: str
    pid: int | None = None
