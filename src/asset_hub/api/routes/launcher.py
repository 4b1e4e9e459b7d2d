"""Build launch route."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from asset_hub.api.dependencies import get_launcher, get_storage
from asset_hub.api.errors import DOMAIN_ERRORS, to_http_exception
from asset_hub.api.schemas.projects import LaunchBuildRequest, LaunchBuildResponse
from asset_hub.models import LaunchFailure
from asset_hub.services import projects as project_service
from asset_hub.services.launcher import ProcessLauncher
from asset_hub.services.storage import StorageContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["launcher"])


@router.post(
    "/launch-build",
    response_model=LaunchBuildResponse,
    summary="Launch a build",
    description=(
        "Start a project's build, or its main build when buildId is omitted. A "
        "moved executable is located again and its stored path corrected."
    ),
    responses={
        404: {"description": "Project or build not found"},
        410: {"description": "Build files are gone"},
        500: {"description": "The process could not be started"},
    },
)
def launch_build(
    request: LaunchBuildRequest,
    storage: Annotated[StorageContext, Depends(get_storage)],
    launcher: Annotated[ProcessLauncher, Depends(get_launcher)],
) -> LaunchBuildResponse | JSONResponse:
    try:
        result = project_service.launch_build(
            storage, launcher, request.project_id, request.build_id
        )
    except LaunchFailure as exc:
        logger.warning("Launch for project %s failed: %s", request.project_id, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": str(exc)},
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc
    return LaunchBuildResponse(success=result.success, message=result.message, pid=result.pid)
