"""Translation of domain exceptions into HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException, status

from asset_hub.models import (
    ArchiveFormatError,
    AssemblyIntegrityError,
    BuildArtifactMissingError,
    BuildNotFoundError,
    ClientInputError,
    ExecutableNotFoundError,
    ProjectNotFoundError,
    StorageUnavailableError,
)

DOMAIN_ERRORS = (
    ClientInputError,
    StorageUnavailableError,
    AssemblyIntegrityError,
    ArchiveFormatError,
    ExecutableNotFoundError,
    ProjectNotFoundError,
    BuildNotFoundError,
)

_UNPROCESSABLE = 422

# Ordered so subclasses match before their parents.
_STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (ClientInputError, status.HTTP_400_BAD_REQUEST),
    (StorageUnavailableError, status.HTTP_507_INSUFFICIENT_STORAGE),
    (AssemblyIntegrityError, status.HTTP_409_CONFLICT),
    (ArchiveFormatError, _UNPROCESSABLE),
    (BuildArtifactMissingError, status.HTTP_410_GONE),
    (ExecutableNotFoundError, _UNPROCESSABLE),
    (ProjectNotFoundError, status.HTTP_404_NOT_FOUND),
    (BuildNotFoundError, status.HTTP_404_NOT_FOUND),
)


def to_http_exception(exc: Exception) -> HTTPException:
    """Return the HTTPException a route should raise for a domain error."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    detail = str(exc) or exc.__class__.__name__
    if isinstance(exc, StorageUnavailableError):
        detail = f"{detail} Free up space or retry later."
    elif isinstance(exc, AssemblyIntegrityError):
        detail = f"Corrupt upload: {detail}"
    elif isinstance(exc, ExecutableNotFoundError) and not isinstance(
        exc, BuildArtifactMissingError
    ):
        detail = f"Build has no runnable binary: {detail}"
    return HTTPException(status_code=status_code, detail=detail)
