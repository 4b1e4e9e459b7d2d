"""Chunked upload routes."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.responses import FileResponse
from starlette.concurrency import run_in_threadpool

from asset_hub.api.dependencies import get_storage
from asset_hub.api.errors import DOMAIN_ERRORS, to_http_exception
from asset_hub.api.schemas.uploads import ChunkUploadResponse, UploadCleanupResponse
from asset_hub.models import ClientInputError
from asset_hub.services.storage import StorageContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects/upload", tags=["uploads"])


def _parse_int(value: str | None, field_name: str) -> int | None:
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ClientInputError(f"{field_name} must be an integer.") from exc


@router.post(
    "/chunk",
    response_model=ChunkUploadResponse,
    summary="Upload one chunk of a large file",
    description=(
        "Store one chunk of an upload session. The file is assembled once every "
        "chunk has arrived; omit uploadId on the first chunk to start a session."
    ),
    responses={
        400: {"description": "Invalid chunk fields or oversized chunk"},
        409: {"description": "Corrupt upload"},
        507: {"description": "Chunk could not be stored"},
    },
)
async def upload_chunk(
    storage: Annotated[StorageContext, Depends(get_storage)],
    chunk: Annotated[UploadFile | None, File(description="Chunk bytes")] = None,
    chunk_index: Annotated[str | None, Form(alias="chunkIndex")] = None,
    total_chunks: Annotated[str | None, Form(alias="totalChunks")] = None,
    original_name: Annotated[str | None, Form(alias="originalName")] = None,
    upload_id: Annotated[str | None, Form(alias="uploadId")] = None,
    file_key: Annotated[str | None, Form(alias="fileKey")] = None,
    file_size: Annotated[str | None, Form(alias="fileSize")] = None,
) -> ChunkUploadResponse:
    receiver = storage.receiver
    try:
        if chunk is None:
            raise ClientInputError("No chunk file received.")
        # One byte past the ceiling is enough to reject an oversized chunk.
        data = await chunk.read(receiver.max_chunk_bytes + 1)
        receipt = await run_in_threadpool(
            receiver.receive_chunk,
            upload_id=upload_id or None,
            chunk_index=_parse_int(chunk_index, "chunkIndex"),
            expected_chunk_count=_parse_int(total_chunks, "totalChunks"),
            original_name=original_name,
            data=data,
            file_key=file_key,
            file_size=_parse_int(file_size, "fileSize"),
        )
    except DOMAIN_ERRORS as exc:
        raise to_http_exception(exc) from exc

    expected = _parse_int(total_chunks, "totalChunks")
    if receipt.complete:
        message = "All chunks uploaded and file assembled"
    elif receipt.already_assembled:
        message = (
            "Upload already assembled; fetch it from "
            f"/api/projects/upload/file/{receipt.upload_id}"
        )
    else:
        message = f"Chunk {receipt.chunk_index + 1}/{expected} received"
    return ChunkUploadResponse(
        upload_id=receipt.upload_id,
        assembled=receipt.complete,
        already_assembled=receipt.already_assembled,
        chunk_index=receipt.chunk_index,
        received_count=receipt.received_count,
        message=message,
    )


@router.get(
    "/file/{upload_id}",
    summary="Download an assembled upload",
    responses={404: {"description": "File not found or not fully assembled"}},
)
def get_assembled_file(
    upload_id: str,
    storage: Annotated[StorageContext, Depends(get_storage)],
) -> FileResponse:
    try:
        path = storage.receiver.assembled_file(upload_id)
    except ClientInputError as exc:
        raise to_http_exception(exc) from exc
    if path is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found or not fully assembled.",
        )
    return FileResponse(path, media_type="application/octet-stream", filename=path.name)


@router.delete(
    "/cleanup/{upload_id}",
    response_model=UploadCleanupResponse,
    summary="Cancel an upload session",
    description="Delete an upload session and its chunks. Succeeds for unknown sessions.",
)
def cleanup_upload(
    upload_id: str,
    storage: Annotated[StorageContext, Depends(get_storage)],
) -> UploadCleanupResponse:
    try:
        storage.receiver.cleanup(upload_id)
    except ClientInputError as exc:
        raise to_http_exception(exc) from exc
    except OSError as exc:
        logger.exception("Failed to clean up upload %s", upload_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to clean up upload.",
        ) from exc
    return UploadCleanupResponse(message="Upload cleaned up")
