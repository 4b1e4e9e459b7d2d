"""Pydantic schemas for chunked upload responses."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ChunkUploadResponse(BaseModel):
    """Response for a single uploaded chunk.

    Field names follow the client's camelCase form fields.
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    upload_id: str = Field(alias="uploadId")
    assembled: bool
    already_assembled: bool = Field(default=False, alias="alreadyAssembled")
    chunk_index: int = Field(alias="chunkIndex")
    received_count: int = Field(alias="receivedCount")
    message: str


class UploadCleanupResponse(BaseModel):
    success: bool = True
    message: str
