"""Pydantic schemas for API requests and responses."""

from relay.schemas.common import ErrorResponse, HealthResponse
from relay.schemas.transfers import FileInfoResponse, UploadResponse

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "FileInfoResponse",
    "UploadResponse",
]
