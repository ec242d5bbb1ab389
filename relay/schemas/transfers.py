"""Pydantic schemas for upload and download endpoints."""

from pydantic import BaseModel


class UploadResponse(BaseModel):
    """Response model for a completed upload."""
    id: str
    command: str
    url: str


class FileInfoResponse(BaseModel):
    """Response model for a claimed file's info."""
    filename: str
    size: int
    size_human: str
    encrypted_size: int
    is_folder: bool
    is_filename_encrypted: bool
    claim_token: str
