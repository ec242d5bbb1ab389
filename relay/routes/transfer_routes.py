"""Upload and download API routes."""

from typing import AsyncIterator, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from starlette.requests import ClientDisconnect

from common.constants import (
    HEADER_CLAIM_TOKEN,
    HEADER_FILENAME,
    HEADER_FILENAME_ENCRYPTED,
    HEADER_IS_FOLDER,
    HEADER_SIZE,
)
from common.logging_config import get_logger
from relay.claim_service import ClaimService
from relay.config import RelaySettings
from relay.exceptions import InvalidIdentifierError, ItemNotFoundError, TransferCancelledError
from relay.id_generator import IdGenerator
from relay.schemas.common import ErrorResponse
from relay.schemas.transfers import FileInfoResponse, UploadResponse
from relay.storage_engine import StorageEngine
from relay.utils import format_size, parse_bool_header, parse_size_header

logger = get_logger(__name__)

router = APIRouter(tags=["Transfers"])


def get_storage(request: Request) -> StorageEngine:
    """Dependency returning the app's storage engine."""
    return request.app.state.storage


def get_claim_service(request: Request) -> ClaimService:
    """Dependency returning the app's claim service."""
    return request.app.state.claim_service


def get_settings(request: Request) -> RelaySettings:
    """Dependency returning the app's settings."""
    return request.app.state.settings


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={413: {"model": ErrorResponse}, 499: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def upload_file(
    request: Request,
    filename: Optional[str] = Header(None, alias=HEADER_FILENAME),
    size: Optional[str] = Header(None, alias=HEADER_SIZE),
    is_folder: Optional[str] = Header(None, alias=HEADER_IS_FOLDER),
    filename_encrypted: Optional[str] = Header(None, alias=HEADER_FILENAME_ENCRYPTED),
    storage: StorageEngine = Depends(get_storage),
    settings: RelaySettings = Depends(get_settings),
):
    """
    Upload an encrypted payload streamed in the request body.

    Headers:
        - X-Relay-Filename: original filename
        - X-Relay-Size: original size before encryption (optional)
        - X-Relay-IsFolder: "true" for an archived folder
        - X-Relay-Filename-Encrypted: "true" if the filename is encrypted

    Returns:
        - id: identifier to share with the receiver
        - command: receive command for the client
        - url: download URL

    Raises:
        - 413: Payload larger than the configured maximum
        - 499: Upload cancelled by the client
        - 500: Storage failure
    """
    declared_size = parse_size_header(size)
    folder = parse_bool_header(is_folder)
    encrypted_name = parse_bool_header(filename_encrypted)

    logger.info(
        f"Upload started: {filename or 'file'} ({declared_size} bytes, "
        f"is_folder={folder}, encrypted_name={encrypted_name})"
    )

    try:
        item_id = await storage.store(
            request.stream(),
            display_name=filename or "",
            declared_size=declared_size,
            is_folder=folder,
            is_filename_encrypted=encrypted_name,
        )
    except ClientDisconnect as e:
        raise TransferCancelledError("Upload cancelled") from e

    public_url = settings.public_url.rstrip("/")
    logger.info(f"Upload completed: {item_id}")

    return UploadResponse(
        id=item_id,
        command=f"relay receive {item_id} <KEY>",
        url=f"{public_url}/download/{item_id}",
    )


@router.get(
    "/download/{file_id}",
    response_model=None,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def download_file(
    file_id: str,
    info: bool = Query(False, description="Claim the file and return its info"),
    claim_token: Optional[str] = Header(None, alias=HEADER_CLAIM_TOKEN),
    storage: StorageEngine = Depends(get_storage),
    claim_service: ClaimService = Depends(get_claim_service),
):
    """
    Claim a file (?info=true) or stream a claimed file.

    The info request claims the file and returns a one-time claim token.
    The download request must present that token in X-Relay-Claim-Token;
    once every byte has been sent the file is deleted.

    Raises:
        - 400: Malformed id or missing claim token
        - 401: Invalid claim token
        - 404: File not found or already downloaded
        - 409: File already claimed by another client
    """
    if not IdGenerator.is_valid(file_id):
        raise InvalidIdentifierError(f"Invalid file ID: {file_id}")

    if not storage.exists(file_id):
        raise ItemNotFoundError("File not found or already downloaded")

    if info:
        item, token = await claim_service.claim(file_id)
        return FileInfoResponse(
            filename=item.display_name,
            size=item.declared_size,
            size_human=format_size(item.declared_size),
            encrypted_size=item.stored_size,
            is_folder=item.is_folder,
            is_filename_encrypted=item.is_filename_encrypted,
            claim_token=token,
        )

    if not claim_token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing claim token. Request with ?info=true first to claim the file.",
        )

    item = await claim_service.require_valid_claim(file_id, claim_token)

    pieces = storage.open_read_stream(file_id)
    if pieces is None:
        raise ItemNotFoundError("File data not found")

    logger.info(f"Download started: {file_id} ({item.display_name})")

    quoted_name = quote(item.display_name)
    return StreamingResponse(
        _stream_then_complete(file_id, pieces, claim_service),
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quoted_name}.age",
            "Content-Length": str(item.stored_size),
            HEADER_FILENAME: quoted_name,
            HEADER_SIZE: str(item.declared_size),
            HEADER_IS_FOLDER: str(item.is_folder).lower(),
            HEADER_FILENAME_ENCRYPTED: str(item.is_filename_encrypted).lower(),
        },
    )


async def _stream_then_complete(
    file_id: str,
    pieces: AsyncIterator[bytes],
    claim_service: ClaimService,
) -> AsyncIterator[bytes]:
    """Relay payload pieces; delete the file only after the last piece was sent."""
    try:
        async for piece in pieces:
            yield piece
    finally:
        await pieces.aclose()

    await claim_service.complete_download(file_id)
