"""Entry point for the relay service."""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from relay.claim_service import ClaimService
from relay.cleanup_task import StaleTransferCleaner
from relay.config import RELAY_HOST, RELAY_PORT, RelaySettings
from relay.exceptions import (
    AlreadyClaimedError,
    FileTooLargeError,
    InvalidClaimError,
    InvalidIdentifierError,
    ItemNotFoundError,
    RelayException,
    StorageFailureError,
    TransferCancelledError,
)
from relay.id_generator import IdGenerator, load_word_list
from relay.routes import transfer_router
from relay.schemas.common import HealthResponse
from relay.storage_engine import StorageEngine

logger = setup_logging('relay')

VERSION = "1.0.0"

HTTP_499_CLIENT_CLOSED_REQUEST = 499


def create_app(settings: Optional[RelaySettings] = None, run_cleanup: bool = True) -> FastAPI:
    """
    Build the relay application and its services.

    Args:
        settings: Relay settings (default: from environment)
        run_cleanup: Start the periodic stale transfer cleaner with the app

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = RelaySettings()

    id_generator = IdGenerator(
        words=load_word_list(settings.wordlist_path),
        word_count=settings.id_word_count,
    )
    storage = StorageEngine(
        settings.storage_path,
        id_generator,
        max_file_size=settings.max_file_size,
    )
    claim_service = ClaimService(storage)
    cleaner = StaleTransferCleaner(
        claim_service,
        interval_seconds=settings.cleanup_interval_seconds,
        unclaimed_timeout=settings.unclaimed_timeout,
        claimed_timeout=settings.claimed_timeout,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Relay service starting up (storage: {storage.root}, public url: {settings.public_url})")
        await storage.purge_incomplete()
        if run_cleanup:
            await cleaner.start()
        try:
            yield
        finally:
            logger.info("Relay service shutting down...")
            await cleaner.stop()

    app = FastAPI(
        title="Relay",
        description="One-time encrypted file transfer relay",
        version=VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.id_generator = id_generator
    app.state.storage = storage
    app.state.claim_service = claim_service
    app.state.cleaner = cleaner

    app.middleware("http")(log_requests)
    _register_exception_handlers(app)
    app.include_router(transfer_router)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Health check endpoint."""
        return HealthResponse(status="healthy", version=VERSION)

    return app


async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(f"Request started: {request.method} {request.url.path} [request_id={request_id}]")

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


def _error_response(status_code: int, exc: Exception, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": code})


def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(InvalidIdentifierError)
    async def invalid_identifier_handler(request: Request, exc: InvalidIdentifierError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"Invalid identifier: {exc} [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_400_BAD_REQUEST, exc, "INVALID_ID")

    @app.exception_handler(ItemNotFoundError)
    async def item_not_found_handler(request: Request, exc: ItemNotFoundError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"File not found: {exc} [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_404_NOT_FOUND, exc, "FILE_NOT_FOUND")

    @app.exception_handler(AlreadyClaimedError)
    async def already_claimed_handler(request: Request, exc: AlreadyClaimedError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"Already claimed: {exc} [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_409_CONFLICT, exc, "ALREADY_CLAIMED")

    @app.exception_handler(InvalidClaimError)
    async def invalid_claim_handler(request: Request, exc: InvalidClaimError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"Invalid claim: {exc} [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_401_UNAUTHORIZED, exc, "INVALID_CLAIM")

    @app.exception_handler(FileTooLargeError)
    async def file_too_large_handler(request: Request, exc: FileTooLargeError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"File too large: {exc} [request_id={request_id}] path={request.url.path}")
        return _error_response(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, exc, "FILE_TOO_LARGE")

    @app.exception_handler(TransferCancelledError)
    async def transfer_cancelled_handler(request: Request, exc: TransferCancelledError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"Transfer cancelled: {exc} [request_id={request_id}] path={request.url.path}")
        return _error_response(HTTP_499_CLIENT_CLOSED_REQUEST, exc, "TRANSFER_CANCELLED")

    @app.exception_handler(StorageFailureError)
    async def storage_failure_handler(request: Request, exc: StorageFailureError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(
            f"Storage failure: {exc} [request_id={request_id}] path={request.url.path}",
            exc_info=exc
        )
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc, "STORAGE_FAILURE")

    @app.exception_handler(RelayException)
    async def relay_exception_handler(request: Request, exc: RelayException):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(
            f"Relay exception: {exc} [request_id={request_id}] path={request.url.path}",
            exc_info=exc
        )
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc, "INTERNAL_ERROR")


if __name__ == "__main__":
    uvicorn.run(create_app(), host=RELAY_HOST, port=RELAY_PORT)
