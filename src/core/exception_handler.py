"""
Global exception handler for the Media Ingest API.
Provides centralized error handling for all API exceptions.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from src.core import config
from src.core.logger import get_logger
from .exceptions import (
    FileTooLargeException,
    IllegalStageTransitionException,
    MediaIngestException,
    OperationNotFoundException,
    StorageException,
    TranscodeException,
    ValidationException
)

logger = get_logger(__name__)


def error_body(error: str, message: str, detail: str = None) -> dict:
    """Stable error shape; detail only in diagnostic mode."""
    content = {"error": error, "message": message}
    if config.settings.debug and detail:
        content["detail"] = detail
    return content


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""

    @app.exception_handler(OperationNotFoundException)
    async def handle_not_found(request: Request, exc: OperationNotFoundException):
        return JSONResponse(
            status_code=404,
            content=error_body("Not Found", exc.message, exc.detail)
        )

    @app.exception_handler(FileTooLargeException)
    async def handle_too_large(request: Request, exc: FileTooLargeException):
        return JSONResponse(
            status_code=413,
            content=error_body("File Too Large", exc.message, exc.detail)
        )

    @app.exception_handler(ValidationException)
    async def handle_validation_error(request: Request, exc: ValidationException):
        return JSONResponse(
            status_code=400,
            content=error_body("Validation Error", exc.message, exc.detail)
        )

    @app.exception_handler(StorageException)
    async def handle_storage_error(request: Request, exc: StorageException):
        return JSONResponse(
            status_code=502,
            content=error_body("Storage Upload Failed", exc.message, exc.detail)
        )

    @app.exception_handler(TranscodeException)
    async def handle_transcode_error(request: Request, exc: TranscodeException):
        return JSONResponse(
            status_code=502,
            content=error_body("Transcoding Failed", exc.message, exc.detail)
        )

    @app.exception_handler(IllegalStageTransitionException)
    async def handle_stage_error(request: Request, exc: IllegalStageTransitionException):
        return JSONResponse(
            status_code=409,
            content=error_body("Conflict", exc.message, exc.detail)
        )

    @app.exception_handler(MediaIngestException)
    async def handle_application_error(request: Request, exc: MediaIngestException):
        logger.error(f"Unhandled application error on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=500,
            content=error_body("Internal Server Error", "An unexpected error occurred", exc.detail or exc.message)
        )

    @app.exception_handler(Exception)
    async def handle_generic_error(request: Request, exc: Exception):
        logger.error(f"Unexpected error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content=error_body("Internal Server Error", "An unexpected error occurred", str(exc))
        )
