"""
Custom exceptions for the Media Ingest API.
Provides specific error types for each stage of the upload pipeline.
"""
from typing import Optional


class MediaIngestException(Exception):
    """Base exception for all application errors."""
    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(self.message)


class ValidationException(MediaIngestException):
    """Raised when an upload request is rejected at intake."""
    pass


class FileTooLargeException(ValidationException):
    """Raised when an upload exceeds the endpoint size ceiling."""
    pass


class StorageException(MediaIngestException):
    """Raised when a remote storage operation fails."""
    pass


class StorageAuthorizationException(StorageException):
    """Raised when the storage credential cannot be obtained."""
    pass


class SessionFinalizedException(StorageException):
    """Raised when a multipart session is finalized a second time."""
    pass


class TranscodeException(MediaIngestException):
    """Raised when transcoding fails or produces an incomplete artifact set."""
    pass


class LifecycleException(MediaIngestException):
    """Raised when a scratch file cannot be removed."""
    pass


class OperationNotFoundException(MediaIngestException):
    """Raised when an upload operation is not found."""
    pass


class IllegalStageTransitionException(MediaIngestException):
    """Raised when an operation is moved to a stage it cannot reach."""
    pass
