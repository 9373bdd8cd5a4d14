"""
Upload Operation domain model.
Tracks one user-initiated upload from intake to its terminal stage.
"""
import threading
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional
from src.core.exceptions import IllegalStageTransitionException


class OperationKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    GENERIC = "generic"


class Stage(str, Enum):
    VALIDATING = "validating"
    UPLOADING = "uploading"
    TRANSCODING = "transcoding"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (Stage.COMPLETED, Stage.FAILED)


LEGAL_TRANSITIONS = {
    Stage.VALIDATING: {Stage.UPLOADING, Stage.FAILED},
    Stage.UPLOADING: {Stage.TRANSCODING, Stage.COMPLETED, Stage.FAILED},
    Stage.TRANSCODING: {Stage.COMPLETED, Stage.FAILED},
    Stage.COMPLETED: set(),
    Stage.FAILED: set(),
}


class UploadOperation:
    """Domain model for one upload operation."""

    def __init__(
        self,
        owner_id: str,
        kind: OperationKind,
        original_filename: str,
        mime_type: str,
        declared_size: int = 0,
        category: Optional[str] = None,
        operation_id: Optional[str] = None,
        created_at: Optional[datetime] = None
    ):
        self.operation_id = operation_id or str(uuid.uuid4())
        self.owner_id = owner_id
        self.kind = kind
        self.category = category
        self.original_filename = original_filename
        self.mime_type = mime_type
        self.declared_size = declared_size
        self.created_at = created_at or datetime.utcnow()
        self.updated_at = self.created_at
        self.stage = Stage.VALIDATING
        self.progress = 0.0
        self.message = "Validating upload"
        self.scratch_file = None
        self.file_size = 0
        self.remote_name: Optional[str] = None
        self.result: Optional[dict] = None
        self.error_message: Optional[str] = None
        # set while a worker is running the pipeline for this operation
        self.in_flight = False
        self._lock = threading.Lock()

    def advance(self, stage: Stage, message: Optional[str] = None) -> None:
        """
        Move the operation to a new stage.

        Args:
            stage: Target stage
            message: Optional status message for the new stage

        Raises:
            IllegalStageTransitionException: If the transition is not allowed
        """
        with self._lock:
            if stage not in LEGAL_TRANSITIONS[self.stage]:
                raise IllegalStageTransitionException(
                    f"Operation {self.operation_id} cannot move from "
                    f"{self.stage.value} to {stage.value}"
                )
            self.stage = stage
            self.progress = 0.0
            if message:
                self.message = message
            self.updated_at = datetime.utcnow()

    def record_progress(self, progress: float, message: str) -> None:
        with self._lock:
            self.progress = max(self.progress, min(100.0, progress))
            self.message = message
            self.updated_at = datetime.utcnow()

    def complete(self, result: dict) -> None:
        self.advance(Stage.COMPLETED, "Upload completed successfully")
        with self._lock:
            self.progress = 100.0
            self.result = result

    def fail(self, message: str) -> None:
        self.advance(Stage.FAILED, message)
        with self._lock:
            self.error_message = message

    def snapshot(self) -> dict:
        """Consistent copy of the externally visible state."""
        with self._lock:
            return {
                'operation_id': self.operation_id,
                'owner_id': self.owner_id,
                'kind': self.kind.value,
                'category': self.category,
                'filename': self.original_filename,
                'mime_type': self.mime_type,
                'declared_size': self.declared_size,
                'file_size': self.file_size,
                'stage': self.stage.value,
                'progress': self.progress,
                'message': self.message,
                'created_at': self.created_at,
                'updated_at': self.updated_at,
                'result': self.result,
                'error_message': self.error_message
            }

    def __repr__(self):
        return (f"UploadOperation(operation_id={self.operation_id}, kind={self.kind.value}, "
                f"stage={self.stage.value})")
