"""
Media Upload Service for business logic.
Drives one upload operation from intake through storage (and transcoding for video).
"""
import os
from typing import BinaryIO, Tuple
from src.core.exceptions import LifecycleException, OperationNotFoundException
from src.core.logger import get_logger
from src.models.dto.upload_dto import (
    OperationListResponse,
    OperationStatusResponse,
    UploadAcceptedResponse,
    UploadResultResponse
)
from src.models.upload_operation import OperationKind, Stage, UploadOperation
from src.repositories.operation_repository import OperationRepository
from src.services.chunked_uploader import ChunkedUploader
from src.services.intake_service import IntakeService, UploadMetadata
from src.services.progress import OperationEmitter, ProgressPublisher
from src.services.scratch_service import safe_filename
from src.services.transcode_service import TranscodeOrchestrator, video_prefix

logger = get_logger(__name__)


def remote_name_for(operation: UploadOperation) -> str:
    """
    Storage key for the original upload.

    images/{folder}/{id}{ext}, videos/{category}/{id}/original{ext}, files/{folder}/{id}-{name}
    """
    ext = os.path.splitext(operation.original_filename)[1].lower()
    if operation.kind == OperationKind.IMAGE:
        return f"images/{operation.category}/{operation.operation_id}{ext}"
    if operation.kind == OperationKind.VIDEO:
        return f"{video_prefix(operation.category, operation.operation_id)}/original{ext}"
    return f"files/{operation.category}/{operation.operation_id}-{safe_filename(operation.original_filename)}"


def to_status_response(operation: UploadOperation) -> OperationStatusResponse:
    snapshot = operation.snapshot()
    return OperationStatusResponse(
        operation_id=snapshot['operation_id'],
        kind=snapshot['kind'],
        category=snapshot['category'],
        filename=snapshot['filename'],
        stage=snapshot['stage'],
        progress=snapshot['progress'],
        message=snapshot['message'],
        created_at=snapshot['created_at'],
        updated_at=snapshot['updated_at'],
        result=snapshot['result'],
        error_message=snapshot['error_message']
    )


class MediaUploadService:
    """Service for media upload operations."""

    def __init__(
        self,
        intake_service: IntakeService,
        uploader: ChunkedUploader,
        orchestrator: TranscodeOrchestrator,
        operation_repository: OperationRepository,
        publisher: ProgressPublisher
    ):
        self.intake_service = intake_service
        self.uploader = uploader
        self.orchestrator = orchestrator
        self.operation_repository = operation_repository
        self.publisher = publisher

    def upload(self, stream: BinaryIO, metadata: UploadMetadata) -> UploadResultResponse:
        """
        Handle the synchronous upload workflow.

        Args:
            stream: Body of the uploaded file
            metadata: Declared upload facts

        Returns:
            UploadResultResponse with the stored object (and manifest for video)

        Raises:
            ValidationException: If intake rejects the upload
            StorageException: If the upload to storage fails
            TranscodeException: If transcoding or publishing fails
        """
        operation = self.intake_service.accept(stream, metadata)
        result = self.process(operation)
        return UploadResultResponse(**result)

    def upload_async(self, stream: BinaryIO, metadata: UploadMetadata) -> Tuple[UploadAcceptedResponse, UploadOperation]:
        """
        Accept an upload and leave processing to the caller's background runner.

        Returns:
            Tuple of (UploadAcceptedResponse, accepted operation)
        """
        operation = self.intake_service.accept(stream, metadata)
        response = UploadAcceptedResponse(
            operation_id=operation.operation_id,
            stage=operation.stage.value,
            message="Upload accepted. Progress is reported on the event channel."
        )
        return response, operation

    def process(self, operation: UploadOperation) -> dict:
        """
        Run an accepted operation to its terminal stage.

        Exactly one complete or error event is emitted. The scratch file is
        released on every exit path.

        Returns:
            Result dict of the completed operation

        Raises:
            MediaIngestException: The failure that ended the operation
        """
        emitter = OperationEmitter(operation, self.publisher)
        operation.remote_name = remote_name_for(operation)
        scratch = operation.scratch_file
        operation.in_flight = True

        try:
            upload_result = self.uploader.upload(
                scratch.path,
                operation.remote_name,
                on_progress=emitter.progress,
                content_type=operation.mime_type
            )
            result = {
                'operation_id': operation.operation_id,
                'kind': operation.kind.value,
                'stage': Stage.COMPLETED.value,
                'file_url': upload_result['file_url'],
                'remote_file_id': upload_result['remote_file_id'],
                'remote_file_name': upload_result['remote_file_name'],
                'file_size': upload_result['file_size']
            }

            if operation.kind == OperationKind.VIDEO:
                operation.advance(Stage.TRANSCODING, "Transcoding video")
                logger.info(f"Operation {operation.operation_id} moved to transcoding")
                transcode_result = self.orchestrator.transcode(
                    scratch.path,
                    operation.operation_id,
                    operation.category,
                    on_progress=emitter.progress,
                    input_key=operation.remote_name
                )
                result['manifest_url'] = transcode_result['manifest_url']
                result['renditions'] = transcode_result['renditions']
                result['duration_seconds'] = transcode_result['duration_seconds']

            emitter.complete(result)
            logger.info(f"Operation {operation.operation_id} completed: {result['file_url']}")
            return result
        except Exception as e:
            logger.error(
                f"Operation {operation.operation_id} failed in {operation.stage.value}: "
                f"{getattr(e, 'message', str(e))}"
            )
            if not operation.stage.is_terminal:
                emitter.error(e)
            raise
        finally:
            operation.in_flight = False
            try:
                scratch.release()
            except LifecycleException as e:
                logger.warning(f"{e.message}: {e.detail}")

    def run_in_background(self, operation: UploadOperation) -> None:
        """Process an operation whose outcome is delivered only through events and status queries."""
        try:
            self.process(operation)
        except Exception:
            # already reported through the error event and the operation record
            pass

    def get_status(self, operation_id: str, owner_id: str) -> OperationStatusResponse:
        """
        Get the status of an operation owned by owner_id.

        Raises:
            OperationNotFoundException: If the operation is unknown, expired or owned by someone else
        """
        operation = self.operation_repository.get(operation_id)
        if not operation or operation.owner_id != owner_id:
            raise OperationNotFoundException(f"Upload operation '{operation_id}' not found")
        return to_status_response(operation)

    def list_operations(self, active_only: bool = True) -> OperationListResponse:
        operations = [to_status_response(op) for op in self.operation_repository.list(active_only=active_only)]
        return OperationListResponse(operations=operations, count=len(operations))
