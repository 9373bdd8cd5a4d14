"""
Upload Intake Service.
Validates inbound uploads against per-endpoint policy and streams them to scratch files.
"""
from typing import BinaryIO, List, Optional
from src.core import config
from src.core.config import MB
from src.core.exceptions import FileTooLargeException, LifecycleException, ValidationException
from src.core.logger import get_logger
from src.models.upload_operation import OperationKind, Stage, UploadOperation
from src.repositories.operation_repository import OperationRepository
from src.services.progress import OperationEmitter, ProgressPublisher
from src.services.scratch_service import ScratchFileManager

logger = get_logger(__name__)

STREAM_BLOCK_SIZE = 1 * MB


class UploadMetadata:
    """Client-declared facts about an upload, known before the body is read."""

    def __init__(
        self,
        owner_id: str,
        kind: OperationKind,
        filename: str,
        mime_type: Optional[str],
        declared_size: Optional[int] = None,
        category: Optional[str] = None
    ):
        self.owner_id = owner_id
        self.kind = kind
        self.filename = filename
        self.mime_type = (mime_type or "application/octet-stream").lower()
        self.declared_size = declared_size
        self.category = category


class UploadPolicy:
    """Size ceiling, MIME allow-list and category allow-list of one endpoint."""

    def __init__(
        self,
        max_size_mb: int,
        mime_types: Optional[List[str]],
        categories: List[str],
        category_label: str,
        default_category: Optional[str] = None
    ):
        self.max_size_mb = max_size_mb
        self.mime_types = mime_types
        self.categories = categories
        self.category_label = category_label
        self.default_category = default_category

    @property
    def max_size_bytes(self) -> int:
        return self.max_size_mb * MB


def policy_for(kind: OperationKind) -> UploadPolicy:
    """Current policy for an upload kind, read from settings at call time."""
    settings = config.settings
    if kind == OperationKind.IMAGE:
        return UploadPolicy(settings.image_max_size_mb, settings.image_mime_type_list,
                            settings.image_folder_list, "folder")
    if kind == OperationKind.VIDEO:
        return UploadPolicy(settings.video_max_size_mb, settings.video_mime_type_list,
                            settings.video_category_list, "category")
    # generic files accept any MIME type
    return UploadPolicy(settings.file_max_size_mb, None, settings.file_folder_list,
                        "folder", default_category="general")


class IntakeService:
    """Service that turns an inbound request into an accepted UploadOperation."""

    def __init__(
        self,
        scratch_manager: ScratchFileManager = None,
        operation_repository: OperationRepository = None,
        publisher: ProgressPublisher = None
    ):
        self.scratch_manager = scratch_manager or ScratchFileManager()
        self.operation_repository = operation_repository or OperationRepository()
        self.publisher = publisher or ProgressPublisher()

    def validate(self, metadata: UploadMetadata) -> UploadPolicy:
        """
        Check everything that can be checked before reading the body.

        Raises:
            ValidationException: If the category or MIME type is not allowed
            FileTooLargeException: If the declared size exceeds the ceiling
        """
        policy = policy_for(metadata.kind)

        if not metadata.category and policy.default_category:
            metadata.category = policy.default_category
        if not metadata.category:
            raise ValidationException(
                f"A {policy.category_label} is required. Allowed: {', '.join(policy.categories)}"
            )
        if metadata.category not in policy.categories:
            raise ValidationException(
                f"Invalid {policy.category_label} '{metadata.category}'. "
                f"Allowed: {', '.join(policy.categories)}"
            )

        if not metadata.filename:
            raise ValidationException("No file provided")

        if policy.mime_types is not None and metadata.mime_type not in policy.mime_types:
            raise ValidationException(
                f"Unsupported file type '{metadata.mime_type}' for {metadata.kind.value} uploads"
            )

        if metadata.declared_size is not None and metadata.declared_size > policy.max_size_bytes:
            raise FileTooLargeException(
                f"File exceeds the {policy.max_size_mb}MB limit for {metadata.kind.value} uploads"
            )
        return policy

    def accept(self, stream: BinaryIO, metadata: UploadMetadata) -> UploadOperation:
        """
        Validate an upload and stream its body into a scratch file.

        Args:
            stream: Readable body of the single file field
            metadata: Declared upload facts

        Returns:
            UploadOperation in the uploading stage, registered and announced

        Raises:
            ValidationException: If the upload is rejected; no scratch bytes remain
        """
        operation = UploadOperation(
            owner_id=metadata.owner_id,
            kind=metadata.kind,
            original_filename=metadata.filename,
            mime_type=metadata.mime_type,
            declared_size=metadata.declared_size or 0,
            category=metadata.category
        )

        try:
            policy = self.validate(metadata)
            operation.category = metadata.category
            operation.scratch_file = self.scratch_manager.create(metadata.filename)
            operation.file_size = self._stream_to_scratch(stream, operation.scratch_file.path, policy, metadata)
        except Exception as e:
            if operation.scratch_file is not None:
                try:
                    operation.scratch_file.release()
                except LifecycleException as cleanup_error:
                    logger.warning(f"{cleanup_error.message}: {cleanup_error.detail}")
            operation.fail(getattr(e, 'message', str(e)))
            logger.info(f"Rejected {metadata.kind.value} upload '{metadata.filename}': {operation.error_message}")
            raise

        operation.advance(Stage.UPLOADING, "Upload accepted")
        self.operation_repository.add(operation)
        logger.info(
            f"Accepted {operation.kind.value} upload {operation.operation_id} "
            f"({operation.file_size} bytes) for owner {operation.owner_id}"
        )
        OperationEmitter(operation, self.publisher).progress(0, "Upload accepted")
        return operation

    def _stream_to_scratch(self, stream: BinaryIO, path: str, policy: UploadPolicy, metadata: UploadMetadata) -> int:
        written = 0
        with open(path, 'wb') as scratch:
            while True:
                block = stream.read(STREAM_BLOCK_SIZE)
                if not block:
                    break
                written += len(block)
                if written > policy.max_size_bytes:
                    raise FileTooLargeException(
                        f"File exceeds the {policy.max_size_mb}MB limit for {metadata.kind.value} uploads"
                    )
                scratch.write(block)

        if written == 0:
            raise ValidationException("Uploaded file is empty")
        return written
