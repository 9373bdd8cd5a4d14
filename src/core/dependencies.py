"""
Dependency injection container for FastAPI.
Provides singleton-like behavior for services and repositories.
"""
from functools import lru_cache
from src.repositories.object_storage import ObjectStorage
from src.repositories.operation_repository import OperationRepository
from src.repositories.s3_repository import S3Repository
from src.services.broadcaster import ProgressBroadcaster
from src.services.chunked_uploader import ChunkedUploader
from src.services.intake_service import IntakeService
from src.services.maintenance_service import MaintenanceService
from src.services.progress import ProgressPublisher
from src.services.scratch_service import ScratchFileManager
from src.services.transcode_service import TranscodeOrchestrator
from src.services.transcoder import FfmpegTranscoder, Transcoder
from src.services.upload_service import MediaUploadService


@lru_cache()
def get_storage() -> ObjectStorage:
    """Get S3Repository singleton instance (holds the process-wide credential)."""
    return S3Repository()


@lru_cache()
def get_operation_repository() -> OperationRepository:
    """Get OperationRepository singleton instance."""
    return OperationRepository()


@lru_cache()
def get_scratch_manager() -> ScratchFileManager:
    """Get ScratchFileManager singleton instance."""
    return ScratchFileManager()


@lru_cache()
def get_broadcaster() -> ProgressBroadcaster:
    """Get ProgressBroadcaster singleton instance (per-owner connection registry)."""
    return ProgressBroadcaster()


@lru_cache()
def get_publisher() -> ProgressPublisher:
    """Get ProgressPublisher singleton wired to the broadcaster."""
    return ProgressPublisher([get_broadcaster()])


@lru_cache()
def get_transcoder() -> Transcoder:
    """Get FfmpegTranscoder singleton instance."""
    return FfmpegTranscoder()


@lru_cache()
def get_upload_service() -> MediaUploadService:
    """Get MediaUploadService singleton instance with injected dependencies."""
    storage = get_storage()
    return MediaUploadService(
        intake_service=IntakeService(
            scratch_manager=get_scratch_manager(),
            operation_repository=get_operation_repository(),
            publisher=get_publisher()
        ),
        uploader=ChunkedUploader(storage),
        orchestrator=TranscodeOrchestrator(
            storage,
            get_transcoder(),
            scratch_manager=get_scratch_manager()
        ),
        operation_repository=get_operation_repository(),
        publisher=get_publisher()
    )


@lru_cache()
def get_maintenance_service() -> MaintenanceService:
    """Get MaintenanceService singleton instance."""
    return MaintenanceService(
        get_storage(),
        scratch_manager=get_scratch_manager(),
        operation_repository=get_operation_repository()
    )


def clear_caches() -> None:
    """Drop every cached singleton (used after settings change)."""
    for getter in (get_storage, get_operation_repository, get_scratch_manager, get_broadcaster,
                   get_publisher, get_transcoder, get_upload_service, get_maintenance_service):
        getter.cache_clear()
