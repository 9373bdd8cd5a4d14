"""
Maintenance Service for administrative recovery.
Manual paths for unfinished remote sessions, stale scratch files and expired operation records.
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from src.core.logger import get_logger
from src.models.dto.upload_dto import CleanupResponse, UnfinishedSessionListResponse, UnfinishedSessionResponse
from src.repositories.object_storage import ObjectStorage
from src.repositories.operation_repository import OperationRepository
from src.services.scratch_service import ScratchFileManager

logger = get_logger(__name__)


class MaintenanceService:
    """Service for operator-triggered cleanup. Nothing here runs on a schedule."""

    def __init__(
        self,
        storage: ObjectStorage,
        scratch_manager: ScratchFileManager = None,
        operation_repository: OperationRepository = None
    ):
        self.storage = storage
        self.scratch_manager = scratch_manager or ScratchFileManager()
        self.operation_repository = operation_repository or OperationRepository()

    def list_unfinished(self) -> UnfinishedSessionListResponse:
        """
        List remote multipart sessions that were opened but never finalized.

        Raises:
            StorageException: If the listing fails
        """
        sessions = [UnfinishedSessionResponse(**session) for session in self.storage.list_unfinished()]
        return UnfinishedSessionListResponse(sessions=sessions, count=len(sessions))

    def cancel_unfinished(self, session_id: str, remote_name: str) -> bool:
        """
        Cancel one unfinished session.

        Raises:
            StorageException: If the session cannot be cancelled
        """
        logger.info(f"Cancelling unfinished session {session_id} ({remote_name})")
        return self.storage.cancel_multipart(remote_name, session_id)

    def cancel_stale_sessions(self, older_than_hours: float, dry_run: bool = False) -> List[str]:
        """
        Cancel unfinished sessions initiated more than older_than_hours ago.

        Sessions belonging to an operation that is still in flight are skipped.

        Returns:
            Ids of the sessions cancelled (or that would be cancelled)
        """
        cutoff = datetime.now(timezone.utc) - timedelta(hours=older_than_hours)
        in_flight = {
            operation.remote_name
            for operation in self.operation_repository.list(active_only=True)
            if operation.remote_name
        }

        cancelled = []
        for session in self.storage.list_unfinished():
            initiated_at = session.get('initiated_at')
            if initiated_at is None or session['remote_name'] in in_flight:
                continue
            if initiated_at.tzinfo is None:
                initiated_at = initiated_at.replace(tzinfo=timezone.utc)
            if initiated_at > cutoff:
                continue

            if not dry_run:
                self.cancel_unfinished(session['session_id'], session['remote_name'])
            cancelled.append(session['session_id'])

        logger.info(
            f"{'Would cancel' if dry_run else 'Cancelled'} {len(cancelled)} sessions "
            f"older than {older_than_hours}h"
        )
        return cancelled

    def cleanup(
        self,
        older_than_hours: Optional[float] = None,
        cancel_sessions_older_than_hours: Optional[float] = None,
        dry_run: bool = False
    ) -> CleanupResponse:
        """
        Sweep stale scratch files, evict expired operation records and
        optionally cancel old unfinished sessions.

        Args:
            older_than_hours: Scratch age threshold (defaults to the configured retention)
            cancel_sessions_older_than_hours: Also cancel unfinished sessions past this age
            dry_run: Report without removing anything
        """
        removed = self.scratch_manager.sweep(older_than_hours=older_than_hours, dry_run=dry_run)
        evicted = [] if dry_run else self.operation_repository.evict_expired()

        cancelled = []
        if cancel_sessions_older_than_hours is not None:
            cancelled = self.cancel_stale_sessions(cancel_sessions_older_than_hours, dry_run=dry_run)

        return CleanupResponse(
            removed_scratch_files=removed,
            evicted_operations=evicted,
            cancelled_sessions=cancelled,
            dry_run=dry_run
        )
