"""
Admin API routes.
Manual recovery for unfinished uploads, stale scratch files and operation records.
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional
from src.core.auth_dependencies import verify_admin
from src.core.dependencies import get_maintenance_service, get_upload_service
from src.models.dto.upload_dto import CleanupResponse, OperationListResponse, UnfinishedSessionListResponse
from src.services.maintenance_service import MaintenanceService
from src.services.upload_service import MediaUploadService

router = APIRouter(prefix="/v1/api/admin", tags=["Admin"])


@router.get("/operations", response_model=OperationListResponse)
def list_operations(
    active_only: bool = Query(default=True, description="Only operations that have not finished"),
    upload_service: MediaUploadService = Depends(get_upload_service),
    admin_id: str = Depends(verify_admin)
):
    """
    List upload operations currently known to this instance.
    """
    return upload_service.list_operations(active_only=active_only)


@router.get("/uploads/unfinished", response_model=UnfinishedSessionListResponse)
def list_unfinished_uploads(
    maintenance_service: MaintenanceService = Depends(get_maintenance_service),
    admin_id: str = Depends(verify_admin)
):
    """
    List remote multipart sessions that were opened but never finalized.
    """
    return maintenance_service.list_unfinished()


@router.delete("/uploads/unfinished/{session_id}")
def cancel_unfinished_upload(
    session_id: str,
    name: str = Query(..., description="Object key the session was opened for"),
    maintenance_service: MaintenanceService = Depends(get_maintenance_service),
    admin_id: str = Depends(verify_admin)
):
    """
    Cancel one unfinished multipart session and discard its parts.
    """
    maintenance_service.cancel_unfinished(session_id, name)
    return {"session_id": session_id, "remote_name": name, "cancelled": True}


@router.post("/uploads/cleanup", response_model=CleanupResponse)
def cleanup(
    older_than_hours: Optional[float] = Query(default=None, ge=0, description="Scratch age threshold"),
    cancel_sessions_older_than_hours: Optional[float] = Query(
        default=None, ge=0, description="Also cancel unfinished sessions older than this"
    ),
    dry_run: bool = Query(default=False),
    maintenance_service: MaintenanceService = Depends(get_maintenance_service),
    admin_id: str = Depends(verify_admin)
):
    """
    Sweep stale scratch files and evict expired operation records.

    - **older_than_hours**: defaults to SCRATCH_RETENTION_HOURS
    - **cancel_sessions_older_than_hours**: optional unfinished session cancellation
    - **dry_run**: report without removing anything
    """
    return maintenance_service.cleanup(
        older_than_hours=older_than_hours,
        cancel_sessions_older_than_hours=cancel_sessions_older_than_hours,
        dry_run=dry_run
    )
