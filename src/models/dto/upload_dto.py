"""
Data Transfer Objects for the Upload API.
Defines response schemas for upload, status and admin endpoints.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class UploadResultResponse(BaseModel):
    """Response schema for a synchronous upload that ran to completion."""
    operation_id: str = Field(..., description="Unique identifier for the upload operation")
    kind: str = Field(..., description="image, video or generic")
    stage: str = Field(..., description="Terminal stage of the operation")
    file_url: str = Field(..., description="Public URL of the stored object")
    remote_file_id: str = Field(..., description="Identifier assigned by the storage provider")
    remote_file_name: str = Field(..., description="Object key in the bucket")
    file_size: int = Field(..., description="Stored size in bytes")
    manifest_url: Optional[str] = Field(None, description="Adaptive streaming manifest URL (video only)")
    renditions: Optional[List[int]] = Field(None, description="Rendition heights (video only)")
    duration_seconds: Optional[float] = Field(None, description="Video duration (video only)")


class UploadAcceptedResponse(BaseModel):
    """Response schema for an upload accepted for background processing."""
    operation_id: str = Field(..., description="Identifier correlating progress events")
    stage: str = Field(..., description="Stage at the time of acceptance")
    message: str = Field(..., description="Status message")


class OperationStatusResponse(BaseModel):
    """Response schema for an upload operation status query."""
    operation_id: str
    kind: str
    category: Optional[str] = None
    filename: str
    stage: str
    progress: float
    message: str
    created_at: datetime
    updated_at: datetime
    result: Optional[dict] = None
    error_message: Optional[str] = None


class OperationListResponse(BaseModel):
    """Response schema for listing in-flight operations."""
    operations: List[OperationStatusResponse]
    count: int


class UnfinishedSessionResponse(BaseModel):
    """Remote multipart session that was opened but never finalized."""
    session_id: str
    remote_name: str
    initiated_at: Optional[datetime] = None


class UnfinishedSessionListResponse(BaseModel):
    """Response schema for listing unfinished multipart sessions."""
    sessions: List[UnfinishedSessionResponse]
    count: int


class CleanupResponse(BaseModel):
    """Response schema for the administrative cleanup sweep."""
    removed_scratch_files: List[str]
    evicted_operations: List[str]
    cancelled_sessions: List[str] = []
    dry_run: bool = False
