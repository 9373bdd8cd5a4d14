"""
Upload API routes.
Handles HTTP endpoints for image, video and generic file uploads and their status.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, File, Query, UploadFile, status
from typing import Optional
from src.core.auth_dependencies import verify_token
from src.core.dependencies import get_upload_service
from src.core.exceptions import ValidationException
from src.models.dto.upload_dto import OperationStatusResponse, UploadAcceptedResponse, UploadResultResponse
from src.models.upload_operation import OperationKind
from src.services.intake_service import UploadMetadata
from src.services.upload_service import MediaUploadService

router = APIRouter(prefix="/v1/api")

# Path segment per upload kind; the size guard middleware shares this table
UPLOAD_PATHS = {
    "image": OperationKind.IMAGE,
    "video": OperationKind.VIDEO,
    "file": OperationKind.GENERIC,
}


def _metadata(owner_id: str, kind: OperationKind, file: UploadFile, category: Optional[str]) -> UploadMetadata:
    return UploadMetadata(
        owner_id=owner_id,
        kind=kind,
        filename=file.filename,
        mime_type=file.content_type,
        declared_size=file.size,
        category=category
    )


# Routes are sync so the blocking pipeline runs in the threadpool

@router.post("/uploads/image", tags=["Uploads"], response_model=UploadResultResponse)
def upload_image(
    file: UploadFile = File(..., description="Image file (jpeg, png, gif, webp)"),
    folder: Optional[str] = Query(default=None, description="Image folder, e.g. banners"),
    upload_service: MediaUploadService = Depends(get_upload_service),
    owner_id: str = Depends(verify_token)
):
    """
    Upload an image and return its public URL.
    """
    return upload_service.upload(file.file, _metadata(owner_id, OperationKind.IMAGE, file, folder))


@router.post("/uploads/video", tags=["Uploads"], response_model=UploadResultResponse)
def upload_video(
    file: UploadFile = File(..., description="Video file (mp4, avi, mov, wmv, flv, webm, mkv)"),
    category: Optional[str] = Query(default=None, description="Video category, e.g. film"),
    upload_service: MediaUploadService = Depends(get_upload_service),
    owner_id: str = Depends(verify_token)
):
    """
    Upload a video, transcode it to HLS and return the original and manifest URLs.

    Progress for both the upload and the transcoding stage is also sent on the event channel.
    """
    return upload_service.upload(file.file, _metadata(owner_id, OperationKind.VIDEO, file, category))


@router.post("/uploads/file", tags=["Uploads"], response_model=UploadResultResponse)
def upload_file(
    file: UploadFile = File(..., description="Any file"),
    folder: Optional[str] = Query(default=None, description="Folder, defaults to general"),
    upload_service: MediaUploadService = Depends(get_upload_service),
    owner_id: str = Depends(verify_token)
):
    """
    Upload a generic file and return its public URL.
    """
    return upload_service.upload(file.file, _metadata(owner_id, OperationKind.GENERIC, file, folder))


@router.post(
    "/uploads/async/{upload_type}",
    tags=["Uploads"],
    response_model=UploadAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED
)
def upload_with_progress(
    upload_type: str,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    category: Optional[str] = Query(default=None, description="Image/file folder or video category"),
    folder: Optional[str] = Query(default=None, description="Alias of category for image and file uploads"),
    upload_service: MediaUploadService = Depends(get_upload_service),
    owner_id: str = Depends(verify_token)
):
    """
    Accept an upload and process it in the background.

    - **upload_type**: image, video or file

    Returns the operation id at once; stage and progress arrive on the event
    channel and through GET /v1/api/uploads/{operation_id}.
    """
    kind = UPLOAD_PATHS.get(upload_type)
    if kind is None:
        raise ValidationException(f"Unknown upload type '{upload_type}'. Allowed: image, video, file")

    metadata = _metadata(owner_id, kind, file, category or folder)
    response, operation = upload_service.upload_async(file.file, metadata)
    background_tasks.add_task(upload_service.run_in_background, operation)
    return response


@router.get("/uploads/{operation_id}", tags=["Uploads"], response_model=OperationStatusResponse)
def get_upload_status(
    operation_id: str,
    upload_service: MediaUploadService = Depends(get_upload_service),
    owner_id: str = Depends(verify_token)
):
    """
    Get the stage and progress of one of your upload operations.
    """
    return upload_service.get_status(operation_id, owner_id)
