"""
Core configuration for the Media Ingest API.
Manages environment variables, storage settings and per-endpoint upload policy.
"""
import os
import tempfile
from typing import List
from pydantic_settings import BaseSettings

MB = 1024 * 1024


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    # Object storage (S3 or an S3-compatible provider such as Backblaze B2)
    aws_region: str = os.getenv("AWS_REGION", "us-east-1")
    s3_bucket_name: str = os.getenv("S3_BUCKET_NAME", "")
    s3_endpoint_url: str = os.getenv("S3_ENDPOINT_URL", "")
    public_url_base: str = os.getenv("PUBLIC_URL_BASE", "")

    # API Configuration
    api_title: str = os.getenv("API_TITLE", "Media Ingest API")
    api_version: str = os.getenv("API_VERSION", "1.0.0")
    environment: str = os.getenv("ENVIRONMENT", "dev")
    debug: bool = os.getenv("DEBUG", "false").lower() == "true"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Per-endpoint upload limits
    image_max_size_mb: int = int(os.getenv("IMAGE_MAX_SIZE_MB", "10"))
    video_max_size_mb: int = int(os.getenv("VIDEO_MAX_SIZE_MB", "10240"))
    file_max_size_mb: int = int(os.getenv("FILE_MAX_SIZE_MB", "1024"))
    image_mime_types: str = os.getenv(
        "IMAGE_MIME_TYPES",
        "image/jpeg,image/jpg,image/png,image/gif,image/webp"
    )
    video_mime_types: str = os.getenv(
        "VIDEO_MIME_TYPES",
        "video/mp4,video/avi,video/x-msvideo,video/mov,video/quicktime,video/wmv,"
        "video/x-ms-wmv,video/flv,video/x-flv,video/webm,video/mkv,video/x-matroska"
    )
    image_folders: str = os.getenv("IMAGE_FOLDERS", "banners,marketplace,books,avatars,general")
    video_categories: str = os.getenv("VIDEO_CATEGORIES", "film,episode,lesson,feed")
    file_folders: str = os.getenv("FILE_FOLDERS", "general,documents")

    # Chunked upload and retry policy
    chunk_size_mb: int = int(os.getenv("CHUNK_SIZE_MB", "10"))
    max_chunk_retries: int = int(os.getenv("MAX_CHUNK_RETRIES", "3"))
    retry_delay_base_seconds: float = float(os.getenv("RETRY_DELAY_BASE_SECONDS", "1"))
    retry_multiplier: float = float(os.getenv("RETRY_MULTIPLIER", "2"))
    retry_delay_max_seconds: float = float(os.getenv("RETRY_DELAY_MAX_SECONDS", "10"))

    # Transcoding
    ffmpeg_path: str = os.getenv("FFMPEG_PATH", "ffmpeg")
    ffprobe_path: str = os.getenv("FFPROBE_PATH", "ffprobe")
    hls_segment_seconds: int = int(os.getenv("HLS_SEGMENT_SECONDS", "6"))
    transcode_timeout_seconds: int = int(os.getenv("TRANSCODE_TIMEOUT_SECONDS", "7200"))
    rendition_ladder: str = os.getenv(
        "RENDITION_LADDER",
        "240:500k,360:800k,480:1200k,720:2500k,1080:5000k,1440:8000k,2160:15000k"
    )

    # Scratch files and operation records
    scratch_dir: str = os.getenv("SCRATCH_DIR", os.path.join(tempfile.gettempdir(), "media-ingest"))
    scratch_retention_hours: float = float(os.getenv("SCRATCH_RETENTION_HOURS", "24"))
    operation_retention_seconds: int = int(os.getenv("OPERATION_RETENTION_SECONDS", "300"))
    operation_idle_timeout_seconds: int = int(os.getenv("OPERATION_IDLE_TIMEOUT_SECONDS", "7200"))

    # Authentication (verification only, tokens are issued elsewhere)
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-in-production")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")

    @property
    def chunk_size_bytes(self) -> int:
        # S3 rejects non-final multipart parts below 5MB
        return max(self.chunk_size_mb, 5) * MB

    @property
    def image_mime_type_list(self) -> List[str]:
        return _split(self.image_mime_types)

    @property
    def video_mime_type_list(self) -> List[str]:
        return _split(self.video_mime_types)

    @property
    def image_folder_list(self) -> List[str]:
        return _split(self.image_folders)

    @property
    def video_category_list(self) -> List[str]:
        return _split(self.video_categories)

    @property
    def file_folder_list(self) -> List[str]:
        return _split(self.file_folders)

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
