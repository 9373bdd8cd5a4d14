"""
Chunked Remote Uploader.
Pushes a local file to object storage as an ordered multipart upload.
"""
import os
import time
from typing import Callable, Optional
from src.core import config
from src.core.exceptions import StorageException
from src.core.logger import get_logger
from src.models.chunk_task import partition
from src.repositories.object_storage import ObjectStorage
from src.services.retry import RetryPolicy

logger = get_logger(__name__)

# S3 and B2 reject multipart uploads with more parts than this
MAX_PARTS = 10000


def part_size_for(file_size: int, chunk_size: int) -> int:
    """
    Chunk size to use for a file of file_size bytes.

    The configured size is kept unless the file would need more than
    MAX_PARTS parts; then it grows to the smallest multiple of the
    configured size that fits.
    """
    needed = -(-file_size // MAX_PARTS)
    if needed <= chunk_size:
        return chunk_size
    return -(-needed // chunk_size) * chunk_size


class ChunkedUploader:
    """Single-lane multipart uploader with per-chunk retry."""

    def __init__(
        self,
        storage: ObjectStorage,
        chunk_size: Optional[int] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.storage = storage
        self.chunk_size = chunk_size or config.settings.chunk_size_bytes
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock

    def upload(
        self,
        local_path: str,
        remote_name: str,
        max_retries: Optional[int] = None,
        on_progress: Optional[Callable[[float, str, dict], None]] = None,
        content_type: Optional[str] = None
    ) -> dict:
        """
        Upload a local file as one remote object.

        Args:
            local_path: Scratch file to upload
            remote_name: Object key to create
            max_retries: Attempts per chunk (defaults to the retry policy)
            on_progress: Called after each chunk with (percent, message, telemetry)
            content_type: MIME type stored with the object

        Returns:
            Dict with remote_file_id, remote_file_name, file_url, file_size and total_chunks

        Raises:
            StorageException: If a chunk exhausts its retries or finalize fails
        """
        file_size = os.path.getsize(local_path)
        chunks = partition(file_size, part_size_for(file_size, self.chunk_size))
        if not chunks:
            raise StorageException(f"Refusing to upload empty file {local_path}")

        self.storage.authorize()
        session = self.retry_policy.run(
            lambda: self.storage.open_multipart(remote_name, content_type=content_type),
            f"Opening upload session for {remote_name}",
            max_attempts=max_retries
        )

        total_chunks = len(chunks)
        uploaded_bytes = 0
        started = self.clock()
        logger.info(f"Uploading {remote_name}: {file_size} bytes in {total_chunks} chunks")

        with open(local_path, 'rb') as source:
            for chunk in chunks:
                source.seek(chunk.start)
                data = source.read(chunk.length)
                if len(data) != chunk.length:
                    raise StorageException(
                        f"Short read on chunk {chunk.index + 1}: expected {chunk.length} bytes, got {len(data)}"
                    )

                def attempt(chunk=chunk, data=data):
                    chunk.mark_uploading()
                    try:
                        return self.storage.upload_part(session, chunk.index, data)
                    except StorageException:
                        chunk.mark_failed()
                        raise

                part_id = self.retry_policy.run(
                    attempt,
                    f"Chunk {chunk.index + 1}/{total_chunks} of {remote_name}",
                    max_attempts=max_retries
                )
                chunk.mark_succeeded(part_id)
                uploaded_bytes += chunk.length

                if on_progress:
                    telemetry = self._telemetry(chunk.index, total_chunks, uploaded_bytes, file_size, started)
                    percent = (chunk.index + 1) / total_chunks * 100
                    on_progress(percent, f"Uploaded chunk {chunk.index + 1} of {total_chunks}", telemetry)

        if sum(chunk.length for chunk in chunks) != file_size or uploaded_bytes != file_size:
            raise StorageException(
                f"Uploaded {uploaded_bytes} bytes but {remote_name} is {file_size} bytes"
            )

        remote_file_id = self.storage.finalize(session, [chunk.part_id for chunk in chunks])
        return {
            'remote_file_id': remote_file_id,
            'remote_file_name': remote_name,
            'file_url': self.storage.derive_url(remote_name),
            'file_size': file_size,
            'total_chunks': total_chunks
        }

    def _telemetry(self, index: int, total_chunks: int, uploaded_bytes: int, file_size: int, started: float) -> dict:
        elapsed = max(self.clock() - started, 1e-6)
        throughput = uploaded_bytes / elapsed
        remaining = file_size - uploaded_bytes
        eta = remaining / throughput if throughput > 0 else None
        return {
            'uploadedBytes': uploaded_bytes,
            'totalBytes': file_size,
            'completedChunks': index + 1,
            'totalChunks': total_chunks,
            'currentChunk': index + 1,
            'throughput': round(throughput, 2),
            'eta': round(eta, 2) if eta is not None else None
        }
