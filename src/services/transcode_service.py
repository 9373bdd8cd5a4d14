"""
Transcode Orchestrator.
Runs the external transcoder on an uploaded video and publishes its HLS output all-or-nothing.
"""
import os
from typing import Callable, List, Optional, Tuple
from src.core import config
from src.core.exceptions import LifecycleException, MediaIngestException, StorageException, TranscodeException
from src.core.logger import get_logger
from src.models.transcode_job import JobStatus, TranscodeJob, TranscodeOutput, parse_ladder, select_ladder
from src.repositories.object_storage import ObjectStorage
from src.services.retry import RetryPolicy
from src.services.scratch_service import ScratchFileManager
from src.services.transcoder import MASTER_MANIFEST_NAME, Transcoder

logger = get_logger(__name__)

CONTENT_TYPES = {
    '.m3u8': 'application/vnd.apple.mpegurl',
    '.ts': 'video/mp2t',
}

TRANSCODE_DONE_PROGRESS = 60
PUBLISH_DONE_PROGRESS = 95


def video_prefix(video_kind: str, operation_id: str) -> str:
    """Folder that holds the original, the manifest and every rendition of one video."""
    return f"videos/{video_kind}/{operation_id}"


class TranscodeOrchestrator:
    """Service that turns an uploaded video into a published HLS rendition set."""

    def __init__(
        self,
        storage: ObjectStorage,
        transcoder: Transcoder,
        scratch_manager: ScratchFileManager = None,
        retry_policy: RetryPolicy = None
    ):
        self.storage = storage
        self.transcoder = transcoder
        self.scratch_manager = scratch_manager or ScratchFileManager()
        self.retry_policy = retry_policy or RetryPolicy()

    def transcode(
        self,
        source_path: str,
        operation_id: str,
        video_kind: str,
        on_progress: Optional[Callable[[float, str, dict], None]] = None,
        input_key: Optional[str] = None
    ) -> dict:
        """
        Transcode a video and publish manifest plus renditions.

        Args:
            source_path: Local copy of the uploaded original
            operation_id: Operation the video belongs to
            video_kind: Category used in the storage key layout
            on_progress: Called with (percent, message, telemetry) during the transcoding stage
            input_key: Remote key of the already stored original

        Returns:
            Dict with manifest_url, manifest_key, renditions (heights) and duration_seconds

        Raises:
            TranscodeException: If transcoding or publishing fails; nothing stays published
        """
        report = on_progress or (lambda progress, message, telemetry: None)
        prefix = video_prefix(video_kind, operation_id)
        report(0, "Preparing transcoding", {})

        try:
            info = self.transcoder.probe(source_path)
        except TranscodeException:
            raise
        except Exception as e:
            raise TranscodeException("Failed to read video metadata", detail=str(e)) from e

        ladder = select_ladder(parse_ladder(config.settings.rendition_ladder), info.height)
        job = TranscodeJob(operation_id, source_path, input_key, ladder)
        job.duration_seconds = info.duration_seconds
        report(5, f"Transcoding {len(ladder)} renditions", {'renditions': [rung.height for rung in ladder]})

        workdir = self.scratch_manager.create_directory(f"hls-{operation_id}")
        try:
            job.status = JobStatus.RUNNING
            logger.info(f"Transcode started for {operation_id}: {[rung.name for rung in ladder]}")
            job.output = self.transcoder.transcode(source_path, ladder, workdir.path)
            self._verify(job, job.output)
            report(TRANSCODE_DONE_PROGRESS, "Transcoding finished, publishing renditions", {})

            self._publish(job, prefix, report)
            job.status = JobStatus.SUCCEEDED
        except Exception as e:
            job.status = JobStatus.FAILED
            self._rollback(job)
            if isinstance(e, TranscodeException):
                raise
            if isinstance(e, StorageException):
                raise TranscodeException("Failed to publish transcoded video", detail=e.detail or e.message) from e
            detail = e.detail if isinstance(e, MediaIngestException) else str(e)
            raise TranscodeException("Transcoding failed", detail=detail) from e
        finally:
            try:
                workdir.release()
            except LifecycleException as e:
                logger.warning(f"{e.message}: {e.detail}")

        duration = job.output.duration_seconds or job.duration_seconds
        logger.info(f"Transcode finished for {operation_id}: {len(ladder)} renditions, {duration}s")
        report(100, "Transcoding completed", {})
        return {
            'manifest_url': self.storage.derive_url(job.manifest_key),
            'manifest_key': job.manifest_key,
            'renditions': [rung.height for rung in ladder],
            'duration_seconds': duration
        }

    def _verify(self, job: TranscodeJob, output: TranscodeOutput) -> None:
        """Reject an output that lacks any requested rendition or file."""
        requested = sorted(rung.height for rung in job.ladder)
        produced = sorted(rendition.spec.height for rendition in output.renditions)
        if requested != produced:
            raise TranscodeException(
                "Transcoder produced an incomplete rendition set",
                detail=f"requested {requested}, produced {produced}"
            )

        if not output.manifest_path or not os.path.isfile(output.manifest_path):
            raise TranscodeException("Transcoder produced no manifest")

        for rendition in output.renditions:
            if not os.path.isfile(rendition.playlist_path):
                raise TranscodeException(f"Missing playlist for {rendition.spec.name}")
            if not rendition.segment_paths:
                raise TranscodeException(f"No segments produced for {rendition.spec.name}")
            missing = [path for path in rendition.segment_paths if not os.path.isfile(path)]
            if missing:
                raise TranscodeException(
                    f"Missing segments for {rendition.spec.name}", detail=", ".join(missing)
                )

    def _artifacts(self, output: TranscodeOutput, prefix: str) -> List[Tuple[str, str]]:
        """(key, local path) pairs in publish order: segments, rendition playlists, master last."""
        artifacts = []
        for rendition in output.renditions:
            folder = f"{prefix}/{rendition.spec.name}"
            for path in rendition.segment_paths:
                artifacts.append((f"{folder}/{os.path.basename(path)}", path))
            artifacts.append((f"{folder}/{os.path.basename(rendition.playlist_path)}", rendition.playlist_path))
        artifacts.append((f"{prefix}/{MASTER_MANIFEST_NAME}", output.manifest_path))
        return artifacts

    def _publish(self, job: TranscodeJob, prefix: str, report: Callable) -> None:
        artifacts = self._artifacts(job.output, prefix)
        span = PUBLISH_DONE_PROGRESS - TRANSCODE_DONE_PROGRESS

        for count, (key, path) in enumerate(artifacts, start=1):
            with open(path, 'rb') as artifact:
                data = artifact.read()
            content_type = CONTENT_TYPES.get(os.path.splitext(path)[1], 'application/octet-stream')

            # recorded before the write: a failed call may still have stored the object
            job.published_keys.append(key)
            self.retry_policy.run(
                lambda key=key, data=data, content_type=content_type:
                    self.storage.put_object(key, data, content_type=content_type),
                f"Publishing {key}"
            )
            report(
                TRANSCODE_DONE_PROGRESS + span * count / len(artifacts),
                f"Published {count} of {len(artifacts)} files",
                {'publishedFiles': count, 'totalFiles': len(artifacts)}
            )

        job.manifest_key = f"{prefix}/{MASTER_MANIFEST_NAME}"

    def _rollback(self, job: TranscodeJob) -> None:
        """Best-effort removal of every key this job attempted to publish, newest first."""
        for key in reversed(job.published_keys):
            try:
                self.storage.delete(key)
            except StorageException as e:
                logger.warning(f"Failed to remove {key} during rollback: {e.message}")
        if job.published_keys:
            logger.info(f"Rolled back {len(job.published_keys)} published files for {job.operation_id}")
        job.published_keys = []
        job.manifest_key = None
