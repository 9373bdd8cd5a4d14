"""
Unit tests for MediaUploadService.
Runs the whole pipeline against in-memory storage and a fake transcoder.
"""
import io
import os
import pytest
from unittest.mock import Mock, patch
from src.core.exceptions import (
    FileTooLargeException,
    LifecycleException,
    OperationNotFoundException,
    StorageException,
    TranscodeException
)
from src.models.dto.upload_dto import UploadResultResponse
from src.models.upload_operation import OperationKind, Stage
from src.repositories.operation_repository import OperationRepository
from src.services.chunked_uploader import ChunkedUploader
from src.services.intake_service import IntakeService, UploadMetadata
from src.services.progress import ProgressPublisher
from src.services.retry import RetryPolicy
from src.services.scratch_service import ScratchFileManager
from src.services.transcode_service import TranscodeOrchestrator
from src.services.upload_service import MediaUploadService, remote_name_for
from tests.conftest import FakeStorage, FakeTranscoder, RecordingListener

MB = 1024 * 1024


class TestMediaUploadService:
    """Test suite for MediaUploadService."""

    @pytest.fixture
    def scratch_dir(self, app_settings):
        return app_settings.scratch_dir

    @pytest.fixture
    def listener(self):
        return RecordingListener()

    @pytest.fixture
    def repository(self):
        return OperationRepository()

    def _service(self, scratch_dir, listener, repository, storage=None, transcoder=None, chunk_size=10 * MB):
        storage = storage or FakeStorage()
        scratch_manager = ScratchFileManager(scratch_dir=scratch_dir)
        publisher = ProgressPublisher([listener])
        retry_policy = RetryPolicy(max_attempts=3, sleep=Mock())
        return MediaUploadService(
            intake_service=IntakeService(scratch_manager, repository, publisher),
            uploader=ChunkedUploader(storage, chunk_size=chunk_size, retry_policy=retry_policy),
            orchestrator=TranscodeOrchestrator(storage, transcoder or FakeTranscoder(), scratch_manager, retry_policy),
            operation_repository=repository,
            publisher=publisher
        )

    def test_26mb_file_three_chunks(self, scratch_dir, listener, repository):
        """Test 26MB at 10MB chunks: 3 chunk events at ~33/67/100, one finalize, one URL."""
        storage = FakeStorage()
        service = self._service(scratch_dir, listener, repository, storage=storage)
        body = b"x" * (26 * MB)
        metadata = UploadMetadata("owner-1", OperationKind.GENERIC, "archive.zip", "application/zip", len(body), "documents")

        result = service.upload(io.BytesIO(body), metadata)

        assert isinstance(result, UploadResultResponse)
        assert storage.finalize_calls == 1
        assert storage.part_attempts == [0, 1, 2]
        assert len(storage.objects[result.remote_file_name]) == 26 * MB
        assert result.file_url == f"https://cdn.example.com/{result.remote_file_name}"
        assert result.stage == "completed"

        uploading = [event for event in listener.of_type("progress") if event.stage == "uploading"]
        assert [round(event.progress) for event in uploading] == [0, 33, 67, 100]
        assert len(listener.of_type("complete")) == 1
        assert os.listdir(scratch_dir) == []

    def test_image_key_layout(self, scratch_dir, listener, repository):
        """Test images land under images/{folder}/{operation id}{ext}."""
        service = self._service(scratch_dir, listener, repository)
        metadata = UploadMetadata("owner-1", OperationKind.IMAGE, "Banner.PNG", "image/png", 4, "banners")

        result = service.upload(io.BytesIO(b"\x89PNG"), metadata)

        assert result.remote_file_name == f"images/banners/{result.operation_id}.png"
        assert result.manifest_url is None

    def test_video_upload_then_transcode(self, scratch_dir, listener, repository):
        """Test stages run uploading -> transcoding -> completed with separate 0..100 phases."""
        storage = FakeStorage()
        service = self._service(scratch_dir, listener, repository, storage=storage, transcoder=FakeTranscoder(height=720))
        metadata = UploadMetadata("owner-1", OperationKind.VIDEO, "clip.mp4", "video/mp4", 9, "film")

        result = service.upload(io.BytesIO(b"mp4-bytes"), metadata)

        prefix = f"videos/film/{result.operation_id}"
        assert result.remote_file_name == f"{prefix}/original.mp4"
        assert result.manifest_url == f"https://cdn.example.com/{prefix}/master.m3u8"
        assert result.renditions == [240, 360, 480, 720]
        assert result.duration_seconds == 12.5

        stages = []
        for event in listener.events:
            if not stages or stages[-1] != event.stage:
                stages.append(event.stage)
        assert stages == ["uploading", "transcoding", "completed"]

        for stage in ("uploading", "transcoding"):
            values = [event.progress for event in listener.events if event.stage == stage]
            assert values == sorted(values)
            assert values[0] == 0 and values[-1] == 100
        assert os.listdir(scratch_dir) == []

    def test_transcode_failure_keeps_original(self, scratch_dir, listener, repository):
        """Test a transcoder failure after upload: failed stage, original kept, no manifest, one error."""
        storage = FakeStorage()
        service = self._service(scratch_dir, listener, repository, storage=storage, transcoder=FakeTranscoder(fail=True))
        metadata = UploadMetadata("owner-1", OperationKind.VIDEO, "clip.mp4", "video/mp4", 9, "film")

        with pytest.raises(TranscodeException):
            service.upload(io.BytesIO(b"mp4-bytes"), metadata)

        operation = repository.list()[0]
        assert operation.stage == Stage.FAILED
        assert list(storage.objects) == [f"videos/film/{operation.operation_id}/original.mp4"]
        assert len(listener.of_type("error")) == 1
        assert listener.of_type("complete") == []
        assert listener.events[-1].error['message'] == "Transcoding failed for 720p"
        assert os.listdir(scratch_dir) == []

    def test_storage_failure_single_error(self, scratch_dir, listener, repository):
        """Test an exhausted chunk fails the operation once with no finalize."""
        storage = FakeStorage(fail_parts={0: 10})
        service = self._service(scratch_dir, listener, repository, storage=storage)
        metadata = UploadMetadata("owner-1", OperationKind.IMAGE, "a.png", "image/png", 4, "banners")

        with pytest.raises(StorageException):
            service.upload(io.BytesIO(b"\x89PNG"), metadata)

        assert storage.part_attempts == [0, 0, 0]
        assert storage.finalize_calls == 0
        assert len(listener.of_type("error")) == 1
        assert repository.list()[0].stage == Stage.FAILED
        assert os.listdir(scratch_dir) == []

    def test_error_detail_only_in_debug(self, scratch_dir, listener, repository, monkeypatch):
        """Test the error event carries the underlying detail in diagnostic mode only."""
        from src.core import config
        service = self._service(scratch_dir, listener, repository, storage=FakeStorage(fail_parts={0: 10}))

        with pytest.raises(StorageException):
            service.upload(io.BytesIO(b"data"), UploadMetadata(
                "owner-1", OperationKind.GENERIC, "a.bin", "application/octet-stream", 4, "general"))
        assert 'detail' not in listener.events[-1].error

        monkeypatch.setattr(config.settings, 'debug', True)
        with pytest.raises(StorageException):
            service.upload(io.BytesIO(b"data"), UploadMetadata(
                "owner-1", OperationKind.GENERIC, "b.bin", "application/octet-stream", 4, "general"))
        assert "connection reset" in listener.events[-1].error['detail']
        assert listener.events[-1].error['message'] == "Upload to storage failed"

    def test_oversize_video_rejected_at_intake(self, scratch_dir, listener, repository):
        """Test a declared size over the ceiling does no remote work and leaves no scratch bytes."""
        storage = FakeStorage()
        service = self._service(scratch_dir, listener, repository, storage=storage)
        metadata = UploadMetadata("owner-1", OperationKind.VIDEO, "huge.mp4", "video/mp4", 11 * 1024 * MB, "film")

        with pytest.raises(FileTooLargeException):
            service.upload(io.BytesIO(b"never read"), metadata)

        assert storage.sessions == {}
        assert storage.part_attempts == []
        assert not os.path.isdir(scratch_dir) or os.listdir(scratch_dir) == []

    def test_cleanup_failure_is_not_fatal(self, scratch_dir, listener, repository):
        """Test a scratch removal error is logged and the result still returned."""
        service = self._service(scratch_dir, listener, repository)
        operation = service.intake_service.accept(
            io.BytesIO(b"data"),
            UploadMetadata("owner-1", OperationKind.GENERIC, "a.bin", "application/octet-stream", 4, "general")
        )
        path = operation.scratch_file.path

        with patch.object(operation.scratch_file, 'release', side_effect=LifecycleException("cannot remove")):
            result = service.process(operation)

        assert result['stage'] == "completed"
        os.remove(path)

    def test_run_in_background_swallows_reported_failure(self, scratch_dir, listener, repository):
        """Test background processing reports failure through the record and events only."""
        service = self._service(scratch_dir, listener, repository, storage=FakeStorage(fail_parts={0: 10}))
        response, operation = service.upload_async(
            io.BytesIO(b"data"),
            UploadMetadata("owner-1", OperationKind.GENERIC, "a.bin", "application/octet-stream", 4, "general")
        )

        service.run_in_background(operation)

        assert response.stage == "uploading"
        status = service.get_status(operation.operation_id, "owner-1")
        assert status.stage == "failed"
        assert status.error_message

    def test_status_only_for_owner(self, scratch_dir, listener, repository):
        """Test another owner cannot read an operation."""
        service = self._service(scratch_dir, listener, repository)
        result = service.upload(io.BytesIO(b"data"), UploadMetadata(
            "owner-1", OperationKind.GENERIC, "a.bin", "application/octet-stream", 4, "general"))

        assert service.get_status(result.operation_id, "owner-1").stage == "completed"
        with pytest.raises(OperationNotFoundException):
            service.get_status(result.operation_id, "owner-2")

    def test_remote_name_for_generic_file(self, scratch_dir, listener, repository):
        """Test generic files keep a sanitized copy of their name."""
        service = self._service(scratch_dir, listener, repository)
        operation = service.intake_service.accept(
            io.BytesIO(b"data"),
            UploadMetadata("owner-1", OperationKind.GENERIC, "Q3 report.pdf", "application/pdf", 4, "documents")
        )

        assert remote_name_for(operation) == f"files/documents/{operation.operation_id}-Q3_report.pdf"
        operation.scratch_file.release()

    def test_operation_marked_in_flight_while_processing(self, scratch_dir, listener, repository):
        """Test the record is held against eviction during the pipeline and released after."""
        seen = []

        class ObservingTranscoder(FakeTranscoder):
            def transcode(self, input_path, ladder, output_dir):
                seen.append(repository.list()[0].in_flight)
                return super().transcode(input_path, ladder, output_dir)

        service = self._service(scratch_dir, listener, repository, transcoder=ObservingTranscoder(height=240))

        result = service.upload(io.BytesIO(b"mp4-bytes"), UploadMetadata(
            "owner-1", OperationKind.VIDEO, "clip.mp4", "video/mp4", 9, "film"))

        assert seen == [True]
        assert repository.get(result.operation_id).in_flight is False
