"""
Unit tests for domain models.
Covers chunk partitioning, stage transitions, multipart sessions, ladders and events.
"""
import pytest
from src.core.exceptions import IllegalStageTransitionException, SessionFinalizedException, StorageException
from src.models.chunk_task import ChunkStatus, partition
from src.models.multipart_session import RemoteMultipartSession
from src.models.progress_event import EventType, ProgressEvent
from src.models.transcode_job import RenditionSpec, parse_ladder, select_ladder
from src.models.upload_operation import OperationKind, Stage, UploadOperation

MB = 1024 * 1024


class TestPartition:
    """Test suite for chunk partitioning."""

    def test_26mb_at_10mb_gives_three_chunks(self):
        """Test the 10MB/10MB/6MB split of a 26MB file."""
        chunks = partition(26 * MB, 10 * MB)

        assert len(chunks) == 3
        assert [chunk.length for chunk in chunks] == [10 * MB, 10 * MB, 6 * MB]

    @pytest.mark.parametrize("file_size,chunk_size", [
        (1, 10), (10, 10), (11, 10), (99, 7), (5 * MB + 1, 5 * MB)
    ])
    def test_ranges_partition_file_exactly(self, file_size, chunk_size):
        """Test ranges are contiguous, non-overlapping and sum to the file size."""
        chunks = partition(file_size, chunk_size)

        assert len(chunks) == -(-file_size // chunk_size)
        assert chunks[0].start == 0
        assert chunks[-1].end == file_size
        for previous, current in zip(chunks, chunks[1:]):
            assert previous.end == current.start
        assert sum(chunk.length for chunk in chunks) == file_size
        assert [chunk.index for chunk in chunks] == list(range(len(chunks)))

    def test_empty_file_has_no_chunks(self):
        """Test a zero-byte file partitions into nothing."""
        assert partition(0, 10) == []

    def test_invalid_chunk_size(self):
        """Test non-positive chunk sizes are rejected."""
        with pytest.raises(ValueError):
            partition(10, 0)

    def test_chunk_status_tracking(self):
        """Test attempts and status move with each upload attempt."""
        chunk = partition(10, 10)[0]
        assert chunk.status == ChunkStatus.PENDING

        chunk.mark_uploading()
        chunk.mark_failed()
        chunk.mark_uploading()
        chunk.mark_succeeded("etag-0")

        assert chunk.attempts == 2
        assert chunk.status == ChunkStatus.SUCCEEDED
        assert chunk.part_id == "etag-0"


class TestUploadOperation:
    """Test suite for UploadOperation stage transitions."""

    @pytest.fixture
    def operation(self):
        return UploadOperation("owner-1", OperationKind.VIDEO, "clip.mp4", "video/mp4", 100, "film")

    def test_full_video_path(self, operation):
        """Test validating -> uploading -> transcoding -> completed."""
        operation.advance(Stage.UPLOADING)
        operation.advance(Stage.TRANSCODING)
        operation.complete({'file_url': 'https://cdn/x'})

        assert operation.stage == Stage.COMPLETED
        assert operation.progress == 100
        assert operation.result == {'file_url': 'https://cdn/x'}

    def test_validation_failure_is_legal(self, operation):
        """Test validating -> failed."""
        operation.fail("Unsupported file type")

        assert operation.stage == Stage.FAILED
        assert operation.error_message == "Unsupported file type"

    def test_skipping_upload_is_illegal(self, operation):
        """Test validating cannot jump to transcoding."""
        with pytest.raises(IllegalStageTransitionException):
            operation.advance(Stage.TRANSCODING)

    def test_terminal_stage_is_never_left(self, operation):
        """Test no transition out of completed, including a repeat."""
        operation.advance(Stage.UPLOADING)
        operation.complete({})

        with pytest.raises(IllegalStageTransitionException):
            operation.fail("late failure")
        with pytest.raises(IllegalStageTransitionException):
            operation.complete({})

    def test_stage_is_not_revisited(self, operation):
        """Test transcoding cannot go back to uploading."""
        operation.advance(Stage.UPLOADING)
        operation.advance(Stage.TRANSCODING)

        with pytest.raises(IllegalStageTransitionException):
            operation.advance(Stage.UPLOADING)

    def test_progress_is_monotonic_within_stage(self, operation):
        """Test a lower progress value never lowers the recorded one."""
        operation.advance(Stage.UPLOADING)
        operation.record_progress(50, "half")
        operation.record_progress(20, "stale")
        operation.record_progress(150, "over")

        assert operation.progress == 100

    def test_progress_resets_on_new_stage(self, operation):
        """Test each stage reports its own 0..100."""
        operation.advance(Stage.UPLOADING)
        operation.record_progress(100, "uploaded")
        operation.advance(Stage.TRANSCODING)

        assert operation.progress == 0

    def test_snapshot(self, operation):
        """Test snapshot exposes the public state."""
        snapshot = operation.snapshot()

        assert snapshot['operation_id'] == operation.operation_id
        assert snapshot['kind'] == "video"
        assert snapshot['stage'] == "validating"
        assert snapshot['category'] == "film"


class TestRemoteMultipartSession:
    """Test suite for RemoteMultipartSession."""

    def test_seal_is_call_once(self):
        """Test a second seal is rejected."""
        session = RemoteMultipartSession("upload-1", "files/general/a.bin")
        session.commit_part(0, "etag-0")
        session.seal()

        with pytest.raises(SessionFinalizedException):
            session.seal()

    def test_commit_after_seal_rejected(self):
        """Test parts cannot be added to a sealed session."""
        session = RemoteMultipartSession("upload-1", "files/general/a.bin")
        session.seal()

        with pytest.raises(SessionFinalizedException):
            session.commit_part(0, "etag-0")

    def test_out_of_order_commit_rejected(self):
        """Test parts are committed in sequence order only."""
        session = RemoteMultipartSession("upload-1", "files/general/a.bin")

        with pytest.raises(StorageException):
            session.commit_part(1, "etag-1")


class TestRenditionLadder:
    """Test suite for ladder parsing and selection."""

    def test_parse_sorts_by_height(self):
        """Test rungs come back in ascending height."""
        ladder = parse_ladder("720:2500k, 240:500k,1080:5000k")

        assert [rung.height for rung in ladder] == [240, 720, 1080]
        assert ladder[1].bandwidth == 2500000

    def test_parse_rejects_malformed_rung(self):
        """Test a rung without bitrate is rejected."""
        with pytest.raises(ValueError):
            parse_ladder("720")

    def test_select_keeps_rungs_up_to_source(self):
        """Test a 720p source is not upscaled."""
        ladder = parse_ladder("240:500k,360:800k,720:2500k,1080:5000k")

        assert [rung.height for rung in select_ladder(ladder, 720)] == [240, 360, 720]

    def test_select_falls_back_to_lowest_rung(self):
        """Test a tiny source still gets one rendition."""
        ladder = parse_ladder("240:500k,360:800k")

        assert [rung.height for rung in select_ladder(ladder, 144)] == [240]

    def test_width_is_even_16_9(self):
        """Test rendition width derivation."""
        assert RenditionSpec(720, "2500k").width == 1280
        assert RenditionSpec(1080, "5000k").width == 1920
        assert RenditionSpec(240, "500k").width % 2 == 0


class TestProgressEvent:
    """Test suite for ProgressEvent."""

    def test_progress_is_clamped(self):
        """Test progress stays within 0..100."""
        assert ProgressEvent("o", "op", "image", "uploading", 140, "m").progress == 100
        assert ProgressEvent("o", "op", "image", "uploading", -3, "m").progress == 0

    def test_message_shape(self):
        """Test the wire message carries ids and stage telemetry."""
        event = ProgressEvent(
            "owner-1", "op-1", "video", "uploading", 33.333, "Uploaded chunk 1 of 3",
            telemetry={'throughput': 10.0, 'eta': 1.6}
        )

        message = event.to_message()

        assert message['type'] == "progress"
        assert message['operationId'] == "op-1"
        assert message['operationKind'] == "video"
        assert message['progress'] == 33.33
        assert message['throughput'] == 10.0
        assert 'result' not in message and 'error' not in message

    def test_terminal_types(self):
        """Test complete and error are terminal, progress is not."""
        assert ProgressEvent("o", "op", "image", "completed", 100, "m", EventType.COMPLETE).is_terminal
        assert ProgressEvent("o", "op", "image", "failed", 0, "m", EventType.ERROR).is_terminal
        assert not ProgressEvent("o", "op", "image", "uploading", 0, "m").is_terminal
