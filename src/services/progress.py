"""
Progress reporting for upload operations.
The pipeline publishes ProgressEvents; listeners (the broadcaster, tests) consume them.
"""
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional
from src.core import config
from src.core.exceptions import MediaIngestException
from src.core.logger import get_logger
from src.models.progress_event import EventType, ProgressEvent
from src.models.upload_operation import Stage, UploadOperation

logger = get_logger(__name__)


class ProgressListener(ABC):
    """Receives every event published for any operation."""

    @abstractmethod
    def on_event(self, event: ProgressEvent) -> None:
        pass


class ProgressPublisher:
    """Fans events out to registered listeners; listener failures never reach the pipeline."""

    def __init__(self, listeners: Optional[Iterable[ProgressListener]] = None):
        self.listeners: List[ProgressListener] = list(listeners or [])

    def subscribe(self, listener: ProgressListener) -> None:
        self.listeners.append(listener)

    def publish(self, event: ProgressEvent) -> None:
        for listener in list(self.listeners):
            try:
                listener.on_event(event)
            except Exception as e:
                logger.warning(f"Progress listener {type(listener).__name__} failed: {e}")


class OperationEmitter:
    """Publishes events for one operation and keeps its record in step."""

    def __init__(self, operation: UploadOperation, publisher: ProgressPublisher):
        self.operation = operation
        self.publisher = publisher

    def _event(self, event_type: EventType, stage: str, progress: float, message: str, **fields) -> ProgressEvent:
        return ProgressEvent(
            owner_id=self.operation.owner_id,
            operation_id=self.operation.operation_id,
            operation_kind=self.operation.kind.value,
            stage=stage,
            progress=progress,
            message=message,
            event_type=event_type,
            **fields
        )

    def progress(self, progress: float, message: str, telemetry: Optional[dict] = None) -> None:
        """Report progress within the operation's current stage."""
        self.operation.record_progress(progress, message)
        self.publisher.publish(self._event(
            EventType.PROGRESS,
            self.operation.stage.value,
            self.operation.progress,
            message,
            telemetry=telemetry
        ))

    def complete(self, result: dict) -> None:
        self.operation.complete(result)
        self.publisher.publish(self._event(
            EventType.COMPLETE, Stage.COMPLETED.value, 100, self.operation.message, result=result
        ))

    def error(self, exc: Exception) -> None:
        """Fail the operation with a stable message; detail only in diagnostic mode."""
        if isinstance(exc, MediaIngestException):
            message = exc.message
            detail = exc.detail
        else:
            message = "An unexpected error occurred"
            detail = str(exc)

        self.operation.fail(message)
        error = {'message': message, 'code': type(exc).__name__}
        if config.settings.debug and detail:
            error['detail'] = detail

        self.publisher.publish(self._event(
            EventType.ERROR, Stage.FAILED.value, self.operation.progress, message, error=error
        ))
