"""
Progress event domain model.
Ephemeral telemetry sent to the uploading client; never persisted.
"""
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressEvent:
    """One progress, completion or error signal for an operation."""

    def __init__(
        self,
        owner_id: str,
        operation_id: str,
        operation_kind: str,
        stage: str,
        progress: float,
        message: str,
        event_type: EventType = EventType.PROGRESS,
        telemetry: Optional[dict] = None,
        result: Optional[dict] = None,
        error: Optional[dict] = None
    ):
        self.owner_id = owner_id
        self.operation_id = operation_id
        self.operation_kind = operation_kind
        self.stage = stage
        self.progress = max(0.0, min(100.0, float(progress)))
        self.message = message
        self.event_type = event_type
        self.telemetry = telemetry or {}
        self.result = result
        self.error = error

    @property
    def is_terminal(self) -> bool:
        return self.event_type in (EventType.COMPLETE, EventType.ERROR)

    def to_message(self) -> dict:
        """Wire shape sent over the event channel."""
        message = {
            'type': self.event_type.value,
            'operationKind': self.operation_kind,
            'operationId': self.operation_id,
            'stage': self.stage,
            'progress': round(self.progress, 2),
            'message': self.message,
        }
        message.update(self.telemetry)
        if self.result is not None:
            message['result'] = self.result
        if self.error is not None:
            message['error'] = self.error
        return message

    def __repr__(self):
        return (f"ProgressEvent(operation_id={self.operation_id}, type={self.event_type.value}, "
                f"stage={self.stage}, progress={self.progress})")
