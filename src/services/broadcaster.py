"""
Progress/Event Broadcaster.
Routes progress, complete and error events to the owning user's live connections.
"""
import asyncio
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, List, Optional
from src.core.logger import get_logger
from src.models.progress_event import EventType, ProgressEvent
from src.models.upload_operation import Stage
from src.services.progress import ProgressListener

logger = get_logger(__name__)

STAGE_RANK = {
    Stage.VALIDATING.value: 0,
    Stage.UPLOADING.value: 1,
    Stage.TRANSCODING.value: 2,
    Stage.COMPLETED.value: 3,
    Stage.FAILED.value: 3,
}

# Finished operations remembered to reject late events
CLOSED_OPERATIONS_LIMIT = 10000


class Connection(ABC):
    """One live client channel."""

    @abstractmethod
    def deliver(self, message: dict) -> None:
        """Send a message without blocking. Raises ConnectionError once the channel is gone."""
        pass


class QueueConnection(Connection):
    """
    Connection backed by an asyncio queue drained by a WebSocket handler.

    deliver() may be called from any thread; the message is handed to the
    event loop that owns the queue.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def deliver(self, message: dict) -> None:
        if self.closed:
            raise ConnectionError("Connection is closed")
        try:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, message)
        except RuntimeError as e:
            # event loop already shut down
            self.closed = True
            raise ConnectionError(str(e)) from e

    def close(self) -> None:
        self.closed = True


class _StreamState:
    def __init__(self, rank: int, progress: float):
        self.rank = rank
        self.progress = progress


class ProgressBroadcaster(ProgressListener):
    """Per-owner connection registry with per-operation ordering."""

    def __init__(self):
        self._connections: Dict[str, List[Connection]] = {}
        self._streams: Dict[str, _StreamState] = {}
        self._closed: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.RLock()

    def register(self, owner_id: str, connection: Connection) -> None:
        with self._lock:
            self._connections.setdefault(owner_id, []).append(connection)
        logger.info(f"Progress channel opened for owner {owner_id}")

    def unregister(self, owner_id: str, connection: Connection) -> None:
        with self._lock:
            connections = self._connections.get(owner_id, [])
            if connection in connections:
                connections.remove(connection)
            if not connections:
                self._connections.pop(owner_id, None)
        logger.info(f"Progress channel closed for owner {owner_id}")

    def connection_count(self, owner_id: Optional[str] = None) -> int:
        with self._lock:
            if owner_id is not None:
                return len(self._connections.get(owner_id, []))
            return sum(len(connections) for connections in self._connections.values())

    def on_event(self, event: ProgressEvent) -> None:
        if event.event_type == EventType.COMPLETE:
            self.broadcast_complete(event.owner_id, event)
        elif event.event_type == EventType.ERROR:
            self.broadcast_error(event.owner_id, event)
        else:
            self.broadcast_progress(event.owner_id, event)

    def broadcast_progress(self, owner_id: str, event: ProgressEvent) -> bool:
        return self._broadcast(owner_id, event)

    def broadcast_complete(self, owner_id: str, event: ProgressEvent) -> bool:
        event.event_type = EventType.COMPLETE
        return self._broadcast(owner_id, event)

    def broadcast_error(self, owner_id: str, event: ProgressEvent) -> bool:
        event.event_type = EventType.ERROR
        return self._broadcast(owner_id, event)

    def _broadcast(self, owner_id: str, event: ProgressEvent) -> bool:
        """
        Deliver an event to every connection of its owner.

        Returns:
            True if at least one connection received the event
        """
        with self._lock:
            if not self._admit(event):
                return False

            connections = list(self._connections.get(owner_id, []))
            if not connections:
                return False

            message = event.to_message()
            delivered = False
            for connection in connections:
                try:
                    connection.deliver(message)
                    delivered = True
                except ConnectionError:
                    logger.warning(f"Dropping dead progress channel for owner {owner_id}")
                    self.unregister(owner_id, connection)
            return delivered

    def _admit(self, event: ProgressEvent) -> bool:
        """Enforce ordering for the event's operation. Caller holds the lock."""
        operation_id = event.operation_id
        if operation_id in self._closed:
            logger.warning(
                f"Discarding {event.event_type.value} event for finished operation {operation_id}"
            )
            return False

        rank = STAGE_RANK.get(event.stage, 0)
        if event.is_terminal:
            rank = STAGE_RANK[Stage.COMPLETED.value]
        elif rank == STAGE_RANK[Stage.COMPLETED.value]:
            logger.warning(f"Discarding progress event in terminal stage for {operation_id}")
            return False

        state = self._streams.get(operation_id)
        if state is not None:
            if rank < state.rank:
                logger.warning(
                    f"Discarding out-of-order {event.stage} event for operation {operation_id}"
                )
                return False
            if rank == state.rank and event.progress < state.progress:
                event.progress = state.progress

        if event.is_terminal:
            self._streams.pop(operation_id, None)
            self._closed[operation_id] = event.event_type.value
            while len(self._closed) > CLOSED_OPERATIONS_LIMIT:
                self._closed.popitem(last=False)
        else:
            self._streams[operation_id] = _StreamState(rank, event.progress)
        return True
