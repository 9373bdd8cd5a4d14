"""
Operation Repository for upload operation records.
In-process registry that stays readable while uploads are in flight.
"""
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from src.core import config
from src.models.upload_operation import UploadOperation


class OperationRepository:
    """Registry of live and recently finished upload operations."""

    def __init__(self, retention_seconds: Optional[int] = None, idle_timeout_seconds: Optional[int] = None):
        self.retention = timedelta(seconds=(
            retention_seconds if retention_seconds is not None
            else config.settings.operation_retention_seconds
        ))
        self.idle_timeout = timedelta(seconds=(
            idle_timeout_seconds if idle_timeout_seconds is not None
            else config.settings.operation_idle_timeout_seconds
        ))
        self._operations: Dict[str, UploadOperation] = {}
        self._lock = threading.Lock()

    def add(self, operation: UploadOperation) -> None:
        self.evict_expired()
        with self._lock:
            self._operations[operation.operation_id] = operation

    def get(self, operation_id: str) -> Optional[UploadOperation]:
        with self._lock:
            return self._operations.get(operation_id)

    def remove(self, operation_id: str) -> Optional[UploadOperation]:
        with self._lock:
            return self._operations.pop(operation_id, None)

    def list(self, active_only: bool = False) -> List[UploadOperation]:
        """
        List registered operations, oldest first.

        Args:
            active_only: Only return operations that have not reached a terminal stage
        """
        with self._lock:
            operations = list(self._operations.values())

        if active_only:
            operations = [op for op in operations if not op.stage.is_terminal]
        return sorted(operations, key=lambda op: op.created_at)

    def evict_expired(self, now: Optional[datetime] = None) -> List[str]:
        """
        Drop terminal records past retention and non-terminal records past the idle timeout.

        Operations a worker is still running are never evicted.

        Returns:
            Ids of the evicted operations
        """
        now = now or datetime.utcnow()
        evicted = []
        with self._lock:
            for operation_id, operation in list(self._operations.items()):
                if operation.in_flight:
                    continue
                age = now - operation.updated_at
                limit = self.retention if operation.stage.is_terminal else self.idle_timeout
                if age > limit:
                    del self._operations[operation_id]
                    evicted.append(operation_id)
        return evicted
