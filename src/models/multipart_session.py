"""
Remote multipart session domain model.
"""
import threading
from datetime import datetime
from typing import List, Optional
from src.core.exceptions import SessionFinalizedException, StorageException


class RemoteMultipartSession:
    """One remote multipart transfer, sealed by a single finalize call."""

    def __init__(self, session_id: str, remote_name: str, created_at: Optional[datetime] = None):
        self.session_id = session_id
        self.remote_name = remote_name
        self.created_at = created_at or datetime.utcnow()
        self.part_ids: List[str] = []
        self.remote_file_id: Optional[str] = None
        self._sealed = False
        self._lock = threading.Lock()

    @property
    def sealed(self) -> bool:
        return self._sealed

    def commit_part(self, index: int, part_id: str) -> None:
        """Record a part; parts must be committed in sequence order."""
        with self._lock:
            if self._sealed:
                raise SessionFinalizedException(
                    f"Session {self.session_id} is already finalized"
                )
            if index != len(self.part_ids):
                raise StorageException(
                    f"Part {index} committed out of order for session {self.session_id}"
                )
            self.part_ids.append(part_id)

    def seal(self) -> None:
        """
        Claim the single finalize for this session.

        Raises:
            SessionFinalizedException: If the session was already sealed
        """
        with self._lock:
            if self._sealed:
                raise SessionFinalizedException(
                    f"Session {self.session_id} is already finalized"
                )
            self._sealed = True

    def __repr__(self):
        return (f"RemoteMultipartSession(session_id={self.session_id}, "
                f"remote_name={self.remote_name}, parts={len(self.part_ids)})")
