"""
Abstract base class for object storage repositories.
Defines the contract for multipart uploads to a remote bucket.
"""
from abc import ABC, abstractmethod
from typing import List, Optional
from src.models.multipart_session import RemoteMultipartSession


class ObjectStorage(ABC):
    """Abstract repository interface for remote object storage."""

    @abstractmethod
    def authorize(self):
        """Obtain (or reuse) the process-wide storage credential."""
        pass

    @abstractmethod
    def open_multipart(self, remote_name: str, content_type: Optional[str] = None) -> RemoteMultipartSession:
        """Open a multipart session bound to an object name."""
        pass

    @abstractmethod
    def upload_part(self, session: RemoteMultipartSession, index: int, data: bytes) -> str:
        """Upload one part and return its part identifier."""
        pass

    @abstractmethod
    def finalize(self, session: RemoteMultipartSession, ordered_part_ids: List[str]) -> str:
        """Combine the parts into one object and return its remote file id."""
        pass

    @abstractmethod
    def put_object(self, remote_name: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Store a small object in a single request."""
        pass

    @abstractmethod
    def derive_url(self, remote_name: str) -> str:
        """Public URL of an object, derived from its name alone."""
        pass

    @abstractmethod
    def delete(self, remote_name: str, file_id: Optional[str] = None) -> bool:
        """Delete an object (or one version of it)."""
        pass

    @abstractmethod
    def list_unfinished(self) -> List[dict]:
        """List multipart sessions that were opened but never finalized."""
        pass

    @abstractmethod
    def cancel_multipart(self, remote_name: str, session_id: str) -> bool:
        """Abandon an unfinished multipart session and its parts."""
        pass
