"""
Scratch file lifecycle management.
Per-operation local temp files, removed exactly once on every exit path.
"""
import os
import re
import random
import shutil
import threading
import time
from typing import List, Optional
from src.core import config
from src.core.exceptions import LifecycleException
from src.core.logger import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


def safe_filename(filename: str, max_length: int = 100) -> str:
    """Strip directories and unsafe characters from a client-supplied name."""
    name = os.path.basename((filename or '').replace('\\', '/'))
    name = _UNSAFE_CHARS.sub('_', name).strip('._')
    return (name or 'upload')[-max_length:]


class ScratchFile:
    """Handle to one scratch path owned by a single operation."""

    def __init__(self, path: str, is_directory: bool = False):
        self.path = path
        self.is_directory = is_directory
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """
        Remove the scratch path. Only the first call does any work.

        Returns:
            True if this call removed the path, False if it was already released

        Raises:
            LifecycleException: If the path exists but cannot be removed
        """
        with self._lock:
            if self._released:
                return False
            self._released = True

        try:
            if self.is_directory:
                shutil.rmtree(self.path)
            else:
                os.remove(self.path)
        except FileNotFoundError:
            return True
        except OSError as e:
            raise LifecycleException(
                f"Failed to remove scratch path {self.path}", detail=str(e)
            ) from e
        return True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def __repr__(self):
        return f"ScratchFile(path={self.path}, released={self._released})"


class ScratchFileManager:
    """Creates scratch paths and sweeps the ones left behind."""

    def __init__(self, scratch_dir: Optional[str] = None, retention_hours: Optional[float] = None):
        self.scratch_dir = scratch_dir or config.settings.scratch_dir
        self.retention_hours = (
            retention_hours if retention_hours is not None
            else config.settings.scratch_retention_hours
        )

    def _unique_name(self, original_name: str) -> str:
        # timestamp + random suffix + original name
        return f"{int(time.time() * 1000)}-{random.randint(0, 10 ** 9)}-{safe_filename(original_name)}"

    def create(self, original_name: str) -> ScratchFile:
        """
        Create an empty scratch file with a collision-resistant name.

        Args:
            original_name: Client-supplied filename, kept as the name suffix
        """
        os.makedirs(self.scratch_dir, exist_ok=True)
        while True:
            path = os.path.join(self.scratch_dir, self._unique_name(original_name))
            try:
                # O_EXCL so two operations can never share a path
                fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            except FileExistsError:
                continue
            os.close(fd)
            return ScratchFile(path)

    def create_directory(self, label: str) -> ScratchFile:
        """Create a scratch working directory (used for transcoder output)."""
        os.makedirs(self.scratch_dir, exist_ok=True)
        while True:
            path = os.path.join(self.scratch_dir, self._unique_name(label))
            try:
                os.mkdir(path)
            except FileExistsError:
                continue
            return ScratchFile(path, is_directory=True)

    def sweep(self, older_than_hours: Optional[float] = None, dry_run: bool = False) -> List[str]:
        """
        Remove scratch entries older than the retention threshold.

        Safety net independent of per-request cleanup.

        Args:
            older_than_hours: Age threshold, defaults to the configured retention
            dry_run: Report what would be removed without removing it

        Returns:
            Paths removed (or that would be removed)
        """
        if not os.path.isdir(self.scratch_dir):
            return []

        hours = self.retention_hours if older_than_hours is None else older_than_hours
        cutoff = time.time() - hours * 3600
        removed = []

        for entry in os.scandir(self.scratch_dir):
            try:
                if entry.stat(follow_symlinks=False).st_mtime >= cutoff:
                    continue
            except FileNotFoundError:
                continue

            if dry_run:
                removed.append(entry.path)
                continue

            try:
                ScratchFile(entry.path, is_directory=entry.is_dir(follow_symlinks=False)).release()
                removed.append(entry.path)
            except LifecycleException as e:
                logger.warning(f"{e.message}: {e.detail}")

        if removed:
            logger.info(f"Scratch sweep {'would remove' if dry_run else 'removed'} {len(removed)} entries")
        return removed
