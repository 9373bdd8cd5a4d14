"""
Chunk Task domain model.
One fixed-size byte range of a local file uploaded as a single remote part.
"""
import math
from enum import Enum
from typing import List, Optional


class ChunkStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ChunkTask:
    """Byte range [start, end) of the source file."""

    def __init__(self, index: int, start: int, end: int):
        self.index = index
        self.start = start
        self.end = end
        self.attempts = 0
        self.status = ChunkStatus.PENDING
        self.part_id: Optional[str] = None

    @property
    def length(self) -> int:
        return self.end - self.start

    def mark_uploading(self) -> None:
        self.attempts += 1
        self.status = ChunkStatus.UPLOADING

    def mark_succeeded(self, part_id: str) -> None:
        self.part_id = part_id
        self.status = ChunkStatus.SUCCEEDED

    def mark_failed(self) -> None:
        self.status = ChunkStatus.FAILED

    def __repr__(self):
        return f"ChunkTask(index={self.index}, range=[{self.start}, {self.end}), status={self.status.value})"


def partition(file_size: int, chunk_size: int) -> List[ChunkTask]:
    """
    Split a file into contiguous, non-overlapping chunks.

    Boundaries depend only on the file size and chunk size, so the same
    inputs always produce the same partition.

    Args:
        file_size: Total size in bytes
        chunk_size: Size of every chunk except possibly the last

    Returns:
        ceil(file_size / chunk_size) chunk tasks in sequence order

    Raises:
        ValueError: If the sizes are invalid
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if file_size < 0:
        raise ValueError("file_size cannot be negative")

    total_chunks = math.ceil(file_size / chunk_size)
    return [
        ChunkTask(index, index * chunk_size, min((index + 1) * chunk_size, file_size))
        for index in range(total_chunks)
    ]
