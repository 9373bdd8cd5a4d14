"""
Transcode job domain models.
Rendition ladder rungs, transcoder output and the job that publishes them.
"""
from enum import Enum
from typing import List, Optional


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RenditionSpec:
    """One rung of the rendition ladder."""

    def __init__(self, height: int, bitrate: str):
        self.height = height
        self.bitrate = bitrate

    @property
    def bandwidth(self) -> int:
        value = self.bitrate.lower()
        if value.endswith('k'):
            return int(float(value[:-1]) * 1000)
        if value.endswith('m'):
            return int(float(value[:-1]) * 1000000)
        return int(value)

    @property
    def width(self) -> int:
        # 16:9 rounded to an even number of pixels
        width = round(self.height * 16 / 9)
        return width + (width % 2)

    @property
    def name(self) -> str:
        return f"{self.height}p"

    def __eq__(self, other):
        return isinstance(other, RenditionSpec) and (self.height, self.bitrate) == (other.height, other.bitrate)

    def __hash__(self):
        return hash((self.height, self.bitrate))

    def __repr__(self):
        return f"RenditionSpec(height={self.height}, bitrate={self.bitrate})"


class MediaInfo:
    """Probe result for a source video."""

    def __init__(self, width: int, height: int, duration_seconds: float):
        self.width = width
        self.height = height
        self.duration_seconds = duration_seconds


class Rendition:
    """Local output of one rendition: its playlist and segment files."""

    def __init__(self, spec: RenditionSpec, playlist_path: str, segment_paths: List[str]):
        self.spec = spec
        self.playlist_path = playlist_path
        self.segment_paths = segment_paths


class TranscodeOutput:
    """Everything the external transcoder produced for one input."""

    def __init__(self, manifest_path: str, renditions: List[Rendition], duration_seconds: float):
        self.manifest_path = manifest_path
        self.renditions = renditions
        self.duration_seconds = duration_seconds


class TranscodeJob:
    """Domain model for one transcode of an uploaded video."""

    def __init__(self, operation_id: str, source_path: str, input_key: str, ladder: List[RenditionSpec]):
        self.operation_id = operation_id
        self.source_path = source_path
        self.input_key = input_key
        self.ladder = ladder
        self.status = JobStatus.QUEUED
        self.output: Optional[TranscodeOutput] = None
        self.duration_seconds: Optional[float] = None
        self.published_keys: List[str] = []
        self.manifest_key: Optional[str] = None

    def __repr__(self):
        return f"TranscodeJob(operation_id={self.operation_id}, status={self.status.value})"


def parse_ladder(value: str) -> List[RenditionSpec]:
    """
    Parse a ladder string such as "360:800k,720:2500k".

    Returns:
        Rungs sorted by ascending height

    Raises:
        ValueError: If a rung is malformed
    """
    rungs = []
    for item in value.split(','):
        item = item.strip()
        if not item:
            continue
        height, _, bitrate = item.partition(':')
        if not bitrate:
            raise ValueError(f"Invalid rendition rung: {item}")
        rungs.append(RenditionSpec(int(height), bitrate.strip()))
    return sorted(rungs, key=lambda rung: rung.height)


def select_ladder(ladder: List[RenditionSpec], source_height: int) -> List[RenditionSpec]:
    """Rungs at or below the source height, or the lowest rung when none fit."""
    selected = [rung for rung in ladder if rung.height <= source_height]
    if not selected and ladder:
        selected = [ladder[0]]
    return selected
