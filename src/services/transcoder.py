"""
External transcoder contract and its ffmpeg implementation.
Turns one source video into an HLS master manifest plus one segmented rendition per rung.
"""
import json
import os
import subprocess
from abc import ABC, abstractmethod
from typing import List
from src.core import config
from src.core.exceptions import TranscodeException
from src.core.logger import get_logger
from src.models.transcode_job import MediaInfo, Rendition, RenditionSpec, TranscodeOutput

logger = get_logger(__name__)

MASTER_MANIFEST_NAME = "master.m3u8"


class Transcoder(ABC):
    """Opaque transcoding capability: a blocking call that succeeds or fails."""

    @abstractmethod
    def probe(self, input_path: str) -> MediaInfo:
        """Read width, height and duration of a source video."""
        pass

    @abstractmethod
    def transcode(self, input_path: str, ladder: List[RenditionSpec], output_dir: str) -> TranscodeOutput:
        """Produce the manifest and one rendition per rung under output_dir."""
        pass


def build_master_manifest(renditions: List[Rendition]) -> str:
    """HLS master playlist referencing each rendition playlist by relative path."""
    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
    for rendition in renditions:
        spec = rendition.spec
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={spec.bandwidth},RESOLUTION={spec.width}x{spec.height}"
        )
        lines.append(f"{spec.name}/{os.path.basename(rendition.playlist_path)}")
    return "\n".join(lines) + "\n"


class FfmpegTranscoder(Transcoder):
    """Transcoder that shells out to ffprobe and ffmpeg."""

    def __init__(self, ffmpeg_path: str = None, ffprobe_path: str = None,
                 segment_seconds: int = None, timeout_seconds: int = None):
        self.ffmpeg_path = ffmpeg_path or config.settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or config.settings.ffprobe_path
        self.segment_seconds = segment_seconds or config.settings.hls_segment_seconds
        self.timeout_seconds = timeout_seconds or config.settings.transcode_timeout_seconds

    def probe(self, input_path: str) -> MediaInfo:
        """
        Extract video dimensions and duration using ffprobe.

        Raises:
            TranscodeException: If ffprobe fails or finds no video stream
        """
        cmd = [
            self.ffprobe_path,
            '-v', 'quiet',
            '-print_format', 'json',
            '-show_format',
            '-show_streams',
            input_path
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=60)
            metadata = json.loads(result.stdout)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError, ValueError) as e:
            raise TranscodeException("Failed to read video metadata", detail=str(e)) from e

        video = next(
            (stream for stream in metadata.get('streams', []) if stream.get('codec_type') == 'video'),
            None
        )
        if video is None:
            raise TranscodeException("No video stream found in upload")

        duration = metadata.get('format', {}).get('duration') or video.get('duration') or 0
        return MediaInfo(
            width=int(video.get('width') or 0),
            height=int(video.get('height') or 0),
            duration_seconds=round(float(duration), 2)
        )

    def transcode(self, input_path: str, ladder: List[RenditionSpec], output_dir: str) -> TranscodeOutput:
        """
        Generate one HLS rendition per rung, then the master manifest.

        Raises:
            TranscodeException: If any ffmpeg run fails
        """
        info = self.probe(input_path)
        renditions = []

        for spec in ladder:
            rendition_dir = os.path.join(output_dir, spec.name)
            os.makedirs(rendition_dir, exist_ok=True)
            playlist_path = os.path.join(rendition_dir, f"{spec.name}.m3u8")

            cmd = [
                self.ffmpeg_path, '-y',
                '-i', input_path,
                '-c:v', 'libx264',
                '-c:a', 'aac',
                '-b:v', spec.bitrate,
                '-b:a', '128k',
                '-vf', f'scale=-2:{spec.height}',
                '-preset', 'medium',
                '-crf', '23',
                '-hls_time', str(self.segment_seconds),
                '-hls_list_size', '0',
                '-hls_segment_filename', os.path.join(rendition_dir, 'segment_%03d.ts'),
                '-f', 'hls',
                playlist_path
            ]
            logger.info(f"Transcoding {spec.name} rendition of {input_path}")
            try:
                subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=self.timeout_seconds)
            except subprocess.CalledProcessError as e:
                raise TranscodeException(
                    f"Transcoding failed for {spec.name}", detail=(e.stderr or '')[-2000:]
                ) from e
            except (subprocess.TimeoutExpired, FileNotFoundError) as e:
                raise TranscodeException(f"Transcoding failed for {spec.name}", detail=str(e)) from e

            segments = sorted(
                os.path.join(rendition_dir, name)
                for name in os.listdir(rendition_dir)
                if name.endswith('.ts')
            )
            renditions.append(Rendition(spec, playlist_path, segments))

        manifest_path = os.path.join(output_dir, MASTER_MANIFEST_NAME)
        with open(manifest_path, 'w') as manifest:
            manifest.write(build_master_manifest(renditions))

        return TranscodeOutput(manifest_path, renditions, info.duration_seconds)
