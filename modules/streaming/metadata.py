"""
Media metadata and thumbnails

Extracts container/stream/subtitle/chapter information with ffprobe and
single-frame images with ffmpeg.
"""

import os
import subprocess
import logging
from typing import Optional, Dict, Any, Iterator, List

from .config import StreamingConfig
from .exceptions import SourceNotFound, ProbeFailed, ThumbnailFailed
from .ffmpeg import FFmpegRunner
from .ffprobe import FFprobeRunner
from .models import (
    MediaMetadata,
    VideoStream,
    AudioStream,
    SubtitleTrack,
    Chapter,
    ThumbnailOptions,
)

logger = logging.getLogger(__name__)

FALLBACK_FORMATS = ["mp4", "mkv", "avi", "mov", "wmv", "flv", "webm"]

# format_name fragment -> short container name, checked in order
_CONTAINER_NAMES = (
    ("mp4", "mp4"),
    ("matroska", "mkv"),
    ("avi", "avi"),
    ("mov", "mov"),
    ("wmv", "wmv"),
    ("flv", "flv"),
    ("webm", "webm"),
)


def parse_frame_rate(frame_rate: Optional[str]) -> float:
    """Parse an ffprobe rational frame rate

    Args:
        frame_rate: "num/den" string, e.g. "30000/1001"

    Returns:
        fps rounded to 2 decimals, 0 when absent or den == 0
    """
    if not frame_rate:
        return 0
    try:
        if "/" in frame_rate:
            num, den = frame_rate.split("/", 1)
            num, den = float(num), float(den)
        else:
            num, den = float(frame_rate), 1.0
    except ValueError:
        return 0
    if den == 0:
        return 0
    return round(num / den, 2)


def greatest_common_divisor(a: int, b: int) -> int:
    # Euclid, iterative
    a, b = abs(a), abs(b)
    while b:
        a, b = b, a % b
    return a


def calculate_aspect_ratio(width: int, height: int) -> str:
    """Reduced "w:h" ratio, "unknown" when a dimension is 0"""
    if width == 0 or height == 0:
        return "unknown"
    gcd = greatest_common_divisor(width, height)
    return f"{width // gcd}:{height // gcd}"


def get_file_format(format_name: Optional[str]) -> str:
    """Short container name from ffprobe's format_name ("mov,mp4,m4a,..." -> "mp4")"""
    format_name = format_name or ""
    for fragment, name in _CONTAINER_NAMES:
        if fragment in format_name:
            return name
    return format_name.split(",")[0] or "unknown"


def seconds_to_timestamp(seconds: float) -> str:
    """Format seconds as HH:MM:SS"""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def _to_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 0


def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class MetadataProbe:
    """Metadata extraction and thumbnail generation for source files"""

    def __init__(
        self,
        config: StreamingConfig,
        ffprobe_runner: Optional[FFprobeRunner] = None,
        ffmpeg_runner: Optional[FFmpegRunner] = None,
    ):
        self.config = config
        if ffprobe_runner is None:
            ffprobe_runner = FFprobeRunner(config.ffprobe_path, config.probe_timeout)
        self.ffprobe_runner = ffprobe_runner
        self.ffmpeg_runner = ffmpeg_runner if ffmpeg_runner is not None else FFmpegRunner(config)

    def extract_metadata(self, file_path: str) -> MediaMetadata:
        """Extract the full metadata of a media file

        Args:
            file_path: source file

        Returns:
            MediaMetadata

        Raises:
            SourceNotFound: file does not exist
            ProbeFailed: ffprobe failed or printed something unexpected
        """
        if not os.path.exists(file_path):
            raise SourceNotFound(file_path)

        logger.info(f"Extracting metadata from: {file_path}")
        data = self.ffprobe_runner.probe(file_path)

        try:
            metadata = self._parse_probe_output(data, file_path)
        except (AttributeError, KeyError, TypeError) as e:
            logger.error(f"Unexpected ffprobe structure for {file_path}: {e}")
            raise ProbeFailed("Unexpected ffprobe output structure", str(e)) from e

        # Images generated earlier for this file
        thumbnail = self.default_thumbnail_path(file_path)
        if os.path.exists(thumbnail):
            metadata.thumbnail = thumbnail
        poster = self.default_poster_path(file_path)
        if os.path.exists(poster):
            metadata.poster = poster

        logger.info(f"Metadata extracted successfully for: {metadata.filename}")
        return metadata

    def _parse_probe_output(self, data: Dict[str, Any], file_path: str) -> MediaMetadata:
        format_info = data.get("format") or {}
        streams = data.get("streams") or []

        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
        audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)
        subtitle_streams = [s for s in streams if s.get("codec_type") == "subtitle"]

        return MediaMetadata(
            filename=os.path.basename(file_path),
            filepath=file_path,
            filesize=os.path.getsize(file_path),
            format=get_file_format(format_info.get("format_name")),
            video=self._extract_video(video_stream, format_info) if video_stream else None,
            audio=self._extract_audio(audio_stream) if audio_stream else None,
            subtitles=self._extract_subtitles(subtitle_streams),
            chapters=self._extract_chapters(data.get("chapters") or []),
        )

    def _extract_video(self, stream: Dict[str, Any], format_info: Dict[str, Any]) -> VideoStream:
        width = _to_int(stream.get("width"))
        height = _to_int(stream.get("height"))
        return VideoStream(
            width=width,
            height=height,
            codec=stream.get("codec_name") or "unknown",
            fps=parse_frame_rate(stream.get("r_frame_rate") or stream.get("avg_frame_rate")),
            bitrate=_to_int(format_info.get("bit_rate")) or _to_int(stream.get("bit_rate")),
            duration=_to_float(format_info.get("duration")),
            size=_to_int(format_info.get("size")),
            aspect_ratio=calculate_aspect_ratio(width, height),
        )

    def _extract_audio(self, stream: Dict[str, Any]) -> AudioStream:
        return AudioStream(
            codec=stream.get("codec_name") or "unknown",
            bitrate=_to_int(stream.get("bit_rate")),
            sample_rate=_to_int(stream.get("sample_rate")),
            channels=_to_int(stream.get("channels")),
            channel_layout=stream.get("channel_layout") or "unknown",
        )

    def _extract_subtitles(self, streams: List[Dict[str, Any]]) -> List[SubtitleTrack]:
        tracks = []
        for index, stream in enumerate(streams):
            tags = stream.get("tags") or {}
            disposition = stream.get("disposition") or {}
            tracks.append(SubtitleTrack(
                index=index,
                codec=stream.get("codec_name") or "unknown",
                language=tags.get("language"),
                title=tags.get("title"),
                forced=disposition.get("forced") == 1,
                default=disposition.get("default") == 1,
            ))
        return tracks

    def _extract_chapters(self, chapters: List[Dict[str, Any]]) -> List[Chapter]:
        return [
            Chapter(
                id=_to_int(chapter.get("id")),
                start=_to_float(chapter.get("start_time")),
                end=_to_float(chapter.get("end_time")),
                title=(chapter.get("tags") or {}).get("title"),
            )
            for chapter in chapters
        ]

    def default_thumbnail_path(self, file_path: str) -> str:
        return os.path.join(self.config.thumbnails_dir, f"{_stem(file_path)}_thumb.jpg")

    def default_poster_path(self, file_path: str) -> str:
        return os.path.join(self.config.posters_dir, f"{_stem(file_path)}_poster.jpg")

    def generate_thumbnail(
        self,
        file_path: str,
        output_path: Optional[str] = None,
        options: Optional[ThumbnailOptions] = None,
    ) -> str:
        """Extract one frame as a JPEG

        Args:
            file_path: source file
            output_path: target image, defaults to {thumbnails_dir}/{basename}_thumb.jpg
            options: timestamp/size/quality

        Returns:
            path of the written image

        Raises:
            SourceNotFound: file does not exist
            ThumbnailFailed: ffmpeg failed or wrote nothing
        """
        if not os.path.exists(file_path):
            raise SourceNotFound(file_path)

        options = options or ThumbnailOptions()
        timestamp = options.timestamp or self.config.default_thumbnail_timestamp

        output_path = output_path or self.default_thumbnail_path(file_path)
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        # An image left by an earlier run must not pass for this one
        try:
            os.remove(output_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ThumbnailFailed(f"Cannot replace existing image {output_path}", str(e)) from e

        command = self.ffmpeg_runner.build_thumbnail_command(
            file_path, output_path, timestamp, options.width, options.height, options.quality
        )
        logger.info(f"Generating thumbnail: {self.ffmpeg_runner.get_command_line_string(command)}")
        return_code, stderr = self.ffmpeg_runner.run(command)

        if return_code != 0:
            logger.error(f"Thumbnail generation failed for {file_path} (code {return_code})")
            raise ThumbnailFailed(f"ffmpeg exited with code {return_code}", stderr)
        if not os.path.exists(output_path):
            raise ThumbnailFailed("Thumbnail generation failed - output file not created", stderr)

        logger.info(f"Thumbnail generated: {output_path}")
        return output_path

    def generate_poster(
        self,
        file_path: str,
        output_path: Optional[str] = None,
        options: Optional[ThumbnailOptions] = None,
    ) -> str:
        """Poster (cover) image, 600x900 by default, in {posters_dir}/{basename}_poster.jpg"""
        options = options or ThumbnailOptions(width=600, height=900)
        output_path = output_path or self.default_poster_path(file_path)
        return self.generate_thumbnail(file_path, output_path, options)

    def generate_multiple_thumbnails(
        self,
        file_path: str,
        count: int = 5,
        output_dir: Optional[str] = None,
    ) -> Iterator[str]:
        """Yield thumbnails taken at ``count`` evenly spaced timestamps

        Timestamps are interval * i for i in 1..count, with
        interval = duration / (count + 1). A failed frame is logged and skipped.

        Args:
            file_path: source file
            count: number of thumbnails
            output_dir: defaults to {thumbnails_dir}/{basename}

        Yields:
            path of each written image
        """
        if not os.path.exists(file_path):
            raise SourceNotFound(file_path)
        if count <= 0:
            return

        metadata = self.extract_metadata(file_path)
        if not metadata.video:
            raise ProbeFailed("No video stream found in file")

        interval = metadata.video.duration / (count + 1)
        output_dir = output_dir or os.path.join(self.config.thumbnails_dir, _stem(file_path))
        os.makedirs(output_dir, exist_ok=True)

        for i in range(1, count + 1):
            output_path = os.path.join(output_dir, f"thumb_{i:02d}.jpg")
            options = ThumbnailOptions(timestamp=seconds_to_timestamp(interval * i))
            try:
                yield self.generate_thumbnail(file_path, output_path, options)
            except ThumbnailFailed as e:
                logger.warning(f"Failed to generate thumbnail {i} for {file_path}: {e}")

    def is_video_file(self, file_path: str) -> bool:
        """True when ffprobe reports a video stream; any probe error counts as False"""
        try:
            return self.ffprobe_runner.first_video_stream_type(file_path) == "video"
        except ProbeFailed as e:
            logger.debug(f"is_video_file probe failed for {file_path}: {e}")
            return False

    def get_video_duration(self, file_path: str) -> float:
        return self.ffprobe_runner.get_duration(file_path)

    def get_supported_formats(self) -> List[str]:
        """Container formats ffmpeg can read and write, or a fallback list"""
        try:
            formats = self.ffmpeg_runner.list_formats()
        except (OSError, subprocess.CalledProcessError) as e:
            logger.warning(f"Failed to get supported formats: {e}")
            return list(FALLBACK_FORMATS)
        return formats or list(FALLBACK_FORMATS)


def _stem(file_path: str) -> str:
    return os.path.splitext(os.path.basename(file_path))[0]
