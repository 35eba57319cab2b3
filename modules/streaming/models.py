"""
Media data models

Derived, never persisted: everything here is rebuilt from ffprobe output or
from a playlist file on each call.
"""

import time
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any


@dataclass
class VideoStream:
    """First video stream of a source"""

    width: int = 0
    height: int = 0
    codec: str = "unknown"
    fps: float = 0.0
    bitrate: int = 0
    duration: float = 0.0  # seconds
    size: int = 0  # container size in bytes
    aspect_ratio: str = "unknown"

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "resolution": self.resolution,
            "codec": self.codec,
            "fps": self.fps,
            "bitrate": self.bitrate,
            "duration": self.duration,
            "size": self.size,
            "aspect_ratio": self.aspect_ratio,
        }


@dataclass
class AudioStream:
    """First audio stream of a source"""

    codec: str = "unknown"
    bitrate: int = 0
    sample_rate: int = 0
    channels: int = 0
    channel_layout: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "codec": self.codec,
            "bitrate": self.bitrate,
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "channel_layout": self.channel_layout,
        }


@dataclass
class SubtitleTrack:
    index: int
    codec: str = "unknown"
    language: Optional[str] = None
    title: Optional[str] = None
    forced: bool = False
    default: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "codec": self.codec,
            "language": self.language,
            "title": self.title,
            "forced": self.forced,
            "default": self.default,
        }


@dataclass
class Chapter:
    id: int
    start: float
    end: float
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "start": self.start, "end": self.end, "title": self.title}


@dataclass
class MediaMetadata:
    """Container, stream, subtitle and chapter information of a source file

    Audio and video are optional: a source may have either one only.
    """

    filename: str
    filepath: str
    filesize: int = 0
    format: str = "unknown"
    video: Optional[VideoStream] = None
    audio: Optional[AudioStream] = None
    subtitles: List[SubtitleTrack] = field(default_factory=list)
    chapters: List[Chapter] = field(default_factory=list)
    thumbnail: Optional[str] = None
    poster: Optional[str] = None
    extracted_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """Dict form for API responses"""
        result = {
            "filename": self.filename,
            "filepath": self.filepath,
            "filesize": self.filesize,
            "format": self.format,
            "video": self.video.to_dict() if self.video else None,
            "audio": self.audio.to_dict() if self.audio else None,
            "subtitles": [track.to_dict() for track in self.subtitles],
            "chapters": [chapter.to_dict() for chapter in self.chapters],
            "extracted_at": self.extracted_at,
        }
        if self.thumbnail:
            result["thumbnail"] = self.thumbnail
        if self.poster:
            result["poster"] = self.poster
        return result


@dataclass
class ThumbnailOptions:
    """Frame extraction options

    ``quality`` is the mjpeg qscale, 1 (best) to 31.
    """

    timestamp: Optional[str] = None
    width: int = 320
    height: int = 180
    quality: int = 2


@dataclass
class HLSPlaylist:
    """Parsed view of a playlist.m3u8, recomputed on every read"""

    playlist_path: str
    segment_paths: List[str] = field(default_factory=list)
    total_duration: float = 0.0  # seconds, sum of #EXTINF durations
    ready: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.playlist_path,
            "duration": self.total_duration,
            "ready": self.ready,
            "segments": len(self.segment_paths),
        }
