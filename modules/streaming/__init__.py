"""
HLS streaming module

On-demand HLS transcoding of local media files with ffmpeg.

Features:
- quality ladder (480p / 720p / 1080p) with per-preset bitrates
- complete playlists on disk are reused without re-transcoding
- bounded number of concurrent transcodes, excess requests are rejected
- idle streams are purged after a cleanup delay
- ffprobe metadata and ffmpeg thumbnails / posters
"""

from .config import StreamingConfig, get_streaming_config
from .exceptions import (
    StreamingError,
    MediaNotFound,
    SourceNotFound,
    UnsupportedQuality,
    ResourceExhausted,
    ProbeFailed,
    TranscodeFailed,
    ThumbnailFailed,
    NotReady,
)
from .quality import QualityPreset, QualityLadder
from .models import MediaMetadata, HLSPlaylist, ThumbnailOptions
from .ffprobe import FFprobeRunner
from .ffmpeg import FFmpegRunner
from .metadata import MetadataProbe
from .playlist import PlaylistStore
from .registry import ActiveJobRegistry
from .scheduler import TranscodeScheduler
from .service import StreamingService
from .api import init_streaming_service, get_streaming_service, register_routes

__all__ = [
    'StreamingConfig',
    'get_streaming_config',
    'StreamingError',
    'MediaNotFound',
    'SourceNotFound',
    'UnsupportedQuality',
    'ResourceExhausted',
    'ProbeFailed',
    'TranscodeFailed',
    'ThumbnailFailed',
    'NotReady',
    'QualityPreset',
    'QualityLadder',
    'MediaMetadata',
    'HLSPlaylist',
    'ThumbnailOptions',
    'FFprobeRunner',
    'FFmpegRunner',
    'MetadataProbe',
    'PlaylistStore',
    'ActiveJobRegistry',
    'TranscodeScheduler',
    'StreamingService',
    'init_streaming_service',
    'get_streaming_service',
    'register_routes',
]
