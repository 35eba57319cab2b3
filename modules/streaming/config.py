"""
Streaming configuration

Defines the streaming parameters and their defaults. Values come from the
"streaming" section of the application config and can be overridden by
environment variables.
"""

import os
import logging
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field

from .quality import QualityLadder

logger = logging.getLogger(__name__)

# Environment variable -> (config attribute, type)
ENV_OVERRIDES = {
    "HLS_OUTPUT_DIR": ("hls_output_dir", str),
    "THUMBNAILS_DIR": ("thumbnails_dir", str),
    "POSTERS_DIR": ("posters_dir", str),
    "MAX_CONCURRENT_STREAMS": ("max_concurrent_streams", int),
    "HLS_SEGMENT_DURATION": ("segment_duration", int),
    "HLS_CLEANUP_DELAY": ("cleanup_delay", int),
    "FFMPEG_PATH": ("ffmpeg_path", str),
    "FFPROBE_PATH": ("ffprobe_path", str),
}


@dataclass
class StreamingConfig:
    """Streaming configuration

    Read from the global config, with defaults tuned for small hardware.
    """

    # Output roots
    hls_output_dir: str = "/tmp/hls"
    thumbnails_dir: str = "/tmp/thumbnails"
    posters_dir: str = "/tmp/posters"

    # HLS
    segment_duration: int = 10  # seconds per segment
    playlist_name: str = "playlist.m3u8"
    segment_name: str = "segment_%03d.ts"

    # Admission control
    max_concurrent_streams: int = 2
    cleanup_delay: int = 2 * 60 * 60  # idle window before a ready stream is purged

    # External tools
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    loglevel: str = "warning"
    probe_timeout: int = 30  # ffprobe timeout (seconds)

    # Encoder
    video_encoder: str = "libx264"
    x264_preset: str = "veryfast"
    crf: int = 25
    audio_encoder: str = "aac"
    audio_channels: int = 2
    audio_sample_rate: int = 44100

    # Thumbnails
    default_thumbnail_timestamp: str = "00:01:00"

    # Requests without a quality use this one
    default_quality: str = "720p"

    # Optional ladder override, list of preset dicts
    qualities: Optional[List[Dict[str, Any]]] = field(default=None)

    @classmethod
    def from_app_config(cls, app_config: dict) -> 'StreamingConfig':
        """Create a StreamingConfig from the application config

        Args:
            app_config: global config dict

        Returns:
            StreamingConfig instance
        """
        section = (app_config or {}).get("streaming", {}) or {}

        config = cls()

        for key in ("hls_output_dir", "thumbnails_dir", "posters_dir",
                    "ffmpeg_path", "ffprobe_path", "loglevel", "video_encoder",
                    "x264_preset", "audio_encoder", "default_thumbnail_timestamp",
                    "default_quality"):
            if section.get(key):
                setattr(config, key, str(section[key]))

        for key in ("segment_duration", "max_concurrent_streams", "cleanup_delay",
                    "probe_timeout", "crf", "audio_channels", "audio_sample_rate"):
            if key in section:
                config._set_int(key, section[key])

        if section.get("qualities"):
            config.qualities = list(section["qualities"])

        return config

    def apply_env(self, environ: Optional[dict] = None) -> 'StreamingConfig':
        """Apply environment variable overrides in place

        Args:
            environ: mapping to read from, defaults to os.environ

        Returns:
            self
        """
        environ = os.environ if environ is None else environ
        for env_name, (attr, kind) in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if not value:
                continue
            if kind is int:
                self._set_int(attr, value)
            else:
                setattr(self, attr, value)
        return self

    def _set_int(self, attr: str, value) -> None:
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid value for {attr}: {value!r}, keeping {getattr(self, attr)}")
            return
        if parsed <= 0:
            logger.warning(f"Non-positive value for {attr}: {parsed}, keeping {getattr(self, attr)}")
            return
        setattr(self, attr, parsed)

    def build_ladder(self) -> QualityLadder:
        return QualityLadder.from_config(self.qualities)

    def get_output_dir(self, media_id, quality: str) -> str:
        """Output directory for one (media, quality) pair

        Args:
            media_id: numeric media id
            quality: quality name

        Returns:
            {hls_output_dir}/{media_id}/{quality}
        """
        return os.path.join(self.hls_output_dir, str(media_id), quality)

    def get_playlist_path(self, media_id, quality: str) -> str:
        return os.path.join(self.get_output_dir(media_id, quality), self.playlist_name)

    def get_segment_pattern(self, media_id, quality: str) -> str:
        """Segment filename pattern handed to ffmpeg, e.g. ".../segment_%03d.ts"."""
        return os.path.join(self.get_output_dir(media_id, quality), self.segment_name)


def get_streaming_config(app_config: dict, environ: Optional[dict] = None) -> StreamingConfig:
    """Convenience wrapper: read the config section, then apply env overrides

    Args:
        app_config: global config dict
        environ: environment mapping, defaults to os.environ

    Returns:
        StreamingConfig instance
    """
    return StreamingConfig.from_app_config(app_config).apply_env(environ)
