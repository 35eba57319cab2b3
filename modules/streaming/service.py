"""
Streaming service

Entry point for collaborators (HTTP routes, GraphQL resolvers, ...). Maps a
numeric media id to its source file through the media lookup, then drives the
scheduler and the metadata probe.
"""

import os
import logging
from typing import Callable, Optional, Dict, Any, List

from .config import StreamingConfig
from .exceptions import MediaNotFound, SourceNotFound
from .metadata import MetadataProbe
from .models import MediaMetadata, ThumbnailOptions
from .scheduler import TranscodeScheduler, StartTime

logger = logging.getLogger(__name__)

# media_id -> source file path, or None when the id is unknown
MediaLookup = Callable[[int], Optional[str]]


class StreamingService:
    """Facade over TranscodeScheduler and MetadataProbe

    Args:
        config: streaming config
        media_lookup: read-only media catalog lookup
        scheduler: transcode scheduler, built from config when omitted
        probe: metadata probe, built from config when omitted
    """

    def __init__(
        self,
        config: StreamingConfig,
        media_lookup: MediaLookup,
        scheduler: Optional[TranscodeScheduler] = None,
        probe: Optional[MetadataProbe] = None,
    ):
        self.config = config
        self.media_lookup = media_lookup
        self.scheduler = scheduler if scheduler is not None else TranscodeScheduler(config)
        self.probe = probe if probe is not None else MetadataProbe(config)

    def resolve_source(self, media_id) -> str:
        """Source file of a media id

        Raises:
            MediaNotFound: the lookup has no entry
            SourceNotFound: the file is not on disk
        """
        file_path = self.media_lookup(media_id)
        if not file_path:
            raise MediaNotFound(media_id)
        if not os.path.exists(file_path):
            raise SourceNotFound(file_path)
        return file_path

    def start_stream(
        self,
        media_id,
        quality: Optional[str] = None,
        start_time: StartTime = None,
    ) -> Dict[str, Any]:
        """Transcode (or reuse) a stream and return where to play it

        Returns:
            {stream_url, playlist, quality, available_qualities}
        """
        quality = quality or self.config.default_quality
        file_path = self.resolve_source(media_id)

        playlist = self.scheduler.generate_hls_playlist(
            media_id, file_path, quality, start_time=start_time
        )
        stream_url = self.scheduler.get_stream_url(media_id, quality)
        logger.info(f"Stream ready: media {media_id} at {quality} -> {stream_url}")

        return {
            "stream_url": stream_url,
            "playlist": playlist,
            "quality": quality,
            "available_qualities": self.scheduler.available_qualities(),
        }

    def stop_stream(self, media_id, quality: Optional[str] = None) -> None:
        self.scheduler.stop_stream(media_id, quality or self.config.default_quality)

    def stream_stats(self) -> Dict[str, Any]:
        return self.scheduler.get_stream_stats()

    def available_qualities(self) -> List[str]:
        return self.scheduler.available_qualities()

    def extract_metadata(self, media_id) -> MediaMetadata:
        return self.probe.extract_metadata(self.resolve_source(media_id))

    def generate_thumbnail(self, media_id, options: Optional[ThumbnailOptions] = None) -> str:
        """Thumbnail for a media id

        Returns:
            relative URL under /thumbnails/
        """
        return self.thumbnail_url(self.generate_thumbnail_file(media_id, options))

    def generate_thumbnail_file(self, media_id, options: Optional[ThumbnailOptions] = None) -> str:
        """Same as generate_thumbnail, returning the file path"""
        return self.probe.generate_thumbnail(self.resolve_source(media_id), None, options)

    def generate_multiple_thumbnails(self, media_id, count: int = 5) -> List[str]:
        """Evenly spaced thumbnails for a media id

        Returns:
            list of written paths (failed frames are skipped)
        """
        file_path = self.resolve_source(media_id)
        return list(self.probe.generate_multiple_thumbnails(file_path, count))

    def generate_poster(self, media_id, options: Optional[ThumbnailOptions] = None) -> str:
        return self.probe.generate_poster(self.resolve_source(media_id), None, options)

    def check_video_file(self, file_path: str) -> Dict[str, Any]:
        """Whether a file is a video, plus the formats ffmpeg handles

        Raises:
            SourceNotFound: the file is not on disk
        """
        if not os.path.exists(file_path):
            raise SourceNotFound(file_path)
        return {
            "is_video": self.probe.is_video_file(file_path),
            "supported_formats": self.probe.get_supported_formats(),
        }

    def thumbnail_url(self, path: str) -> str:
        """URL of an image under the thumbnails root (subdirectories kept)"""
        root = os.path.abspath(self.config.thumbnails_dir)
        path = os.path.abspath(path)
        if os.path.commonpath([root, path]) == root:
            relative = os.path.relpath(path, root)
        else:
            relative = os.path.basename(path)
        return "/thumbnails/" + relative.replace(os.sep, "/")

    def shutdown(self) -> None:
        self.scheduler.shutdown()
