"""
HLS playlist store

Filesystem layout and parsing helpers for the playlist.m3u8 + segment files
that ffmpeg writes under {hls_output_dir}/{media_id}/{quality}/. The files
are the source of truth for readiness; nothing here is cached in memory.
"""

import os
import logging
from typing import Tuple

from .config import StreamingConfig
from .exceptions import NotReady
from .models import HLSPlaylist

logger = logging.getLogger(__name__)

HEADER_TAG = "#EXTM3U"
ENDLIST_TAG = "#EXT-X-ENDLIST"
DURATION_TAG = "#EXTINF:"
SEGMENT_SUFFIX = ".ts"


def is_complete(content: str) -> bool:
    """A playlist is complete when it has both the header and the end-of-list tag"""
    return HEADER_TAG in content and ENDLIST_TAG in content


class PlaylistStore:
    """Paths, validity checks and parsing for HLS output directories"""

    def __init__(self, config: StreamingConfig):
        self.config = config

    def canonical_paths(self, media_id, quality: str) -> Tuple[str, str]:
        """Output directory and playlist path for a key (no I/O)

        Args:
            media_id: numeric media id
            quality: quality name

        Returns:
            (output_dir, playlist_path)
        """
        return (
            self.config.get_output_dir(media_id, quality),
            self.config.get_playlist_path(media_id, quality),
        )

    def stream_url(self, media_id, quality: str) -> str:
        """Relative URL the HTTP layer serves the playlist under"""
        return f"/stream/{media_id}/{quality}/{self.config.playlist_name}"

    def is_valid(self, playlist_path: str) -> bool:
        """Check that a playlist exists and is complete

        Args:
            playlist_path: playlist.m3u8 path

        Returns:
            True when the file holds both #EXTM3U and #EXT-X-ENDLIST
        """
        try:
            with open(playlist_path, "r", encoding="utf-8", errors="replace") as f:
                return is_complete(f.read())
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to read playlist {playlist_path}: {e}")
            return False

    def parse(self, playlist_path: str) -> HLSPlaylist:
        """Parse a playlist file

        Sums the #EXTINF durations and resolves each segment line relative to
        the playlist directory.

        Args:
            playlist_path: playlist.m3u8 path

        Returns:
            HLSPlaylist

        Raises:
            NotReady: the playlist file cannot be read
        """
        try:
            with open(playlist_path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except OSError as e:
            raise NotReady(f"Failed to read playlist info: {playlist_path}") from e

        base_dir = os.path.dirname(playlist_path)
        segment_paths = []
        total_duration = 0.0

        for raw_line in content.splitlines():
            line = raw_line.strip()
            if line.startswith(DURATION_TAG):
                value = line[len(DURATION_TAG):].split(",", 1)[0]
                try:
                    total_duration += float(value)
                except ValueError:
                    logger.warning(f"Bad segment duration {value!r} in {playlist_path}")
            elif line.endswith(SEGMENT_SUFFIX) and not line.startswith("#"):
                segment_paths.append(os.path.join(base_dir, line))

        return HLSPlaylist(
            playlist_path=playlist_path,
            segment_paths=segment_paths,
            total_duration=total_duration,
            ready=is_complete(content),
        )

    def purge(self, output_dir: str) -> int:
        """Delete every file directly inside an output directory

        Best effort: failures are logged, never raised.

        Args:
            output_dir: directory to empty

        Returns:
            number of files removed
        """
        removed = 0
        try:
            names = os.listdir(output_dir)
        except FileNotFoundError:
            return 0
        except OSError as e:
            logger.warning(f"Failed to list {output_dir} for cleanup: {e}")
            return 0

        for name in names:
            file_path = os.path.join(output_dir, name)
            try:
                if os.path.isfile(file_path) or os.path.islink(file_path):
                    os.remove(file_path)
                    removed += 1
            except OSError as e:
                logger.warning(f"Failed to delete file {file_path}: {e}")

        if removed:
            logger.info(f"Cleaned up directory: {output_dir} ({removed} files)")
        return removed
