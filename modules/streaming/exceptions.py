"""
Errors raised by the streaming subsystem. The HTTP layer maps them to
status codes; everything else lets them propagate to the caller.
"""

from typing import Optional, Sequence


def _excerpt(text: Optional[str], limit: int = 500) -> str:
    """Keep the tail of a subprocess diagnostic, where ffmpeg puts the cause."""
    if not text:
        return ""
    text = text.strip()
    if len(text) <= limit:
        return text
    return "..." + text[-limit:]


class StreamingError(Exception):
    """Base exception for all streaming errors."""
    pass


class MediaNotFound(StreamingError):
    """Raised when the media lookup has no entry for an id."""

    def __init__(self, media_id):
        super().__init__(f"Media not found: {media_id}")
        self.media_id = media_id


class SourceNotFound(StreamingError):
    """Raised when a source file is missing on disk."""

    def __init__(self, file_path: str):
        super().__init__(f"Source file not found: {file_path}")
        self.file_path = file_path


class UnsupportedQuality(StreamingError):
    """Raised for a quality name that is not on the ladder."""

    def __init__(self, quality: str, available: Sequence[str] = ()):
        super().__init__(f"Unsupported quality: {quality}")
        self.quality = quality
        self.available = list(available)


class ResourceExhausted(StreamingError):
    """Raised when every transcoding slot is taken."""

    def __init__(self, limit: int):
        super().__init__(f"Maximum concurrent streams reached ({limit})")
        self.limit = limit


class SubprocessError(StreamingError):
    """Base class for failures of an external tool.

    Carries a short excerpt of the tool's stderr in ``detail``.
    """

    def __init__(self, message: str, detail: Optional[str] = None):
        self.detail = _excerpt(detail)
        if self.detail:
            message = f"{message}: {self.detail}"
        super().__init__(message)


class ProbeFailed(SubprocessError):
    """Raised when ffprobe fails or its output cannot be parsed."""
    pass


class TranscodeFailed(SubprocessError):
    """Raised when the HLS transcode fails or produces no playlist."""
    pass


class ThumbnailFailed(SubprocessError):
    """Raised when frame extraction does not produce an image."""
    pass


class NotReady(StreamingError):
    """Raised when a playlist is requested before it is complete."""
    pass
