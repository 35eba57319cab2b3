"""
Transcode job model

A job exists only while a (media, quality) pair holds a transcoding slot:
from the moment its transcode is admitted until it is stopped or its idle
cleanup fires.
"""

import time
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Tuple
from subprocess import Popen

JobKey = Tuple[str, str]


def make_key(media_id, quality: str) -> JobKey:
    """Registry key for a (media, quality) pair"""
    return (str(media_id), quality)


class JobState(Enum):
    """Job state"""
    TRANSCODING = "transcoding"  # ffmpeg is running
    READY = "ready"              # playlist complete, cleanup armed


@dataclass
class TranscodeJob:
    """Transcode job

    Mutated only while the owning registry's lock is held, except for
    ``process`` which the transcoding thread attaches before waiting on it.
    """

    media_id: str
    quality: str
    output_dir: str
    playlist_path: str

    state: JobState = JobState.TRANSCODING
    error: Optional[str] = None

    # Process info
    process: Optional[Popen] = None

    # Idle cleanup timer; exactly one per job
    cleanup_handle: Optional[Any] = None
    cleanup_generation: int = 0

    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    ready_at: Optional[float] = None

    # Set whenever a transcode attempt ends, whatever the outcome
    done: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def key(self) -> JobKey:
        return make_key(self.media_id, self.quality)

    def mark_transcoding(self):
        """Mark as transcoding (a new attempt begins)"""
        self.state = JobState.TRANSCODING
        self.error = None
        self.done.clear()
        self.updated_at = time.time()

    def mark_ready(self):
        """Mark as ready (playlist verified complete)"""
        self.state = JobState.READY
        self.process = None
        self.ready_at = time.time()
        self.updated_at = self.ready_at
        self.done.set()

    def mark_failed(self, error: str):
        """Record a failed attempt and wake any waiters

        Args:
            error: error message
        """
        self.error = error
        self.process = None
        self.updated_at = time.time()
        self.done.set()

    def is_transcoding(self) -> bool:
        return self.state == JobState.TRANSCODING

    def is_ready(self) -> bool:
        return self.state == JobState.READY

    def cancel_cleanup(self) -> bool:
        """Cancel the pending cleanup timer, if any

        Returns:
            whether a timer was cancelled
        """
        handle = self.cleanup_handle
        self.cleanup_handle = None
        if handle is None:
            return False
        handle.cancel()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the current transcode attempt to end"""
        return self.done.wait(timeout)

    def to_dict(self) -> Dict[str, Any]:
        """Dict form (for API responses)"""
        result = {
            "media_id": self.media_id,
            "quality": self.quality,
            "state": self.state.value,
            "output_dir": self.output_dir,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "cleanup_scheduled": self.cleanup_handle is not None,
        }
        if self.ready_at:
            result["ready_at"] = self.ready_at
        if self.error:
            result["error"] = self.error
        return result
