"""
Active job registry

The one piece of shared mutable state: which (media, quality) keys currently
hold a transcoding slot, and the idle cleanup timer owned by each. Admission
(check capacity, then insert) happens under a single lock, and timer
callbacks take the same lock before touching an entry.

The registry only counts slots. Whether a playlist is ready is decided by
the files on disk.
"""

import threading
import logging
from typing import Callable, Dict, List, Optional, Tuple

from .exceptions import ResourceExhausted
from .job import JobKey, TranscodeJob, make_key

logger = logging.getLogger(__name__)

JobCallback = Callable[[TranscodeJob], None]


def default_timer_factory(interval: float, callback: Callable[[], None]):
    """Daemon threading.Timer"""
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


class ActiveJobRegistry:
    """Bounded registry of transcode jobs

    Args:
        max_entries: maximum number of keys held at once
        timer_factory: ``(interval, callback) -> timer`` where the timer has
            ``start()`` and ``cancel()``; defaults to threading.Timer
    """

    def __init__(self, max_entries: int, timer_factory=None):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.timer_factory = timer_factory or default_timer_factory
        self.lock = threading.RLock()
        self._jobs: Dict[JobKey, TranscodeJob] = {}

    def acquire(
        self,
        media_id,
        quality: str,
        output_dir: str,
        playlist_path: str,
    ) -> Tuple[TranscodeJob, bool]:
        """Atomically claim the slot for a key

        * key absent and capacity left: a new job in TRANSCODING is inserted
        * key absent and registry full: ResourceExhausted, nothing changes
        * key held and transcoding: the running job is returned, owner=False
        * key held and ready: the job goes back to TRANSCODING with its
          cleanup cancelled, owner=True

        Returns:
            (job, owner) where owner means the caller must run the transcode
        """
        key = make_key(media_id, quality)
        with self.lock:
            job = self._jobs.get(key)
            if job is not None:
                if job.is_transcoding():
                    return job, False
                job.cancel_cleanup()
                job.mark_transcoding()
                return job, True

            if len(self._jobs) >= self.max_entries:
                logger.warning(
                    f"Rejecting {key}: {len(self._jobs)}/{self.max_entries} slots in use"
                )
                raise ResourceExhausted(self.max_entries)

            job = TranscodeJob(
                media_id=key[0],
                quality=quality,
                output_dir=output_dir,
                playlist_path=playlist_path,
            )
            self._jobs[key] = job
            return job, True

    def owns(self, job: TranscodeJob) -> bool:
        """Whether this job object is still the registered one for its key"""
        with self.lock:
            return self._jobs.get(job.key) is job

    def get(self, media_id, quality: str) -> Optional[TranscodeJob]:
        with self.lock:
            return self._jobs.get(make_key(media_id, quality))

    def mark_ready(self, job: TranscodeJob, delay: float, on_expire: JobCallback) -> bool:
        """Mark a job ready and (re-)arm its cleanup

        Returns:
            False when the job was removed (stopped) while it was transcoding
        """
        with self.lock:
            if self._jobs.get(job.key) is not job:
                return False
            job.mark_ready()
            self._arm_cleanup(job, delay, on_expire)
            return True

    def _arm_cleanup(self, job: TranscodeJob, delay: float, on_expire: JobCallback) -> None:
        # Caller holds the lock
        job.cancel_cleanup()
        job.cleanup_generation += 1
        generation = job.cleanup_generation

        def fire():
            self._expire(job, generation, on_expire)

        handle = self.timer_factory(delay, fire)
        job.cleanup_handle = handle
        handle.start()
        logger.info(f"Cleanup scheduled for stream {job.key} in {delay}s")

    def _expire(self, job: TranscodeJob, generation: int, on_expire: JobCallback) -> None:
        with self.lock:
            if self._jobs.get(job.key) is not job or job.cleanup_generation != generation:
                # Stopped or re-armed since this timer was created
                return
            job.cleanup_handle = None
            del self._jobs[job.key]
            logger.info(f"Cleanup timer fired for stream {job.key}")
            on_expire(job)

    def release(self, job: TranscodeJob, on_release: Optional[JobCallback] = None) -> bool:
        """Drop a job after a failed attempt, if it is still registered

        ``on_release`` runs under the lock, only when the job was removed here.

        Returns:
            whether the job was removed
        """
        with self.lock:
            if self._jobs.get(job.key) is not job:
                return False
            job.cancel_cleanup()
            del self._jobs[job.key]
            if on_release is not None:
                on_release(job)
            return True

    def remove(
        self,
        media_id,
        quality: str,
        on_remove: Optional[JobCallback] = None,
    ) -> Optional[TranscodeJob]:
        """Remove a key and cancel its cleanup; no-op for absent keys

        ``on_remove`` runs under the lock with the removed job.
        """
        key = make_key(media_id, quality)
        with self.lock:
            job = self._jobs.pop(key, None)
            if job is None:
                return None
            job.cancel_cleanup()
            if on_remove is not None:
                on_remove(job)
            return job

    def clear(self, on_remove: Optional[JobCallback] = None) -> int:
        """Remove every job, cancelling all timers"""
        with self.lock:
            jobs = list(self._jobs.values())
            self._jobs.clear()
            for job in jobs:
                job.cancel_cleanup()
                if on_remove is not None:
                    on_remove(job)
            return len(jobs)

    def jobs(self) -> List[TranscodeJob]:
        with self.lock:
            return list(self._jobs.values())

    def __contains__(self, key) -> bool:
        with self.lock:
            return key in self._jobs

    def __len__(self) -> int:
        with self.lock:
            return len(self._jobs)
