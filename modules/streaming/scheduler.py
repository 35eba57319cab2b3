"""
Transcode scheduler

Admission-controlled HLS transcoding:
- reuse a complete playlist on disk without starting ffmpeg
- reject new work once every slot is taken (no queue)
- run ffmpeg for the caller, purge partial output on failure
- arm an idle cleanup per stream, cancel it on stop or re-transcode
"""

import os
import math
import logging
from typing import Dict, Any, List, Optional, Union

from .config import StreamingConfig
from .exceptions import (
    NotReady,
    SourceNotFound,
    TranscodeFailed,
    UnsupportedQuality,
)
from .ffmpeg import FFmpegRunner, terminate_process
from .job import TranscodeJob
from .metadata import seconds_to_timestamp
from .models import HLSPlaylist
from .playlist import PlaylistStore
from .quality import QualityLadder
from .registry import ActiveJobRegistry

logger = logging.getLogger(__name__)

StartTime = Union[str, int, float, None]


def normalize_start_time(start_time: StartTime) -> str:
    """Seek offset for ffmpeg: seconds become HH:MM:SS, strings pass through

    Args:
        start_time: seconds, "HH:MM:SS" string, or None

    Returns:
        timestamp string, "00:00:00" by default

    Raises:
        ValueError: negative or non-finite seconds
    """
    if start_time is None or start_time == "":
        return "00:00:00"
    if isinstance(start_time, (int, float)):
        if not math.isfinite(start_time):
            raise ValueError(f"Start time must be finite: {start_time}")
        if start_time < 0:
            raise ValueError(f"Negative start time: {start_time}")
        return seconds_to_timestamp(start_time)
    return str(start_time).strip()


class TranscodeScheduler:
    """Transcode scheduler

    Args:
        config: streaming config
        ladder: quality ladder, defaults to the one built from config
        store: playlist store
        registry: active job registry, defaults to one capped at
            config.max_concurrent_streams
        ffmpeg_runner: ffmpeg runner
    """

    def __init__(
        self,
        config: StreamingConfig,
        ladder: Optional[QualityLadder] = None,
        store: Optional[PlaylistStore] = None,
        registry: Optional[ActiveJobRegistry] = None,
        ffmpeg_runner: Optional[FFmpegRunner] = None,
    ):
        self.config = config
        self.ladder = ladder if ladder is not None else config.build_ladder()
        self.store = store if store is not None else PlaylistStore(config)
        self.registry = (
            registry if registry is not None
            else ActiveJobRegistry(config.max_concurrent_streams)
        )
        self.ffmpeg_runner = ffmpeg_runner if ffmpeg_runner is not None else FFmpegRunner(config)

    def generate_hls_playlist(
        self,
        media_id,
        file_path: str,
        quality: str,
        start_time: StartTime = None,
    ) -> HLSPlaylist:
        """Produce (or reuse) the HLS output for one (media, quality) pair

        Blocks for the whole transcode when one is needed.

        Args:
            media_id: numeric media id
            file_path: source file
            quality: quality name from the ladder
            start_time: seek offset, seconds or "HH:MM:SS"

        Returns:
            parsed HLSPlaylist

        Raises:
            UnsupportedQuality: quality not on the ladder
            SourceNotFound: source file missing
            ResourceExhausted: every slot is taken
            TranscodeFailed: ffmpeg failed, produced no complete playlist,
                or the stream was stopped meanwhile
        """
        preset = self.ladder.preset_for(quality)
        if preset is None:
            raise UnsupportedQuality(quality, self.ladder.supported_names())

        output_dir, playlist_path = self.store.canonical_paths(media_id, quality)

        if self.store.is_valid(playlist_path):
            logger.info(f"Using existing HLS playlist: {playlist_path}")
            return self.store.parse(playlist_path)

        if not os.path.exists(file_path):
            raise SourceNotFound(file_path)

        seek = normalize_start_time(start_time)

        job, owner = self.registry.acquire(media_id, quality, output_dir, playlist_path)
        if not owner:
            return self._wait_for_job(job)

        try:
            self._prepare_output_dir(output_dir)
            self._run_transcode(job, file_path, preset, seek)
        except (TranscodeFailed, OSError) as e:
            # Partial output is purged only while we still own the directory;
            # a concurrent stop has already purged it otherwise.
            still_owned = self.registry.release(job, on_release=self._purge_job)
            job.mark_failed(str(e))
            if not still_owned:
                raise TranscodeFailed(f"Stream {media_id}/{quality} was stopped during transcoding") from e
            if isinstance(e, OSError):
                raise TranscodeFailed("Transcoding failed", str(e)) from e
            raise
        except BaseException:
            self.registry.release(job, on_release=self._purge_job)
            job.mark_failed("interrupted")
            raise

        if not self.registry.mark_ready(job, self.config.cleanup_delay, self._on_cleanup_expired):
            job.mark_failed("stopped")
            raise TranscodeFailed(f"Stream {media_id}/{quality} was stopped during transcoding")

        logger.info(f"HLS transcoding completed: {playlist_path}")
        return self.store.parse(playlist_path)

    def _prepare_output_dir(self, output_dir: str) -> None:
        os.makedirs(output_dir, exist_ok=True)
        # Leftovers from an earlier failed or stopped attempt
        self.store.purge(output_dir)

    def _run_transcode(self, job: TranscodeJob, file_path: str, preset, seek: str) -> None:
        command = self.ffmpeg_runner.build_hls_command(
            file_path,
            job.playlist_path,
            os.path.join(job.output_dir, self.config.segment_name),
            preset,
            start_time=seek,
        )
        logger.info(f"Starting HLS transcoding: {self.ffmpeg_runner.get_command_line_string(command)}")

        process = self.ffmpeg_runner.start_process(command)
        if process is None:
            raise TranscodeFailed("Failed to start FFmpeg process")

        with self.registry.lock:
            if not self.registry.owns(job):
                # Stopped between admission and process start
                terminate_process(process)
                raise TranscodeFailed(f"Stream {job.key} was stopped before transcoding started")
            job.process = process

        return_code, stderr = self.ffmpeg_runner.wait(process)
        if return_code != 0:
            logger.error(f"FFmpeg transcoding failed for {job.key} with code {return_code}")
            raise TranscodeFailed(f"FFmpeg exited with code {return_code}", stderr)

        if not os.path.exists(job.playlist_path):
            raise TranscodeFailed("Failed to generate HLS playlist", stderr)
        if not self.store.is_valid(job.playlist_path):
            raise TranscodeFailed("HLS playlist is missing the end-of-list marker", stderr)

    def _wait_for_job(self, job: TranscodeJob) -> HLSPlaylist:
        """Wait for a transcode another caller is running for the same key"""
        logger.info(f"Waiting for running transcode of {job.key}")
        job.wait()
        if self.store.is_valid(job.playlist_path):
            return self.store.parse(job.playlist_path)
        raise TranscodeFailed(f"Concurrent transcode of {job.key} failed", job.error)

    def _purge_job(self, job: TranscodeJob) -> None:
        self.store.purge(job.output_dir)

    def _on_cleanup_expired(self, job: TranscodeJob) -> None:
        # Runs under the registry lock, entry already removed
        self.store.purge(job.output_dir)
        logger.info(f"Stream expired after idle window: {job.key}")

    def _terminate(self, job: TranscodeJob, process) -> None:
        # Never under the registry lock, terminate_process can block
        logger.info(f"Terminating FFmpeg for stopped stream {job.key}")
        try:
            terminate_process(process)
        except OSError as e:
            logger.warning(f"Error stopping FFmpeg process for {job.key}: {e}")

    def get_stream_url(self, media_id, quality: str) -> str:
        """Relative playlist URL, only once the playlist is complete

        Raises:
            NotReady: the playlist is missing or incomplete
        """
        _, playlist_path = self.store.canonical_paths(media_id, quality)
        if self.store.is_valid(playlist_path):
            return self.store.stream_url(media_id, quality)
        raise NotReady("Stream not available. Please generate HLS playlist first.")

    def stop_stream(self, media_id, quality: str) -> None:
        """Stop a stream: kill its transcode, cancel its cleanup, purge its files

        Idempotent; stopping an unknown key only purges its directory.
        """
        output_dir, _ = self.store.canonical_paths(media_id, quality)
        with self.registry.lock:
            job = self.registry.remove(media_id, quality)
            process = job.process if job is not None else None

        if process is not None:
            self._terminate(job, process)

        with self.registry.lock:
            # A new transcode admitted meanwhile owns the directory now
            if self.registry.get(media_id, quality) is None:
                self.store.purge(output_dir)
        logger.info(f"Stream stopped: {media_id}/{quality}")

    def is_stream_active(self, media_id, quality: str) -> bool:
        return self.registry.get(media_id, quality) is not None

    def available_qualities(self) -> List[str]:
        return self.ladder.supported_names()

    def get_stream_stats(self) -> Dict[str, Any]:
        """Read-only snapshot of the scheduler

        Returns:
            {active_count, max_concurrent, supported_qualities}
        """
        return {
            "active_count": len(self.registry),
            "max_concurrent": self.registry.max_entries,
            "supported_qualities": self.available_qualities(),
        }

    def shutdown(self) -> None:
        """Cancel every cleanup timer and terminate running transcodes

        Output stays on disk: a later start reuses complete playlists.
        """
        with self.registry.lock:
            running = [(job, job.process) for job in self.registry.jobs() if job.process is not None]
            count = self.registry.clear()

        for job, process in running:
            self._terminate(job, process)
        if count:
            logger.info(f"Scheduler shut down, released {count} streams")
