"""
FFmpeg process management

Builds and runs ffmpeg commands: HLS transcodes, single-frame extraction and
the format capability listing.
"""

import re
import subprocess
import logging
from typing import List, Optional, Tuple

from .config import StreamingConfig
from .quality import QualityPreset

logger = logging.getLogger(__name__)

_FORMAT_LINE = re.compile(r"DE\s+(\w+)")


class FFmpegRunner:
    """FFmpeg process manager

    Builds ffmpeg commands and starts the processes. Waiting is left to the
    caller so that a running transcode can be terminated from another thread.
    """

    def __init__(self, config: StreamingConfig):
        """Initialize the runner

        Args:
            config: streaming config
        """
        self.config = config
        self.ffmpeg_path = config.ffmpeg_path

    def build_hls_command(
        self,
        input_path: str,
        playlist_path: str,
        segment_pattern: str,
        preset: QualityPreset,
        start_time: str = "00:00:00",
    ) -> List[str]:
        """Build the HLS transcode command

        Args:
            input_path: source file
            playlist_path: playlist.m3u8 to write
            segment_pattern: segment filename pattern (segment_%03d.ts)
            preset: quality preset
            start_time: seek offset, "HH:MM:SS" or seconds

        Returns:
            ffmpeg argument list
        """
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", self.config.loglevel,
            "-y",
        ]

        # Input-side seek is faster
        cmd.extend(["-ss", str(start_time)])
        cmd.extend(["-i", input_path])

        # Video
        cmd.extend(["-c:v", self.config.video_encoder])
        if "x264" in self.config.video_encoder.lower():
            cmd.extend(["-preset", self.config.x264_preset])
        cmd.extend(self._get_video_params(preset))

        # Audio
        cmd.extend(["-c:a", self.config.audio_encoder])
        cmd.extend(self._get_audio_params(preset))

        cmd.extend(self._get_hls_params(segment_pattern))
        cmd.append(playlist_path)
        return cmd

    def _get_video_params(self, preset: QualityPreset) -> List[str]:
        return [
            "-crf", str(self.config.crf),
            "-b:v", preset.video_bitrate,
            "-maxrate", preset.maxrate,
            "-bufsize", preset.bufsize,
            "-vf", f"scale={preset.resolution}",
        ]

    def _get_audio_params(self, preset: QualityPreset) -> List[str]:
        params = ["-b:a", preset.audio_bitrate]
        if self.config.audio_channels:
            params.extend(["-ac", str(self.config.audio_channels)])
        if self.config.audio_sample_rate:
            params.extend(["-ar", str(self.config.audio_sample_rate)])
        return params

    def _get_hls_params(self, segment_pattern: str) -> List[str]:
        """HLS muxer options

        hls_list_size 0 keeps every segment in the playlist; delete_segments
        prunes files that drop out of it; the muxer writes #EXT-X-ENDLIST
        when the input ends.
        """
        return [
            "-f", "hls",
            "-hls_time", str(self.config.segment_duration),
            "-hls_list_size", "0",
            "-hls_flags", "delete_segments",
            "-hls_segment_type", "mpegts",
            "-hls_segment_filename", segment_pattern,
        ]

    def build_thumbnail_command(
        self,
        input_path: str,
        output_path: str,
        timestamp: str,
        width: int,
        height: int,
        quality: int,
    ) -> List[str]:
        """Build a single-frame extraction command"""
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", self.config.loglevel,
            "-y",
            "-ss", str(timestamp),
            "-i", input_path,
            "-vframes", "1",
            "-vf", f"scale={width}:{height}",
            "-q:v", str(quality),
            output_path,
        ]

    def start_process(self, command: List[str]) -> Optional[subprocess.Popen]:
        """Start an ffmpeg process

        Args:
            command: ffmpeg command

        Returns:
            subprocess.Popen, or None when the process could not be started
        """
        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
            )
            logger.info(f"Started FFmpeg process with PID {process.pid}")
            return process
        except OSError as e:
            logger.error(f"Failed to start FFmpeg: {e}")
            return None

    def wait(self, process: subprocess.Popen) -> Tuple[int, str]:
        """Block until the process exits

        Returns:
            (exit code, stderr text)
        """
        _, stderr = process.communicate()
        return process.returncode, stderr or ""

    def run(self, command: List[str], timeout: Optional[float] = None) -> Tuple[int, str]:
        """Run a short ffmpeg command to completion

        Returns:
            (exit code, stderr text); exit code -1 when ffmpeg could not run
        """
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"FFmpeg timed out after {timeout}s")
            return -1, f"timeout ({timeout}s)"
        except OSError as e:
            logger.error(f"Failed to run FFmpeg: {e}")
            return -1, str(e)
        return result.returncode, result.stderr or ""

    def list_formats(self) -> List[str]:
        """Formats ffmpeg can both demux and mux

        Raises:
            OSError, subprocess.CalledProcessError: when ffmpeg cannot be run
        """
        result = subprocess.run(
            [self.ffmpeg_path, "-hide_banner", "-formats"],
            capture_output=True,
            text=True,
            errors="replace",
            check=True,
        )
        formats = []
        for line in result.stdout.splitlines():
            if "DE " in line:
                match = _FORMAT_LINE.search(line)
                if match:
                    formats.append(match.group(1))
        return formats

    @staticmethod
    def get_command_line_string(command: List[str]) -> str:
        """Command line string for logs"""
        return " ".join(command)


def terminate_process(process: subprocess.Popen, grace: float = 5) -> None:
    """Terminate a process, killing it if it does not exit within ``grace`` seconds"""
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


