"""
FFprobe runner

Runs ffprobe against a source file and returns its JSON description.
"""

import json
import subprocess
import logging
from typing import Dict, Any, List

from .exceptions import ProbeFailed

logger = logging.getLogger(__name__)


class FFprobeRunner:
    """Runs ffprobe and decodes its output"""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: int = 30):
        """Initialize the runner

        Args:
            ffprobe_path: ffprobe executable
            timeout: per-call timeout (seconds)
        """
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def build_probe_command(self, file_path: str) -> List[str]:
        return [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            "-show_chapters",
            file_path,
        ]

    def probe(self, file_path: str) -> Dict[str, Any]:
        """Get the format/streams/chapters description of a file

        Args:
            file_path: source file

        Returns:
            decoded ffprobe JSON

        Raises:
            ProbeFailed: non-zero exit, timeout, missing binary or bad JSON
        """
        stdout = self._run(self.build_probe_command(file_path), file_path)
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse ffprobe output for {file_path}: {e}")
            raise ProbeFailed("Failed to parse ffprobe output", stdout[:200]) from e

        if not isinstance(data, dict) or not isinstance(data.get("streams", []), list):
            raise ProbeFailed("Unexpected ffprobe output structure", stdout[:200])
        return data

    def first_video_stream_type(self, file_path: str) -> str:
        """Codec type of the first video stream, "" when there is none

        Args:
            file_path: source file

        Returns:
            "video" or ""
        """
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-select_streams", "v:0",
            "-show_entries", "stream=codec_type",
            "-of", "csv=p=0",
            file_path,
        ]
        return self._run(cmd, file_path).strip()

    def get_duration(self, file_path: str) -> float:
        """Container duration in seconds

        Raises:
            ProbeFailed: when ffprobe fails or prints no number
        """
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-show_entries", "format=duration",
            "-of", "csv=p=0",
            file_path,
        ]
        output = self._run(cmd, file_path).strip()
        try:
            return float(output)
        except ValueError as e:
            raise ProbeFailed("Failed to get video duration", output) from e

    def _run(self, cmd: List[str], file_path: str) -> str:
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.error(f"ffprobe timeout after {self.timeout}s for {file_path}")
            raise ProbeFailed(f"ffprobe timeout ({self.timeout}s)") from e
        except FileNotFoundError as e:
            logger.error("ffprobe executable not found")
            raise ProbeFailed("ffprobe not found", str(e)) from e
        except OSError as e:
            logger.error(f"Failed to run ffprobe for {file_path}: {e}")
            raise ProbeFailed("Failed to run ffprobe", str(e)) from e

        if result.returncode != 0:
            error_msg = result.stderr.strip() or "Unknown ffprobe error"
            logger.warning(f"ffprobe error (code {result.returncode}) for {file_path}: {error_msg}")
            raise ProbeFailed(f"ffprobe exited with code {result.returncode}", error_msg)

        return result.stdout
