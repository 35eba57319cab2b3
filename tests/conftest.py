"""Shared fixtures: temporary config, controllable timers and a fake ffmpeg."""

import os
import threading

import pytest

from modules.streaming.config import StreamingConfig
from modules.streaming.ffmpeg import FFmpegRunner

SEGMENT_DURATIONS = (10.0, 10.0, 5.0)


def write_playlist(playlist_path, durations=SEGMENT_DURATIONS, complete=True):
    """Write an HLS playlist plus its segment files, the way ffmpeg lays them out"""
    output_dir = os.path.dirname(playlist_path)
    os.makedirs(output_dir, exist_ok=True)
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-TARGETDURATION:10",
             "#EXT-X-MEDIA-SEQUENCE:0"]
    for i, duration in enumerate(durations):
        name = f"segment_{i:03d}.ts"
        with open(os.path.join(output_dir, name), "wb") as f:
            f.write(b"\x47" * 188)
        lines.append(f"#EXTINF:{duration:.6f},")
        lines.append(name)
    if complete:
        lines.append("#EXT-X-ENDLIST")
    with open(playlist_path, "w") as f:
        f.write("\n".join(lines) + "\n")


class FakeTimer:
    """Timer that only fires when the test says so"""

    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.callback()


class FakeTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, callback):
        timer = FakeTimer(interval, callback)
        self.timers.append(timer)
        return timer

    @property
    def live(self):
        return [t for t in self.timers if t.started and not t.cancelled]


class FakeProcess:
    """Stand-in for subprocess.Popen driven by FakeFFmpegRunner"""

    _next_pid = 1000

    def __init__(self, command):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.command = command
        self.returncode = None
        self.terminated = threading.Event()

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated.set()

    def kill(self):
        self.terminated.set()

    def wait(self, timeout=None):
        self.terminated.wait(timeout)
        return self.returncode


class FakeFFmpegRunner(FFmpegRunner):
    """Builds real commands but writes fixture output instead of transcoding

    mode: "ok" writes a complete playlist, "fail" writes a partial segment
    and exits 1, "incomplete" writes a playlist without #EXT-X-ENDLIST.
    Setting ``gate`` makes wait() block until the gate opens or the process
    is terminated.
    """

    def __init__(self, config, mode="ok", gate=None):
        super().__init__(config)
        self.mode = mode
        self.gate = gate
        self.commands = []
        self.started = threading.Semaphore(0)
        self._lock = threading.Lock()

    @property
    def calls(self):
        with self._lock:
            return len(self.commands)

    def start_process(self, command):
        with self._lock:
            self.commands.append(command)
        return FakeProcess(command)

    def wait(self, process):
        self.started.release()
        if self.gate is not None:
            while not self.gate.is_set() and not process.terminated.is_set():
                self.gate.wait(0.01)
        if process.terminated.is_set():
            process.returncode = 255
            return 255, "Exiting normally, received signal 15."

        playlist_path = process.command[-1]
        segment_pattern = process.command[process.command.index("-hls_segment_filename") + 1]
        output_dir = os.path.dirname(playlist_path)

        if self.mode == "fail":
            with open(segment_pattern % 0, "wb") as f:
                f.write(b"\x47" * 188)
            process.returncode = 1
            return 1, "Error while decoding stream #0:0: Invalid data found"

        write_playlist(playlist_path, complete=self.mode != "incomplete")
        assert os.path.dirname(segment_pattern) == output_dir
        process.returncode = 0
        return 0, ""


@pytest.fixture
def config(tmp_path):
    return StreamingConfig(
        hls_output_dir=str(tmp_path / "hls"),
        thumbnails_dir=str(tmp_path / "thumbnails"),
        posters_dir=str(tmp_path / "posters"),
        max_concurrent_streams=2,
        cleanup_delay=60,
    )


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "media" / "movie.mp4"
    path.parent.mkdir()
    path.write_bytes(b"not really a video")
    return str(path)


@pytest.fixture
def timers():
    return FakeTimerFactory()
