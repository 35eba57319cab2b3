import os
import threading

import pytest

from modules.streaming.exceptions import (
    NotReady,
    ResourceExhausted,
    SourceNotFound,
    TranscodeFailed,
    UnsupportedQuality,
)
from modules.streaming.playlist import PlaylistStore
from modules.streaming.quality import QualityLadder
from modules.streaming.registry import ActiveJobRegistry
from modules.streaming.scheduler import TranscodeScheduler, normalize_start_time

from conftest import FakeFFmpegRunner, write_playlist


def make_scheduler(config, timers, mode="ok", gate=None):
    runner = FakeFFmpegRunner(config, mode=mode, gate=gate)
    registry = ActiveJobRegistry(config.max_concurrent_streams, timer_factory=timers)
    return TranscodeScheduler(config, registry=registry, ffmpeg_runner=runner), runner


def run_in_thread(func, *args, **kwargs):
    outcome = {}

    def target():
        try:
            outcome["result"] = func(*args, **kwargs)
        except Exception as e:
            outcome["error"] = e

    thread = threading.Thread(target=target)
    thread.start()
    return thread, outcome


@pytest.mark.parametrize("start_time, expected", [
    (None, "00:00:00"),
    ("", "00:00:00"),
    (0, "00:00:00"),
    (75, "00:01:15"),
    (3725.9, "01:02:05"),
    (" 00:10:00 ", "00:10:00"),
])
def test_normalize_start_time(start_time, expected):
    assert normalize_start_time(start_time) == expected


def test_normalize_start_time_rejects_negative():
    with pytest.raises(ValueError):
        normalize_start_time(-1)


@pytest.mark.parametrize("start_time", [float("inf"), float("-inf"), float("nan")])
def test_normalize_start_time_rejects_non_finite(start_time):
    with pytest.raises(ValueError):
        normalize_start_time(start_time)


def test_injected_collaborators_are_kept(config, timers):
    registry = ActiveJobRegistry(2, timer_factory=timers)
    ladder = QualityLadder()
    store = PlaylistStore(config)

    scheduler = TranscodeScheduler(config, ladder=ladder, store=store, registry=registry)

    # Empty registry and ladder objects are still used as given
    assert scheduler.registry is registry
    assert scheduler.ladder is ladder
    assert scheduler.store is store


@pytest.mark.parametrize("quality", ["480p", "720p", "1080p"])
def test_each_quality_produces_a_valid_playlist(config, timers, source_file, quality):
    scheduler, runner = make_scheduler(config, timers)

    playlist = scheduler.generate_hls_playlist(1, source_file, quality)

    assert playlist.ready
    assert playlist.total_duration == pytest.approx(25.0)
    assert len(playlist.segment_paths) == 3
    assert playlist.playlist_path == config.get_playlist_path(1, quality)
    assert scheduler.get_stream_url(1, quality) == f"/stream/1/{quality}/playlist.m3u8"

    command = runner.commands[0]
    preset = scheduler.ladder.preset_for(quality)
    assert command[command.index("-vf") + 1] == f"scale={preset.resolution}"
    assert command[command.index("-b:v") + 1] == preset.video_bitrate
    assert command[-1] == config.get_playlist_path(1, quality)


def test_command_carries_seek_offset(config, timers, source_file):
    scheduler, runner = make_scheduler(config, timers)
    scheduler.generate_hls_playlist(1, source_file, "720p", start_time=90)
    command = runner.commands[0]
    assert command[command.index("-ss") + 1] == "00:01:30"


def test_unsupported_quality(config, timers, source_file):
    scheduler, runner = make_scheduler(config, timers)
    with pytest.raises(UnsupportedQuality) as exc_info:
        scheduler.generate_hls_playlist(1, source_file, "4k")
    assert exc_info.value.available == ["480p", "720p", "1080p"]
    assert runner.calls == 0
    assert len(scheduler.registry) == 0


def test_missing_source(config, timers, tmp_path):
    scheduler, runner = make_scheduler(config, timers)
    with pytest.raises(SourceNotFound):
        scheduler.generate_hls_playlist(1, str(tmp_path / "missing.mp4"), "720p")
    assert runner.calls == 0
    assert len(scheduler.registry) == 0


def test_second_request_hits_the_cache(config, timers, source_file):
    scheduler, runner = make_scheduler(config, timers)

    first = scheduler.generate_hls_playlist(1, source_file, "720p")
    second = scheduler.generate_hls_playlist(1, source_file, "720p")

    assert runner.calls == 1
    assert second.segment_paths == first.segment_paths
    assert second.total_duration == first.total_duration
    # A cache hit neither adds an entry nor arms another timer
    assert len(scheduler.registry) == 1
    assert len(timers.live) == 1


def test_existing_playlist_on_disk_is_reused(config, timers, source_file):
    scheduler, runner = make_scheduler(config, timers)
    write_playlist(config.get_playlist_path(5, "480p"))

    playlist = scheduler.generate_hls_playlist(5, source_file, "480p")

    assert runner.calls == 0
    assert playlist.ready
    assert not scheduler.is_stream_active(5, "480p")


def test_concurrency_cap(config, timers, source_file):
    gate = threading.Event()
    scheduler, runner = make_scheduler(config, timers, gate=gate)
    max_streams = config.max_concurrent_streams

    workers = [run_in_thread(scheduler.generate_hls_playlist, media_id, source_file, "720p")
               for media_id in range(1, max_streams + 2)]

    for _ in range(max_streams):
        assert runner.started.acquire(timeout=5)
    gate.set()
    for thread, _ in workers:
        thread.join(timeout=5)

    outcomes = [outcome for _, outcome in workers]
    succeeded = [o for o in outcomes if "result" in o]
    rejected = [o for o in outcomes if isinstance(o.get("error"), ResourceExhausted)]
    assert len(succeeded) == max_streams
    assert len(rejected) == 1
    assert runner.calls == max_streams

    rejected_ids = [media_id for media_id in range(1, max_streams + 2)
                    if not os.path.exists(config.get_output_dir(media_id, "720p"))]
    assert len(rejected_ids) == 1
    assert scheduler.get_stream_stats()["active_count"] == max_streams


def test_concurrent_requests_for_same_key_share_one_transcode(config, timers, source_file):
    gate = threading.Event()
    scheduler, runner = make_scheduler(config, timers, gate=gate)

    first_thread, first = run_in_thread(scheduler.generate_hls_playlist, 1, source_file, "720p")
    assert runner.started.acquire(timeout=5)
    second_thread, second = run_in_thread(scheduler.generate_hls_playlist, 1, source_file, "720p")

    gate.set()
    first_thread.join(timeout=5)
    second_thread.join(timeout=5)

    assert runner.calls == 1
    assert first["result"].ready
    assert second["result"].ready
    assert len(scheduler.registry) == 1


def test_failure_purges_output_and_frees_the_slot(config, timers, source_file):
    scheduler, runner = make_scheduler(config, timers, mode="fail")

    with pytest.raises(TranscodeFailed) as exc_info:
        scheduler.generate_hls_playlist(1, source_file, "720p")

    assert "Invalid data found" in str(exc_info.value)
    output_dir = config.get_output_dir(1, "720p")
    assert os.listdir(output_dir) == []
    assert len(scheduler.registry) == 0
    assert timers.timers == []
    with pytest.raises(NotReady):
        scheduler.get_stream_url(1, "720p")


def test_incomplete_playlist_is_a_failure(config, timers, source_file):
    scheduler, _ = make_scheduler(config, timers, mode="incomplete")

    with pytest.raises(TranscodeFailed):
        scheduler.generate_hls_playlist(1, source_file, "720p")

    assert os.listdir(config.get_output_dir(1, "720p")) == []
    assert len(scheduler.registry) == 0


def test_get_stream_url_before_generation(config, timers):
    scheduler, _ = make_scheduler(config, timers)
    with pytest.raises(NotReady):
        scheduler.get_stream_url(1, "720p")


def test_stop_stream_purges_and_cancels_timer(config, timers, source_file):
    scheduler, _ = make_scheduler(config, timers)
    scheduler.generate_hls_playlist(1, source_file, "720p")
    assert len(timers.live) == 1

    scheduler.stop_stream(1, "720p")

    assert os.listdir(config.get_output_dir(1, "720p")) == []
    assert timers.live == []
    assert not scheduler.is_stream_active(1, "720p")
    with pytest.raises(NotReady):
        scheduler.get_stream_url(1, "720p")

    # Stopping again is a no-op
    scheduler.stop_stream(1, "720p")
    scheduler.stop_stream(99, "480p")


def test_stop_during_transcode_terminates_ffmpeg(config, timers, source_file):
    gate = threading.Event()
    scheduler, runner = make_scheduler(config, timers, gate=gate)

    thread, outcome = run_in_thread(scheduler.generate_hls_playlist, 1, source_file, "720p")
    assert runner.started.acquire(timeout=5)

    scheduler.stop_stream(1, "720p")
    thread.join(timeout=5)

    assert isinstance(outcome.get("error"), TranscodeFailed)
    assert len(scheduler.registry) == 0
    assert timers.timers == []
    assert os.listdir(config.get_output_dir(1, "720p")) == []


def test_cleanup_timer_expires_stream(config, timers, source_file):
    scheduler, _ = make_scheduler(config, timers)
    scheduler.generate_hls_playlist(1, source_file, "720p")
    timer = timers.live[0]
    assert timer.interval == config.cleanup_delay

    timer.fire()

    assert not scheduler.is_stream_active(1, "720p")
    assert os.listdir(config.get_output_dir(1, "720p")) == []
    with pytest.raises(NotReady):
        scheduler.get_stream_url(1, "720p")


def test_expired_slot_can_be_reused(config, timers, source_file):
    config.max_concurrent_streams = 1
    scheduler, runner = make_scheduler(config, timers)
    scheduler.generate_hls_playlist(1, source_file, "720p")

    with pytest.raises(ResourceExhausted):
        scheduler.generate_hls_playlist(2, source_file, "720p")

    timers.live[0].fire()
    assert scheduler.generate_hls_playlist(2, source_file, "720p").ready
    assert runner.calls == 2


def test_retranscode_after_external_deletion_rearms_single_timer(config, timers, source_file):
    scheduler, runner = make_scheduler(config, timers)
    scheduler.generate_hls_playlist(1, source_file, "720p")
    first_timer = timers.live[0]

    os.remove(config.get_playlist_path(1, "720p"))
    scheduler.generate_hls_playlist(1, source_file, "720p")

    assert runner.calls == 2
    assert first_timer.cancelled
    assert len(timers.live) == 1
    assert len(scheduler.registry) == 1


def test_stats_and_shutdown(config, timers, source_file):
    scheduler, _ = make_scheduler(config, timers)
    scheduler.generate_hls_playlist(1, source_file, "480p")
    scheduler.generate_hls_playlist(1, source_file, "720p")

    stats = scheduler.get_stream_stats()
    assert stats == {
        "active_count": 2,
        "max_concurrent": 2,
        "supported_qualities": ["480p", "720p", "1080p"],
    }

    scheduler.shutdown()

    assert scheduler.get_stream_stats()["active_count"] == 0
    assert timers.live == []
    # Output stays on disk for reuse
    assert scheduler.get_stream_url(1, "480p") == "/stream/1/480p/playlist.m3u8"


def test_stop_terminates_ffmpeg_outside_the_registry_lock(config, timers, source_file):
    gate = threading.Event()
    scheduler, runner = make_scheduler(config, timers, gate=gate)

    transcode, outcome = run_in_thread(scheduler.generate_hls_playlist, 1, source_file, "720p")
    assert runner.started.acquire(timeout=5)

    # ffmpeg that takes its time to exit after SIGTERM
    exited = threading.Event()
    process = scheduler.registry.get(1, "720p").process
    process.wait = lambda timeout=None: exited.wait(timeout)

    stopper, _ = run_in_thread(scheduler.stop_stream, 1, "720p")
    assert process.terminated.wait(timeout=5)

    reader, read = run_in_thread(scheduler.is_stream_active, 2, "480p")
    reader.join(timeout=1)
    assert not reader.is_alive()
    assert read["result"] is False
    assert not scheduler.is_stream_active(1, "720p")

    exited.set()
    stopper.join(timeout=5)
    transcode.join(timeout=5)

    assert isinstance(outcome.get("error"), TranscodeFailed)
    assert os.listdir(config.get_output_dir(1, "720p")) == []
