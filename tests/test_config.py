import os

from modules.streaming.config import StreamingConfig, get_streaming_config


def test_defaults():
    config = StreamingConfig()
    assert config.hls_output_dir == "/tmp/hls"
    assert config.thumbnails_dir == "/tmp/thumbnails"
    assert config.max_concurrent_streams == 2
    assert config.segment_duration == 10
    assert config.cleanup_delay == 7200
    assert config.playlist_name == "playlist.m3u8"


def test_from_app_config_reads_streaming_section():
    config = StreamingConfig.from_app_config({
        "streaming": {
            "hls_output_dir": "/data/hls",
            "max_concurrent_streams": 4,
            "cleanup_delay": "120",
            "default_quality": "1080p",
        },
        "other": {"ignored": True},
    })
    assert config.hls_output_dir == "/data/hls"
    assert config.max_concurrent_streams == 4
    assert config.cleanup_delay == 120
    assert config.default_quality == "1080p"


def test_from_app_config_without_section():
    config = StreamingConfig.from_app_config({})
    assert config.hls_output_dir == "/tmp/hls"
    assert StreamingConfig.from_app_config(None).max_concurrent_streams == 2


def test_invalid_numbers_keep_defaults():
    config = StreamingConfig.from_app_config({
        "streaming": {"max_concurrent_streams": "lots", "segment_duration": 0},
    })
    assert config.max_concurrent_streams == 2
    assert config.segment_duration == 10


def test_environment_overrides_file_config():
    config = get_streaming_config(
        {"streaming": {"hls_output_dir": "/data/hls", "max_concurrent_streams": 4}},
        environ={
            "HLS_OUTPUT_DIR": "/srv/hls",
            "MAX_CONCURRENT_STREAMS": "3",
            "HLS_SEGMENT_DURATION": "6",
            "HLS_CLEANUP_DELAY": "bad",
            "FFMPEG_PATH": "/opt/ffmpeg/bin/ffmpeg",
        },
    )
    assert config.hls_output_dir == "/srv/hls"
    assert config.max_concurrent_streams == 3
    assert config.segment_duration == 6
    assert config.cleanup_delay == 7200
    assert config.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"


def test_output_layout():
    config = StreamingConfig(hls_output_dir="/srv/hls")
    assert config.get_output_dir(42, "720p") == os.path.join("/srv/hls", "42", "720p")
    assert config.get_playlist_path(42, "720p") == os.path.join("/srv/hls", "42", "720p", "playlist.m3u8")
    assert config.get_segment_pattern(42, "720p").endswith("segment_%03d.ts")


def test_build_ladder_uses_configured_qualities():
    config = StreamingConfig(qualities=[
        {"name": "360p", "resolution": "640:360", "video_bitrate": "600k",
         "audio_bitrate": "96k", "maxrate": "700k", "bufsize": "1.2M"},
    ])
    assert config.build_ladder().supported_names() == ["360p"]
