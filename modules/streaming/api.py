"""
Streaming API endpoints

Thin Flask routes over StreamingService: start/stop streams, serve playlists,
segments and thumbnails with the right content types, expose metadata.
"""

import os
import logging
from flask import jsonify, request, send_from_directory, abort
from werkzeug.utils import secure_filename

from .exceptions import (
    StreamingError,
    MediaNotFound,
    SourceNotFound,
    NotReady,
    UnsupportedQuality,
    ResourceExhausted,
)
from .models import ThumbnailOptions
from .scheduler import normalize_start_time

logger = logging.getLogger(__name__)

# Global streaming service (set up in webserver.py)
STREAMING_SERVICE = None

PLAYLIST_MIMETYPE = "application/vnd.apple.mpegurl"
SEGMENT_MIMETYPE = "video/mp2t"


def init_streaming_service(service):
    """Install the streaming service the routes use

    Args:
        service: StreamingService instance
    """
    global STREAMING_SERVICE
    STREAMING_SERVICE = service
    logger.info("Streaming service initialized")


def get_streaming_service():
    return STREAMING_SERVICE


def _status_for(error: StreamingError) -> int:
    if isinstance(error, (MediaNotFound, SourceNotFound, NotReady)):
        return 404
    if isinstance(error, UnsupportedQuality):
        return 400
    if isinstance(error, ResourceExhausted):
        return 503
    return 500


def _error_response(message: str, error: StreamingError):
    status = _status_for(error)
    if status >= 500:
        logger.error(f"{message}: {error}")
    body = {"message": message, "error": str(error)}
    if isinstance(error, UnsupportedQuality):
        body["availableQualities"] = error.available
    return jsonify(body), status


def _optional_int(name: str):
    value = request.args.get(name)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except ValueError:
        abort(400, description=f"Invalid {name}: {value}")


def _start_time_arg():
    value = request.args.get("startTime")
    if value in (None, ""):
        return None
    try:
        return float(value)
    except ValueError:
        return value


def register_routes(app):
    """Register the streaming routes

    Args:
        app: Flask application
    """

    @app.route('/api/stream/<int:media_id>/start', methods=['GET', 'POST'])
    def streaming_start(media_id):
        """Start (or reuse) an HLS stream

        Query: quality (default from config), startTime (seconds or HH:MM:SS)
        """
        if STREAMING_SERVICE is None:
            return jsonify({"message": "Streaming service not initialized"}), 500

        quality = request.args.get("quality") or None
        try:
            start_time = normalize_start_time(_start_time_arg())
        except ValueError as e:
            return jsonify({"message": "Invalid start time", "error": str(e)}), 400

        try:
            result = STREAMING_SERVICE.start_stream(media_id, quality=quality, start_time=start_time)
        except StreamingError as e:
            return _error_response("Failed to start stream", e)

        return jsonify({
            "success": True,
            "streamUrl": result["stream_url"],
            "playlist": result["playlist"].to_dict(),
            "quality": result["quality"],
            "availableQualities": result["available_qualities"],
        })

    @app.route('/stream/<int:media_id>/<quality>/playlist.m3u8', methods=['GET'])
    def streaming_playlist(media_id, quality):
        if STREAMING_SERVICE is None:
            return "Streaming service not initialized", 500

        config = STREAMING_SERVICE.config
        if quality not in STREAMING_SERVICE.available_qualities():
            return jsonify({"message": "Unsupported quality"}), 400

        output_dir = config.get_output_dir(media_id, quality)
        if not os.path.exists(os.path.join(output_dir, config.playlist_name)):
            return jsonify({"message": "Playlist not found"}), 404

        response = send_from_directory(
            os.path.abspath(output_dir), config.playlist_name, mimetype=PLAYLIST_MIMETYPE
        )
        response.headers["Cache-Control"] = "no-cache"
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    @app.route('/stream/<int:media_id>/<quality>/<segment>', methods=['GET'])
    def streaming_segment(media_id, quality, segment):
        if STREAMING_SERVICE is None:
            return "Streaming service not initialized", 500

        if not segment.endswith(".ts") or secure_filename(segment) != segment:
            return jsonify({"message": "Invalid segment format"}), 400
        if quality not in STREAMING_SERVICE.available_qualities():
            return jsonify({"message": "Unsupported quality"}), 400

        output_dir = STREAMING_SERVICE.config.get_output_dir(media_id, quality)
        if not os.path.exists(os.path.join(output_dir, segment)):
            return jsonify({"message": "Segment not found"}), 404

        response = send_from_directory(
            os.path.abspath(output_dir), segment, mimetype=SEGMENT_MIMETYPE
        )
        response.headers["Cache-Control"] = "public, max-age=3600"
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    @app.route('/api/stream/<int:media_id>/stop', methods=['POST'])
    def streaming_stop(media_id):
        if STREAMING_SERVICE is None:
            return jsonify({"message": "Streaming service not initialized"}), 500

        quality = request.args.get("quality") or None
        STREAMING_SERVICE.stop_stream(media_id, quality)
        return jsonify({"success": True, "message": "Stream stopped successfully"})

    @app.route('/api/stream/stats', methods=['GET'])
    def streaming_stats():
        if STREAMING_SERVICE is None:
            return jsonify({"message": "Streaming service not initialized"}), 500

        stats = STREAMING_SERVICE.stream_stats()
        return jsonify({
            "activeStreams": stats["active_count"],
            "maxConcurrentStreams": stats["max_concurrent"],
            "supportedQualities": stats["supported_qualities"],
        })

    @app.route('/api/media/<int:media_id>/thumbnail', methods=['POST'])
    def media_thumbnail(media_id):
        """Generate a thumbnail

        Query: timestamp (HH:MM:SS), width, height, quality (1-31)
        """
        if STREAMING_SERVICE is None:
            return jsonify({"message": "Streaming service not initialized"}), 500

        options = ThumbnailOptions(timestamp=request.args.get("timestamp") or None)
        for name in ("width", "height", "quality"):
            value = _optional_int(name)
            if value is not None:
                setattr(options, name, value)

        try:
            path = STREAMING_SERVICE.generate_thumbnail_file(media_id, options)
        except StreamingError as e:
            return _error_response("Failed to generate thumbnail", e)

        return jsonify({
            "success": True,
            "thumbnailPath": path,
            "url": STREAMING_SERVICE.thumbnail_url(path),
        })

    @app.route('/api/media/<int:media_id>/thumbnails', methods=['POST'])
    def media_thumbnails(media_id):
        """Generate several evenly spaced thumbnails (query: count, default 5)"""
        if STREAMING_SERVICE is None:
            return jsonify({"message": "Streaming service not initialized"}), 500

        count = _optional_int("count")
        count = 5 if count is None else count
        try:
            paths = STREAMING_SERVICE.generate_multiple_thumbnails(media_id, count)
        except StreamingError as e:
            return _error_response("Failed to generate multiple thumbnails", e)

        return jsonify({
            "success": True,
            "thumbnails": [
                {"path": path, "url": STREAMING_SERVICE.thumbnail_url(path)} for path in paths
            ],
            "count": len(paths),
        })

    @app.route('/thumbnails/<path:filename>', methods=['GET'])
    def media_thumbnail_file(filename):
        if STREAMING_SERVICE is None:
            return "Streaming service not initialized", 500

        # send_from_directory rejects paths escaping the root
        response = send_from_directory(
            os.path.abspath(STREAMING_SERVICE.config.thumbnails_dir),
            filename,
            mimetype="image/jpeg",
            max_age=86400,
        )
        return response

    @app.route('/api/media/<int:media_id>/metadata', methods=['GET'])
    def media_metadata(media_id):
        if STREAMING_SERVICE is None:
            return jsonify({"message": "Streaming service not initialized"}), 500

        try:
            metadata = STREAMING_SERVICE.extract_metadata(media_id)
        except StreamingError as e:
            return _error_response("Failed to extract metadata", e)

        return jsonify({"success": True, "metadata": metadata.to_dict()})

    @app.route('/api/media/check', methods=['POST'])
    def media_check():
        if STREAMING_SERVICE is None:
            return jsonify({"message": "Streaming service not initialized"}), 500

        data = request.get_json(silent=True) or {}
        file_path = data.get("filePath")
        if not file_path:
            return jsonify({"message": "File path is required"}), 400

        try:
            result = STREAMING_SERVICE.check_video_file(file_path)
        except StreamingError as e:
            return _error_response("Failed to check video file", e)

        return jsonify({
            "success": True,
            "isVideo": result["is_video"],
            "supportedFormats": result["supported_formats"],
        })
