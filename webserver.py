#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import sys
import json
import atexit
import logging
from logging.handlers import TimedRotatingFileHandler

# Add current directory to Python path to ensure modules can be imported
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from flask import Flask, jsonify
from flask_cors import CORS

from modules.streaming import (
    StreamingService,
    get_streaming_config,
    get_streaming_service,
    init_streaming_service,
    register_routes,
)

# Configuration file path
CONFIG_FILE = "config/config.json"
LOG_FILE = "logs/webserver.log"


def setup_logging(log_file=LOG_FILE):
    """Console plus daily rotating file logging"""
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    # Quieter third-party modules
    for module in ['urllib3', 'werkzeug']:
        logging.getLogger(module).setLevel(logging.WARNING)

    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir)

    file_handler = TimedRotatingFileHandler(
        log_file,
        when='midnight',
        interval=1,
        backupCount=3  # keep 3 days
    )
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    file_handler.setLevel(logging.INFO)
    logging.getLogger().addHandler(file_handler)


def load_config(config_file=CONFIG_FILE):
    """Load configuration file, writing the defaults when it does not exist"""
    config = {
        "streaming": {
            "hls_output_dir": "/tmp/hls",
            "thumbnails_dir": "/tmp/thumbnails",
            "posters_dir": "/tmp/posters",
            "max_concurrent_streams": 2,
            "segment_duration": 10,
            "cleanup_delay": 7200,
            "default_quality": "720p"
        },
        # media id -> source file path
        "media_library": {}
    }
    try:
        if os.path.exists(config_file):
            with open(config_file, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
                config.update(loaded_config)
                logging.info(f"Loaded configuration file: {config_file}")
        else:
            os.makedirs(os.path.dirname(config_file) or ".", exist_ok=True)
            with open(config_file, 'w', encoding='utf-8') as f:
                json.dump(config, f, ensure_ascii=False, indent=2)
                logging.info(f"Created default configuration file: {config_file}")
    except (OSError, ValueError) as e:
        logging.error(f"Failed to load configuration file: {str(e)}")

    return config


def make_media_lookup(library):
    """Media lookup over the configured id -> path mapping

    JSON object keys are strings, so ids are compared as strings.
    """
    entries = {str(key): value for key, value in (library or {}).items()}

    def lookup(media_id):
        return entries.get(str(media_id))

    return lookup


def create_app(config=None, service=None):
    """Create the Flask application

    Args:
        config: application config dict, loaded from CONFIG_FILE when omitted
        service: StreamingService, built from config when omitted
    """
    config = load_config() if config is None else config

    if service is None:
        streaming_config = get_streaming_config(config)
        service = StreamingService(streaming_config, make_media_lookup(config.get("media_library")))
        logging.info(
            f"Streaming output: {streaming_config.hls_output_dir}, "
            f"max {streaming_config.max_concurrent_streams} concurrent streams"
        )

    app = Flask(__name__)
    CORS(app)  # Enable CORS

    init_streaming_service(service)
    register_routes(app)

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({"status": "ok"})

    return app


# Start the server
if __name__ == '__main__':
    setup_logging()
    app = create_app()

    atexit.register(get_streaming_service().shutdown)

    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 8080)), debug=False)
