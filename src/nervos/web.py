#!/usr/bin/env python3
"""HTTP sync server for Nervos.

This module builds the Flask application serving the sync protocol on top
of the configured object store. Uses only core/ modules.

Endpoints:
    POST /          Exchange changes (see core/sync.py)
    GET  /status    Liveness and protocol version

Server settings come from the environment (see core/config.ServerConfig):
PORT, OBJECT_STORE, S3_BUCKET, AWS_REGION, AWS_ACCESS_KEY, AWS_SECRET_KEY,
NERVOS_DATA_DIR, CHUNK_SIZE, BCRYPT_ROUNDS, CHUNK_SELECTION.
"""

from __future__ import annotations

import argparse
import logging
from typing import Any, Optional

from flask import Flask, Response, jsonify
from flask_cors import CORS

from nervos.core.config import ServerConfig
from nervos.core.object_store import ObjectStore, create_object_store
from nervos.core.sync import ChunkedLog, create_sync_server
from nervos.core.validation import ValidationError

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[ServerConfig] = None,
    store: Optional[ObjectStore] = None,
) -> Flask:
    """Create and configure Flask application.

    Args:
        config: Server settings (default: from environment)
        store: Object store overriding the configured one

    Returns:
        Configured Flask application
    """
    config = config or ServerConfig.from_env()
    store = store or create_object_store(config)
    log = ChunkedLog(
        store,
        chunk_size=config.chunk_size,
        bcrypt_rounds=config.bcrypt_rounds,
        chunk_selection=config.chunk_selection,
    )

    app = create_sync_server(log)
    # Browser clients need to read the checkpoint header
    CORS(app, expose_headers=["checkpoint"])
    app.extensions["nervos_log"] = log

    logger.info(
        f"Sync server initialized: store={config.object_store}, "
        f"chunk_size={config.chunk_size}, chunk_selection={config.chunk_selection}"
    )

    @app.errorhandler(404)
    def not_found(error: Any) -> tuple[Response, int]:
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error: Any) -> tuple[Response, int]:
        """Handle 405 errors."""
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error: Any) -> tuple[Response, int]:
        """Handle 500 errors."""
        logger.error(f"Internal error: {error}")
        return jsonify({"error": "Internal server error"}), 500

    return app


def add_web_subparser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add serve subparser and its arguments.

    Args:
        subparsers: Parent subparsers object to add serve parser to
    """
    web_parser = subparsers.add_parser(
        "serve",
        help="Start the sync server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    web_parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)"
    )

    web_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: $PORT or 8000)"
    )

    web_parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )


def run(args: argparse.Namespace) -> int:
    """Run sync server with given arguments.

    Args:
        args: Parsed command-line arguments (should have host, port, debug attributes)

    Returns:
        Exit code (0 for success, 1 for configuration errors)
    """
    try:
        config = ServerConfig.from_env()
    except ValidationError as e:
        logger.error(f"Invalid server configuration: {e}")
        return 1

    port = args.port or config.port
    logger.info(f"Starting Nervos sync server on port {port}")

    app = create_app(config)
    app.run(host=args.host, port=port, debug=args.debug, threaded=True)
    return 0
