"""
HTTP boundary: liveness and a read-only session listing.

Runs on its own thread beside the asyncio gateway; session data is
pulled through a callable so this module never touches the stores.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List
import logging

from flask import Flask, jsonify

from bridge_server import __version__
from bridge_server.config import PROTOCOL_VERSION, ServerConfig

logger = logging.getLogger(__name__)

SessionLister = Callable[[], List[Dict[str, Any]]]


def create_http_app(config: ServerConfig, list_sessions: SessionLister) -> Flask:
    """
    Build the Flask app.

    Args:
        config: Server configuration (reported by /health)
        list_sessions: Returns one summary dict per live session
    """
    app = Flask(__name__)

    @app.get("/health")
    def health():
        return jsonify({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": config.environment.value,
            "protocol": PROTOCOL_VERSION,
            "server": __version__,
            "discovery": config.to_discovery_info(),
        })

    @app.get("/api/sessions")
    def sessions():
        try:
            summaries = list_sessions()
        except Exception as exc:
            logger.error(f"Session listing failed: {exc}", exc_info=True)
            return jsonify({"ok": False, "error": "session listing unavailable"}), 503
        return jsonify({"sessions": summaries})

    return app


def run_http_server(app: Flask, host: str, port: int):
    """Blocking; meant for a daemon thread."""
    logger.info(f"HTTP API on http://{host}:{port}")
    app.run(host=host, port=port, debug=False, use_reloader=False, threaded=True)
