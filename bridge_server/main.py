"""
Bridge simulator session server entry point.

Starts the WebSocket gateway on the asyncio loop and, unless disabled,
the HTTP health/listing API on a daemon thread.

Usage:
    python -m bridge_server.main
    python -m bridge_server.main --lan --ws-port 9000
    python -m bridge_server.main --config bridge.yaml
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
import threading
from typing import Optional

from bridge_server.config import ServerConfig
from bridge_server.gateway import ConnectionGateway
from bridge_server.http_api import create_http_app, run_http_server
from bridge_server.utils.logger import setup_logging

logger = logging.getLogger(__name__)

SESSION_LISTING_TIMEOUT = 5.0


def build_arg_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    ap = argparse.ArgumentParser(
        description="Bridge Simulator - Session Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m bridge_server.main                    # Localhost, default ports
  python -m bridge_server.main --lan              # Reachable from the game table
  python -m bridge_server.main --no-auto-create   # Sessions must be created explicitly
  python -m bridge_server.main --config bridge.yaml
        """,
    )
    ap.add_argument("--config", default=None, help="YAML config file (environment is used otherwise)")
    ap.add_argument("--host", default=None, help="Host to bind to")
    ap.add_argument("--ws-port", type=int, default=None, help="WebSocket port")
    ap.add_argument("--http-port", type=int, default=None, help="HTTP API port")
    ap.add_argument("--no-http", action="store_true", help="Do not start the HTTP API")
    ap.add_argument("--lan", action="store_true", help="Enable LAN mode (bind to 0.0.0.0)")
    ap.add_argument("--no-auto-create", action="store_true", help="Reject joins to unknown sessions")
    ap.add_argument("--log-file", default=None, help="Log file path")
    ap.add_argument("--log-level", default=None, help="Log level (DEBUG, INFO, ...)")
    return ap


def load_config(args: argparse.Namespace) -> ServerConfig:
    """Base config from file or environment, then CLI overrides."""
    config = ServerConfig.from_file(args.config) if args.config else ServerConfig.from_env()

    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.ws_port is not None:
        overrides["ws_port"] = args.ws_port
    if args.http_port is not None:
        overrides["http_port"] = args.http_port
    if args.no_http:
        overrides["http_enabled"] = False
    if args.lan:
        overrides["lan_mode"] = True
    if args.no_auto_create:
        overrides["auto_create_sessions"] = False
    if args.log_file is not None:
        overrides["log_file"] = args.log_file
    if args.log_level is not None:
        overrides["log_level"] = args.log_level

    return dataclasses.replace(config, **overrides) if overrides else config


def start_http_thread(config: ServerConfig, gateway: ConnectionGateway,
                      loop: asyncio.AbstractEventLoop) -> threading.Thread:
    """Serve the HTTP API from a daemon thread, reading sessions via the gateway loop."""

    def list_sessions():
        future = asyncio.run_coroutine_threadsafe(gateway.session_summaries(), loop)
        return future.result(timeout=SESSION_LISTING_TIMEOUT)

    app = create_http_app(config, list_sessions)
    thread = threading.Thread(
        target=run_http_server,
        args=(app, config.host, config.http_port),
        name="bridge-http",
        daemon=True,
    )
    thread.start()
    return thread


async def run(config: ServerConfig, stop_event: Optional[asyncio.Event] = None):
    """Run the gateway (and HTTP API) until ``stop_event`` is set or a signal arrives."""
    loop = asyncio.get_running_loop()
    stop_event = stop_event or asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows: fall back to KeyboardInterrupt
            pass

    gateway = ConnectionGateway.from_config(config)
    await gateway.start()
    if config.http_enabled:
        start_http_thread(config, gateway, loop)

    logger.info(f"Bridge server running ({config.environment.value}). Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        await gateway.stop()


def main() -> None:
    """Main entry point."""
    ap = build_arg_parser()
    args = ap.parse_args()
    config = load_config(args)

    log_path = setup_logging(config.log_file, config.log_level)
    if log_path:
        logger.info(f"Logging to file: {log_path}")

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
