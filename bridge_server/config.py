"""
Canonical configuration for the bridge simulator session server.

This module defines the default ports, storage lifetimes and session
policy values used across the server. Import from here to ensure
consistency between the gateway, the stores and the HTTP boundary.
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional
import os

import yaml


class Environment(Enum):
    """Deployment environment reported by the health endpoint."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


# Default port assignments
DEFAULT_WS_PORT = 8080       # Real-time gateway
DEFAULT_HTTP_PORT = 5000     # Health / listing endpoints (Flask)

# Default host bindings
DEFAULT_HOST = "127.0.0.1"           # Localhost only (secure default)
DEFAULT_LAN_HOST = "0.0.0.0"         # All interfaces (for a shared game table)

# Storage lifetimes (seconds)
DEFAULT_STATE_TTL = 3600             # game_state:<id>
DEFAULT_SESSION_TTL = 7200           # session:<id>, players:<id>, socket:<id>
DEFAULT_SWEEP_INTERVAL = 60.0

# Session policy
DEFAULT_MAX_PLAYERS = 8
DEFAULT_SAVE_RETRIES = 3

# Protocol version
PROTOCOL_VERSION = "1.0"

_TRUTHY = ("1", "true", "yes", "on")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass
class ServerConfig:
    """
    Server configuration container.

    Provides a single source of truth for all server settings.
    Can be constructed from CLI args, environment, or a YAML file.
    """

    # Network settings
    host: str = DEFAULT_HOST
    ws_port: int = DEFAULT_WS_PORT
    http_port: int = DEFAULT_HTTP_PORT
    http_enabled: bool = True
    lan_mode: bool = False
    ping_interval: float = 30.0
    ping_timeout: float = 10.0

    environment: Environment = Environment.DEVELOPMENT

    # Storage settings
    state_ttl_seconds: int = DEFAULT_STATE_TTL
    session_ttl_seconds: int = DEFAULT_SESSION_TTL
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL

    # Session policy
    max_players_per_session: int = DEFAULT_MAX_PLAYERS
    auto_create_sessions: bool = True
    max_save_retries: int = DEFAULT_SAVE_RETRIES

    # Logging
    log_file: Optional[str] = None
    log_level: str = "INFO"

    def __post_init__(self):
        """Normalize enum fields and apply LAN mode settings."""
        if not isinstance(self.environment, Environment):
            self.environment = Environment(self.environment)
        if self.lan_mode and self.host == DEFAULT_HOST:
            self.host = DEFAULT_LAN_HOST
        if self.max_players_per_session < 1:
            raise ValueError("max_players_per_session must be at least 1")
        if self.max_save_retries < 1:
            raise ValueError("max_save_retries must be at least 1")

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create config from environment variables."""
        return cls(
            host=os.environ.get("BRIDGE_HOST", DEFAULT_HOST),
            ws_port=int(os.environ.get("BRIDGE_WS_PORT", DEFAULT_WS_PORT)),
            http_port=int(os.environ.get("BRIDGE_HTTP_PORT", DEFAULT_HTTP_PORT)),
            http_enabled=_env_flag("BRIDGE_HTTP", True),
            lan_mode=_env_flag("BRIDGE_LAN", False),
            environment=Environment(os.environ.get("BRIDGE_ENV", "development")),
            state_ttl_seconds=int(os.environ.get("BRIDGE_STATE_TTL", DEFAULT_STATE_TTL)),
            session_ttl_seconds=int(os.environ.get("BRIDGE_SESSION_TTL", DEFAULT_SESSION_TTL)),
            sweep_interval_seconds=float(os.environ.get("BRIDGE_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL)),
            max_players_per_session=int(os.environ.get("BRIDGE_MAX_PLAYERS", DEFAULT_MAX_PLAYERS)),
            auto_create_sessions=_env_flag("BRIDGE_AUTO_CREATE", True),
            max_save_retries=int(os.environ.get("BRIDGE_SAVE_RETRIES", DEFAULT_SAVE_RETRIES)),
            log_file=os.environ.get("BRIDGE_LOG_FILE"),
            log_level=os.environ.get("BRIDGE_LOG_LEVEL", "INFO"),
        )

    @classmethod
    def from_file(cls, path: str) -> "ServerConfig":
        """
        Create config from a YAML file.

        Unknown keys are rejected so a typo does not silently fall back
        to a default.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**data)

    def to_discovery_info(self) -> dict:
        """
        Generate discovery information for station clients.

        Returns:
            Dictionary with connection info for clients
        """
        return {
            "version": PROTOCOL_VERSION,
            "environment": self.environment.value,
            "endpoints": {
                "ws": {"host": self.host, "port": self.ws_port},
                "http": {"host": self.host, "port": self.http_port},
            },
            "features": {
                "auto_create_sessions": self.auto_create_sessions,
                "resume_tokens": True,
                "spectators": True,
            },
        }


def get_default_config() -> ServerConfig:
    """Get the default server configuration."""
    return ServerConfig()
