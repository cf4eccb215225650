"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via RELAY_* env vars,
then a YAML file (see yaml_config), then CLI flags.
"""
from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Exit code of a process terminated by SIGTERM, as reported by a shell
# (128 + 15). The supervisor's own graceful-stop request produces it.
GRACEFUL_TERMINATION_EXIT_CODE = 143


def _default_state_dir() -> Path:
    return Path.home() / ".streamrelay"


@dataclass
class RelayConfig:
    """Relay server and process supervision configuration."""

    # Server
    host: str = "127.0.0.1"
    port: int = 3001
    # WebSocket ping interval; 0 disables heartbeats.
    heartbeat_seconds: float = 30.0

    # External tool
    claude_command: str = "claude"
    api_key_env: str | None = None
    extra_args: list[str] = field(default_factory=list)
    # Workspace used when the resolver does not supply one.
    project_path: str = field(default_factory=lambda: str(Path.cwd()))

    # Wall-clock ceiling for a single turn.
    turn_timeout_seconds: float = 600.0
    # Time between SIGTERM and SIGKILL when stopping a process.
    kill_grace_seconds: float = 5.0
    # Outbound queue bound per turn.
    record_queue_size: int = 5000

    attachments_dir: str = field(
        default_factory=lambda: str(_default_state_dir() / "attachments")
    )

    # Logging
    log_level: str = "INFO"
    log_dir: str = field(default_factory=lambda: str(_default_state_dir() / "logs"))

    @classmethod
    def from_env(cls) -> RelayConfig:
        """Load configuration from RELAY_* environment variables."""
        relay_vars = {
            k: v for k, v in os.environ.items() if k.startswith("RELAY_")
        }
        if relay_vars:
            logger.info(
                "RelayConfig.from_env: RELAY_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(relay_vars.items())),
            )
        else:
            logger.debug("RelayConfig.from_env: no RELAY_* env vars set, using defaults")

        defaults = cls()
        config = cls(
            host=os.getenv("RELAY_HOST", defaults.host),
            port=int(os.getenv("RELAY_PORT", str(defaults.port))),
            heartbeat_seconds=float(os.getenv(
                "RELAY_HEARTBEAT", str(defaults.heartbeat_seconds)
            )),
            claude_command=os.getenv(
                "RELAY_CLAUDE_COMMAND", defaults.claude_command
            ),
            api_key_env=os.getenv("RELAY_API_KEY_ENV") or None,
            extra_args=shlex.split(os.getenv("RELAY_EXTRA_ARGS", "")),
            project_path=os.getenv("RELAY_PROJECT_PATH", defaults.project_path),
            turn_timeout_seconds=float(os.getenv(
                "RELAY_TURN_TIMEOUT", str(defaults.turn_timeout_seconds)
            )),
            kill_grace_seconds=float(os.getenv(
                "RELAY_KILL_GRACE", str(defaults.kill_grace_seconds)
            )),
            record_queue_size=int(os.getenv(
                "RELAY_QUEUE_SIZE", str(defaults.record_queue_size)
            )),
            attachments_dir=os.getenv(
                "RELAY_ATTACHMENTS_DIR", defaults.attachments_dir
            ),
            log_level=os.getenv("RELAY_LOG_LEVEL", defaults.log_level),
            log_dir=os.getenv("RELAY_LOG_DIR", defaults.log_dir),
        )
        logger.info(
            "RelayConfig.from_env: command=%s project=%s timeout=%.0fs log_level=%s",
            config.claude_command, config.project_path,
            config.turn_timeout_seconds, config.log_level,
        )
        return config

    def merged(self, overrides: dict[str, Any]) -> RelayConfig:
        """Return a copy with known, non-None keys of *overrides* applied."""
        known = {f.name for f in fields(self)}
        unknown = sorted(k for k in overrides if k not in known)
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        applied = {
            k: v for k, v in overrides.items() if k in known and v is not None
        }
        return replace(self, **applied)
