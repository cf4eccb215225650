"""YAML configuration loader.

Loads a single YAML file layered over the RELAY_* environment
defaults. Every key is optional.

Example YAML:
    server:
      host: 0.0.0.0
      port: 3001
      heartbeat_seconds: 30

    process:
      command: /usr/bin/claude
      api_key_env: ANTHROPIC_API_KEY
      extra_args: ["--model", "sonnet"]
      project_path: /home/ubuntu/projects/current
      turn_timeout_seconds: 600
      kill_grace_seconds: 5
      attachments_dir: /var/lib/streamrelay/attachments

    logging:
      level: DEBUG
      dir: /var/log/streamrelay
"""
from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import Any

import yaml

from .config import RelayConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_CANDIDATES: tuple[str, ...] = (
    ".streamrelay/relay.yaml",
    "relay.yaml",
)

# section -> {yaml key: RelayConfig field}
_SECTION_FIELDS: dict[str, dict[str, str]] = {
    "server": {
        "host": "host",
        "port": "port",
        "heartbeat_seconds": "heartbeat_seconds",
    },
    "process": {
        "command": "claude_command",
        "api_key_env": "api_key_env",
        "extra_args": "extra_args",
        "project_path": "project_path",
        "turn_timeout_seconds": "turn_timeout_seconds",
        "kill_grace_seconds": "kill_grace_seconds",
        "record_queue_size": "record_queue_size",
        "attachments_dir": "attachments_dir",
    },
    "logging": {
        "level": "log_level",
        "dir": "log_dir",
    },
}

_NUMERIC_FIELDS: dict[str, type] = {
    "port": int,
    "record_queue_size": int,
    "heartbeat_seconds": float,
    "turn_timeout_seconds": float,
    "kill_grace_seconds": float,
}


def discover_config(cwd: str | Path) -> Path | None:
    """Return the first existing config candidate under *cwd*."""
    base = Path(cwd)
    for candidate in CONFIG_CANDIDATES:
        path = base / candidate
        if path.exists():
            logger.info("Auto-discovered config: %s", path)
            return path
    logger.info(
        "No config file found (tried %s); using defaults",
        ", ".join(str(base / c) for c in CONFIG_CANDIDATES),
    )
    return None


def _coerce(path: Path, name: str, value: Any) -> Any:
    if value is None:
        return None
    if name in _NUMERIC_FIELDS:
        try:
            return _NUMERIC_FIELDS[name](value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(str(path), f"{name} must be a number") from exc
    if name == "extra_args":
        if isinstance(value, str):
            return shlex.split(value)
        if not isinstance(value, list):
            raise ConfigError(str(path), "extra_args must be a list or string")
        return [str(v) for v in value]
    if name in {"project_path", "attachments_dir", "log_dir"}:
        return str(Path(str(value)).expanduser())
    return str(value)


def parse_config_dict(raw: dict[str, Any], path: Path) -> dict[str, Any]:
    """Flatten a parsed YAML document into RelayConfig overrides."""
    overrides: dict[str, Any] = {}
    for section, mapping in _SECTION_FIELDS.items():
        body = raw.get(section)
        if body is None:
            continue
        if not isinstance(body, dict):
            raise ConfigError(str(path), f"section '{section}' must be a mapping")
        for key, value in body.items():
            target = mapping.get(key)
            if target is None:
                logger.warning("Unknown key %s.%s in %s", section, key, path)
                continue
            overrides[target] = _coerce(path, target, value)
    unknown_sections = sorted(k for k in raw if k not in _SECTION_FIELDS)
    if unknown_sections:
        logger.warning(
            "Ignoring unknown sections in %s: %s", path, ", ".join(unknown_sections),
        )
    return overrides


def load_yaml_config(path: str | Path, base: RelayConfig | None = None) -> RelayConfig:
    """Load *path* and layer it over *base* (env defaults when omitted)."""
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise ConfigError(str(path), "file not found") from exc
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(str(path), f"YAML parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")

    logger.info(
        "Parsed YAML config %s — sections: %s",
        path.name, ", ".join(sorted(raw)) if raw else "(empty)",
    )
    base = base or RelayConfig.from_env()
    return base.merged(parse_config_dict(raw, path))
