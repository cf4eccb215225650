"""streamrelay — entry point.

Two modes:
    streamrelay --server [--host HOST] [--port PORT] [--config PATH]
        Run the WebSocket relay in front of the claude CLI.
    streamrelay [--url ws://HOST:PORT/ws] [--token TOKEN]
        Run the terminal client against a relay.
"""
from __future__ import annotations

import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from streamrelay.engine.config import RelayConfig
from streamrelay.engine.errors import ConfigError
from streamrelay.engine.yaml_config import discover_config, load_yaml_config

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def configure_logging(
    log_dir: str | Path,
    filename: str,
    level: str = "INFO",
    *,
    to_stderr: bool = True,
) -> Path:
    """Rotating file log plus optional stderr, replacing existing handlers."""
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / filename

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    if to_stderr:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
    return log_file


def load_config(config_path: str | None, cwd: Path | None = None) -> RelayConfig:
    """Env defaults, then an explicit or auto-discovered YAML file."""
    config = RelayConfig.from_env()
    path = Path(config_path) if config_path else discover_config(cwd or Path.cwd())
    if path is None:
        return config
    return load_yaml_config(path, base=config)


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="streamrelay",
        description="streamrelay — WebSocket relay and terminal client for the claude CLI",
    )
    parser.add_argument(
        "--server", action="store_true",
        help="Run the relay server instead of the terminal client",
    )
    parser.add_argument("--host", help="Server bind address (default 127.0.0.1)")
    parser.add_argument("--port", type=int, help="Server port (default 3001)")
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: .streamrelay/relay.yaml or relay.yaml)",
    )
    parser.add_argument(
        "--project", metavar="DIR",
        help="Workspace the claude CLI runs in",
    )
    parser.add_argument(
        "--claude-command", metavar="CMD",
        help="Path or name of the claude executable",
    )
    parser.add_argument(
        "--url", default="ws://127.0.0.1:3001/ws",
        help="Relay WebSocket URL for the terminal client",
    )
    parser.add_argument("--token", help="Token passed to the relay on connect")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"streamrelay: {exc}", file=sys.stderr)
        sys.exit(2)
    config = config.merged({
        "host": args.host,
        "port": args.port,
        "project_path": str(Path(args.project).expanduser().resolve()) if args.project else None,
        "claude_command": args.claude_command,
        "log_level": args.log_level,
    })

    if args.server:
        from streamrelay.server.server import RelayServer

        log_file = configure_logging(config.log_dir, "relay-server.log", config.log_level)
        logging.getLogger(__name__).info(
            "Starting relay server cwd=%s host=%s port=%s config=%s log=%s",
            Path.cwd(), config.host, config.port, args.config or "<auto>", log_file,
        )
        server = RelayServer(config)
        try:
            asyncio.run(server.start())
        except KeyboardInterrupt:
            pass
        sys.exit(0)

    # TUI mode: the terminal is the UI, so log to file only
    from streamrelay.tui.app import RelayApp

    configure_logging(config.log_dir, "relay-client.log", config.log_level, to_stderr=False)
    app = RelayApp(args.url, token=args.token)
    app.run()


if __name__ == "__main__":
    main()
