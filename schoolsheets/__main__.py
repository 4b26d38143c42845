"""CLI entry point.

Usage:
    python -m schoolsheets serve --port 3000
    python -m schoolsheets refresh --reason nightly
    python -m schoolsheets status
    python -m schoolsheets --config settings.yaml serve
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from schoolsheets.lib.config import CacheMode, Settings
from schoolsheets.lib.env import load_env_file
from schoolsheets.lib.errors import SchoolSheetsError
from schoolsheets.lib.logging import setup_logging
from schoolsheets.lib.manager import create_manager
from schoolsheets.lib.snapshot import RefreshRequest, SnapshotManager

logger = logging.getLogger(__name__)


def _load_settings(args: argparse.Namespace) -> Settings:
    load_env_file(args.env_file)
    if args.config:
        return Settings.from_yaml(args.config)
    return Settings.from_env()


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    from schoolsheets.server import create_app

    app = create_app(settings)
    uvicorn.run(
        app,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_config=None,
    )
    return 0


def _snapshot_manager(settings: Settings, command: str) -> Optional[SnapshotManager]:
    manager = create_manager(settings) if settings.cache_mode == CacheMode.SNAPSHOT else None
    if not isinstance(manager, SnapshotManager):
        logger.error("%s requires CACHE_MODE=snapshot", command)
        return None
    return manager


def cmd_refresh(args: argparse.Namespace, settings: Settings) -> int:
    manager = _snapshot_manager(settings, "refresh")
    if manager is None:
        return 2
    try:
        result = manager.refresh(RefreshRequest(reason=args.reason))
    finally:
        manager.close()
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.ok else 1


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    manager = _snapshot_manager(settings, "status")
    if manager is None:
        return 2
    try:
        loaded = manager.load()
        status = manager.status()
    finally:
        manager.close()
    status["load"] = loaded
    print(json.dumps(status, indent=2, default=str))
    return 0 if loaded["ok"] else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schoolsheets",
        description="Serve School Profile and Performance sheets as a cached JSON API",
    )
    parser.add_argument("--config", help="YAML settings file (env vars still override)")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")

    parser.set_defaults(host=None, port=None)

    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP server (default)")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    refresh = sub.add_parser("refresh", help="Refresh the snapshot file and exit")
    refresh.add_argument("--reason", default="cli")

    sub.add_parser("status", help="Show the snapshot file status")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "serve"

    try:
        settings = _load_settings(args)
    except SchoolSheetsError as exc:
        setup_logging(verbose=args.verbose, json_format=args.json_logs)
        logger.error("%s", exc)
        return 2

    setup_logging(
        verbose=args.verbose,
        json_format=args.json_logs or settings.log_json,
        log_file=args.log_file,
        level=None if args.verbose else settings.log_level,
    )

    commands = {
        "serve": cmd_serve,
        "refresh": cmd_refresh,
        "status": cmd_status,
    }
    return commands[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
