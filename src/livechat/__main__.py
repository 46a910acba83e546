"""CLI entry point for livechat."""

from __future__ import annotations

import argparse
import asyncio
import sys

import uvicorn

from livechat.app import ChatServerApp
from livechat.config import AppConfig, load_config
from livechat.log import setup_logging


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="livechat",
        description="Real-time visitor/admin chat server",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # start command
    start_parser = subparsers.add_parser("start", help="Start the chat server")
    _add_config_args(start_parser)

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    # purge-ghosts command
    purge_parser = subparsers.add_parser(
        "purge-ghosts", help="Delete empty threads older than the configured age"
    )
    _add_config_args(purge_parser)

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "purge-ghosts":
        _purge_ghosts(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and edit it")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Listen: {config.server.host}:{config.server.port}")
    print(f"  Admin API keys: {len(config.server.admin_api_keys)}")
    match config.storage.backend:
        case "sqlite":
            print(f"  Storage: sqlite ({config.storage.db_path})")
        case "json":
            print(f"  Storage: json ({config.storage.json_path})")
        case _:
            print("  Storage: memory (not persisted)")
    print(f"  Maintenance: {'on' if config.maintenance.enabled else 'off'}")
    if not config.server.admin_api_keys:
        print("  Warning: no admin_api_keys configured, admin access is disabled")


def _purge_ghosts(config_path: str, env_path: str) -> None:
    """Run one ghost-thread purge against the configured store and exit."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    async def _async_purge() -> int:
        app = ChatServerApp(config)
        await app.gateway.start()
        try:
            return await app.maintenance.purge_ghosts()
        finally:
            await app.gateway.stop()

    removed = asyncio.run(_async_purge())
    print(f"Purged {removed} ghost thread(s)")


def _run(config_path: str, env_path: str) -> None:
    """Load config and serve until interrupted."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    app = ChatServerApp(config)
    server = uvicorn.Server(
        uvicorn.Config(
            app.create_http_app(),
            host=config.server.host,
            port=config.server.port,
            log_config=None,
            log_level=config.log_level.lower(),
        )
    )
    # uvicorn installs SIGINT/SIGTERM handlers and runs the lifespan shutdown
    asyncio.run(server.serve())


if __name__ == "__main__":
    main()
