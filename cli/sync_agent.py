"""CLI for the plugsync background plugin sync agent."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from plugsync.config import Settings, validate_server_url
from plugsync.exceptions import SyncError
from plugsync.main import configure_logging, create_agent, run_agent
from plugsync.services.notify import NotificationLevel

if TYPE_CHECKING:
    from plugsync.agent import SyncAgent


class PrintNotifier:
    """Print notifications to the terminal."""

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        prefix = "Error: " if level is NotificationLevel.ERROR else ""
        print(f"  {prefix}{message}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="plugsync",
        description="Keep a plugin folder in sync with a plugin store",
    )
    parser.add_argument("--dir", "-d", help="Plugin directory (default: $PLUGSYNC_PLUGINS_DIR)")
    parser.add_argument("--state-file", help="State file (default: <dir>/.plugsync.json)")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")

    init = subparsers.add_parser("init", help="Save sync settings")
    init.add_argument("--server", "-s", help="Server URL")
    init.add_argument("--delay", type=int, help="Auto sync interval in milliseconds")
    role = init.add_mutually_exclusive_group()
    role.add_argument("--publisher", action="store_true", help="Push local plugins (master)")
    role.add_argument("--subscriber", action="store_true", help="Pull remote plugins (slave)")
    auto = init.add_mutually_exclusive_group()
    auto.add_argument("--auto", dest="auto_sync", action="store_true", default=None)
    auto.add_argument("--no-auto", dest="auto_sync", action="store_false")

    login = subparsers.add_parser("login", help="Log in and store the token")
    login.add_argument("--user", "-u", help="User ID")

    subparsers.add_parser("logout", help="Forget the stored token")
    subparsers.add_parser("status", help="Show account, remote plugins, and pending changes")
    subparsers.add_parser("sync", help="Sync now (at most once every 10 minutes)")
    subparsers.add_parser("run", help="Run auto sync in the foreground")
    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {}
    if args.dir:
        overrides["plugins_dir"] = Path(args.dir).resolve()
    if args.state_file:
        overrides["state_file"] = Path(args.state_file)
    if args.debug:
        overrides["debug"] = True
    if args.allow_insecure_http:
        overrides["allow_insecure_http"] = True
    return Settings(**overrides)  # type: ignore[arg-type]


async def _init(agent: SyncAgent, args: argparse.Namespace) -> None:
    server_url = None
    if args.server:
        server_url = validate_server_url(args.server, agent.settings.allow_insecure_http)
    is_master = None
    if args.publisher:
        is_master = True
    elif args.subscriber:
        is_master = False
    prefs = agent.state.update_preferences(
        server_url=server_url,
        sync_delay=args.delay,
        is_master=is_master,
        auto_sync_enabled=args.auto_sync,
    )
    print(f"Saved settings to {agent.settings.resolved_state_file()}")
    print(f"  Server:    {prefs.server_url}")
    print(f"  Role:      {agent.state.role}")
    print(f"  Delay:     {prefs.sync_delay} ms")
    print(f"  Auto sync: {'on' if prefs.auto_sync_enabled else 'off'}")


async def _login(agent: SyncAgent, args: argparse.Namespace) -> None:
    user = args.user or input("User ID: ")
    password = getpass.getpass("Password: ")
    await agent.login(user, password, start_sync=False)


async def _status(agent: SyncAgent) -> None:
    user = await agent.fetch_user_info()
    entries = await agent.remote_entries()
    pending = agent.pending_changes()
    print("Sync Status:")
    print(f"  User:            {json.dumps(user, sort_keys=True)}")
    print(f"  Role:            {agent.state.role}")
    print(f"  Remote plugins:  {len(entries)}")
    for entry in entries:
        print(f"    = {entry.name}")
    print(f"  Pending upload:  {len(pending['to_upload'])}")
    for name in pending["to_upload"]:
        print(f"    + {name}")
    print(f"  Pending delete:  {len(pending['to_delete'])}")
    for name in pending["to_delete"]:
        print(f"    - {name}")


async def _sync(agent: SyncAgent) -> None:
    outcome = await agent.sync_now()
    print(
        f"Sync complete. {outcome.changed} plugin(s) synced, "
        f"{len(outcome.failures)} failure(s)."
    )


async def _dispatch(agent: SyncAgent, args: argparse.Namespace) -> int:
    try:
        if args.command == "init":
            await _init(agent, args)
        elif args.command == "login":
            await _login(agent, args)
        elif args.command == "logout":
            agent.logout()
        elif args.command == "status":
            await _status(agent)
        elif args.command == "sync":
            await _sync(agent)
        elif args.command == "run":
            await run_agent(agent)
            return 0
    except (SyncError, ValueError) as exc:
        print(f"Error: {exc}")
        return 1
    finally:
        if args.command != "run":
            await agent.client.aclose()
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    try:
        settings = _settings_from_args(args)
    except ValidationError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    configure_logging(settings.debug)
    agent = create_agent(settings, notifier=PrintNotifier())
    exit_code = asyncio.run(_dispatch(agent, args))
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
