"""Command-line interface for inspecting stored sessions and site permissions."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence

import yaml

from tabpilot import __version__
from tabpilot.config import load_config
from tabpilot.config.schema import Config
from tabpilot.errors import TabPilotError
from tabpilot.logging import get_logger, setup_logging
from tabpilot.session.models import SessionState
from tabpilot.storage.factory import create_permission_store, create_session_store
from tabpilot.storage.permissions import (
    PermissionMode,
    SitePermission,
    normalize_domain,
)

log = get_logger("cli")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="tabpilot",
        description="Inspect tabpilot sessions and site permissions",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--project",
        help="Project root for project-level config and state",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase verbosity (can be repeated)",
    )

    subparsers = parser.add_subparsers(dest="area", help="What to manage")

    sessions = subparsers.add_parser("sessions", help="Stored tab sessions")
    session_cmds = sessions.add_subparsers(dest="command")
    session_cmds.add_parser("list", help="List tabs with a stored session")
    show = session_cmds.add_parser("show", help="Print a stored session as YAML")
    show.add_argument("tab")
    clear = session_cmds.add_parser("clear", help="Delete a stored session")
    clear.add_argument("tab")

    permissions = subparsers.add_parser("permissions", help="Per-site permissions")
    perm_cmds = permissions.add_subparsers(dest="command")
    perm_cmds.add_parser("list", help="List site permissions")
    set_cmd = perm_cmds.add_parser("set", help="Create or update a site permission")
    set_cmd.add_argument("domain")
    set_cmd.add_argument("--mode", choices=[m.value for m in PermissionMode], required=True)
    set_cmd.add_argument(
        "--allow",
        action="append",
        metavar="ACTION",
        help="Allowed action (repeatable; default from config)",
    )
    remove = perm_cmds.add_parser("remove", help="Remove a site permission")
    remove.add_argument("domain")

    return parser


async def _sessions(config: Config, parsed: argparse.Namespace) -> int:
    store = create_session_store(config, parsed.project)
    if parsed.command == "list":
        for tab in await store.list_tabs():
            snapshot = await store.load(tab)
            status = snapshot.get("status", "?") if snapshot else "?"
            task = (snapshot or {}).get("current_task") or ""
            print(f"{tab}\t{status}\t{task}")
        return 0

    if parsed.command == "show":
        snapshot = await store.load(parsed.tab)
        if snapshot is None:
            print(f"No stored session for tab {parsed.tab}", file=sys.stderr)
            return 1
        state = SessionState.from_dict(snapshot)
        print(yaml.safe_dump(state.to_dict(), default_flow_style=False, sort_keys=False), end="")
        return 0

    if parsed.command == "clear":
        await store.delete(parsed.tab)
        print(f"Cleared session for tab {parsed.tab}")
        return 0

    return 1


async def _permissions(config: Config, parsed: argparse.Namespace) -> int:
    store = create_permission_store(config, parsed.project)
    if parsed.command == "list":
        for domain, record in sorted((await store.list_permissions()).items()):
            allowed = ",".join(record.allowed_actions)
            print(f"{domain}\t{record.mode.value}\t{allowed}\tuses={record.use_count}")
        return 0

    if parsed.command == "set":
        existing = await store.get_permission(parsed.domain)
        record = existing or SitePermission(
            allowed_actions=list(config.permissions.default_allowed_actions)
        )
        record.mode = PermissionMode(parsed.mode)
        if parsed.allow:
            record.allowed_actions = list(parsed.allow)
            record.denied_actions = [a for a in record.denied_actions if a not in parsed.allow]
        stored = await store.set_permission(parsed.domain, record)
        print(f"{normalize_domain(parsed.domain)}\t{stored.mode.value}")
        return 0

    if parsed.command == "remove":
        await store.remove_permission(parsed.domain)
        print(f"Removed permission for {normalize_domain(parsed.domain)}")
        return 0

    return 1


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.area is None or parsed.command is None:
        parser.print_help()
        return 1

    config = load_config(project_root=parsed.project)
    if parsed.verbose is not None:
        config.logging.verbose = parsed.verbose
    setup_logging(config.logging)

    handler = _sessions if parsed.area == "sessions" else _permissions
    try:
        return asyncio.run(handler(config, parsed))
    except TabPilotError as e:
        log.debug("command failed: %s", e)
        print(f"error: {e}", file=sys.stderr)
        return 1
