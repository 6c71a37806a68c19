#!/usr/bin/env python3
"""Command-line interface for Nervos.

This module provides CLI commands for working with notes on this device and
syncing them. Uses only core/ modules.

Commands:
    login <username>        Bind this device to an account and unlock it
    list                    List all notes, newest first
    show <id>               Show a note
    new [content]           Create a new note
    edit <id> <content>     Replace a note's content
    search <query>          Search notes by ID or text
    sync                    Run one sync cycle with the server

The password is read from NERVOS_PASSWORD, or prompted for.
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from nervos.core.clock import format_revision
from nervos.core.config import Config
from nervos.core.database import Database
from nervos.core.models import Item
from nervos.core.session import Session
from nervos.core.sync_client import SyncClient
from nervos.core.validation import AuthenticationError, ValidationError, validate_item_id

logger = logging.getLogger(__name__)

PASSWORD_ENV = "NERVOS_PASSWORD"
PREVIEW_LENGTH = 80


def read_password(prompt: str = "Password: ") -> str:
    """Read the account password from the environment or the terminal."""
    password = os.environ.get(PASSWORD_ENV)
    if password is not None:
        return password
    return getpass.getpass(prompt)


def preview(item: Item) -> str:
    """One-line preview of a note: its first characters without heading marks."""
    return item.data[:PREVIEW_LENGTH].strip("# ").replace("\n", " ")


def item_to_dict(item: Item) -> Dict[str, Any]:
    return {
        "id": item.id,
        "rev": item.rev,
        "modified": format_revision(item.rev),
        "data": item.data,
    }


def format_items(items: List[Item], format_type: str = "text") -> str:
    """Format a list of notes for display.

    Args:
        items: Notes to format
        format_type: Output format (text, json)

    Returns:
        Formatted string
    """
    if format_type == "json":
        return json.dumps([item_to_dict(i) for i in items], indent=2, ensure_ascii=False)
    return "\n".join(f"{i.id}  {format_revision(i.rev)}  {preview(i)}" for i in items)


def format_item(item: Item, format_type: str = "text") -> str:
    """Format a single note for display."""
    if format_type == "json":
        return json.dumps(item_to_dict(item), indent=2, ensure_ascii=False)
    return "\n".join([
        f"ID: {item.id}",
        f"Modified: {format_revision(item.rev)}",
        f"\n{item.data}",
    ])


def open_session(config: Config) -> Session:
    """Open the local store and load settings."""
    db = Database(config.get_database_file())
    session = Session(
        db,
        kdf_iterations=config.get_kdf_iterations(),
        save_delay=config.get_save_delay(),
    )
    session.start()
    return session


def unlock_session(session: Session) -> None:
    """Unlock with the account password.

    Raises:
        ValidationError: If the device is not logged in yet
        AuthenticationError: If the password is wrong
    """
    if session.needs_login:
        raise ValidationError("username", "not logged in; run 'login <username>' first")
    session.unlock(read_password())


def cmd_login(session: Session, args: argparse.Namespace) -> int:
    """Bind this device to an account."""
    session.login(args.username, read_password())
    print(f"Logged in as {args.username}")
    return 0


def cmd_list(session: Session, args: argparse.Namespace) -> int:
    """List all notes."""
    unlock_session(session)
    output = format_items(session.search(""), args.format)
    if output:
        print(output)
    return 0


def cmd_show(session: Session, args: argparse.Namespace) -> int:
    """Show a note."""
    item_id = validate_item_id(args.item_id)
    unlock_session(session)
    item = session.get_item(item_id)
    if item is None:
        print(f"Error: Note {item_id} not found", file=sys.stderr)
        return 1
    print(format_item(item, args.format))
    return 0


def cmd_new(session: Session, args: argparse.Namespace) -> int:
    """Create a note."""
    unlock_session(session)
    item = session.new_item()
    if args.content:
        item = session.edit_item(item.id, args.content)
    session.flush()
    if args.format == "json":
        print(json.dumps(item_to_dict(item), ensure_ascii=False))
    else:
        print(f"Created note {item.id}")
    return 0


def cmd_edit(session: Session, args: argparse.Namespace) -> int:
    """Replace a note's content."""
    item_id = validate_item_id(args.item_id)
    unlock_session(session)
    if session.get_item(item_id) is None:
        print(f"Error: Note {item_id} not found", file=sys.stderr)
        return 1
    item = session.edit_item(item_id, args.content)
    session.flush()
    print(f"Updated note {item.id}")
    return 0


def cmd_search(session: Session, args: argparse.Namespace) -> int:
    """Search notes."""
    unlock_session(session)
    results = session.search(args.query)
    if args.format == "json":
        print(format_items(results, "json"))
    elif results:
        print(format_items(results))
    else:
        print("No notes found")
    return 0


def cmd_sync(session: Session, config: Config, args: argparse.Namespace) -> int:
    """Run one sync cycle."""
    unlock_session(session)
    api_url = args.api_url or config.get_api_url()
    client = SyncClient(session, api_url, timeout=config.get_request_timeout())
    session.flush()
    result = client.sync_changes()
    if not result.success:
        for error in result.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1
    print(
        f"Synced: pushed {result.pushed}, pulled {result.pulled}, "
        f"applied {result.applied}, checkpoint {result.checkpoint}"
    )
    return 0


def add_cli_commands(parser: argparse.ArgumentParser) -> None:
    """Add the CLI options and subcommands to a parser.

    Args:
        parser: Parser receiving --format and the subcommands
    """
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)"
    )

    cli_subparsers = parser.add_subparsers(dest="cli_command", help="CLI commands")

    login_parser = cli_subparsers.add_parser("login", help="Bind this device to an account")
    login_parser.add_argument("username", type=str, help="Account name")

    cli_subparsers.add_parser("list", help="List all notes")

    show_parser = cli_subparsers.add_parser("show", help="Show a note")
    show_parser.add_argument("item_id", type=str, help="Note ID")

    new_parser = cli_subparsers.add_parser("new", help="Create a new note")
    new_parser.add_argument("content", type=str, nargs="?", default="", help="Note content")

    edit_parser = cli_subparsers.add_parser("edit", help="Replace a note's content")
    edit_parser.add_argument("item_id", type=str, help="Note ID")
    edit_parser.add_argument("content", type=str, help="New content")

    search_parser = cli_subparsers.add_parser("search", help="Search notes by ID or text")
    search_parser.add_argument("query", type=str, help="Text to search for")

    sync_parser = cli_subparsers.add_parser("sync", help="Sync with the server once")
    sync_parser.add_argument(
        "--api-url",
        type=str,
        default=None,
        help="Sync server URL (default: from config)"
    )


def add_cli_subparser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add CLI subparser and its arguments.

    Args:
        subparsers: Parent subparsers object to add CLI parser to
    """
    cli_parser = subparsers.add_parser(
        "cli",
        help="Command-line interface",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_cli_commands(cli_parser)


def run(config_dir: Optional[Path], args: argparse.Namespace) -> int:
    """Run CLI with given arguments.

    Args:
        config_dir: Custom configuration directory or None for default
        args: Parsed command-line arguments (should have cli_command attribute)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if not getattr(args, "cli_command", None):
        print("Error: No CLI command specified. Use --help for available commands.", file=sys.stderr)
        return 1

    try:
        config = Config(config_dir=config_dir)
        session = open_session(config)
    except ValidationError as e:
        print(f"Error: Invalid {e.field} - {e.message}", file=sys.stderr)
        return 1

    try:
        if args.cli_command == "login":
            return cmd_login(session, args)
        elif args.cli_command == "list":
            return cmd_list(session, args)
        elif args.cli_command == "show":
            return cmd_show(session, args)
        elif args.cli_command == "new":
            return cmd_new(session, args)
        elif args.cli_command == "edit":
            return cmd_edit(session, args)
        elif args.cli_command == "search":
            return cmd_search(session, args)
        elif args.cli_command == "sync":
            return cmd_sync(session, config, args)
        else:
            print(f"Error: Unknown command '{args.cli_command}'", file=sys.stderr)
            return 1
    except ValidationError as e:
        print(f"Error: Invalid {e.field} - {e.message}", file=sys.stderr)
        return 1
    except AuthenticationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        session.lock_session()
        session.db.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for `python -m nervos.cli`."""
    parser = argparse.ArgumentParser(description="Nervos command-line interface")
    parser.add_argument(
        "-d", "--config-dir",
        type=Path,
        default=None,
        help="Custom configuration directory (default: ~/.config/nervos/)"
    )
    add_cli_commands(parser)
    args = parser.parse_args(argv)
    return run(args.config_dir, args)


if __name__ == "__main__":
    sys.exit(main())
