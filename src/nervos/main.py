#!/usr/bin/env python3
"""Nervos application entry point.

This module provides a unified entry point for both interfaces:
- CLI: Command-line interface for the notes on this device
- Serve: The HTTP sync server

Usage:
    nervos cli login alice                 # Bind this device to an account
    nervos cli list                        # List notes
    nervos cli sync                        # Sync once
    nervos serve [--port 8080]             # Start the sync server
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the unified argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="Nervos - encrypted notes synced across devices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  nervos cli login alice                 Bind this device to an account
  nervos cli new "# Groceries"           Create a note
  nervos cli search groceries            Search notes
  nervos cli sync                        Sync with the server once
  nervos serve --port 8080               Start the sync server on port 8080
""",
    )

    parser.add_argument(
        "-d", "--config-dir",
        type=Path,
        default=None,
        help="Custom configuration directory (default: ~/.config/nervos/)"
    )

    subparsers = parser.add_subparsers(dest="interface", help="Interface to use")

    from nervos.cli import add_cli_subparser
    add_cli_subparser(subparsers)

    from nervos.web import add_web_subparser
    add_web_subparser(subparsers)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for Nervos.

    Parses arguments and dispatches to the appropriate interface.

    Returns:
        Process exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.interface == "cli":
        from nervos.cli import run as run_cli
        return run_cli(args.config_dir, args)
    elif args.interface == "serve":
        from nervos.web import run as run_web
        return run_web(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
