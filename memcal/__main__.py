"""Command-line entry for memcal."""

from __future__ import annotations

import argparse
import sys
from typing import NoReturn, Optional

from . import run_server


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the memcal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="memcal",
        description="memcal - calendar feed relay that never forgets an event",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m memcal                        # Serve on default port (8080)
  python -m memcal --port 3000            # Serve on port 3000
  python -m memcal sync                   # Sync every feed once and exit
        """,
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=("serve", "sync"),
        default="serve",
        help="serve (default) runs the HTTP server; sync runs one sweep and exits",
    )
    parser.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="HTTP port (default: 8080, or MEMCAL_SERVER_PORT / PORT)",
    )
    parser.add_argument("--host", metavar="HOST", help="Bind address (default: 0.0.0.0)")
    parser.add_argument(
        "--database",
        metavar="PATH",
        help="SQLite database file (default: data/memcal.db, or MEMCAL_DATABASE_PATH)",
    )
    parser.add_argument(
        "--sync-interval",
        type=int,
        metavar="SECONDS",
        help="Seconds between sweeps (default: 300, or MEMCAL_SYNC_INTERVAL)",
    )
    parser.add_argument("--config", metavar="FILE", help="YAML configuration file")
    parser.add_argument("--env-file", metavar="FILE", help=".env file (default: ./.env)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the memcal CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)
    sys.exit(run_server(args))


if __name__ == "__main__":
    main()
