"""Command-line interface for kubesentry.

All pipeline settings come from the environment (see ``kubesentry.config``);
the command line only carries process-level switches.
"""

from __future__ import annotations

import argparse
import asyncio

from kubesentry import __version__
from kubesentry.app import main as run_app

_LOG_LEVELS = ("debug", "info", "warning", "error")


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: Command-line arguments to parse. If None, sys.argv will be used.
    """
    parser = argparse.ArgumentParser(
        prog="kubesentry",
        description="Forward Kubernetes warning and error events to Sentry.",
    )
    parser.add_argument(
        "-l",
        "--log-level",
        type=str.lower,
        choices=_LOG_LEVELS,
        default=None,
        help="Log level (overrides LOG_LEVEL)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(args)


def main(args: list[str] | None = None) -> int:
    """Run kubesentry until SIGTERM/SIGINT.

    Returns:
        Exit code.  Startup failures exit through SystemExit(1).
    """
    parsed_args = parse_args(args)
    asyncio.run(run_app(log_level=parsed_args.log_level))
    return 0
