"""Entry point for running the bridge.

Usage:
    python -m workbridge --workspace /workspace
    workbridge --port 3002 -vv
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence

from workbridge import __version__
from workbridge.bridge import Bridge
from workbridge.config import load_config
from workbridge.errors import BridgeStartupError
from workbridge.logging import get_logger, setup_logging

log = get_logger()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="workbridge",
        description="Websocket command bridge for a code-editing workspace",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase verbosity (can be repeated, up to -vvvv)",
    )
    parser.add_argument(
        "--workspace",
        help="Workspace root (default: config, WB_WORKSPACE or the current directory)",
    )
    parser.add_argument("--host", help="Listen address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Listen port (default: 3002)")
    return parser


def run_cli(args: Sequence[str]) -> int:
    """Run the bridge with the given arguments. Returns the exit code."""
    parsed = create_parser().parse_args(args)

    config = load_config(workspace_root=parsed.workspace)
    if parsed.host:
        config.server.host = parsed.host
    if parsed.port is not None:
        config.server.port = parsed.port
    if parsed.verbose is not None:
        config.logging.verbose = parsed.verbose

    setup_logging(config.logging)

    bridge = Bridge(config)
    try:
        asyncio.run(bridge.run())
    except BridgeStartupError as e:
        log.error("%s", e)
        print(f"workbridge: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        log.info("Interrupted")
    return 0


def main() -> None:
    """Console script entry point."""
    sys.exit(run_cli(sys.argv[1:]))


if __name__ == "__main__":
    main()
