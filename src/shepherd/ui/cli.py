from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from shepherd.app import bootstrap, run_daemon, run_once
from shepherd.config import ConfigurationError, configure_logging, load_daemon_config
from shepherd.domain.errors import HistoryError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from shepherd.domain.reconciliation import CycleResult

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Keep Rancher projects, role templates and bindings in sync with git"
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="TOML configuration file (SHEPHERD_* environment variables override it)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Reconcile every tracked cluster on the tick interval")

    once = subparsers.add_parser("once", help="Run a single reconciliation cycle")
    once.add_argument(
        "--dry-run",
        action="store_true",
        help="Plan and log the change set without applying or committing it",
    )
    once.add_argument(
        "--cluster",
        action="append",
        dest="clusters",
        help="Limit the cycle to this tracked cluster (repeatable)",
    )

    subparsers.add_parser(
        "bootstrap",
        help="Initialise the repository and capture the current live state",
    )

    return parser.parse_args(list(argv))


def _report(results: list[CycleResult]) -> bool:
    for result in results:
        log.info("%s: %s", result.cluster_name, "clean" if result.clean else "unclean")
    return all(result.clean for result in results)


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)
    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    try:
        config = load_daemon_config(parsed_args.config)
        if parsed_args.command == "once":
            for name in parsed_args.clusters or ():
                config.cluster(name)
    except ConfigurationError as exc:
        log.error("Configuration error: %s", exc)  # noqa: TRY400
        sys.exit(2)

    try:
        if parsed_args.command == "run":
            asyncio.run(run_daemon(config))
        elif parsed_args.command == "once":
            results = asyncio.run(
                run_once(config, clusters=parsed_args.clusters, dry_run=parsed_args.dry_run)
            )
            if not _report(results):
                sys.exit(1)
        elif parsed_args.command == "bootstrap":
            if not _report(asyncio.run(bootstrap(config))):
                sys.exit(1)
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301
    except HistoryError as exc:
        log.error("Repository error: %s", exc)  # noqa: TRY400
        sys.exit(1)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) outside the daemon loop gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


if __name__ == "__main__":
    signal(SIGINT, sigint_handler)
    main()
