"""Command line entry point: endpoint-remediation {detect,remediate} <check>."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .checks import CHECKS, build_check
from .config import load_settings
from .exceptions import ConfigurationError
from .exit_policy import EXIT_FAILURE
from .runner import CheckRunner
from .utils import setup_logging

logger = logging.getLogger(__name__)


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="endpoint-remediation",
        description="Detect and remediate endpoint compliance problems"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, help="YAML settings file")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Override the configured log level"
    )
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    parser.add_argument("mode", choices=["detect", "remediate"], help="Pass to run")
    parser.add_argument("check", choices=sorted(CHECKS), help="Check to run")
    parser.add_argument(
        "--threshold",
        type=float,
        help="Disk usage threshold in percent"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    setup_logging(args.log_level or "INFO", use_colors=not args.no_color)

    try:
        settings = load_settings(
            args.config,
            disk_threshold_percent=args.threshold,
            log_level=args.log_level,
            use_colors=False if args.no_color else None
        )
        setup_logging(settings.log_level, use_colors=settings.use_colors)
        check = build_check(args.check, settings)
    except ConfigurationError as e:
        logger.error(str(e))
        return EXIT_FAILURE

    runner = CheckRunner(check, settings)
    if args.mode == "detect":
        return asyncio.run(runner.run_detection())
    return asyncio.run(runner.run_remediation())


if __name__ == "__main__":
    sys.exit(main())
