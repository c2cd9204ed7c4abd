"""Command line tool for listing the custom resources in a cluster."""

import argparse
import asyncio
import logging
import sys
import traceback

from kgcr.exceptions import KgcrException, ScanIncompleteError
from . import get

_LOGGER = logging.getLogger(__name__)

EXIT_ERROR = 1
EXIT_INCOMPLETE = 2


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kgcr",
        description="List every instance of every namespaced custom resource "
        "in a kubernetes cluster.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )
    get.GetAction.register(parser)
    return parser


def main(argv: list[str] | None = None) -> None:
    """kgcr command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except ScanIncompleteError as err:
        sys.stdout.flush()
        print(f"kgcr warning: {err}", file=sys.stderr)
        sys.exit(EXIT_INCOMPLETE)
    except KgcrException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print(f"kgcr error: {err}", file=sys.stderr)
        sys.exit(EXIT_ERROR)


if __name__ == "__main__":
    main()
