"""
Run a pipeline of commands without a shell.

Each LINE is one stage, parsed like a simple shell command line
(leading NAME=value assignments, $NAME expansion) and piped into the next:

    procpipe "git log --oneline" "grep -i fix" "wc -l"

Configuration is read from PROCPIPE_* environment variables, after loading
a .env file if one is found.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from dotenv import find_dotenv, load_dotenv

from .command import PipedCommand
from .config import ExecutorConfig
from .context import CancelScope
from .errors import MalformedInputError, StageFailureError, StartFailureError
from .shell import parse_shell

logger = logging.getLogger(__name__)

EXIT_USAGE = 2
EXIT_START_FAILURE = 127


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="procpipe",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "lines", nargs="+", metavar="LINE", help="Command line of one pipeline stage"
    )
    parser.add_argument(
        "-C", "--dir", default="", help="Working directory for every stage"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Cancel the pipeline after this many seconds",
    )
    parser.add_argument(
        "--kill-on-cancel",
        action="store_true",
        help="Send SIGKILL instead of SIGTERM when cancelling",
    )
    parser.add_argument(
        "-n",
        "--null-input",
        action="store_true",
        help="Give the first stage no input instead of this process's stdin",
    )
    parser.add_argument(
        "--env-file", default=None, help="Path of a .env file to load"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def build_chain(lines: Sequence[str]) -> PipedCommand:
    """Parse every line and link them in order; return the tail."""
    tail = parse_shell(lines[0])
    for line in lines[1:]:
        tail = tail.pipe_to(parse_shell(line))
    return tail


def exit_status(err: StageFailureError) -> int:
    """Map a stage failure to a shell-style exit status."""
    if err.returncode < 0:
        return 128 - err.returncode
    return err.returncode or 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(name)s | %(message)s",
    )
    load_dotenv(args.env_file or find_dotenv(usecwd=True))

    try:
        config = ExecutorConfig.from_env()
    except ValueError as exc:
        print(f"procpipe: {exc}", file=sys.stderr)
        return EXIT_USAGE
    if args.kill_on_cancel:
        config.kill_on_cancel = True

    try:
        tail = build_chain(args.lines)
    except MalformedInputError as exc:
        print(f"procpipe: {exc}", file=sys.stderr)
        return EXIT_USAGE
    if args.dir:
        tail.with_dir(args.dir)

    stdin = None if args.null_input else sys.stdin
    scope = CancelScope(timeout=args.timeout)
    try:
        tail.execute(scope, stdin, sys.stdout, sys.stderr, config=config)
    except StartFailureError as exc:
        print(f"procpipe: {exc}", file=sys.stderr)
        return EXIT_START_FAILURE
    except StageFailureError as exc:
        print(f"procpipe: {exc}", file=sys.stderr)
        return exit_status(exc)
    finally:
        scope.cancel()
    logger.debug("Pipeline finished: %s", tail)
    return 0


if __name__ == "__main__":
    sys.exit(main())
