"""Argument parsing and the exit-code wrapper shared by all scripts."""

import argparse
import os
import sys
from typing import Callable, List, Optional

from rich import box
from rich.table import Table
from rich.text import Text

from hostprep.console import (
    err_console,
    install_signal_handlers,
    logger,
    print_error,
    setup_logging,
)
from hostprep.constants import LOG_FILE, VERSION
from hostprep.errors import HostprepError, PreconditionError


def base_parser(description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("--verbose", "-v", action="store_true", help="Show every command executed")
    parser.add_argument(
        "--log-file",
        default=LOG_FILE,
        metavar="PATH",
        help=f"Log file (default: {LOG_FILE}); empty string disables it",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def check_root() -> None:
    if os.geteuid() != 0:
        raise PreconditionError("Run as root (sudo).", [f"Run with: sudo {sys.argv[0]}"])


def settings_table(title: str, rows: List[List[str]], columns: List[str]) -> Table:
    table = Table(title=title, box=box.ROUNDED, style="primary", title_style="bold frost2")
    for column in columns:
        table.add_column(column, justify="left")
    for row in rows:
        table.add_row(*(Text(str(cell)) for cell in row))
    return table


def run(
    main: Callable[[argparse.Namespace], int],
    parser: argparse.ArgumentParser,
    argv: Optional[List[str]] = None,
) -> int:
    """Parse ``argv``, set up logging and turn errors into exit status 1."""
    args = parser.parse_args(argv)
    setup_logging(args.log_file or None, args.verbose)
    install_signal_handlers()
    try:
        return main(args)
    except HostprepError as e:
        print_error(e.message)
        for hint in e.hints:
            err_console.print(Text(f"  {hint}"), soft_wrap=True)
        return 1
    except KeyboardInterrupt:
        err_console.print("\nCancelled")
        return 130
    except Exception as e:
        if args.verbose:
            err_console.print_exception()
        logger.exception("Unexpected error")
        print_error(f"An unexpected error occurred: {e}")
        return 1

