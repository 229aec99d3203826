"""Nord-themed console output, banners and logging setup."""

import datetime
import gzip
import logging
import os
import shutil
import signal
import sys
from typing import Any, Optional

import pyfiglet
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.text import Text
from rich.theme import Theme

from hostprep.constants import MAX_LOG_SIZE, VERSION

# ----------------------------------------------------------------
# Nord-Themed Rich Console Setup
# ----------------------------------------------------------------
nord_theme = Theme(
    {
        "info": "#88C0D0",
        "warning": "#EBCB8B",
        "danger": "#BF616A",
        "success": "#A3BE8C",
        "primary": "#5E81AC",
        "banner": "#81A1C1",
        "frost1": "#8FBCBB",
        "frost2": "#88C0D0",
        "frost3": "#81A1C1",
        "frost4": "#5E81AC",
    }
)
console = Console(theme=nord_theme)
err_console = Console(theme=nord_theme, stderr=True)

logger = logging.getLogger("hostprep")


# ----------------------------------------------------------------
# Status Lines
# ----------------------------------------------------------------
def _emit(out: Console, prefix: str, style: str, message: str) -> None:
    # message is plain text; config lines like "[Socket]" must survive
    out.print(Text.assemble((prefix, f"bold {style}"), " ", message), soft_wrap=True)


def print_success(message: str) -> None:
    _emit(console, "[OK]", "success", message)
    logger.info(message)


def print_info(message: str) -> None:
    _emit(console, "[INFO]", "info", message)
    logger.info(message)


def print_warning(message: str) -> None:
    _emit(err_console, "[WARN]", "warning", message)
    logger.warning(message)


def print_error(message: str) -> None:
    _emit(err_console, "[ERROR]", "danger", message)
    logger.error(message)


def print_detail(message: str) -> None:
    """Indented continuation line, e.g. a command to run by hand."""
    console.print(Text(f"  {message}"), soft_wrap=True)


# ----------------------------------------------------------------
# Banner
# ----------------------------------------------------------------
def print_header(title: str, subtitle: str = "") -> None:
    term_width, _ = shutil.get_terminal_size((80, 24))
    font = "slant" if term_width >= 80 else "small"
    try:
        art = pyfiglet.figlet_format(title, font=font, width=max(term_width - 10, 40))
    except pyfiglet.FontNotFound:
        art = title
    frost_colors = ["frost1", "frost2", "frost3", "frost4"]
    lines = [
        Text(line, style=frost_colors[i % len(frost_colors)])
        for i, line in enumerate(art.rstrip("\n").splitlines())
    ]
    console.print(
        Panel(
            Text("\n").join(lines),
            border_style="banner",
            box=box.ROUNDED,
            padding=(1, 2),
            title=Text(f"v{VERSION}", style="primary"),
            title_align="right",
            subtitle=Text(subtitle, style="frost2") if subtitle else None,
            subtitle_align="center",
        )
    )


# ----------------------------------------------------------------
# Logging Setup
# ----------------------------------------------------------------
def rotate_log(log_file: str, max_size: int = MAX_LOG_SIZE) -> Optional[str]:
    """Gzip the log aside and truncate it once it grows past ``max_size``."""
    if not os.path.isfile(log_file) or os.path.getsize(log_file) <= max_size:
        return None
    ts = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
    rotated = f"{log_file}.{ts}.gz"
    with open(log_file, "rb") as fin, gzip.open(rotated, "wb") as fout:
        shutil.copyfileobj(fin, fout)
    open(log_file, "w").close()
    return rotated


def setup_logging(log_file: Optional[str], verbose: bool = False) -> logging.Logger:
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if verbose:
        rich_handler = RichHandler(
            console=err_console, rich_tracebacks=True, show_path=False
        )
        rich_handler.setLevel(logging.DEBUG)
        logger.addHandler(rich_handler)

    if log_file:
        try:
            os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
            rotate_log(log_file)
            fh = logging.FileHandler(log_file)
        except OSError as e:
            _emit(err_console, "[WARN]", "warning", f"File logging disabled ({log_file}): {e}")
        else:
            fh.setLevel(logging.DEBUG)
            fh.setFormatter(
                logging.Formatter(
                    "[%(asctime)s] [%(levelname)s] %(message)s", "%Y-%m-%d %H:%M:%S"
                )
            )
            logger.addHandler(fh)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger


# ----------------------------------------------------------------
# Signal Handling
# ----------------------------------------------------------------
def handle_signal(signum: int, frame: Optional[Any]) -> None:
    name = signal.Signals(signum).name
    err_console.print(Text(f"\nInterrupted by {name}. Exiting...", style="danger"))
    logger.error(f"Interrupted by {name}.")
    # SystemExit unwinds through context managers, so held locks are released
    sys.exit(128 + signum)


def install_signal_handlers() -> None:
    for s in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
        signal.signal(s, handle_signal)
