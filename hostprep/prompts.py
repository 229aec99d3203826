"""Interactive prompts. None of them run without a terminal."""

import sys
from typing import Callable, Collection, Optional

from prompt_toolkit import prompt as pt_prompt
from prompt_toolkit.validation import ValidationError as PromptValidationError
from prompt_toolkit.validation import Validator
from rich.prompt import Confirm

from hostprep.console import console
from hostprep.errors import PreconditionError
from hostprep.ports import validate_port


def has_tty() -> bool:
    return sys.stdin.isatty()


def require_tty(what: str) -> None:
    if not has_tty():
        raise PreconditionError(
            f"No TTY available for {what}",
            ["Re-run from an interactive terminal, or pass the values as flags with --yes"],
        )


class _CheckValidator(Validator):
    """Adapts a ``str -> None`` check that raises ``ValueError``."""

    def __init__(self, check: Callable[[str], None]):
        self.check = check

    def validate(self, document) -> None:
        try:
            self.check(document.text)
        except ValueError as e:
            raise PromptValidationError(message=str(e), cursor_position=len(document.text))


def ask_text(
    message: str,
    default: str = "",
    check: Optional[Callable[[str], None]] = None,
    allow_empty: bool = False,
) -> str:
    require_tty(f"prompt '{message}'")

    def _check(text: str) -> None:
        if not allow_empty and not text.strip():
            raise ValueError("Value cannot be empty")
        if check is not None and text.strip():
            check(text.strip())

    answer = pt_prompt(
        f"{message}: ",
        default=default,
        validator=_CheckValidator(_check),
        validate_while_typing=False,
    )
    return answer.strip()


def ask_port(
    message: str,
    default: Optional[int] = None,
    in_use: Collection[int] = (),
    low: int = 1,
    high: int = 65535,
) -> int:
    def _check(value: str) -> None:
        validate_port(value, in_use, low, high)

    text = ask_text(
        f"{message} ({low}-{high})",
        default="" if default is None else str(default),
        check=_check,
    )
    return int(text)


def confirm(message: str, default: bool = True, assume_yes: bool = False) -> bool:
    if assume_yes:
        return True
    require_tty(f"confirmation '{message}'")
    return Confirm.ask(message, default=default, console=console)
