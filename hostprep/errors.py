"""Exceptions raised by hostprep.

Only fatal conditions are exceptions. Best-effort failures and post-restart
verification gaps are reported as warnings and never raised.
"""

from typing import Iterable, List, Optional, Sequence


class HostprepError(Exception):
    """Base error. ``hints`` are extra lines printed after the message."""

    def __init__(self, message: str, hints: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.hints: List[str] = list(hints or [])

    def __str__(self) -> str:
        return self.message


class PreconditionError(HostprepError):
    """A requirement was not met before anything was changed."""


class LockError(PreconditionError):
    """Another live process holds the lock file."""


class PortSelectionError(PreconditionError):
    """No usable port could be chosen."""


class CommandError(HostprepError):
    """An external command that had to succeed did not."""

    def __init__(
        self,
        cmd: Sequence[str],
        returncode: int,
        stderr: str = "",
        message: Optional[str] = None,
    ):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        text = message or f"Command failed ({returncode}): {' '.join(self.cmd)}"
        hints = [self.stderr] if self.stderr else []
        super().__init__(text, hints)


class FileWriteError(HostprepError):
    """Writing a managed file failed; the original file is untouched."""


class ValidationError(HostprepError):
    """A validator rejected a mutation. Raised after the rollback completed."""

    def __init__(self, files: Sequence[str], command: str):
        self.files = list(files)
        self.command = command
        names = ", ".join(self.files) or "(no files)"
        super().__init__(
            f"Validation failed for {names}; changes were rolled back",
            [f"Re-run manually: {command}"],
        )
