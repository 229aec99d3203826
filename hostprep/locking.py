"""PID-stamped lock files."""

import errno
import os
from typing import Optional

from hostprep.console import logger
from hostprep.errors import LockError, PreconditionError


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class PidLock:
    """Exclusive per-host lock held for the duration of a ``with`` block.

    A lock file left behind by a dead process is taken over.
    """

    def __init__(self, path: str):
        self.path = path
        self.pid = os.getpid()
        self.held = False

    def _owner(self) -> Optional[int]:
        try:
            with open(self.path) as f:
                raw = f.read().strip()
        except FileNotFoundError:
            return None
        return int(raw) if raw.isdigit() else None

    def acquire(self) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                owner = self._owner()
                if owner is not None and owner != self.pid and pid_alive(owner):
                    raise LockError(
                        f"Another instance is running (PID: {owner})",
                        [f"If it is stuck, remove: {self.path}"],
                    )
                logger.info(f"Removing stale lock {self.path} (PID: {owner})")
                try:
                    os.unlink(self.path)
                except FileNotFoundError:
                    pass
                continue
            except OSError as e:
                raise PreconditionError(f"Cannot create lock file {self.path}: {e}") from e
            with os.fdopen(fd, "w") as f:
                f.write(f"{self.pid}\n")
            self.held = True
            logger.debug(f"Lock acquired: {self.path}")
            return
        raise LockError(f"Could not acquire lock {self.path}")

    def release(self) -> None:
        if not self.held:
            return
        if self._owner() == self.pid:
            try:
                os.unlink(self.path)
            except OSError as e:
                if e.errno != errno.ENOENT:
                    raise
        self.held = False
        logger.debug(f"Lock released: {self.path}")

    def __enter__(self) -> "PidLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
