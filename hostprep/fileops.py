"""Timestamped backups and atomic replacement of managed files."""

import datetime
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import List, Optional

from hostprep.console import logger
from hostprep.constants import CONFIG_MODE
from hostprep.errors import FileWriteError


@dataclass
class WriteResult:
    path: str
    backup: Optional[str] = None
    created: bool = False
    changed: bool = False


def read_text(path: str) -> str:
    """Current content of ``path``; a missing file reads as empty.

    Line endings and bytes that are not UTF-8 are kept as they are, so writing
    the text back reproduces the file exactly.
    """
    try:
        with open(path, encoding="utf-8", errors="surrogateescape", newline="") as f:
            return f.read()
    except FileNotFoundError:
        return ""


def split_lines(text: str) -> List[str]:
    """Split on newlines only; form feeds and other separators stay in the line."""
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def backup_file(path: str) -> Optional[str]:
    if not os.path.isfile(path):
        return None
    ts = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
    backup = f"{path}.bak.{ts}"
    n = 1
    while os.path.exists(backup):
        backup = f"{path}.bak.{ts}.{n}"
        n += 1
    try:
        shutil.copy2(path, backup)
    except OSError as e:
        raise FileWriteError(f"Backup of {path} failed: {e}") from e
    logger.info(f"Backed up {path} to {backup}")
    return backup


def _replace(path: str, content: str, mode: int, owner: Optional[os.stat_result]) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{os.path.basename(path)}.tmp.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        if owner is not None and os.geteuid() == 0:
            os.chown(tmp, owner.st_uid, owner.st_gid)
        os.replace(tmp, path)
    except OSError as e:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise FileWriteError(f"Failed to write {path}: {e}") from e


def atomic_write(path: str, content: str, mode: Optional[int] = None) -> WriteResult:
    """Replace ``path`` with ``content``, backing up the previous version.

    Identical content is left alone: no backup, no write. Without ``mode`` an
    existing file keeps its permissions and a new one gets 0644.
    """
    exists = os.path.isfile(path)
    if exists and read_text(path) == content:
        logger.debug(f"Unchanged: {path}")
        return WriteResult(path)
    owner = os.stat(path) if exists else None
    if mode is None:
        mode = owner.st_mode & 0o7777 if owner is not None else CONFIG_MODE
    backup = backup_file(path) if exists else None
    try:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    except OSError as e:
        raise FileWriteError(f"Cannot create directory for {path}: {e}") from e
    _replace(path, content, mode, owner)
    logger.debug(f"Wrote {path} (mode {mode:o})")
    return WriteResult(path, backup=backup, created=not exists, changed=True)


def _copy_back(backup: str, path: str) -> None:
    # byte copy of the backup, swapped in atomically; ownership follows the live file
    owner = os.stat(path) if os.path.exists(path) else os.stat(backup)
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{os.path.basename(path)}.tmp.")
    os.close(fd)
    try:
        shutil.copy2(backup, tmp)
        if os.geteuid() == 0:
            os.chown(tmp, owner.st_uid, owner.st_gid)
        os.replace(tmp, path)
    except OSError as e:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise FileWriteError(f"Failed to restore {path} from {backup}: {e}") from e


def restore(result: WriteResult) -> None:
    """Undo one ``atomic_write``."""
    if not result.changed:
        return
    if result.backup:
        _copy_back(result.backup, result.path)
        logger.info(f"Restored {result.path} from {result.backup}")
    elif result.created and os.path.exists(result.path):
        os.unlink(result.path)
        logger.info(f"Removed {result.path}")


def remove_file(path: str) -> WriteResult:
    """Back up and delete ``path``."""
    if not os.path.isfile(path):
        return WriteResult(path)
    backup = backup_file(path)
    try:
        os.unlink(path)
    except OSError as e:
        raise FileWriteError(f"Failed to remove {path}: {e}") from e
    return WriteResult(path, backup=backup, changed=True)
