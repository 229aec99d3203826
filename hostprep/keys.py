"""Public key validation and authorized_keys management."""

import os
import pwd
import re
from typing import List, Optional

from hostprep.console import logger
from hostprep.constants import SECRET_MODE
from hostprep.errors import FileWriteError, PreconditionError
from hostprep.fileops import WriteResult, atomic_write, read_text, split_lines
from hostprep.runner import CommandRunner

_KEY_RE = re.compile(
    r"^(ssh-rsa|ssh-ed25519|ecdsa-sha2-nistp(256|384|521)|ssh-dss"
    r"|sk-ssh-ed25519@openssh\.com|sk-ecdsa-sha2-nistp256@openssh\.com)"
    r"\s+[A-Za-z0-9+/]+={0,3}(\s+.*)?$"
)


def is_valid_public_key(key: str, runner: Optional[CommandRunner] = None) -> bool:
    key = key.strip()
    if not key or "\n" in key:
        return False
    if _KEY_RE.match(key):
        return True
    if runner is not None and runner.exists("ssh-keygen"):
        return runner.run(["ssh-keygen", "-l", "-f", "-"], input=key + "\n").returncode == 0
    return False


def resolve_user(explicit: Optional[str]) -> str:
    return explicit or os.environ.get("SUDO_USER") or "root"


class AuthorizedKeys:
    def __init__(self, path: str, owner: Optional[str] = None):
        self.path = path
        self.owner = owner

    @classmethod
    def for_user(cls, user: str) -> "AuthorizedKeys":
        try:
            home = pwd.getpwnam(user).pw_dir
        except KeyError:
            raise PreconditionError(f"User '{user}' not found") from None
        return cls(os.path.join(home, ".ssh", "authorized_keys"), owner=user)

    def keys(self) -> List[str]:
        return [
            line.strip()
            for line in split_lines(read_text(self.path))
            if line.strip() and not line.lstrip().startswith("#")
        ]

    def contains(self, key: str) -> bool:
        return key.strip() in self.keys()

    def has_valid_key(self) -> bool:
        return any(is_valid_public_key(k) for k in self.keys())

    def _chown(self, path: str) -> None:
        if not self.owner or os.geteuid() != 0:
            return
        entry = pwd.getpwnam(self.owner)
        os.chown(path, entry.pw_uid, entry.pw_gid)

    def add(self, key: str) -> WriteResult:
        """Append ``key`` unless an identical line is already there."""
        key = key.strip()
        if self.contains(key):
            return WriteResult(self.path)
        ssh_dir = os.path.dirname(self.path)
        try:
            os.makedirs(ssh_dir, mode=0o700, exist_ok=True)
            os.chmod(ssh_dir, 0o700)
            self._chown(ssh_dir)
        except OSError as e:
            raise FileWriteError(f"Cannot prepare {ssh_dir}: {e}") from e
        current = read_text(self.path)
        if current and not current.endswith("\n"):
            current += "\n"
        result = atomic_write(self.path, f"{current}{key}\n", SECRET_MODE)
        self._chown(self.path)
        logger.info(f"Added key to {self.path}")
        return result
