import os
import subprocess
from typing import Callable, List, Optional, Sequence, Tuple, Union

import pytest

from hostprep.errors import CommandError, PreconditionError
from hostprep.polling import Poller

Response = Union[Tuple[int, str], Callable[[List[str]], Tuple[int, str]]]


class FakeRunner:
    """Stands in for ``CommandRunner``.

    Only tools listed in ``tools`` exist; anything else exits 127 like a
    missing binary. Scripted responses match on an argv prefix, the most
    recently added match wins, and unscripted commands succeed silently.
    """

    def __init__(self, tools: Sequence[str] = ()):
        self.tools = set(tools)
        self.responses: List[Tuple[List[str], Response]] = []
        self.calls: List[List[str]] = []
        self.cwds: List[Optional[str]] = []

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", func=None) -> "FakeRunner":
        self.responses.insert(0, (list(prefix), func or (returncode, stdout)))
        return self

    def run(self, cmd, check=False, cwd=None, input=None, timeout=None):
        cmd = list(cmd)
        cmd[0] = os.path.basename(cmd[0])
        self.calls.append(cmd)
        self.cwds.append(cwd)
        if cmd[0] not in self.tools:
            returncode, stdout = 127, ""
        else:
            returncode, stdout = 0, ""
            for prefix, response in self.responses:
                if cmd[: len(prefix)] == prefix:
                    returncode, stdout = response(cmd) if callable(response) else response
                    break
        stderr = "" if returncode == 0 else f"{cmd[0]} failed"
        if check and returncode != 0:
            raise CommandError(cmd, returncode, stderr)
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def which(self, name):
        return f"/usr/sbin/{name}" if name in self.tools else None

    def exists(self, name):
        return name in self.tools

    def require(self, *names):
        for name in names:
            if name not in self.tools:
                raise PreconditionError(f"Required command not found: {name}")

    def ran(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == list(prefix) for call in self.calls)

    def index(self, *prefix: str) -> int:
        for i, call in enumerate(self.calls):
            if call[: len(prefix)] == list(prefix):
                return i
        raise AssertionError(f"never ran: {' '.join(prefix)}")


def ss_line(port: int, process: str = "sshd", address: str = "0.0.0.0") -> str:
    return (
        f"LISTEN 0      128        {address}:{port}      0.0.0.0:*    "
        f'users:(("{process}",pid=812,fd=3))'
    )


def ss_output(*lines: str) -> str:
    header = "State  Recv-Q Send-Q Local Address:Port Peer Address:Port Process"
    return "\n".join((header,) + lines) + "\n"


ED25519_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIOMqqnkVzrm0SdG6UOoqKLsabgH5C9okWi0dh2l9GKJl admin@laptop"


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def fast_poller():
    return Poller(attempts=3, interval=0, sleep=lambda _: None)
