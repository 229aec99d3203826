"""Thin wrapper around the external tools the scripts shell out to."""

import os
import shutil
import subprocess
from typing import Optional, Sequence

from hostprep.console import logger
from hostprep.errors import CommandError, PreconditionError

SBIN_DIRS = ("/usr/local/sbin", "/usr/sbin", "/sbin")
MISSING_COMMAND = 127


class CommandRunner:
    """Runs commands synchronously with captured text output.

    A missing executable returns exit status 127 instead of raising, so
    callers probing optional tools can treat it as "unknown".
    """

    def run(
        self,
        cmd: Sequence[str],
        check: bool = False,
        cwd: Optional[str] = None,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        cmd = list(cmd)
        logger.debug(f"Executing: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                input=input,
                timeout=timeout,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            logger.debug(f"Command not found: {cmd[0]}")
            result = subprocess.CompletedProcess(
                cmd, MISSING_COMMAND, "", f"{cmd[0]}: command not found"
            )
        except subprocess.TimeoutExpired:
            logger.debug(f"Command timed out after {timeout}s: {' '.join(cmd)}")
            result = subprocess.CompletedProcess(cmd, 124, "", "timed out")
        if result.returncode != 0:
            logger.debug(f"Exit {result.returncode}: {(result.stderr or '').strip()}")
            if check:
                raise CommandError(cmd, result.returncode, result.stderr)
        return result

    def which(self, name: str) -> Optional[str]:
        path = os.pathsep.join([os.environ.get("PATH", os.defpath), *SBIN_DIRS])
        return shutil.which(name, path=path)

    def exists(self, name: str) -> bool:
        return self.which(name) is not None

    def require(self, *names: str) -> None:
        for name in names:
            if not self.exists(name):
                raise PreconditionError(f"Required command not found: {name}")
