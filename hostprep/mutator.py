"""Patch, validate and roll back config files as one run.

Every provisioning run follows the same path::

    Idle -> Detecting -> Patching -> Validating
         -> RolledBack                               (fatal)
         -> Reconciling -> Verifying -> Done | DoneWithWarning

``ConfigMutator`` records each write so that a failed validation can restore
every touched file before the error propagates. Nothing is retried.
"""

import enum
import shlex
from typing import Dict, List, Mapping, Optional, Sequence

from hostprep.console import logger
from hostprep.errors import ValidationError
from hostprep.fileops import WriteResult, atomic_write, read_text, restore
from hostprep.patcher import ConfigDocument, Dialect, ManagedSetting
from hostprep.runner import CommandRunner


class MutationState(enum.Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    PATCHING = "patching"
    VALIDATING = "validating"
    ROLLED_BACK = "rolled-back"
    RECONCILING = "reconciling"
    VERIFYING = "verifying"
    DONE = "done"
    DONE_WITH_WARNING = "done-with-warning"


_TRANSITIONS = {
    MutationState.IDLE: {MutationState.DETECTING},
    MutationState.DETECTING: {MutationState.PATCHING, MutationState.DONE},
    MutationState.PATCHING: {MutationState.VALIDATING, MutationState.ROLLED_BACK, MutationState.RECONCILING},
    MutationState.VALIDATING: {MutationState.ROLLED_BACK, MutationState.RECONCILING, MutationState.DONE},
    MutationState.RECONCILING: {MutationState.VERIFYING, MutationState.DONE},
    MutationState.VERIFYING: {MutationState.DONE, MutationState.DONE_WITH_WARNING},
    MutationState.ROLLED_BACK: set(),
    MutationState.DONE: set(),
    MutationState.DONE_WITH_WARNING: set(),
}


_SSHD_ALIASES = {"without-password": "prohibit-password"}


def _canon(value: str) -> str:
    value = value.lower()
    return _SSHD_ALIASES.get(value, value)


# ----------------------------------------------------------------
# Validators
# ----------------------------------------------------------------
class Validator:
    """Checks a mutation using an external tool."""

    command = ""

    def check(self, runner: CommandRunner) -> bool:
        raise NotImplementedError


class CommandValidator(Validator):
    def __init__(self, argv: Sequence[str]):
        self.argv = list(argv)
        self.command = shlex.join(self.argv)

    def check(self, runner: CommandRunner) -> bool:
        return runner.run(self.argv).returncode == 0


class SysctlValidator(Validator):
    """Reads live kernel values back with ``sysctl -n``."""

    def __init__(self, expected: Mapping[str, str]):
        self.expected = dict(expected)
        self.command = "sysctl -n " + " ".join(self.expected)
        self.observed: Dict[str, Optional[str]] = {}

    def check(self, runner: CommandRunner) -> bool:
        ok = True
        for key, want in self.expected.items():
            result = runner.run(["sysctl", "-n", key])
            got = result.stdout.strip() if result.returncode == 0 else None
            self.observed[key] = got
            if got != want:
                logger.debug(f"sysctl {key}: expected {want!r}, got {got!r}")
                ok = False
        return ok


class SshdValidator(Validator):
    """``sshd -t`` must pass; ``sshd -T`` must then report the expected values.

    The effective-value check is skipped when ``sshd -T`` gives no output.
    """

    def __init__(self, expected: Sequence[ManagedSetting] = (), sshd: str = "sshd"):
        self.expected = list(expected)
        self.sshd = sshd
        self.command = f"{sshd} -t"
        self.mismatches: List[str] = []

    def check(self, runner: CommandRunner) -> bool:
        self.mismatches = []
        syntax = runner.run([self.sshd, "-t"])
        if syntax.returncode != 0:
            logger.debug(f"sshd -t: {syntax.stderr.strip()}")
            return False
        effective = runner.run([self.sshd, "-T"])
        if effective.returncode != 0 or not effective.stdout.strip():
            logger.debug("sshd -T unavailable; effective values not compared")
            return True
        values: Dict[str, List[str]] = {}
        for line in effective.stdout.splitlines():
            parts = line.split(None, 1)
            if len(parts) == 2:
                values.setdefault(parts[0].lower(), []).append(parts[1].strip())
        for setting in self.expected:
            got = values.get(setting.key.lower())
            # options unknown to this sshd build are not reported by -T
            if got is not None and _canon(setting.value) not in [_canon(v) for v in got]:
                self.mismatches.append(f"{setting.key}: expected {setting.value}, effective {', '.join(got)}")
        if self.mismatches:
            self.command = f"{self.sshd} -T"
            for m in self.mismatches:
                logger.debug(f"sshd -T mismatch: {m}")
            return False
        return True


# ----------------------------------------------------------------
# Mutator
# ----------------------------------------------------------------
class ConfigMutator:
    def __init__(self, runner: CommandRunner):
        self.runner = runner
        self.state = MutationState.IDLE
        self.writes: List[WriteResult] = []

    def advance(self, state: MutationState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid transition {self.state.value} -> {state.value}")
        logger.debug(f"State: {self.state.value} -> {state.value}")
        self.state = state

    def track(self, result: WriteResult) -> WriteResult:
        """Include a write made elsewhere in the next rollback."""
        if self.state is MutationState.DETECTING:
            self.advance(MutationState.PATCHING)
        if result.changed:
            self.writes.append(result)
        return result

    @property
    def changed(self) -> bool:
        return bool(self.writes)

    @property
    def changed_files(self) -> List[str]:
        return [w.path for w in self.writes]

    def patch(
        self,
        path: str,
        dialect: Dialect,
        settings: Sequence[ManagedSetting],
        mode: Optional[int] = None,
    ) -> WriteResult:
        content = ConfigDocument.parse(read_text(path), dialect).apply(settings).render()
        return self.track(atomic_write(path, content, mode))

    def write(self, path: str, content: str, mode: Optional[int] = None) -> WriteResult:
        return self.track(atomic_write(path, content, mode))

    def rollback(self) -> None:
        for result in reversed(self.writes):
            restore(result)
        self.writes = []
        self.state = MutationState.ROLLED_BACK

    def validate(self, validator: Validator) -> None:
        self.advance(MutationState.VALIDATING)
        if validator.check(self.runner):
            logger.debug(f"Validator passed: {validator.command}")
            return
        files = self.changed_files
        self.rollback()
        raise ValidationError(files, validator.command)
