#!/usr/bin/env python3
"""
Enable TCP BBR
--------------

Turns on the BBR congestion control algorithm with the ``fq`` queueing
discipline and makes the change persistent:

  • Installs procps when ``sysctl`` is missing (apt-get, dnf, yum or apk)
  • Loads ``tcp_bbr`` and checks the kernel advertises it
  • Writes /etc/sysctl.d/99-bbr.conf, or patches /etc/sysctl.conf on hosts
    without a sysctl.d directory
  • Applies the settings and reads them back; a failed read-back restores
    the previous file

Safe to run repeatedly.

Usage:
    sudo hostprep-enable-bbr [--qdisc fq] [--check]
"""

import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from hostprep.cli import base_parser, check_root, run, settings_table
from hostprep.console import console, print_header, print_info, print_success, print_warning
from hostprep.constants import (
    BBR_MODULE,
    CONGESTION_CONTROL,
    DEFAULT_QDISC,
    MANAGED_HEADER,
    PROC_SYS,
    SYSCTL_CONF,
    SYSCTL_DIR,
    SYSCTL_DROPIN,
)
from hostprep.errors import CommandError, PreconditionError, ValidationError
from hostprep.fileops import read_text
from hostprep.mutator import ConfigMutator, MutationState, SysctlValidator
from hostprep.patcher import Dialect, ManagedSetting, patch_text
from hostprep.probes import (
    available_congestion_controls,
    detect_package_manager,
    install_hint,
    install_package,
    kernel_release,
    load_kernel_module,
    read_proc_value,
)
from hostprep.runner import CommandRunner

QDISC_KEY = "net.core.default_qdisc"
CC_KEY = "net.ipv4.tcp_congestion_control"
PROCPS_PACKAGES = {"apt-get": "procps", "apk": "procps", "dnf": "procps-ng", "yum": "procps-ng"}


@dataclass
class BBROptions:
    qdisc: str = DEFAULT_QDISC
    check_only: bool = False
    proc_root: str = PROC_SYS
    sysctl_dir: str = SYSCTL_DIR
    dropin: str = SYSCTL_DROPIN
    fallback: str = SYSCTL_CONF


def render_dropin(settings: List[ManagedSetting]) -> str:
    body = "".join(f"{s.render(Dialect.INI_EQUALS)}\n" for s in settings)
    return f"{MANAGED_HEADER}\n{body}"


class BBREnabler:
    def __init__(self, options: BBROptions, runner: Optional[CommandRunner] = None):
        self.options = options
        self.runner = runner or CommandRunner()
        self.mutator = ConfigMutator(self.runner)

    @property
    def settings(self) -> List[ManagedSetting]:
        return [
            ManagedSetting(QDISC_KEY, self.options.qdisc),
            ManagedSetting(CC_KEY, CONGESTION_CONTROL),
        ]

    # ------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------
    def ensure_sysctl(self) -> None:
        if self.runner.exists("sysctl"):
            return
        manager = detect_package_manager(self.runner)
        if manager is None:
            raise PreconditionError(
                "sysctl not found and no supported package manager detected",
                ["Install procps (procps-ng on RHEL-like systems) manually"],
            )
        package = PROCPS_PACKAGES[manager]
        print_info(f"sysctl not found, installing {package} with {manager}...")
        install_package(self.runner, manager, [package])
        if not self.runner.exists("sysctl"):
            raise PreconditionError(
                "sysctl still missing after install", [install_hint(manager, package)]
            )
        print_success(f"Installed {package}")

    def check_kernel(self) -> None:
        if read_proc_value(self.options.proc_root, CC_KEY) is None:
            path = os.path.join(self.options.proc_root, *CC_KEY.split("."))
            raise PreconditionError(f"Kernel sysctl interface missing: {path}")
        if not load_kernel_module(self.runner, BBR_MODULE):
            print_warning(f"Could not load {BBR_MODULE}; it may be built in")
        available = available_congestion_controls(self.options.proc_root) or set()
        if CONGESTION_CONTROL not in available:
            raise PreconditionError(
                f"BBR is not available on this kernel ({kernel_release(self.runner)})",
                ["A newer kernel that includes tcp_bbr is needed"],
            )

    def current(self) -> dict:
        return {
            s.key: read_proc_value(self.options.proc_root, s.key) for s in self.settings
        }

    # ------------------------------------------------------------
    # Persisting
    # ------------------------------------------------------------
    @property
    def uses_dropin(self) -> bool:
        return os.path.isdir(self.options.sysctl_dir)

    @property
    def target(self) -> str:
        return self.options.dropin if self.uses_dropin else self.options.fallback

    def desired_content(self) -> str:
        if self.uses_dropin:
            return render_dropin(self.settings)
        return patch_text(read_text(self.options.fallback), Dialect.INI_EQUALS, self.settings)

    def persist(self) -> None:
        if self.uses_dropin:
            result = self.mutator.write(self.options.dropin, render_dropin(self.settings))
        else:
            print_warning(f"{self.options.sysctl_dir} not found; falling back to {self.options.fallback}")
            result = self.mutator.patch(self.options.fallback, Dialect.INI_EQUALS, self.settings)
        if result.backup:
            print_success(f"Backup: {result.backup}")
        print_success(f"Wrote {result.path}")

    def apply(self) -> None:
        print_info("Applying sysctl settings...")
        if self.runner.run(["sysctl", "--system"]).returncode == 0:
            return
        if os.path.isfile(self.target):
            self.runner.run(["sysctl", "-p", self.target], check=True)
            return
        raise PreconditionError(
            "No way to apply sysctl settings (sysctl --system failed and no config file)"
        )

    def validate(self) -> None:
        validator = SysctlValidator({CC_KEY: CONGESTION_CONTROL})
        try:
            self.mutator.validate(validator)
        except ValidationError:
            # the old file is back; load it again so the live value matches
            self.runner.run(["sysctl", "--system"])
            raise
        qdisc = self.runner.run(["sysctl", "-n", QDISC_KEY]).stdout.strip()
        if qdisc != self.options.qdisc:
            print_warning(
                f"default_qdisc is '{qdisc}' (expected '{self.options.qdisc}'). "
                "BBR still works, but fq is recommended."
            )

    # ------------------------------------------------------------
    # Run
    # ------------------------------------------------------------
    def show_status(self) -> None:
        current = self.current()
        rows = [[s.key, current[s.key] or "unknown", s.value] for s in self.settings]
        console.print(settings_table("Congestion control", rows, ["Setting", "Current", "Desired"]))

    def run(self) -> int:
        self.mutator.advance(MutationState.DETECTING)
        self.ensure_sysctl()
        self.check_kernel()
        self.show_status()

        live_ok = self.current().get(CC_KEY) == CONGESTION_CONTROL
        file_ok = read_text(self.target) == self.desired_content()
        if live_ok and file_ok:
            self.mutator.advance(MutationState.DONE)
            print_success("Already configured. Nothing to do.")
            return 0
        if self.options.check_only:
            print_warning("BBR is not fully configured (check only, nothing changed)")
            return 1

        self.persist()
        try:
            self.apply()
        except (CommandError, PreconditionError):
            self.mutator.rollback()
            raise
        self.validate()
        self.mutator.advance(MutationState.DONE)

        print_success("BBR enabled")
        for key, value in self.current().items():
            print_info(f"{key}={value}")
        return 0


def build_parser():
    parser = base_parser("Enable TCP BBR congestion control persistently")
    parser.add_argument("--qdisc", default=DEFAULT_QDISC, help="Default queueing discipline (default: fq)")
    parser.add_argument("--check", action="store_true", help="Only report whether BBR is configured")
    return parser


def _main(args) -> int:
    check_root()
    print_header("BBR", "TCP congestion control")
    return BBREnabler(BBROptions(qdisc=args.qdisc, check_only=args.check)).run()


def main(argv: Optional[List[str]] = None) -> int:
    return run(_main, build_parser(), argv)


if __name__ == "__main__":
    sys.exit(main())
