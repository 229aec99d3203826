#!/usr/bin/env python3
"""
UFW Firewall Configuration
--------------------------

Resets UFW to a deny-incoming policy that keeps SSH reachable:

  • SSH port from /etc/ssh/.custom_port, sshd_config, the listening socket, or 22
  • 443/tcp (HTTPS/VPN), the Remnawave node port and OpenVPN 1194/udp when found
  • Extra rules with --allow PORT/PROTO
  • ICMP echo and error types switched to DROP in /etc/ufw/before.rules
    (restored from backup if ufw refuses to start)

Usage:
    sudo hostprep-ufw-config [--yes] [--ssh-port N] [--allow 8080/tcp] [--keep-icmp]
"""

import os
import re
import sys
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dotenv import dotenv_values
from rich.panel import Panel
from rich.text import Text

from hostprep.cli import base_parser, check_root, run, settings_table
from hostprep.console import console, print_header, print_info, print_success, print_warning
from hostprep.constants import (
    DEFAULT_SSH_PORT,
    HTTPS_RULE,
    ICMP_CHAINS,
    ICMP_TYPES,
    OPENVPN_RULE,
    PORT_MARKER,
    REMNAWAVE_ENV_FILES,
    SSH_PROCESS_NAMES,
    SSHD_CONFIG,
    SSHD_DROPIN_DIR,
    SSHD_DROPIN_NAME,
    UFW_BEFORE_RULES,
    UFW_LOCK_FILE,
)
from hostprep.errors import CommandError, PreconditionError
from hostprep.fileops import read_text, split_lines
from hostprep.locking import PidLock
from hostprep.mutator import ConfigMutator, MutationState
from hostprep.patcher import ConfigDocument, Dialect
from hostprep.portmarker import PortMarker
from hostprep.ports import validate_port
from hostprep.probes import detect_package_manager, install_hint, service_listening_port, service_unit_listed
from hostprep.prompts import confirm
from hostprep.runner import CommandRunner

RULE_RE = re.compile(r"^\d{1,5}(:\d{1,5})?/(tcp|udp)$")
SOURCE_QUENCH_RULE = "-A ufw-before-input -p icmp --icmp-type source-quench -j DROP"
ECHO_REQUEST_INPUT = "-A ufw-before-input -p icmp --icmp-type echo-request"


def icmp_rule(chain: str, icmp_type: str, target: str) -> str:
    return f"-A {chain} -p icmp --icmp-type {icmp_type} -j {target}"


def block_icmp(content: str) -> Tuple[str, int]:
    """Switch the stock ICMP ACCEPT rules to DROP.

    Returns the new content and the number of lines changed or added.
    """
    flips = {
        icmp_rule(chain, icmp_type, "ACCEPT"): icmp_rule(chain, icmp_type, "DROP")
        for chain in ICMP_CHAINS
        for icmp_type in ICMP_TYPES
    }
    need_quench = "icmp-type source-quench" not in content
    lines: List[str] = []
    changed = 0
    for line in split_lines(content):
        stripped = line.strip()
        if stripped in flips:
            line = line.replace(stripped, flips[stripped])
            changed += 1
        lines.append(line)
        if need_quench and stripped.startswith(ECHO_REQUEST_INPUT):
            lines.append(SOURCE_QUENCH_RULE)
            need_quench = False
            changed += 1
    if not changed:
        return content, 0
    return "\n".join(lines) + "\n", changed


def parse_rule(value: str) -> str:
    value = value.strip().lower()
    if not RULE_RE.match(value):
        raise ValueError(f"'{value}' is not PORT/PROTO (e.g. 8080/tcp)")
    for part in value.split("/")[0].split(":"):
        if not 1 <= int(part) <= 65535:
            raise ValueError(f"Port {part} is outside 1-65535")
    return value


@dataclass
class UFWOptions:
    assume_yes: bool = False
    ssh_port: Optional[int] = None
    extra_rules: List[str] = field(default_factory=list)
    keep_icmp: bool = False
    marker: str = PORT_MARKER
    sshd_config: str = SSHD_CONFIG
    sshd_dropin: str = os.path.join(SSHD_DROPIN_DIR, SSHD_DROPIN_NAME)
    before_rules: str = UFW_BEFORE_RULES
    remnawave_env_files: Tuple[str, ...] = REMNAWAVE_ENV_FILES
    lock_file: str = UFW_LOCK_FILE


@dataclass
class FirewallPlan:
    ssh_port: int
    ssh_source: str
    remnawave_port: Optional[int] = None
    remnawave_source: Optional[str] = None
    openvpn: bool = False


class UFWConfigurator:
    def __init__(self, options: UFWOptions, runner: Optional[CommandRunner] = None):
        self.options = options
        self.runner = runner or CommandRunner()
        self.mutator = ConfigMutator(self.runner)

    # ------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------
    def check_prerequisites(self) -> None:
        if not self.runner.exists("ufw"):
            manager = detect_package_manager(self.runner)
            raise PreconditionError("UFW not installed", [f"Install with: {install_hint(manager, 'ufw')}"])
        if not self.options.keep_icmp and not os.path.isfile(self.options.before_rules):
            raise PreconditionError(f"{self.options.before_rules} not found", ["Use --keep-icmp to skip the ICMP edit"])

    def detect_ssh_port(self) -> Tuple[int, str]:
        if self.options.ssh_port is not None:
            return self.options.ssh_port, "--ssh-port"
        port = PortMarker(self.options.marker).read()
        if port is not None:
            return port, self.options.marker
        for path in (self.options.sshd_dropin, self.options.sshd_config):
            value = ConfigDocument.parse(read_text(path), Dialect.SPACE_DIRECTIVE).get("Port")
            if value and value.isdigit():
                return int(value), path
        port = service_listening_port(self.runner, SSH_PROCESS_NAMES)
        if port is not None:
            return port, "listening socket"
        return DEFAULT_SSH_PORT, "default"

    def detect_remnawave(self) -> Tuple[Optional[int], Optional[str]]:
        for path in self.options.remnawave_env_files:
            if not os.path.isfile(path):
                continue
            raw = (dotenv_values(path).get("NODE_PORT") or "").strip().strip("'\"").strip()
            if not raw:
                continue
            try:
                return validate_port(raw, low=1), path
            except ValueError as e:
                print_warning(f"Ignoring NODE_PORT in {path}: {e}")
        return None, None

    def detect_openvpn(self) -> bool:
        return self.runner.exists("openvpn") or bool(service_unit_listed(self.runner, "openvpn"))

    def detect(self) -> FirewallPlan:
        self.mutator.advance(MutationState.DETECTING)
        port, source = self.detect_ssh_port()
        remnawave, remnawave_source = self.detect_remnawave()
        return FirewallPlan(port, source, remnawave, remnawave_source, self.detect_openvpn())

    def show_plan(self, plan: FirewallPlan) -> None:
        def mark(on: bool) -> str:
            return "[x]" if on else "[ ]"

        rows = [
            [mark(True), f"Allow SSH on port {plan.ssh_port}", plan.ssh_source],
            [mark(True), f"Allow {HTTPS_RULE} (HTTPS/VPN)", ""],
        ]
        if plan.remnawave_port:
            rows.append([mark(True), f"Allow Remnawave API: {plan.remnawave_port}/tcp", plan.remnawave_source])
        else:
            rows.append([mark(False), "Remnawave: not detected", ""])
        if plan.openvpn:
            rows.append([mark(True), f"Allow OpenVPN: {OPENVPN_RULE}", "detected"])
        else:
            rows.append([mark(False), "OpenVPN: not detected", ""])
        for rule in self.options.extra_rules:
            rows.append([mark(True), f"Allow {rule}", "--allow"])
        rows.append([mark(not self.options.keep_icmp), "Block ICMP ping requests", self.options.before_rules])
        console.print(settings_table("Will configure", rows, ["", "Rule", "Source"]))

    # ------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------
    def ufw(self, *args: str) -> None:
        self.runner.run(["ufw", *args], check=True)

    def allow_ssh(self, port: int) -> None:
        if port == DEFAULT_SSH_PORT:
            if self.runner.run(["ufw", "allow", "OpenSSH"]).returncode == 0:
                print_success("Allowed OpenSSH (port 22)")
                return
            print_warning("OpenSSH application profile missing; allowing 22/tcp")
        self.ufw("allow", f"{port}/tcp", "comment", "SSH")
        print_success(f"Allowed SSH on port {port}")

    def apply_rules(self, plan: FirewallPlan) -> None:
        print_info("Resetting UFW to defaults...")
        self.ufw("--force", "reset")
        print_success("UFW reset")
        self.ufw("default", "deny", "incoming")
        self.ufw("default", "allow", "outgoing")
        print_success("Default policies set (deny incoming, allow outgoing)")

        self.allow_ssh(plan.ssh_port)
        self.ufw("allow", HTTPS_RULE, "comment", "HTTPS/VPN")
        print_success(f"Allowed {HTTPS_RULE}")
        if plan.remnawave_port:
            self.ufw("allow", f"{plan.remnawave_port}/tcp", "comment", "Remnawave API")
            print_success(f"Allowed {plan.remnawave_port}/tcp (Remnawave)")
        if plan.openvpn:
            self.ufw("allow", OPENVPN_RULE, "comment", "OpenVPN")
            print_success(f"Allowed {OPENVPN_RULE} (OpenVPN)")
        for rule in self.options.extra_rules:
            self.ufw("allow", rule)
            print_success(f"Allowed {rule}")

    def drop_icmp(self) -> None:
        print_info("Configuring ICMP blocking...")
        path = self.options.before_rules
        content, changed = block_icmp(read_text(path))
        result = self.mutator.write(path, content)
        if result.backup:
            print_success(f"Backup: {result.backup}")
        if changed:
            print_success(f"ICMP rules changed to DROP ({changed} lines)")
        else:
            print_info("ICMP rules already set to DROP")

    def enable(self) -> None:
        print_info("Enabling UFW...")
        self.mutator.advance(MutationState.RECONCILING)
        try:
            self.ufw("--force", "enable")
        except CommandError:
            if self.mutator.changed:
                self.mutator.rollback()
                print_warning(f"Restored {self.options.before_rules}")
            raise
        print_success("UFW enabled")

    def verify(self, port: int) -> bool:
        self.mutator.advance(MutationState.VERIFYING)
        status = self.runner.run(["ufw", "status"]).stdout
        if re.search(rf"(^|\s){port}/tcp\b", status) or "OpenSSH" in status:
            print_success(f"SSH port {port} is allowed")
            self.mutator.advance(MutationState.DONE)
            return True
        print_warning("SSH port might not be allowed! Check: ufw status")
        self.mutator.advance(MutationState.DONE_WITH_WARNING)
        return False

    # ------------------------------------------------------------
    # Run
    # ------------------------------------------------------------
    def run(self) -> int:
        self.check_prerequisites()
        plan = self.detect()
        print_info(f"SSH port detected: {plan.ssh_port} ({plan.ssh_source})")
        self.show_plan(plan)
        if not confirm("Continue?", default=True, assume_yes=self.options.assume_yes):
            console.print("Cancelled")
            return 0

        self.mutator.advance(MutationState.PATCHING)
        self.apply_rules(plan)
        if not self.options.keep_icmp:
            self.drop_icmp()
        self.enable()
        status = self.runner.run(["ufw", "status", "verbose"]).stdout
        if status.strip():
            console.print(Text(status.rstrip()))
        self.verify(plan.ssh_port)

        body = Text.assemble(
            ("IMPORTANT: Keep this session open!\n", "warning"),
            ("Test a new SSH connection before closing.", "warning"),
        )
        console.print(Panel(body, title="UFW Configured", border_style="success"))
        return 0


def build_parser():
    parser = base_parser("Configure UFW with SSH, HTTPS and detected VPN ports")
    parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    parser.add_argument("--ssh-port", type=int, metavar="N", help="SSH port to allow (skips detection)")
    parser.add_argument(
        "--allow",
        action="append",
        default=[],
        metavar="PORT/PROTO",
        help="Extra rule to allow, e.g. 8080/tcp (repeatable)",
    )
    parser.add_argument("--keep-icmp", action="store_true", help="Leave ICMP rules in before.rules alone")
    return parser


def options_from_args(args) -> UFWOptions:
    try:
        rules = [parse_rule(rule) for rule in args.allow]
        ssh_port = None if args.ssh_port is None else validate_port(args.ssh_port, low=1)
    except ValueError as e:
        raise PreconditionError(f"Invalid argument: {e}") from None
    return UFWOptions(
        assume_yes=args.yes,
        ssh_port=ssh_port,
        extra_rules=rules,
        keep_icmp=args.keep_icmp,
    )


def _main(args) -> int:
    check_root()
    print_header("UFW", "Firewall configuration")
    options = options_from_args(args)
    with PidLock(options.lock_file):
        return UFWConfigurator(options).run()


def main(argv: Optional[List[str]] = None) -> int:
    return run(_main, build_parser(), argv)


if __name__ == "__main__":
    sys.exit(main())
