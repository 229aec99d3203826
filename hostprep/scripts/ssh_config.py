#!/usr/bin/env python3
"""
SSH Configuration
-----------------

Moves sshd to a custom port, tightens connection limits and optionally
switches it to key-only authentication.

  • Port from --port, --random-port (10000-65000) or an interactive prompt
  • MaxAuthTries 6, MaxSessions 4, MaxStartups 10:30:60
  • --key installs a public key for --user and disables password logins
  • Uses an sshd_config.d drop-in when the main config includes one
  • Every change is checked with ``sshd -t`` before sshd is restarted and
    rolled back if the check fails
  • Handles plain service units, socket activation (ssh.socket) and SysV init
  • Records the port in /etc/ssh/.custom_port for hostprep-ufw-config

Usage:
    sudo hostprep-ssh-config                      # prompt for a port
    sudo hostprep-ssh-config --random-port --yes
    sudo hostprep-ssh-config --key "ssh-ed25519 AAAA..." --user deploy
"""

import os
import re
import sys
from dataclasses import dataclass
from typing import List, Optional, Set

from rich.panel import Panel
from rich.text import Text

from hostprep.cli import base_parser, check_root, run, settings_table
from hostprep.console import (
    console,
    print_header,
    print_info,
    print_success,
    print_warning,
)
from hostprep.constants import (
    DEFAULT_SSH_PORT,
    MANAGED_HEADER,
    MAX_MANUAL_PORT,
    MIN_MANUAL_PORT,
    PORT_MARKER,
    SOCKET_OVERRIDE_DIR,
    SSH_KEY_ONLY,
    SSH_LIMITS,
    SSH_LOCK_FILE,
    SSH_PROCESS_NAMES,
    SSH_SERVICE_UNITS,
    SSH_SOCKET_UNIT,
    SSHD_CONFIG,
    SSHD_DROPIN_DIR,
    SSHD_DROPIN_NAME,
)
from hostprep.errors import PreconditionError
from hostprep.fileops import read_text, split_lines
from hostprep.keys import AuthorizedKeys, is_valid_public_key, resolve_user
from hostprep.locking import PidLock
from hostprep.mutator import ConfigMutator, MutationState, SshdValidator
from hostprep.patcher import ConfigDocument, Dialect, ManagedSetting, settings_from_pairs
from hostprep.polling import Poller
from hostprep.portmarker import PortMarker
from hostprep.ports import generate_random_port, validate_port
from hostprep.probes import (
    InitState,
    detect_init_mode,
    ports_in_use,
    selinux_enforcing,
    service_listening_port,
    ufw_is_active,
    unit_is_active,
)
from hostprep.prompts import ask_port, ask_text, confirm, has_tty
from hostprep.runner import CommandRunner
from hostprep.services import ServiceReconciler

SHOWN_KEYS = ("MaxAuthTries", "MaxSessions", "MaxStartups", "PasswordAuthentication")


@dataclass
class SSHOptions:
    port: Optional[int] = None
    random_port: bool = False
    key: Optional[str] = None
    key_requested: bool = False
    user: Optional[str] = None
    assume_yes: bool = False
    sshd_config: str = SSHD_CONFIG
    dropin_dir: str = SSHD_DROPIN_DIR
    marker: str = PORT_MARKER
    socket_override_dir: str = SOCKET_OVERRIDE_DIR
    authorized_keys: Optional[str] = None
    lock_file: str = SSH_LOCK_FILE


class SSHConfigurator:
    def __init__(
        self,
        options: SSHOptions,
        runner: Optional[CommandRunner] = None,
        poller: Optional[Poller] = None,
    ):
        self.options = options
        self.runner = runner or CommandRunner()
        self.mutator = ConfigMutator(self.runner)
        self.reconciler = ServiceReconciler(
            self.runner, poller, socket_override_dir=options.socket_override_dir
        )
        self.marker = PortMarker(options.marker)
        self.init_state: Optional[InitState] = None
        self.listen_port: Optional[int] = None
        self.in_use: Set[int] = set()

    # ------------------------------------------------------------
    # Config files
    # ------------------------------------------------------------
    @property
    def dropin_path(self) -> str:
        return os.path.join(self.options.dropin_dir, SSHD_DROPIN_NAME)

    @property
    def uses_dropin(self) -> bool:
        if not os.path.isdir(self.options.dropin_dir):
            return False
        pattern = re.compile(r"^\s*include\s+(.*)$", re.IGNORECASE)
        for line in split_lines(read_text(self.options.sshd_config)):
            m = pattern.match(line)
            if m and self.options.dropin_dir in m.group(1):
                return True
        return False

    @property
    def target(self) -> str:
        return self.dropin_path if self.uses_dropin else self.options.sshd_config

    def config_value(self, key: str) -> Optional[str]:
        """Value sshd would use: the drop-in is read first and the first value wins."""
        sources = [self.options.sshd_config]
        if self.uses_dropin:
            sources.insert(0, self.dropin_path)
        for path in sources:
            value = ConfigDocument.parse(read_text(path), Dialect.SPACE_DIRECTIVE).get(key)
            if value is not None:
                return value
        return None

    @property
    def config_port(self) -> int:
        value = self.config_value("Port")
        return int(value) if value and value.isdigit() else DEFAULT_SSH_PORT

    @property
    def current_port(self) -> int:
        return self.listen_port or self.config_port

    # ------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------
    def check_prerequisites(self) -> None:
        self.runner.require("sshd")
        if not os.path.isfile(self.options.sshd_config):
            raise PreconditionError(f"SSH config not found: {self.options.sshd_config}")

    def detect(self) -> None:
        self.mutator.advance(MutationState.DETECTING)
        self.init_state = detect_init_mode(self.runner, SSH_SERVICE_UNITS, SSH_SOCKET_UNIT)
        self.listen_port = service_listening_port(self.runner, SSH_PROCESS_NAMES)
        used = ports_in_use(self.runner)
        if used is None:
            print_warning("Cannot inspect listening sockets (ss missing); port conflicts are not checked")
        self.in_use = used or set()
        print_info(f"Service mode: {self.init_state.mode.value}")

    def show_current_settings(self) -> None:
        rows = [
            ["Port (config)", str(self.config_port)],
            ["Port (actual)", str(self.listen_port) if self.listen_port else "unknown"],
        ]
        rows += [[key, self.config_value(key) or "default"] for key in SHOWN_KEYS]
        console.print(settings_table("Current settings", rows, ["Setting", "Value"]))

    # ------------------------------------------------------------
    # Choices
    # ------------------------------------------------------------
    def choose_port(self) -> Optional[int]:
        current = self.current_port
        others = self.in_use - {current}
        if self.options.port is not None:
            try:
                return validate_port(self.options.port, others)
            except ValueError as e:
                raise PreconditionError(f"Invalid --port: {e}") from None
        if self.options.random_port:
            print_info("Generating random port...")
            port = generate_random_port(self.in_use)
            print_success(f"Generated port: {port}")
            return port
        if self.options.key_requested:
            return current
        if current != DEFAULT_SSH_PORT:
            print_warning(f"SSH port already changed to {current}")
            if not confirm("Continue anyway?", default=False, assume_yes=self.options.assume_yes):
                return None
        return ask_port("Enter SSH port", in_use=others, low=MIN_MANUAL_PORT, high=MAX_MANUAL_PORT)

    def authorized_keys(self) -> AuthorizedKeys:
        if self.options.authorized_keys:
            return AuthorizedKeys(self.options.authorized_keys, owner=self.options.user)
        return AuthorizedKeys.for_user(resolve_user(self.options.user))

    def choose_key(self) -> Optional[str]:
        if not self.options.key_requested:
            return None
        key = self.options.key
        if not key:
            def _check(value: str) -> None:
                if not is_valid_public_key(value, self.runner):
                    raise ValueError("Not an SSH public key")

            key = ask_text("Public key to authorize", check=_check)
        if not is_valid_public_key(key, self.runner):
            raise PreconditionError(
                "Invalid SSH public key",
                ["Expected: ssh-ed25519, ssh-rsa, ecdsa-sha2-nistp*, or ssh-dss followed by base64"],
            )
        return key.strip()

    def desired_settings(self, port: int, key_only: bool) -> List[ManagedSetting]:
        pairs = [("Port", str(port))] + list(SSH_LIMITS)
        if key_only:
            pairs += list(SSH_KEY_ONLY)
        return settings_from_pairs(pairs)

    def already_configured(self, settings: List[ManagedSetting], keys: Optional[AuthorizedKeys], key: Optional[str]) -> bool:
        for setting in settings:
            value = self.config_value(setting.key)
            if value is None or value.lower() != setting.value.lower():
                return False
        if key and not keys.contains(key):
            return False
        port = int(settings[0].value)
        return self.listen_port in (None, port)

    # ------------------------------------------------------------
    # Changes
    # ------------------------------------------------------------
    def write_config(self, settings: List[ManagedSetting]) -> None:
        if self.uses_dropin:
            content = MANAGED_HEADER + "\n"
            content += "".join(f"{s.render(Dialect.SPACE_DIRECTIVE)}\n" for s in settings)
            result = self.mutator.write(self.dropin_path, content)
        else:
            result = self.mutator.patch(self.options.sshd_config, Dialect.SPACE_DIRECTIVE, settings)
        if result.backup:
            print_success(f"Backup: {result.backup}")
        for setting in settings:
            print_success(f"Set: {setting.render(Dialect.SPACE_DIRECTIVE)} ({result.path})")

    def validate(self, settings: List[ManagedSetting]) -> None:
        print_info("Testing config...")
        sshd = self.runner.which("sshd") or "sshd"
        self.mutator.validate(SshdValidator(settings, sshd=sshd))
        print_success("Config syntax OK")

    def open_firewall(self, port: int) -> None:
        """Best-effort: failures here only warn."""
        if ufw_is_active(self.runner):
            result = self.runner.run(["ufw", "allow", f"{port}/tcp", "comment", "SSH"])
            if result.returncode == 0:
                print_success(f"UFW: port {port} allowed")
            else:
                print_warning(f"UFW: could not allow port {port}")
        if self.runner.exists("firewall-cmd") and unit_is_active(self.runner, "firewalld"):
            added = self.runner.run(["firewall-cmd", "--permanent", f"--add-port={port}/tcp"])
            reloaded = self.runner.run(["firewall-cmd", "--reload"])
            if added.returncode == 0 and reloaded.returncode == 0:
                print_success(f"firewalld: port {port} allowed")
            else:
                print_warning(f"firewalld: could not allow port {port}")
        if selinux_enforcing(self.runner) and self.runner.exists("semanage"):
            base = ["semanage", "port", "-t", "ssh_port_t", "-p", "tcp", str(port)]
            if (
                self.runner.run(base[:2] + ["-a"] + base[2:]).returncode == 0
                or self.runner.run(base[:2] + ["-m"] + base[2:]).returncode == 0
            ):
                print_success(f"SELinux: port {port} labeled ssh_port_t")
            else:
                print_warning(f"SELinux: could not label port {port}")

    def show_plan(self, settings: List[ManagedSetting], keys: Optional[AuthorizedKeys]) -> None:
        rows = [[s.key, s.value] for s in settings]
        if keys is not None:
            rows.append(["authorized_keys", keys.path])
        rows.append(["File", self.target])
        console.print(settings_table("Will apply", rows, ["Setting", "Value"]))

    def finish(self, port: int) -> None:
        body = Text.assemble(
            ("SSH port: ", "frost2"),
            (str(port), "bold success"),
            "\n\n",
            ("IMPORTANT: Keep this session open!\n", "warning"),
            (f"Test: ssh -p {port} user@host", "warning"),
        )
        console.print(Panel(body, title="Complete", border_style="success"))

    # ------------------------------------------------------------
    # Run
    # ------------------------------------------------------------
    def run(self) -> int:
        self.check_prerequisites()
        self.detect()
        self.show_current_settings()

        port = self.choose_port()
        if port is None:
            console.print("Cancelled")
            return 0
        key = self.choose_key()
        keys = self.authorized_keys() if key else None
        settings = self.desired_settings(port, key_only=keys is not None)

        if self.already_configured(settings, keys, key):
            self.mutator.advance(MutationState.DONE)
            print_success("Already configured. Nothing to do.")
            return 0

        self.show_plan(settings, keys)
        if not confirm("Continue?", default=True, assume_yes=self.options.assume_yes):
            console.print("Cancelled")
            return 0

        if keys is not None:
            if self.mutator.track(keys.add(key)).changed:
                print_success(f"Key added to {keys.path}")
            else:
                print_info(f"Key already present in {keys.path}")
            if not keys.has_valid_key():
                self.mutator.rollback()
                raise PreconditionError(
                    f"No valid key in {keys.path}; refusing to disable password logins"
                )

        self.write_config(settings)
        self.validate(settings)
        self.marker.write(port)
        print_success(f"Port marker saved: {self.marker.path}")
        self.open_firewall(port)

        self.mutator.advance(MutationState.RECONCILING)
        listening = self.reconciler.reconcile(self.init_state, port)
        self.mutator.advance(MutationState.VERIFYING)
        self.mutator.advance(MutationState.DONE if listening else MutationState.DONE_WITH_WARNING)
        self.finish(port)
        return 0


def build_parser():
    parser = base_parser("Change the SSH port and harden sshd")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--port", "-p", type=int, metavar="N", help="Use this port (1024-65535)")
    group.add_argument("--random-port", "-r", action="store_true", help="Pick a free port in 10000-65000")
    parser.add_argument(
        "--key",
        nargs="?",
        const="",
        default=None,
        metavar="VALUE",
        help="Authorize this public key (prompt if no value) and disable password logins",
    )
    parser.add_argument("--user", metavar="NAME", help="Owner of the authorized_keys file (default: SUDO_USER or root)")
    parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    return parser


def options_from_args(args) -> SSHOptions:
    return SSHOptions(
        port=args.port,
        random_port=args.random_port,
        key=args.key or None,
        key_requested=args.key is not None,
        user=args.user,
        assume_yes=args.yes,
    )


def _main(args) -> int:
    check_root()
    print_header("SSH Config", "Port and authentication hardening")
    options = options_from_args(args)
    if options.port is None and not options.random_port and not options.key_requested and not has_tty():
        raise PreconditionError(
            "No TTY available for the port prompt",
            ["Pass --port N or --random-port"],
        )
    with PidLock(options.lock_file):
        return SSHConfigurator(options).run()


def main(argv: Optional[List[str]] = None) -> int:
    return run(_main, build_parser(), argv)


if __name__ == "__main__":
    sys.exit(main())
