#!/usr/bin/env python3
"""
Docker Compose Aliases
----------------------

Installs system-wide ``docker compose`` shortcuts (dc, dcud, dcl, dcpu, ...)
for interactive bash and zsh shells.

  • /etc/profile.d/docker-aliases.sh holds the aliases between managed markers;
    anything else in that file is left alone
  • /etc/bash.bashrc and /etc/zsh/zshrc get a small loader block so non-login
    shells pick the aliases up too
  • --uninstall removes only what this script added

Usage:
    sudo hostprep-docker-aliases
    sudo hostprep-docker-aliases --uninstall
    hostprep-docker-aliases --print
"""

import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from hostprep.blocks import ManagedBlock, remove_lines
from hostprep.cli import base_parser, check_root, run
from hostprep.console import print_detail, print_header, print_info, print_success, print_warning
from hostprep.constants import (
    ALIASES_BEGIN,
    ALIASES_END,
    ALIASES_FILE,
    BASH_SYSTEM_RC,
    LOADER_BEGIN,
    LOADER_END,
    ZSH_SYSTEM_RC,
)
from hostprep.fileops import atomic_write, read_text, remove_file
from hostprep.runner import CommandRunner

ALIASES = (
    ("dc", "docker compose"),
    ("dcu", "docker compose up"),
    ("dcud", "docker compose up -d"),
    ("dcub", "docker compose up -d --build"),
    ("dcuw", "docker compose up -w"),
    ("dcd", "docker compose down"),
    ("dcs", "docker compose stop"),
    ("dcb", "docker compose build"),
    ("dcp", "docker system prune"),
    ("dce", "docker exec -it"),
    ("dcl", "docker compose logs -f"),
    ("dclf", "docker compose logs -f --tail 100"),
    ("dcps", 'docker ps --format="table {{.Names}}\\t{{.Ports}}\\t{{.Status}}"'),
    (
        "dcpu",
        'docker compose pull && docker compose up -d && docker compose ps --format "table {{.Names}}\\t{{.Image}}"',
    ),
    ("dcr", "docker compose stop && docker compose up -d --force-recreate"),
    ("dct", "truncate -s 0 /var/lib/docker/containers/*/*-json.log"),
    ("dcc", "docker exec -w /etc/caddy caddy caddy fmt --overwrite && docker exec -w /etc/caddy caddy caddy reload"),
    (
        "dccf",
        "docker exec -w /etc/caddy caddy caddy fmt --overwrite"
        " && docker exec -w /etc/caddy caddy caddy reload --force",
    ),
    ("docker-compose", "docker compose"),
)

INTERACTIVE_GUARD = """\
# Interactive shells only (skip non-interactive)
case "$-" in
  *i*) ;;
  *) return 0 2>/dev/null || exit 0 ;;
esac"""

LEGACY_LOADER_COMMENT = "# Load docker aliases (managed)"
CHECK_ALIAS = "dcpu"


def render_aliases() -> str:
    lines = [f"alias {name}='{command}'" for name, command in ALIASES]
    return INTERACTIVE_GUARD + "\n\n" + "\n".join(lines)


def aliases_block() -> ManagedBlock:
    return ManagedBlock(ALIASES_BEGIN, ALIASES_END, render_aliases())


def loader_line(aliases_file: str, source_cmd: str) -> str:
    return f"[[ -f {aliases_file} ]] && {source_cmd} {aliases_file}"


@dataclass
class RcFile:
    path: str
    loader: str

    @property
    def block(self) -> ManagedBlock:
        return ManagedBlock(LOADER_BEGIN, LOADER_END, self.loader)

    def clean(self, text: str) -> str:
        """Text without our loader block or the older single-line loader."""
        return self.block.strip(remove_lines(text, [LEGACY_LOADER_COMMENT, self.loader]))


@dataclass
class AliasOptions:
    aliases_file: str = ALIASES_FILE
    bash_rc: str = BASH_SYSTEM_RC
    zsh_rc: str = ZSH_SYSTEM_RC


class AliasInstaller:
    def __init__(self, options: AliasOptions, runner: Optional[CommandRunner] = None):
        self.options = options
        self.runner = runner or CommandRunner()
        self.block = aliases_block()

    @property
    def rc_files(self) -> List[RcFile]:
        path = self.options.aliases_file
        return [
            RcFile(self.options.bash_rc, loader_line(path, ".")),
            RcFile(self.options.zsh_rc, loader_line(path, "source")),
        ]

    def _report(self, result, action: str) -> None:
        if not result.changed:
            print_success(f"Already up to date: {result.path}")
            return
        if result.backup:
            print_success(f"Backup: {result.backup}")
        print_success(f"{action}: {result.path}")

    # ------------------------------------------------------------
    # Install
    # ------------------------------------------------------------
    def install_aliases(self) -> None:
        path = self.options.aliases_file
        result = atomic_write(path, self.block.install(read_text(path)))
        self._report(result, "Installed")

    def install_loaders(self) -> None:
        for rc in self.rc_files:
            if not os.path.isfile(rc.path):
                print_warning(f"No {rc.path} found; shells reading it will not load the aliases")
                continue
            content = rc.block.install(rc.clean(read_text(rc.path)))
            self._report(atomic_write(rc.path, content), "Patched")

    def post_check(self) -> bool:
        print_info(f"Post-check: bash -ic 'type {CHECK_ALIAS}'")
        result = self.runner.run(["bash", "-ic", f"type {CHECK_ALIAS}"], timeout=30)
        if result.returncode == 0:
            print_success("Verified: aliases load in interactive non-login bash")
            return True
        bash_rc = self.rc_files[0]
        print_warning("Aliases did NOT load in 'bash -ic'.")
        print_warning("Check:")
        print_detail(f"grep -nF '{bash_rc.loader}' {bash_rc.path}")
        print_detail(f"ls -l {self.options.aliases_file}")
        return False

    def install(self) -> int:
        self.install_aliases()
        self.install_loaders()
        self.post_check()
        print_info("Apply in current session (optional):")
        print_detail(f"source {self.options.aliases_file}")
        print_success("Done.")
        return 0

    # ------------------------------------------------------------
    # Uninstall
    # ------------------------------------------------------------
    def uninstall(self) -> int:
        print_info("Uninstalling managed blocks...")
        path = self.options.aliases_file
        if os.path.isfile(path):
            remaining = self.block.strip(read_text(path))
            if remaining.strip():
                self._report(atomic_write(path, remaining), "Removed managed block from")
            else:
                self._report(remove_file(path), "Removed")
        else:
            print_success(f"No aliases file: {path}")

        for rc in self.rc_files:
            if os.path.isfile(rc.path):
                self._report(atomic_write(rc.path, rc.clean(read_text(rc.path))), "Cleaned loader from")
        print_success("Uninstall complete.")
        return 0


def build_parser():
    parser = base_parser("Install docker compose shell aliases system-wide")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--uninstall", action="store_true", help="Remove the managed blocks")
    mode.add_argument("--print", dest="print_only", action="store_true", help="Print the aliases block and exit")
    return parser


def _main(args) -> int:
    if args.print_only:
        print(aliases_block().render(), end="")
        return 0
    check_root()
    print_header("Docker Aliases", "docker compose shortcuts")
    installer = AliasInstaller(AliasOptions())
    if args.uninstall:
        return installer.uninstall()
    return installer.install()


def main(argv: Optional[List[str]] = None) -> int:
    return run(_main, build_parser(), argv)


if __name__ == "__main__":
    sys.exit(main())
