#!/usr/bin/env python3
"""
Docker Monitor Setup
--------------------

Deploys a dozzle log agent and a beszel metrics agent with Docker Compose.

  • Answers are saved to /opt/docker-monitor/.env (mode 600) and offered as
    defaults on the next run
  • Values come from built-in defaults, then the environment, then the saved
    .env file, then --hub-url
  • --yes skips every prompt; missing values are then an error
  • Only one instance runs at a time (/var/run/docker-monitor.lock)

Usage:
    sudo hostprep-docker-monitor
    sudo hostprep-docker-monitor --hub-url https://hub.example.com --yes
"""

import os
import socket
import sys
from dataclasses import dataclass, fields
from typing import Dict, List, Optional

import yaml
from dotenv import dotenv_values

from hostprep.cli import base_parser, check_root, run, settings_table
from hostprep.console import console, print_detail, print_header, print_info, print_success, print_warning
from hostprep.constants import (
    BESZEL_LISTEN_DEFAULT,
    COMPOSE_FILE_NAME,
    DOZZLE_PORT_DEFAULT,
    ENV_FILE_NAME,
    MONITOR_DIR,
    MONITOR_LOCK_FILE,
    MONITOR_SERVICES,
    SECRET_MODE,
)
from hostprep.errors import CommandError, PreconditionError
from hostprep.fileops import atomic_write
from hostprep.keys import is_valid_public_key
from hostprep.locking import PidLock
from hostprep.polling import Poller
from hostprep.ports import validate_port
from hostprep.prompts import ask_port, ask_text, confirm, require_tty
from hostprep.runner import CommandRunner

DOCKER_SOCKET = "/var/run/docker.sock"


@dataclass
class MonitorSettings:
    """Everything the compose file needs. Field names map to .env keys."""

    dozzle_hostname: str = ""
    dozzle_port: str = str(DOZZLE_PORT_DEFAULT)
    beszel_listen: str = str(BESZEL_LISTEN_DEFAULT)
    beszel_key: str = ""
    beszel_token: str = ""
    beszel_hub_url: str = ""

    @staticmethod
    def env_name(name: str) -> str:
        return name.upper()

    @classmethod
    def resolve(
        cls,
        environ: Dict[str, str],
        env_file: Dict[str, Optional[str]],
        hub_url: Optional[str] = None,
    ) -> "MonitorSettings":
        settings = cls(dozzle_hostname=socket.gethostname())
        for source in (environ, env_file):
            for f in fields(cls):
                value = source.get(cls.env_name(f.name))
                if value:
                    setattr(settings, f.name, value.strip())
        if hub_url:
            settings.beszel_hub_url = hub_url.strip()
        return settings

    def to_env(self) -> Dict[str, str]:
        return {self.env_name(f.name): getattr(self, f.name) for f in fields(self)}

    def problems(self, runner: Optional[CommandRunner] = None) -> List[str]:
        found = []
        if not self.dozzle_hostname:
            found.append("Dozzle hostname is empty (DOZZLE_HOSTNAME)")
        for label, value in (("Dozzle port", self.dozzle_port), ("Beszel listen port", self.beszel_listen)):
            try:
                validate_port(value, low=1)
            except ValueError as e:
                found.append(f"{label}: {e}")
        if not is_valid_public_key(self.beszel_key, runner):
            found.append("Beszel key is missing or not an SSH public key (BESZEL_KEY)")
        if not self.beszel_token:
            found.append("Beszel token is empty (BESZEL_TOKEN)")
        if not self.beszel_hub_url:
            found.append("Beszel hub URL is required (--hub-url or BESZEL_HUB_URL)")
        return found


def render_compose(settings: MonitorSettings) -> str:
    compose = {
        "services": {
            "beszel-agent": {
                "image": "henrygd/beszel-agent",
                "container_name": "beszel-agent",
                "restart": "unless-stopped",
                "network_mode": "host",
                "volumes": [
                    f"{DOCKER_SOCKET}:{DOCKER_SOCKET}:ro",
                    "./beszel_agent_data:/var/lib/beszel-agent",
                ],
                "environment": {
                    "LISTEN": settings.beszel_listen,
                    "KEY": settings.beszel_key,
                    "TOKEN": settings.beszel_token,
                    "HUB_URL": settings.beszel_hub_url,
                },
            },
            "dozzle-agent": {
                "image": "amir20/dozzle:latest",
                "command": "agent",
                "restart": "unless-stopped",
                "volumes": [f"{DOCKER_SOCKET}:{DOCKER_SOCKET}:ro"],
                "ports": [f"{settings.dozzle_port}:{DOZZLE_PORT_DEFAULT}"],
                "environment": {"DOZZLE_HOSTNAME": settings.dozzle_hostname},
            },
        }
    }
    return yaml.safe_dump(compose, sort_keys=False, default_flow_style=False, width=1000)


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def render_env(settings: MonitorSettings) -> str:
    return "".join(f"{key}={_quote(value)}\n" for key, value in settings.to_env().items())


@dataclass
class MonitorOptions:
    hub_url: Optional[str] = None
    install_dir: str = MONITOR_DIR
    assume_yes: bool = False
    lock_file: str = MONITOR_LOCK_FILE

    @property
    def compose_file(self) -> str:
        return os.path.join(self.install_dir, COMPOSE_FILE_NAME)

    @property
    def env_file(self) -> str:
        return os.path.join(self.install_dir, ENV_FILE_NAME)


class MonitorInstaller:
    def __init__(
        self,
        options: MonitorOptions,
        runner: Optional[CommandRunner] = None,
        poller: Optional[Poller] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        self.options = options
        self.runner = runner or CommandRunner()
        self.poller = poller or Poller()
        self.environ = os.environ if environ is None else environ
        self.compose: List[str] = []

    # ------------------------------------------------------------
    # Docker
    # ------------------------------------------------------------
    def check_docker(self) -> None:
        self.runner.require("docker")
        if self.runner.run(["docker", "info"]).returncode != 0:
            raise PreconditionError(
                "Docker is not running or not accessible",
                ["Start the docker service first: systemctl start docker"],
            )

    def detect_compose(self) -> List[str]:
        if self.runner.exists("docker-compose"):
            return ["docker-compose"]
        if self.runner.run(["docker", "compose", "version"]).returncode == 0:
            return ["docker", "compose"]
        raise PreconditionError(
            "Docker Compose not found",
            ["Install docker-compose or the docker compose plugin"],
        )

    # ------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------
    def load_settings(self) -> MonitorSettings:
        saved: Dict[str, Optional[str]] = {}
        if os.path.isfile(self.options.env_file):
            print_info(f"Loading variables from {self.options.env_file}...")
            saved = dotenv_values(self.options.env_file, interpolate=False)
        return MonitorSettings.resolve(self.environ, saved, self.options.hub_url)

    def prompt_settings(self, settings: MonitorSettings) -> MonitorSettings:
        require_tty("the monitor setup prompts")

        def _check_key(value: str) -> None:
            if not is_valid_public_key(value, self.runner):
                raise ValueError("Expected: ssh-rsa, ssh-ed25519, ecdsa-sha2-nistp*, or ssh-dss")

        key_default = settings.beszel_key if is_valid_public_key(settings.beszel_key) else ""
        return MonitorSettings(
            dozzle_hostname=ask_text("Dozzle hostname", settings.dozzle_hostname),
            dozzle_port=str(ask_port("Dozzle external port", _as_port(settings.dozzle_port))),
            beszel_listen=str(ask_port("Beszel listen port", _as_port(settings.beszel_listen))),
            beszel_key=ask_text("Beszel SSH key", key_default, check=_check_key),
            beszel_token=ask_text("Beszel token", settings.beszel_token),
            beszel_hub_url=ask_text(
                "Beszel hub URL (required, e.g. https://hub.example.com)", settings.beszel_hub_url
            ),
        )

    def show_settings(self, settings: MonitorSettings) -> None:
        rows = [
            ["Dozzle hostname", settings.dozzle_hostname],
            ["Dozzle port", settings.dozzle_port],
            ["Beszel listen", settings.beszel_listen],
            ["Beszel hub", settings.beszel_hub_url],
            ["Directory", self.options.install_dir],
        ]
        console.print(settings_table("Configuration", rows, ["Setting", "Value"]))

    # ------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------
    def write_files(self, settings: MonitorSettings) -> None:
        for path, content, mode, label in (
            (self.options.compose_file, render_compose(settings), None, "Generated"),
            (self.options.env_file, render_env(settings), SECRET_MODE, "Saved config"),
        ):
            result = atomic_write(path, content, mode)
            if result.backup:
                print_success(f"Backup: {result.backup}")
            if result.changed:
                print_success(f"{label}: {path}")
            else:
                print_success(f"Already up to date: {path}")
        os.chmod(self.options.env_file, SECRET_MODE)

    def compose_cmd(self, *args: str) -> List[str]:
        return [*self.compose, *args]

    def start(self) -> None:
        print_info("Starting docker compose...")
        try:
            self.runner.run(self.compose_cmd("up", "-d"), check=True, cwd=self.options.install_dir)
        except CommandError as e:
            e.hints.append(f"Check logs: cd {self.options.install_dir} && {' '.join(self.compose_cmd('logs'))}")
            raise
        print_success("Services started")

    def running_services(self) -> List[str]:
        result = self.runner.run(
            self.compose_cmd("ps", "--services", "--filter", "status=running"),
            cwd=self.options.install_dir,
        )
        return result.stdout.split() if result.returncode == 0 else []

    def verify(self) -> bool:
        print_info("Verifying services are running...")
        if self.poller.wait_for(lambda: set(MONITOR_SERVICES) <= set(self.running_services())):
            print_success(f"Running: {', '.join(MONITOR_SERVICES)}")
            return True
        missing = sorted(set(MONITOR_SERVICES) - set(self.running_services()))
        print_warning(f"Not running yet: {', '.join(missing)}")
        print_detail(f"cd {self.options.install_dir} && {' '.join(self.compose_cmd('logs', '-f'))}")
        return False

    # ------------------------------------------------------------
    # Run
    # ------------------------------------------------------------
    def run(self) -> int:
        self.check_docker()
        self.compose = self.detect_compose()
        settings = self.load_settings()

        if self.options.assume_yes:
            problems = settings.problems(self.runner)
            if problems:
                raise PreconditionError("Missing or invalid settings with --yes", problems)
        else:
            settings = self.prompt_settings(settings)

        self.show_settings(settings)
        if not confirm("Continue?", default=True, assume_yes=self.options.assume_yes):
            console.print("Cancelled")
            return 0

        self.write_files(settings)
        self.start()
        self.verify()
        print_info("Check status:")
        print_detail(f"cd {self.options.install_dir} && {' '.join(self.compose_cmd('ps'))}")
        print_detail(f"cd {self.options.install_dir} && {' '.join(self.compose_cmd('logs', '-f'))}")
        return 0


def _as_port(value: str) -> Optional[int]:
    return int(value) if value.isdigit() else None


def build_parser():
    parser = base_parser("Deploy dozzle and beszel monitoring agents with Docker Compose")
    parser.add_argument("--hub-url", metavar="URL", help="Beszel hub URL (overrides .env and environment)")
    parser.add_argument("--install-dir", default=MONITOR_DIR, metavar="DIR", help=f"Project directory (default: {MONITOR_DIR})")
    parser.add_argument("--yes", "-y", action="store_true", help="No prompts; use saved or environment values")
    return parser


def _main(args) -> int:
    check_root()
    print_header("Monitor", "dozzle + beszel agents")
    options = MonitorOptions(hub_url=args.hub_url, install_dir=args.install_dir, assume_yes=args.yes)
    with PidLock(options.lock_file):
        return MonitorInstaller(options).run()


def main(argv: Optional[List[str]] = None) -> int:
    return run(_main, build_parser(), argv)


if __name__ == "__main__":
    sys.exit(main())
