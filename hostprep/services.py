"""Restart the service that consumes a changed config and confirm the effect."""

import os
from typing import Optional, Sequence

from hostprep.console import print_detail, print_info, print_success, print_warning
from hostprep.constants import SOCKET_OVERRIDE_DIR, SOCKET_OVERRIDE_NAME
from hostprep.errors import CommandError, PreconditionError
from hostprep.fileops import WriteResult, atomic_write
from hostprep.polling import Poller
from hostprep.probes import InitState, ServiceMode, is_port_listening, unit_is_enabled
from hostprep.runner import CommandRunner


def render_socket_override(port: int) -> str:
    # the empty ListenStream= clears the vendor unit's port 22
    return (
        "# Managed by hostprep\n"
        "[Socket]\n"
        "ListenStream=\n"
        f"ListenStream=0.0.0.0:{port}\n"
        f"ListenStream=[::]:{port}\n"
    )


class ServiceReconciler:
    def __init__(
        self,
        runner: CommandRunner,
        poller: Optional[Poller] = None,
        socket_override_dir: str = SOCKET_OVERRIDE_DIR,
        legacy_names: Sequence[str] = ("sshd", "ssh"),
    ):
        self.runner = runner
        self.poller = poller or Poller()
        self.socket_override_dir = socket_override_dir
        self.legacy_names = list(legacy_names)
        self.override: Optional[WriteResult] = None

    @property
    def override_path(self) -> str:
        return os.path.join(self.socket_override_dir, SOCKET_OVERRIDE_NAME)

    def _systemctl(self, *args: str) -> None:
        self.runner.run(["systemctl", *args], check=True)

    def disable_socket(self, socket_unit: str) -> None:
        if not unit_is_enabled(self.runner, socket_unit):
            return
        print_info(f"Disabling {socket_unit}...")
        failed = False
        for action in ("disable", "stop"):
            if self.runner.run(["systemctl", action, socket_unit]).returncode != 0:
                failed = True
        if failed:
            print_warning(f"Could not fully disable {socket_unit}; it may still own the port")
        else:
            print_success(f"{socket_unit} disabled")

    def restart(self, state: InitState, port: int) -> None:
        if state.mode is ServiceMode.SERVICE:
            if state.socket_unit:
                self.disable_socket(state.socket_unit)
            self._systemctl("daemon-reload")
            self._systemctl("enable", state.service_unit)
            print_info(f"Restarting {state.service_unit}...")
            self._systemctl("restart", state.service_unit)
            print_success(f"{state.service_unit} restarted")
        elif state.mode is ServiceMode.SOCKET:
            self.override = atomic_write(self.override_path, render_socket_override(port))
            if self.override.changed:
                print_success(f"Socket override written: {self.override_path}")
            self._systemctl("daemon-reload")
            print_info(f"Restarting {state.socket_unit}...")
            self._systemctl("restart", state.socket_unit)
            print_success(f"{state.socket_unit} restarted")
        else:
            self.restart_legacy()

    def restart_legacy(self) -> None:
        if not self.runner.exists("service"):
            raise PreconditionError("No systemctl or service command available to restart SSH")
        last = None
        for name in self.legacy_names:
            result = self.runner.run(["service", name, "restart"])
            if result.returncode == 0:
                print_success(f"{name} restarted")
                return
            last = result
        raise CommandError(
            ["service", self.legacy_names[-1], "restart"],
            last.returncode if last else 1,
            last.stderr if last else "",
            message="Failed to restart SSH via the service command",
        )

    def verify_port(self, port: int) -> bool:
        print_info(f"Verifying port {port} is listening...")
        if self.poller.wait_for(lambda: is_port_listening(self.runner, port)):
            print_success(f"Listening on port {port}")
            return True
        print_warning(f"Could not confirm anything is listening on port {port}")
        print_warning("Check manually:")
        print_detail(f"ss -tlnp | grep ':{port} '")
        return False

    def reconcile(self, state: InitState, port: int) -> bool:
        """Restart according to ``state`` and report whether ``port`` is bound."""
        self.restart(state, port)
        return self.verify_port(port)
