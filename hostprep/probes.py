"""Read-only probes of live system state.

Every probe answers ``None`` when the tool or interface it relies on is not
available; callers decide whether "unknown" blocks the run.
"""

import enum
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from hostprep.console import logger
from hostprep.errors import CommandError
from hostprep.runner import CommandRunner

# ----------------------------------------------------------------
# Package manager
# ----------------------------------------------------------------
PACKAGE_MANAGERS = ("apt-get", "dnf", "yum", "apk")

_INSTALL_COMMANDS: Dict[str, List[List[str]]] = {
    "apt-get": [["apt-get", "update", "-y"], ["apt-get", "install", "-y"]],
    "dnf": [["dnf", "-y", "install"]],
    "yum": [["yum", "-y", "install"]],
    "apk": [["apk", "add", "--no-cache"]],
}


def detect_package_manager(runner: CommandRunner) -> Optional[str]:
    for name in PACKAGE_MANAGERS:
        if runner.exists(name):
            return name
    return None


def install_hint(manager: Optional[str], package: str) -> str:
    if manager not in _INSTALL_COMMANDS:
        return f"install the '{package}' package with your package manager"
    return " ".join(_INSTALL_COMMANDS[manager][-1] + [package])


def install_package(runner: CommandRunner, manager: str, packages: Sequence[str]) -> None:
    """Install ``packages``; raises ``CommandError`` if any step fails."""
    steps = _INSTALL_COMMANDS[manager]
    for step in steps[:-1]:
        runner.run(step, check=True)
    runner.run(steps[-1] + list(packages), check=True)


# ----------------------------------------------------------------
# Kernel
# ----------------------------------------------------------------
def read_proc_value(proc_root: str, key: str) -> Optional[str]:
    path = os.path.join(proc_root, *key.split("."))
    try:
        with open(path) as f:
            return f.read().strip()
    except OSError:
        return None


def available_congestion_controls(proc_root: str) -> Optional[Set[str]]:
    raw = read_proc_value(proc_root, "net.ipv4.tcp_available_congestion_control")
    if raw is None:
        return None
    return set(raw.split())


def load_kernel_module(runner: CommandRunner, module: str) -> bool:
    if not runner.exists("modprobe"):
        return False
    return runner.run(["modprobe", module]).returncode == 0


# ----------------------------------------------------------------
# Listening sockets
# ----------------------------------------------------------------
@dataclass
class ListeningSocket:
    address: str
    port: int
    processes: List[str] = field(default_factory=list)


_PROCESS_RE = re.compile(r'\("([^"]+)"')


def parse_ss_output(output: str) -> List[ListeningSocket]:
    """Parse ``ss -tlnp``. Lines without a usable local address are skipped."""
    sockets = []
    for line in output.splitlines():
        cols = line.split()
        if len(cols) < 4 or cols[0] != "LISTEN":
            continue
        address, _, port = cols[3].rpartition(":")
        if not port.isdigit():
            continue
        sockets.append(ListeningSocket(address, int(port), _PROCESS_RE.findall(line)))
    return sockets


def listening_sockets(runner: CommandRunner) -> Optional[List[ListeningSocket]]:
    if not runner.exists("ss"):
        return None
    result = runner.run(["ss", "-tlnp"])
    if result.returncode != 0:
        return None
    return parse_ss_output(result.stdout)


def ports_in_use(runner: CommandRunner) -> Optional[Set[int]]:
    sockets = listening_sockets(runner)
    if sockets is None:
        return None
    return {s.port for s in sockets}


def is_port_listening(runner: CommandRunner, port: int) -> Optional[bool]:
    used = ports_in_use(runner)
    if used is None:
        return None
    return port in used


def service_listening_port(runner: CommandRunner, names: Sequence[str]) -> Optional[int]:
    sockets = listening_sockets(runner)
    for sock in sockets or []:
        if any(p in names for p in sock.processes):
            return sock.port
    return None


# ----------------------------------------------------------------
# Init system
# ----------------------------------------------------------------
class ServiceMode(enum.Enum):
    SERVICE = "service"
    SOCKET = "socket"
    LEGACY = "legacy"


@dataclass
class InitState:
    mode: ServiceMode
    service_unit: Optional[str] = None
    socket_unit: Optional[str] = None


def list_unit_files(runner: CommandRunner, units: Sequence[str]) -> Optional[Set[str]]:
    if not runner.exists("systemctl"):
        return None
    result = runner.run(["systemctl", "list-unit-files", "--no-legend", "--no-pager", *units])
    # exit 1 just means none of the units matched
    if result.returncode not in (0, 1):
        return None
    return {line.split()[0] for line in result.stdout.splitlines() if line.strip()}


def detect_init_mode(
    runner: CommandRunner, service_units: Sequence[str], socket_unit: Optional[str]
) -> InitState:
    wanted = list(service_units) + ([socket_unit] if socket_unit else [])
    present = list_unit_files(runner, wanted)
    if present is None:
        return InitState(ServiceMode.LEGACY)
    socket = socket_unit if socket_unit and socket_unit in present else None
    for unit in service_units:
        if unit in present:
            return InitState(ServiceMode.SERVICE, unit, socket)
    if socket:
        return InitState(ServiceMode.SOCKET, None, socket)
    return InitState(ServiceMode.LEGACY)


def unit_is_enabled(runner: CommandRunner, unit: str) -> Optional[bool]:
    if not runner.exists("systemctl"):
        return None
    return runner.run(["systemctl", "is-enabled", "--quiet", unit]).returncode == 0


def unit_is_active(runner: CommandRunner, unit: str) -> Optional[bool]:
    if not runner.exists("systemctl"):
        return None
    return runner.run(["systemctl", "is-active", "--quiet", unit]).returncode == 0


def service_unit_listed(runner: CommandRunner, pattern: str) -> Optional[bool]:
    if not runner.exists("systemctl"):
        return None
    result = runner.run(["systemctl", "list-units", "--type=service", "--all", "--no-legend", "--no-pager"])
    if result.returncode != 0:
        return None
    return pattern in result.stdout


# ----------------------------------------------------------------
# Firewall / SELinux
# ----------------------------------------------------------------
def ufw_is_active(runner: CommandRunner) -> Optional[bool]:
    if not runner.exists("ufw"):
        return None
    result = runner.run(["ufw", "status"])
    if result.returncode != 0:
        return None
    return "Status: active" in result.stdout


def selinux_enforcing(runner: CommandRunner) -> Optional[bool]:
    if not runner.exists("getenforce"):
        return None
    return runner.run(["getenforce"]).stdout.strip() == "Enforcing"


def kernel_release(runner: CommandRunner) -> str:
    try:
        return runner.run(["uname", "-r"], check=True).stdout.strip() or "unknown"
    except CommandError as e:
        logger.debug(f"uname failed: {e}")
        return "unknown"
