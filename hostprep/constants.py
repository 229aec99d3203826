"""Paths, ranges and defaults shared by the hostprep scripts."""

VERSION = "1.0.0"

# ----------------------------------------------------------------
# Logging
# ----------------------------------------------------------------
LOG_FILE = "/var/log/hostprep.log"
MAX_LOG_SIZE = 10 * 1024 * 1024

# ----------------------------------------------------------------
# Files
# ----------------------------------------------------------------
CONFIG_MODE = 0o644
SECRET_MODE = 0o600
MANAGED_HEADER = "# Managed by hostprep"

# ----------------------------------------------------------------
# Kernel / BBR
# ----------------------------------------------------------------
PROC_SYS = "/proc/sys"
SYSCTL_DIR = "/etc/sysctl.d"
SYSCTL_DROPIN = "/etc/sysctl.d/99-bbr.conf"
SYSCTL_CONF = "/etc/sysctl.conf"
BBR_MODULE = "tcp_bbr"
DEFAULT_QDISC = "fq"
CONGESTION_CONTROL = "bbr"

# ----------------------------------------------------------------
# SSH
# ----------------------------------------------------------------
SSHD_CONFIG = "/etc/ssh/sshd_config"
SSHD_DROPIN_DIR = "/etc/ssh/sshd_config.d"
SSHD_DROPIN_NAME = "00-hostprep.conf"
PORT_MARKER = "/etc/ssh/.custom_port"
SSH_SERVICE_UNITS = ("sshd.service", "ssh.service")
SSH_SOCKET_UNIT = "ssh.socket"
SSH_PROCESS_NAMES = ("sshd", "ssh")
SOCKET_OVERRIDE_DIR = "/etc/systemd/system/ssh.socket.d"
SOCKET_OVERRIDE_NAME = "override.conf"
DEFAULT_SSH_PORT = 22

MIN_MANUAL_PORT = 1024
MAX_MANUAL_PORT = 65535
MIN_RANDOM_PORT = 10000
MAX_RANDOM_PORT = 65000
RANDOM_PORT_ATTEMPTS = 50

SSH_LIMITS = (
    ("MaxAuthTries", "6"),
    ("MaxSessions", "4"),
    ("MaxStartups", "10:30:60"),
)
SSH_KEY_ONLY = (
    ("PubkeyAuthentication", "yes"),
    ("PasswordAuthentication", "no"),
    ("KbdInteractiveAuthentication", "no"),
    ("ChallengeResponseAuthentication", "no"),
    ("PermitRootLogin", "prohibit-password"),
)

VERIFY_ATTEMPTS = 5
VERIFY_INTERVAL = 1.0

# ----------------------------------------------------------------
# Firewall
# ----------------------------------------------------------------
UFW_BEFORE_RULES = "/etc/ufw/before.rules"
HTTPS_RULE = "443/tcp"
OPENVPN_RULE = "1194/udp"
REMNAWAVE_ENV_FILES = ("/opt/remnanode/.env", "/opt/remnawave/.env")
ICMP_CHAINS = ("ufw-before-input", "ufw-before-forward")
ICMP_TYPES = (
    "destination-unreachable",
    "time-exceeded",
    "parameter-problem",
    "echo-request",
)

# ----------------------------------------------------------------
# Locks
# ----------------------------------------------------------------
SSH_LOCK_FILE = "/run/hostprep-ssh-config.lock"
UFW_LOCK_FILE = "/run/hostprep-ufw-config.lock"
MONITOR_LOCK_FILE = "/var/run/docker-monitor.lock"

# ----------------------------------------------------------------
# Docker aliases
# ----------------------------------------------------------------
ALIASES_FILE = "/etc/profile.d/docker-aliases.sh"
BASH_SYSTEM_RC = "/etc/bash.bashrc"
ZSH_SYSTEM_RC = "/etc/zsh/zshrc"
ALIASES_BEGIN = "# >>> docker-aliases (managed) >>>"
ALIASES_END = "# <<< docker-aliases (managed) <<<"
LOADER_BEGIN = "# >>> docker-aliases loader (managed) >>>"
LOADER_END = "# <<< docker-aliases loader (managed) <<<"

# ----------------------------------------------------------------
# Docker monitor
# ----------------------------------------------------------------
MONITOR_DIR = "/opt/docker-monitor"
COMPOSE_FILE_NAME = "docker-compose.yml"
ENV_FILE_NAME = ".env"
MONITOR_SERVICES = ("beszel-agent", "dozzle-agent")
DOZZLE_PORT_DEFAULT = 7007
BESZEL_LISTEN_DEFAULT = 45876
