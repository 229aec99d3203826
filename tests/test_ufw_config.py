import pytest

from conftest import FakeRunner, ss_line, ss_output
from hostprep.errors import CommandError, PreconditionError
from hostprep.mutator import MutationState
from hostprep.scripts.ufw_config import (
    SOURCE_QUENCH_RULE,
    UFWConfigurator,
    UFWOptions,
    block_icmp,
    build_parser,
    options_from_args,
    parse_rule,
)

BEFORE_RULES = """\
*filter
:ufw-before-input - [0:0]
# ok icmp codes for INPUT
-A ufw-before-input -p icmp --icmp-type destination-unreachable -j ACCEPT
-A ufw-before-input -p icmp --icmp-type time-exceeded -j ACCEPT
-A ufw-before-input -p icmp --icmp-type parameter-problem -j ACCEPT
-A ufw-before-input -p icmp --icmp-type echo-request -j ACCEPT

# ok icmp code for FORWARD
-A ufw-before-forward -p icmp --icmp-type destination-unreachable -j ACCEPT
-A ufw-before-forward -p icmp --icmp-type time-exceeded -j ACCEPT
-A ufw-before-forward -p icmp --icmp-type parameter-problem -j ACCEPT
-A ufw-before-forward -p icmp --icmp-type echo-request -j ACCEPT
COMMIT
"""


@pytest.fixture
def options(tmp_path):
    rules = tmp_path / "before.rules"
    rules.write_text(BEFORE_RULES)
    return UFWOptions(
        assume_yes=True,
        marker=str(tmp_path / ".custom_port"),
        sshd_config=str(tmp_path / "sshd_config"),
        sshd_dropin=str(tmp_path / "00-hostprep.conf"),
        before_rules=str(rules),
        remnawave_env_files=(str(tmp_path / "remnanode.env"), str(tmp_path / "remnawave.env")),
    )


def ufw_runner(status="Status: active\n\nTo Action From\n2222/tcp ALLOW Anywhere # SSH\n"):
    return FakeRunner(["ufw"]).on("ufw", "status", stdout=status)


def test_block_icmp():
    content, changed = block_icmp(BEFORE_RULES)
    assert "-j ACCEPT" not in content
    assert changed == 9
    lines = content.splitlines()
    echo = lines.index("-A ufw-before-input -p icmp --icmp-type echo-request -j DROP")
    assert lines[echo + 1] == SOURCE_QUENCH_RULE
    assert block_icmp(content) == (content, 0)


def test_block_icmp_keeps_existing_source_quench():
    text = BEFORE_RULES + "-A ufw-before-input -p icmp --icmp-type source-quench -j ACCEPT\n"
    content, _ = block_icmp(text)
    assert content.count("source-quench") == 1


def test_ssh_port_from_marker(options, tmp_path):
    (tmp_path / ".custom_port").write_text("2222\n")
    (tmp_path / "sshd_config").write_text("Port 3333\n")
    assert UFWConfigurator(options, FakeRunner()).detect_ssh_port() == (2222, options.marker)


def test_ssh_port_from_config(options, tmp_path):
    (tmp_path / "sshd_config").write_text("#Port 22\nPort 3333\n")
    assert UFWConfigurator(options, FakeRunner()).detect_ssh_port()[0] == 3333


def test_ssh_port_from_listening_socket(options):
    runner = FakeRunner(["ss"]).on("ss", stdout=ss_output(ss_line(4444)))
    assert UFWConfigurator(options, runner).detect_ssh_port() == (4444, "listening socket")


def test_ssh_port_default(options):
    assert UFWConfigurator(options, FakeRunner()).detect_ssh_port() == (22, "default")


def test_remnawave_port(options, tmp_path):
    (tmp_path / "remnanode.env").write_text("APP_PORT=1\n")
    (tmp_path / "remnawave.env").write_text("NODE_PORT='2053'\n")
    port, source = UFWConfigurator(options, FakeRunner()).detect_remnawave()
    assert (port, source) == (2053, str(tmp_path / "remnawave.env"))


def test_full_run(options, tmp_path):
    (tmp_path / ".custom_port").write_text("2222\n")
    (tmp_path / "remnanode.env").write_text("NODE_PORT=2053\n")
    options.extra_rules = ["8443/tcp"]
    runner = ufw_runner()
    runner.tools.add("openvpn")
    ufw = UFWConfigurator(options, runner)
    assert ufw.run() == 0

    allow = [c for c in runner.calls if c[:2] == ["ufw", "allow"]]
    assert allow == [
        ["ufw", "allow", "2222/tcp", "comment", "SSH"],
        ["ufw", "allow", "443/tcp", "comment", "HTTPS/VPN"],
        ["ufw", "allow", "2053/tcp", "comment", "Remnawave API"],
        ["ufw", "allow", "1194/udp", "comment", "OpenVPN"],
        ["ufw", "allow", "8443/tcp"],
    ]
    assert runner.index("ufw", "--force", "reset") < runner.index("ufw", "allow")
    assert runner.index("ufw", "allow") < runner.index("ufw", "--force", "enable")
    assert "-j ACCEPT" not in (tmp_path / "before.rules").read_text()
    assert ufw.mutator.state is MutationState.DONE


def test_default_port_uses_openssh_profile(options):
    runner = ufw_runner(status="Status: active\nOpenSSH ALLOW Anywhere\n")
    UFWConfigurator(options, runner).run()
    assert runner.ran("ufw", "allow", "OpenSSH")
    assert not runner.ran("ufw", "allow", "22/tcp")


def test_missing_openssh_profile_falls_back(options):
    runner = ufw_runner(status="Status: active\n22/tcp ALLOW Anywhere\n").on("ufw", "allow", "OpenSSH", returncode=1)
    ufw = UFWConfigurator(options, runner)
    ufw.run()
    assert runner.ran("ufw", "allow", "22/tcp", "comment", "SSH")
    assert ufw.mutator.state is MutationState.DONE


def test_enable_failure_restores_before_rules(options, tmp_path):
    runner = ufw_runner().on("ufw", "--force", "enable", returncode=1)
    with pytest.raises(CommandError):
        UFWConfigurator(options, runner).run()
    assert (tmp_path / "before.rules").read_text() == BEFORE_RULES


def test_keep_icmp(options, tmp_path):
    options.keep_icmp = True
    UFWConfigurator(options, ufw_runner()).run()
    assert (tmp_path / "before.rules").read_text() == BEFORE_RULES


def test_missing_before_rules(options, tmp_path):
    (tmp_path / "before.rules").unlink()
    runner = ufw_runner()
    with pytest.raises(PreconditionError, match="not found"):
        UFWConfigurator(options, runner).run()
    assert not runner.ran("ufw", "--force", "reset")


def test_ssh_rule_missing_is_warning(options, capsys):
    ufw = UFWConfigurator(options, ufw_runner(status="Status: active\n443/tcp ALLOW Anywhere\n"))
    assert ufw.run() == 0
    assert "might not be allowed" in capsys.readouterr().err
    assert ufw.mutator.state is MutationState.DONE_WITH_WARNING


def test_ufw_missing(options):
    with pytest.raises(PreconditionError) as excinfo:
        UFWConfigurator(options, FakeRunner(["apt-get"])).run()
    assert excinfo.value.hints == ["Install with: apt-get install -y ufw"]


def test_parse_rule():
    assert parse_rule("8080/TCP") == "8080/tcp"
    assert parse_rule("6000:6010/udp") == "6000:6010/udp"
    for bad in ("8080", "http", "70000/tcp", "22/icmp"):
        with pytest.raises(ValueError):
            parse_rule(bad)


def test_parser_rejects_bad_allow():
    args = build_parser().parse_args(["--allow", "nope"])
    with pytest.raises(PreconditionError):
        options_from_args(args)
