import os
import stat

import pytest
import yaml
from dotenv import dotenv_values

from conftest import ED25519_KEY, FakeRunner
from hostprep.errors import CommandError, PreconditionError
from hostprep.polling import Poller
from hostprep.scripts.docker_monitor import (
    MonitorInstaller,
    MonitorOptions,
    MonitorSettings,
    render_compose,
    render_env,
)

ENVIRON = {
    "DOZZLE_HOSTNAME": "node1",
    "BESZEL_KEY": ED25519_KEY,
    "BESZEL_TOKEN": "tok-123",
    "BESZEL_HUB_URL": "https://hub.example.com",
}


@pytest.fixture
def options(tmp_path):
    return MonitorOptions(install_dir=str(tmp_path / "docker-monitor"), assume_yes=True)


def docker_runner(ps="beszel-agent\ndozzle-agent\n", tools=("docker",)):
    runner = FakeRunner(tools)
    runner.on("docker", "compose", "ps", stdout=ps)
    runner.on("docker-compose", "ps", stdout=ps)
    return runner


def installer(options, runner, environ=None):
    poller = Poller(attempts=2, interval=0, sleep=lambda _: None)
    return MonitorInstaller(options, runner, poller, dict(ENVIRON) if environ is None else environ)


def test_resolve_precedence(monkeypatch):
    monkeypatch.setattr("socket.gethostname", lambda: "box")
    settings = MonitorSettings.resolve(
        {"BESZEL_TOKEN": "from-env", "DOZZLE_PORT": "8000", "BESZEL_HUB_URL": "https://env"},
        {"BESZEL_TOKEN": "from-file", "BESZEL_HUB_URL": "https://file", "DOZZLE_HOSTNAME": None},
        hub_url="https://cli",
    )
    assert settings.dozzle_hostname == "box"
    assert settings.dozzle_port == "8000"
    assert settings.beszel_listen == "45876"
    assert settings.beszel_token == "from-file"
    assert settings.beszel_hub_url == "https://cli"


def test_render_compose():
    settings = MonitorSettings.resolve(ENVIRON, {})
    settings.dozzle_port = "7100"
    services = yaml.safe_load(render_compose(settings))["services"]
    assert list(services) == ["beszel-agent", "dozzle-agent"]

    beszel = services["beszel-agent"]
    assert beszel["network_mode"] == "host"
    assert beszel["environment"] == {
        "LISTEN": "45876",
        "KEY": ED25519_KEY,
        "TOKEN": "tok-123",
        "HUB_URL": "https://hub.example.com",
    }
    dozzle = services["dozzle-agent"]
    assert dozzle["command"] == "agent"
    assert dozzle["ports"] == ["7100:7007"]
    assert dozzle["environment"] == {"DOZZLE_HOSTNAME": "node1"}


def test_env_file_reads_back(tmp_path):
    settings = MonitorSettings.resolve(ENVIRON, {})
    settings.beszel_token = 'a "quoted" \\ token $HOME ${USER} # not a comment'
    path = tmp_path / ".env"
    path.write_text(render_env(settings))
    assert dotenv_values(path, interpolate=False) == settings.to_env()


def test_problems():
    settings = MonitorSettings(dozzle_hostname="node1", dozzle_port="abc")
    found = settings.problems()
    assert any(p.startswith("Dozzle port") for p in found)
    assert any("BESZEL_KEY" in p for p in found)
    assert any("BESZEL_TOKEN" in p for p in found)
    assert any("--hub-url" in p for p in found)
    assert MonitorSettings.resolve(ENVIRON, {}).problems() == []


def test_full_run(options):
    runner = docker_runner()
    assert installer(options, runner).run() == 0

    compose = yaml.safe_load(open(options.compose_file).read())
    assert compose["services"]["dozzle-agent"]["environment"]["DOZZLE_HOSTNAME"] == "node1"
    assert stat.S_IMODE(os.stat(options.env_file).st_mode) == 0o600
    assert dotenv_values(options.env_file)["BESZEL_TOKEN"] == "tok-123"

    up = runner.index("docker", "compose", "up", "-d")
    assert runner.cwds[up] == options.install_dir
    assert runner.index("docker", "info") < runner.index("docker", "compose", "version") < up


def test_second_run_uses_saved_env(options, capsys):
    installer(options, docker_runner()).run()
    before = open(options.env_file).read()
    capsys.readouterr()

    assert installer(options, docker_runner(), environ={}).run() == 0
    assert open(options.env_file).read() == before
    out = capsys.readouterr().out
    assert "Loading variables from" in out
    assert out.count("Already up to date") == 2


def test_hub_url_flag_overrides_saved_value(options):
    installer(options, docker_runner()).run()
    options.hub_url = "https://other.example.com"
    installer(options, docker_runner(), environ={}).run()
    assert dotenv_values(options.env_file)["BESZEL_HUB_URL"] == "https://other.example.com"


def test_yes_with_missing_values(options):
    runner = docker_runner()
    with pytest.raises(PreconditionError) as excinfo:
        installer(options, runner, environ={"BESZEL_TOKEN": "tok"}).run()
    assert any("--hub-url" in hint for hint in excinfo.value.hints)
    assert not os.path.exists(options.compose_file)
    assert not runner.ran("docker", "compose", "up")


def test_docker_not_running(options):
    runner = docker_runner().on("docker", "info", returncode=1)
    with pytest.raises(PreconditionError, match="not running"):
        installer(options, runner).run()


def test_compose_missing(options):
    runner = docker_runner().on("docker", "compose", "version", returncode=1)
    with pytest.raises(PreconditionError, match="Compose not found"):
        installer(options, runner).run()


def test_prefers_docker_compose_binary(options):
    runner = docker_runner(tools=("docker", "docker-compose"))
    installer(options, runner).run()
    assert runner.ran("docker-compose", "up", "-d")
    assert not runner.ran("docker", "compose", "version")


def test_start_failure_adds_logs_hint(options):
    runner = docker_runner().on("docker", "compose", "up", returncode=1)
    with pytest.raises(CommandError) as excinfo:
        installer(options, runner).run()
    assert any("docker compose logs" in hint for hint in excinfo.value.hints)


def test_service_not_running_is_warning(options, capsys):
    runner = docker_runner(ps="dozzle-agent\n")
    assert installer(options, runner).run() == 0
    assert "Not running yet: beszel-agent" in capsys.readouterr().err
