import os

import pytest

from conftest import ED25519_KEY, FakeRunner
from hostprep.blocks import ManagedBlock, remove_lines
from hostprep.errors import LockError, PreconditionError
from hostprep.keys import AuthorizedKeys, is_valid_public_key, resolve_user
from hostprep.locking import PidLock
from hostprep.portmarker import PortMarker

# ----------------------------------------------------------------
# Port marker
# ----------------------------------------------------------------


def test_marker_absent_means_default(tmp_path):
    assert PortMarker(str(tmp_path / ".custom_port")).read() is None


def test_marker_round_trip(tmp_path):
    marker = PortMarker(str(tmp_path / ".custom_port"))
    marker.write(2222)
    assert (tmp_path / ".custom_port").read_text() == "2222\n"
    assert marker.read() == 2222
    info = marker.info()
    assert info.port == 2222 and info.owner


def test_marker_garbage_ignored(tmp_path, capsys):
    path = tmp_path / ".custom_port"
    path.write_text("twenty-two\n")
    assert PortMarker(str(path)).read() is None
    assert "invalid port marker" in capsys.readouterr().err


# ----------------------------------------------------------------
# Locking
# ----------------------------------------------------------------


def test_lock_written_and_released(tmp_path):
    path = tmp_path / "docker-monitor.lock"
    with PidLock(str(path)):
        assert path.read_text().strip() == str(os.getpid())
    assert not path.exists()


def test_live_owner_blocks(tmp_path):
    path = tmp_path / "x.lock"
    path.write_text("1\n")
    with pytest.raises(LockError) as excinfo:
        PidLock(str(path)).acquire()
    assert str(path) in excinfo.value.hints[0]
    assert path.exists()


def test_stale_lock_taken_over(tmp_path, monkeypatch):
    monkeypatch.setattr("hostprep.locking.pid_alive", lambda pid: False)
    path = tmp_path / "x.lock"
    path.write_text("999999\n")
    with PidLock(str(path)):
        assert path.read_text().strip() == str(os.getpid())


def test_release_leaves_foreign_lock(tmp_path):
    path = tmp_path / "x.lock"
    lock = PidLock(str(path))
    lock.acquire()
    path.write_text("1\n")
    lock.release()
    assert path.exists()


def test_lock_released_on_error(tmp_path):
    path = tmp_path / "x.lock"
    with pytest.raises(RuntimeError):
        with PidLock(str(path)):
            raise RuntimeError("boom")
    assert not path.exists()


# ----------------------------------------------------------------
# Managed blocks
# ----------------------------------------------------------------
BLOCK = ManagedBlock("# >>> test >>>", "# <<< test <<<", "alias dc='docker compose'")


def test_install_keeps_outside_content():
    result = BLOCK.install("export EDITOR=vim\n")
    assert result == "export EDITOR=vim\n\n# >>> test >>>\nalias dc='docker compose'\n# <<< test <<<\n"


def test_install_twice_is_stable():
    once = BLOCK.install("export EDITOR=vim\n")
    assert BLOCK.install(once) == once


def test_strip_removes_only_block():
    text = "a\n# >>> test >>>\nold\n# <<< test <<<\nb\n"
    assert BLOCK.strip(text) == "a\nb\n"
    assert BLOCK.strip(BLOCK.render()) == ""


def test_present():
    assert BLOCK.present(BLOCK.render())
    assert not BLOCK.present("alias dc='docker compose'\n")


def test_remove_lines():
    assert remove_lines("a\nb\nc\n", ["b"]) == "a\nc\n"
    assert remove_lines("b\n", ["b"]) == ""


def test_user_lines_with_unicode_separators_survive():
    text = "export A='1\u20282'\nprintf '\x0c'\n"
    assert BLOCK.install(text).startswith(text + "\n# >>> test >>>\n")
    assert BLOCK.strip(BLOCK.install(text)) == text


def test_unterminated_block_keeps_following_lines():
    text = "a\n# >>> test >>>\nold\nexport PATH=/opt/bin:$PATH\n"
    assert BLOCK.strip(text) == "a\nold\nexport PATH=/opt/bin:$PATH\n"
    once = BLOCK.install(text)
    assert once.count("# >>> test >>>") == 1
    assert BLOCK.install(once) == once


def test_crlf_markers_recognised():
    text = "a\r\n# >>> test >>>\r\nold\r\n# <<< test <<<\r\n"
    assert BLOCK.present(text)
    assert BLOCK.strip(text) == "a\r\n"
    assert remove_lines("a\r\nb\r\n", ["b"]) == "a\r\n"


# ----------------------------------------------------------------
# Keys
# ----------------------------------------------------------------


@pytest.mark.parametrize(
    "key",
    [
        ED25519_KEY,
        "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQC7 user",
        "ecdsa-sha2-nistp256 AAAAE2VjZHNhLXNoYTItbmlzdHAyNTY=",
    ],
)
def test_valid_keys(key):
    assert is_valid_public_key(key)


@pytest.mark.parametrize("key", ["", "password123", "ssh-ed25519", ED25519_KEY + "\nssh-rsa AAAA"])
def test_invalid_keys(key):
    assert not is_valid_public_key(key)


def test_ssh_keygen_fallback():
    runner = FakeRunner(["ssh-keygen"])
    assert is_valid_public_key("ssh-ed448 AAAAfuture", runner)
    assert runner.ran("ssh-keygen", "-l", "-f", "-")


def test_resolve_user(monkeypatch):
    monkeypatch.setenv("SUDO_USER", "deploy")
    assert resolve_user(None) == "deploy"
    assert resolve_user("alice") == "alice"
    monkeypatch.delenv("SUDO_USER")
    assert resolve_user(None) == "root"


def test_unknown_user():
    with pytest.raises(PreconditionError):
        AuthorizedKeys.for_user("no-such-user-hostprep")


def test_add_key_once(tmp_path):
    path = tmp_path / ".ssh" / "authorized_keys"
    keys = AuthorizedKeys(str(path))
    assert not keys.has_valid_key()
    assert keys.add(ED25519_KEY).changed
    assert not keys.add(ED25519_KEY + "  ").changed
    assert path.read_text() == ED25519_KEY + "\n"
    assert oct(path.stat().st_mode & 0o777) == "0o600"
    assert oct((tmp_path / ".ssh").stat().st_mode & 0o777) == "0o700"
    assert keys.has_valid_key()


def test_add_appends_after_existing(tmp_path):
    path = tmp_path / "authorized_keys"
    path.write_text("# managed elsewhere\nssh-rsa AAAAB3Nza old")
    AuthorizedKeys(str(path)).add(ED25519_KEY)
    assert path.read_text() == f"# managed elsewhere\nssh-rsa AAAAB3Nza old\n{ED25519_KEY}\n"
