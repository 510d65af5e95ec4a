"""Tests for configuration loading and target identity resolution."""

import os
import pwd
from pathlib import Path
from unittest.mock import patch

import pytest

from deckhand.core import config_loader
from deckhand.core.config_loader import ConfigurationError, load_config
from deckhand.core.identity import TargetIdentity, detect_socket_user, resolve_target_identity
from deckhand.core.settings import EngineSettings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep host environment, .env files and user config out of the tests."""
    for name in list(os.environ):
        if name.startswith("DECKHAND_"):
            monkeypatch.delenv(name)
    monkeypatch.setattr(config_loader, "USER_CONFIG_FILE", tmp_path / "no-user-config.yml")
    monkeypatch.chdir(tmp_path)
    with patch("deckhand.core.config_loader.load_dotenv"):
        yield


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def test_defaults():
    settings = EngineSettings()
    assert settings.engine_binary == "podman"
    assert settings.compose_binary == "podman-compose"
    assert settings.default_registry == "docker.io"
    assert settings.engine_debug is False
    assert settings.podman_user is None


def test_missing_config_file_gives_defaults(tmp_path):
    settings = load_config(tmp_path / "absent.yml")
    assert settings.cli_timeout == 60


def test_load_yaml_config(tmp_path):
    config_path = _write(
        tmp_path / "deckhand.yml",
        """
engine_binary: /usr/bin/podman
cli_timeout: 45
backup_root: /srv/backups
engine_debug: true
""",
    )
    settings = load_config(config_path)

    assert settings.engine_binary == "/usr/bin/podman"
    assert settings.cli_timeout == 45
    assert settings.backup_root == Path("/srv/backups")
    assert settings.engine_debug is True


def test_engine_section(tmp_path):
    config_path = _write(tmp_path / "deckhand.yml", "engine:\n  compose_binary: docker-compose\n")
    assert load_config(config_path).compose_binary == "docker-compose"


def test_project_file_overrides_user_file(tmp_path, monkeypatch):
    user_file = _write(tmp_path / "user.yml", "cli_timeout: 10\npull_timeout: 20\n")
    monkeypatch.setattr(config_loader, "USER_CONFIG_FILE", user_file)
    project_file = _write(tmp_path / "project.yml", "cli_timeout: 30\n")

    settings = load_config(project_file)
    assert settings.cli_timeout == 30
    assert settings.pull_timeout == 20


def test_environment_overrides_files(tmp_path, monkeypatch):
    config_path = _write(tmp_path / "deckhand.yml", "cli_timeout: 45\nstop_timeout: 5\n")
    monkeypatch.setenv("DECKHAND_CLI_TIMEOUT", "90")

    settings = load_config(config_path)
    assert settings.cli_timeout == 90
    assert settings.stop_timeout == 5


def test_config_path_from_environment(tmp_path, monkeypatch):
    config_path = _write(tmp_path / "elsewhere.yml", "podman_user: alice\n")
    monkeypatch.setenv("DECKHAND_CONFIG", str(config_path))
    assert load_config().podman_user == "alice"


def test_default_project_file(tmp_path):
    _write(tmp_path / "config" / "deckhand.yml", "stream_queue_size: 16\n")
    assert load_config().stream_queue_size == 16


def test_allowlisted_variables_expand(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", "/home/alice")
    monkeypatch.setenv("SECRET_TOKEN", "hunter2")
    config_path = _write(
        tmp_path / "deckhand.yml",
        'backup_root: "${HOME}/backups"\ncompose_binary: "${SECRET_TOKEN}"\n',
    )
    settings = load_config(config_path)

    assert settings.backup_root == Path("/home/alice/backups")
    assert settings.compose_binary == "${SECRET_TOKEN}"


def test_invalid_yaml(tmp_path):
    config_path = _write(tmp_path / "deckhand.yml", "cli_timeout: [unclosed\n")
    with pytest.raises(ConfigurationError):
        load_config(config_path)


def test_invalid_value(tmp_path):
    config_path = _write(tmp_path / "deckhand.yml", "cli_timeout: soon\n")
    with pytest.raises(ConfigurationError):
        load_config(config_path)


class TestTargetIdentity:
    def test_override_wins(self):
        identity = resolve_target_identity("alice", running_as_root=False)
        assert identity == TargetIdentity(user="alice")
        assert identity.mode == "rootless"

    def test_non_root_uses_own_instance(self):
        identity = resolve_target_identity(environ={"SUDO_USER": "bob"}, running_as_root=False)
        assert identity.user is None
        assert identity.mode == "rootful"

    def test_sudo_user(self, tmp_path):
        identity = resolve_target_identity(
            environ={"SUDO_USER": "bob"}, runtime_dir=tmp_path, running_as_root=True
        )
        assert identity.user == "bob"

    def test_sudo_root_is_ignored(self, tmp_path):
        identity = resolve_target_identity(
            environ={"SUDO_USER": "root"}, runtime_dir=tmp_path, running_as_root=True
        )
        assert identity.user is None

    def test_socket_detection(self, tmp_path):
        uid = os.getuid()
        socket_dir = tmp_path / str(uid) / "podman"
        socket_dir.mkdir(parents=True)
        (socket_dir / "podman.sock").touch()
        (tmp_path / "not-a-uid").mkdir()

        identity = resolve_target_identity(environ={}, runtime_dir=tmp_path, running_as_root=True)
        assert identity.user == pwd.getpwuid(uid).pw_name

    def test_socket_detection_without_sockets(self, tmp_path):
        (tmp_path / "1000").mkdir()
        assert detect_socket_user(tmp_path) is None

    def test_missing_runtime_dir(self, tmp_path):
        assert detect_socket_user(tmp_path / "absent") is None
