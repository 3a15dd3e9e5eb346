"""End-to-end tests for the ``shipyard`` command line."""
from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock

import pytest
from click.testing import CliRunner

from shipyard import __version__
from shipyard.cli import cli
from shipyard.docker_manager import VolumeCleanup
from shipyard.exceptions import ExitCode
from shipyard.registry import ProjectRecord, Registry, RegistryStore, project_name_for_path

SAIL_COMPOSE = """\
services:
    laravel.test:
        ports:
            - '${APP_PORT:-80}:80'
            - '${VITE_PORT:-5173}:${VITE_PORT:-5173}'
    mysql:
        ports:
            - '${FORWARD_DB_PORT:-3306}:3306'
"""


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def docker_manager(monkeypatch) -> Mock:
    manager = Mock()
    manager.count_bridge_networks.return_value = 2
    manager.remove_volumes_by_prefix.return_value = VolumeCleanup()
    monkeypatch.setattr("shipyard.cli.DockerManager", lambda *a, **k: manager)
    monkeypatch.setattr("shipyard.cli.install_signal_handlers", lambda: None)
    return manager


@pytest.fixture()
def quiet_host(monkeypatch):
    """Pretend no port on this machine is in use."""
    monkeypatch.setattr("shipyard.port_allocator.PortProber._accepts_connections", lambda self, port: False)
    monkeypatch.setattr("shipyard.port_allocator.PortProber._os_reports_listener", lambda self, port: False)
    monkeypatch.setattr("shipyard.cli.detect_tools", lambda: [])


@pytest.fixture()
def project(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "my-shop"
    path.mkdir()
    (path / "docker-compose.yml").write_text(SAIL_COMPOSE)
    (path / ".env.example").write_text("APP_NAME=Laravel\nAPP_URL=http://localhost\n")
    monkeypatch.chdir(path)
    return path.resolve()


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert f"Shipyard v{__version__}" in result.output


def test_no_command_shows_help(runner, shipyard_home):
    result = runner.invoke(cli, [], obj={})
    assert result.exit_code == 0
    assert "init" in result.output and "cleanup" in result.output


def test_list_empty(runner, shipyard_home):
    result = runner.invoke(cli, ["list"], obj={})
    assert result.exit_code == 0
    assert "No registered projects found" in result.output


def test_list_shows_projects(runner, shipyard_home, tmp_path):
    RegistryStore(shipyard_home / "projects.conf").save(
        Registry([ProjectRecord(name="tmp_gone", path=str(tmp_path / "gone"), ports={"APP_PORT": 8000})])
    )
    result = runner.invoke(cli, ["list"], obj={})
    assert result.exit_code == 0
    assert "tmp_gone" in result.output
    assert "8000" in result.output
    assert "no longer exists" in result.output


def test_list_corrupt_registry(runner, shipyard_home):
    shipyard_home.mkdir(parents=True)
    (shipyard_home / "projects.conf").write_text("[a]\nthis is not valid\n")
    result = runner.invoke(cli, ["list"], obj={})
    assert result.exit_code == ExitCode.REGISTRY_CORRUPTED


def test_cleanup_lock_timeout(runner, shipyard_home, docker_manager):
    (shipyard_home / "projects.conf.lock").mkdir(parents=True)
    result = runner.invoke(cli, ["cleanup"], obj={})
    assert result.exit_code == ExitCode.LOCK_TIMEOUT
    assert (shipyard_home / "projects.conf.lock").exists()


def test_cleanup_removes_stale(runner, shipyard_home, docker_manager, tmp_path):
    alive = tmp_path / "alive"
    alive.mkdir()
    store = RegistryStore(shipyard_home / "projects.conf")
    store.save(Registry([
        ProjectRecord(name="alive", path=str(alive), ports={"APP_PORT": 8000}),
        ProjectRecord(name="gone", path=str(tmp_path / "gone"), ports={"APP_PORT": 8001}),
    ]))

    result = runner.invoke(cli, ["cleanup"], obj={})

    assert result.exit_code == 0, result.output
    assert store.load().names() == ["alive"]
    docker_manager.remove_volumes_by_prefix.assert_called_once_with("gone")
    assert not (shipyard_home / "projects.conf.lock").exists()


def test_init_happy_path(runner, shipyard_home, docker_manager, quiet_host, project):
    result = runner.invoke(cli, ["init", "--skip-composer", "--no-post-setup"], obj={})

    assert result.exit_code == 0, result.output
    name = project_name_for_path(project)
    record = RegistryStore(shipyard_home / "projects.conf").load().get(name)
    assert record.path == str(project)
    assert record.ports == {"APP_PORT": 8000, "FORWARD_DB_PORT": 3300, "VITE_PORT": 5100}
    assert record.domain is None

    env_lines = (project / ".env").read_text().splitlines()
    assert env_lines[0] == "# Auto-assigned Docker Ports (via shipyard)"
    assert f"COMPOSE_PROJECT_NAME={name}" in env_lines
    assert "APP_URL=http://localhost:8000" in env_lines
    assert "APP_URL=http://localhost" not in env_lines
    docker_manager.run_sail.assert_not_called()
    assert not (shipyard_home / "projects.conf.lock").exists()


def test_init_second_project_gets_next_ports(runner, shipyard_home, docker_manager, quiet_host, project, tmp_path):
    other = tmp_path / "other"
    other.mkdir()
    RegistryStore(shipyard_home / "projects.conf").save(
        Registry([ProjectRecord(name="other", path=str(other), ports={"APP_PORT": 8000, "VITE_PORT": 5100})])
    )

    result = runner.invoke(cli, ["init", "--skip-composer", "--no-post-setup"], obj={})

    assert result.exit_code == 0, result.output
    record = RegistryStore(shipyard_home / "projects.conf").load().get(project_name_for_path(project))
    assert record.ports["APP_PORT"] == 8001
    assert record.ports["VITE_PORT"] == 5101


def test_init_runs_post_setup(runner, shipyard_home, docker_manager, quiet_host, project):
    result = runner.invoke(cli, ["init", "--skip-composer"], obj={})
    assert result.exit_code == 0, result.output
    assert [c.args for c in docker_manager.run_sail.call_args_list] == [("up", "-d"), ("composer", "setup")]
    assert "http://localhost:8000" in result.output


def test_init_already_registered(runner, shipyard_home, docker_manager, quiet_host, project):
    name = project_name_for_path(project)
    store = RegistryStore(shipyard_home / "projects.conf")
    store.save(Registry([ProjectRecord(name=name, path=str(project), ports={"APP_PORT": 8000})]))
    before = store.path.read_text()

    result = runner.invoke(cli, ["init", "--skip-composer", "--no-post-setup"], obj={})

    assert result.exit_code == ExitCode.ALREADY_REGISTERED
    assert store.path.read_text() == before
    assert not (project / ".env").read_text().startswith("# Auto-assigned")


def test_init_env_with_ports(runner, shipyard_home, docker_manager, quiet_host, project):
    (project / ".env").write_text("APP_PORT=80\n")
    result = runner.invoke(cli, ["init", "--skip-composer", "--no-post-setup"], obj={})
    assert result.exit_code == ExitCode.ENV_HAS_PORTS
    assert not (shipyard_home / "projects.conf").exists()


def test_init_without_compose(runner, shipyard_home, docker_manager, quiet_host, project):
    (project / "docker-compose.yml").unlink()
    result = runner.invoke(cli, ["init", "--skip-composer"], obj={})
    assert result.exit_code == ExitCode.COMPOSE_NOT_FOUND


def test_init_invalid_domain(runner, shipyard_home, docker_manager, quiet_host, project, monkeypatch):
    from shipyard.registry import ProxyService

    monkeypatch.setattr("shipyard.cli.detect_tools", lambda: [ProxyService.VALET])
    result = runner.invoke(cli, ["init", "--skip-composer", "--domain=bad-"], obj={})
    assert result.exit_code == 2
    assert not (shipyard_home / "projects.conf").exists()


def test_list_registry_not_utf8(runner, shipyard_home):
    shipyard_home.mkdir(parents=True)
    (shipyard_home / "projects.conf").write_bytes(b"[proj]\npath=/x\xff\xfe\nAPP_PORT=8000\n")
    result = runner.invoke(cli, ["list"], obj={})
    assert result.exit_code == ExitCode.REGISTRY_CORRUPTED


def test_init_interrupted_under_lock(runner, shipyard_home, docker_manager, quiet_host, project, monkeypatch):
    def interrupted(self, port_vars):
        assert (shipyard_home / "projects.conf.lock").is_dir()
        raise KeyboardInterrupt

    monkeypatch.setattr("shipyard.cli.PortAllocator.assign", interrupted)

    result = runner.invoke(cli, ["init", "--skip-composer", "--no-post-setup"], obj={})

    assert result.exit_code == ExitCode.USER_CANCELLED == 130
    assert not (shipyard_home / "projects.conf.lock").exists()
    assert not (shipyard_home / "projects.conf").exists()
    assert not (project / ".env").read_text().startswith("# Auto-assigned")
