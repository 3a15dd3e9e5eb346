from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock

import pytest

from shipyard.exceptions import DockerNotRunning
from shipyard.preflight import NETWORK_WARNING_THRESHOLD, PreflightChecker

pytestmark = pytest.mark.unit


def _mk_which(mapping: dict):
    def _which(name: str):
        return mapping.get(name)
    return _which


def _docker(count: int = 3, error: Exception | None = None) -> Mock:
    manager = Mock()
    manager.ensure_available.side_effect = error
    manager.count_bridge_networks.return_value = count
    return manager


def _sail_project(path: Path) -> Path:
    (path / "docker-compose.yml").write_text("services: {}\n")
    (path / ".env").write_text("APP_NAME=Laravel\n")
    return path


def test_all_good(monkeypatch, tmp_path: Path):
    monkeypatch.setattr("shipyard.preflight.shutil.which", _mk_which({"lsof": "/usr/bin/lsof", "valet": "/usr/local/bin/valet"}))

    report = PreflightChecker(_sail_project(tmp_path), docker_manager=_docker()).run()

    assert report.ok is True
    assert report.errors == []
    assert report.warnings == []
    assert "All preflight checks passed." in report.pretty()


def test_docker_not_running_and_missing_files(monkeypatch, tmp_path: Path):
    monkeypatch.setattr("shipyard.preflight.shutil.which", _mk_which({}))
    docker = _docker(error=DockerNotRunning("Docker is installed but not running.\nPlease start Docker Desktop and try again."))

    report = PreflightChecker(tmp_path, docker_manager=docker).run()

    assert report.ok is False
    assert "Docker is installed but not running." in report.errors
    assert any("docker-compose.yml not found" in e for e in report.errors)
    assert any("Neither .env nor .env.example" in e for e in report.errors)
    assert any("lsof" in w for w in report.warnings)
    assert any("Valet nor Herd" in w for w in report.warnings)
    docker.count_bridge_networks.assert_not_called()


def test_many_networks_warns(monkeypatch, tmp_path: Path):
    monkeypatch.setattr("shipyard.preflight.shutil.which", _mk_which({"lsof": "/usr/bin/lsof", "herd": "/bin/herd"}))

    report = PreflightChecker(
        _sail_project(tmp_path), docker_manager=_docker(count=NETWORK_WARNING_THRESHOLD + 1)
    ).run()

    assert report.ok is True
    assert any("Many Docker networks" in w for w in report.warnings)
    assert any("prune" in s for s in report.suggestions)


def test_env_created_from_example_is_a_warning(monkeypatch, tmp_path: Path):
    monkeypatch.setattr("shipyard.preflight.shutil.which", _mk_which({"lsof": "/usr/bin/lsof", "valet": "/bin/valet"}))
    (tmp_path / "docker-compose.yml").write_text("services: {}\n")
    (tmp_path / ".env.example").write_text("APP_NAME=Laravel\n")

    report = PreflightChecker(tmp_path, docker_manager=_docker()).run()

    assert report.ok is True
    assert any(".env.example" in w for w in report.warnings)
