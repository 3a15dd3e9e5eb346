"""Pytest configuration and reusable fixtures for Shipyard tests."""
from __future__ import annotations

import shutil
import sys
import tempfile
from pathlib import Path
from typing import Iterable, Iterator, Set
from unittest.mock import Mock, patch

import docker
import pytest

# ---------------------------------------------------------------------------
# Test path setup – make sure `src/` is importable when tests are invoked from
# the project root (e.g. on CI) or inside an isolated filesystem.
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"

if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from shipyard.registry import Registry  # noqa: E402


# ---------------------------------------------------------------------------
# Generic fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def temp_dir() -> Iterator[Path]:
    """Return a temporary directory path that is cleaned up afterwards."""
    tmp_path = Path(tempfile.mkdtemp())
    try:
        yield tmp_path
    finally:
        shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture()
def shipyard_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the registry, lock and log file at a temporary directory."""
    home = tmp_path / "shipyard-home"
    monkeypatch.setenv("SHIPYARD_HOME", str(home))
    monkeypatch.setenv("SHIPYARD_LOCK_TIMEOUT", "1")
    monkeypatch.delenv("SHIPYARD_LOCK_STALE_AFTER", raising=False)
    return home


@pytest.fixture()
def mock_docker_client() -> Iterator[Mock]:
    """Patch ``docker.from_env`` so no real Docker daemon is required."""
    with patch("docker.from_env") as patched:
        client = Mock(spec=docker.DockerClient)
        patched.return_value = client
        yield client


class FakeProber:
    """Prober that only consults the registry and a fixed set of busy ports."""

    def __init__(self, registry: Registry, busy: Iterable[int] = ()) -> None:
        self.registry = registry
        self.busy: Set[int] = set(busy)
        self.reserved: Set[int] = set()
        self.probed: list[int] = []

    def is_available(self, port: int) -> bool:
        self.probed.append(port)
        if port in self.reserved or port in self.busy:
            return False
        return self.registry.owner_of(port) is None


@pytest.fixture()
def fake_prober_factory():
    return FakeProber
