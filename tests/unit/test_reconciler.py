"""Unit tests for stale-project reconciliation."""
from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from shipyard.docker_manager import VolumeCleanup
from shipyard.reconciler import Reconciler
from shipyard.registry import ProjectRecord, ProxyService, Registry, RegistryStore

pytestmark = pytest.mark.unit


class FakeProxy:
    def __init__(self, service: ProxyService, calls: List[tuple], fail: bool = False) -> None:
        self.service = service
        self.calls = calls
        self.fail = fail

    def remove(self, domain: str) -> bool:
        self.calls.append((self.service, domain))
        if self.fail:
            raise RuntimeError("valet exploded")
        return True


class FakeVolumes:
    def __init__(self, fail: bool = False) -> None:
        self.prefixes: List[str] = []
        self.fail = fail

    def remove_volumes_by_prefix(self, project_name: str) -> VolumeCleanup:
        self.prefixes.append(project_name)
        if self.fail:
            raise RuntimeError("docker gone")
        return VolumeCleanup(removed=[f"{project_name}_sail-mysql"])


@pytest.fixture()
def populated(tmp_path: Path):
    alive = tmp_path / "alive"
    alive.mkdir()
    registry = Registry([
        ProjectRecord(name="alive", path=str(alive), ports={"APP_PORT": 8000}),
        ProjectRecord(
            name="gone",
            path=str(tmp_path / "gone"),
            domain="gone",
            proxy_service=ProxyService.HERD,
            proxy_secure=True,
            ports={"APP_PORT": 8001, "VITE_PORT": 5100},
        ),
    ])
    store = RegistryStore(tmp_path / "projects.conf")
    store.save(registry)
    return store, registry


def test_removes_stale_and_frees_ports(populated):
    store, registry = populated
    calls: List[tuple] = []
    volumes = FakeVolumes()
    reconciler = Reconciler(store, lambda service: FakeProxy(service, calls), volumes)

    reconciler.reconcile(registry)

    assert registry.names() == ["alive"]
    assert 8001 not in registry.all_ports()
    assert calls == [(ProxyService.HERD, "gone")]
    assert volumes.prefixes == ["gone"]
    assert [s.record.name for s in reconciler.removed] == ["gone"]
    assert reconciler.removed[0].proxy_removed is True
    assert store.load().names() == ["alive"]


def test_cleanup_failures_do_not_abort(populated):
    store, registry = populated
    calls: List[tuple] = []
    reconciler = Reconciler(store, lambda service: FakeProxy(service, calls, fail=True), FakeVolumes(fail=True))

    reconciler.reconcile(registry)

    assert registry.names() == ["alive"]
    assert reconciler.removed[0].proxy_removed is False
    assert reconciler.removed[0].volumes.removed == []
    assert store.load().names() == ["alive"]


def test_nothing_stale_does_not_write(tmp_path: Path):
    alive = tmp_path / "alive"
    alive.mkdir()
    registry = Registry([ProjectRecord(name="alive", path=str(alive), ports={"APP_PORT": 8000})])
    store = RegistryStore(tmp_path / "projects.conf")
    volumes = FakeVolumes()

    Reconciler(store, lambda service: FakeProxy(service, []), volumes).reconcile(registry)

    assert not store.path.exists()
    assert volumes.prefixes == []


def test_record_without_proxy_skips_proxy_cleanup(tmp_path: Path):
    registry = Registry([ProjectRecord(name="gone", path=str(tmp_path / "gone"), ports={"APP_PORT": 8000})])
    store = RegistryStore(tmp_path / "projects.conf")

    def factory(service):
        raise AssertionError("proxy factory must not be called")

    reconciler = Reconciler(store, factory, FakeVolumes())
    reconciler.reconcile(registry)

    assert reconciler.removed[0].proxy_removed is None
    assert len(store.load()) == 0
