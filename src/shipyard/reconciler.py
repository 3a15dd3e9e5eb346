"""Drop registry records whose project directory has disappeared.

Removing a record frees its ports.  Cleaning up the record's proxy and Sail
volumes is best-effort: failures are logged and reported, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

from .docker_manager import VolumeCleanup
from .registry import ProjectRecord, ProxyService, Registry, RegistryStore

logger = logging.getLogger("shipyard.reconciler")

__all__ = ["Reconciler", "StaleProject", "ProxyRemover", "VolumeRemover"]


class ProxyRemover(Protocol):
    def remove(self, domain: str) -> bool: ...


class VolumeRemover(Protocol):
    def remove_volumes_by_prefix(self, project_name: str) -> VolumeCleanup: ...


@dataclass
class StaleProject:
    record: ProjectRecord
    proxy_removed: Optional[bool] = None
    volumes: VolumeCleanup = field(default_factory=VolumeCleanup)


class Reconciler:
    def __init__(
        self,
        store: RegistryStore,
        proxy_factory: Callable[[ProxyService], ProxyRemover],
        volumes: VolumeRemover,
    ) -> None:
        self.store = store
        self.proxy_factory = proxy_factory
        self.volumes = volumes
        self.removed: List[StaleProject] = []

    def _cleanup_proxy(self, record: ProjectRecord) -> Optional[bool]:
        if not record.has_proxy:
            return None
        assert record.domain is not None and record.proxy_service is not None
        try:
            return self.proxy_factory(record.proxy_service).remove(record.domain)
        except Exception as exc:  # noqa: BLE001 - cleanup must not abort the run
            logger.warning(f"Proxy cleanup for {record.domain} failed: {exc}")
            return False

    def _cleanup_volumes(self, record: ProjectRecord) -> VolumeCleanup:
        try:
            return self.volumes.remove_volumes_by_prefix(record.name)
        except Exception as exc:  # noqa: BLE001 - cleanup must not abort the run
            logger.warning(f"Volume cleanup for {record.name} failed: {exc}")
            return VolumeCleanup()

    def reconcile(self, registry: Registry) -> Registry:
        """Remove stale records from *registry* and persist if anything changed."""
        self.removed = []
        for record in registry.stale_records():
            logger.info(f"🗑️  Project '{record.name}' path no longer exists: {record.path}")
            registry.remove(record.name)
            stale = StaleProject(record=record)
            stale.proxy_removed = self._cleanup_proxy(record)
            stale.volumes = self._cleanup_volumes(record)
            self.removed.append(stale)

        if self.removed:
            self.store.save(registry)
            logger.info(f"🧹 Cleaned up {len(self.removed)} stale project(s)")
        return registry
