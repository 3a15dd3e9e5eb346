"""Shipyard - conflict-free ports and local domains for Laravel Sail projects"""
from __future__ import annotations

__version__ = "0.3.0"

from .lock import RegistryLock  # noqa: E402
from .port_allocator import PortAllocator, PortProber, canonicalize  # noqa: E402
from .reconciler import Reconciler  # noqa: E402
from .registry import ProjectRecord, Registry, RegistryStore  # noqa: E402

__all__: list[str] = [
    "RegistryLock",
    "PortAllocator",
    "PortProber",
    "canonicalize",
    "Reconciler",
    "ProjectRecord",
    "Registry",
    "RegistryStore",
]
