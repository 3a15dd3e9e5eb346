"""Conflict-free TCP port assignment for Shipyard projects.

Each service starts from a *canonical* port derived from its compose default
(its "hundred block") and walks upward one port at a time until it finds one
that is neither reserved in the registry nor in use on this host.
"""

from __future__ import annotations

import logging
import shutil
import socket
import subprocess
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Set, Tuple

import psutil

from .config import MAX_PORT
from .exceptions import NoPortsAvailable
from .registry import Registry

logger = logging.getLogger("shipyard.port_allocator")

__all__ = [
    "canonicalize",
    "PortProber",
    "PortAllocator",
    "PortAssignment",
    "MAX_ATTEMPTS",
]

MAX_ATTEMPTS = 10_000
CONNECT_TIMEOUT = 0.25


def canonicalize(default_port: int | str) -> int:
    """Return the starting port for a service's default port.

    The rule depends on the number of digits and is not a rounding formula::

        80 -> 8000, 100 -> 10000, 5173 -> 5100, 65535 -> 65500, 6 -> 6000

    Ports that already have four or more digits and end in ``00`` are kept.
    """
    digits = str(int(default_port))

    if len(digits) >= 4 and digits.endswith("00"):
        return int(digits)
    if len(digits) in (2, 3):
        return int(digits + "00")
    if len(digits) == 4:
        return int(digits[:2] + "00")
    if len(digits) > 4:
        return int(digits) // 100 * 100
    return int(digits + "000")


@dataclass(frozen=True)
class PortAssignment:
    name: str
    start_port: int
    port: int

    @property
    def moved(self) -> bool:
        return self.port != self.start_port


class PortProber:
    """Answer "is TCP port P free" using the registry and the live host.

    A port is taken when the registry reserves it, when something accepts a
    connection on ``localhost:P``, or when the OS lists a listener on it.
    """

    def __init__(self, registry: Registry, host: str = "localhost", connect_timeout: float = CONNECT_TIMEOUT):
        self.registry = registry
        self.host = host
        self.connect_timeout = connect_timeout
        self.reserved: Set[int] = set()
        self._listening: Optional[Set[int]] = None
        self._scanned = False

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------

    def _scan_listening_ports(self) -> Optional[Set[int]]:
        """Return LISTEN ports from psutil, or ``None`` when not permitted."""
        if not self._scanned:
            self._scanned = True
            try:
                self._listening = {
                    conn.laddr.port
                    for conn in psutil.net_connections(kind="inet")
                    if conn.laddr and conn.status == psutil.CONN_LISTEN
                }
                logger.debug(f"🔍 psutil reports {len(self._listening)} listening port(s)")
            except psutil.AccessDenied:
                logger.debug("psutil.net_connections denied, falling back to lsof")
                self._listening = None
        return self._listening

    def _accepts_connections(self, port: int) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(self.connect_timeout)
            try:
                return sock.connect_ex((self.host, port)) == 0
            except OSError:
                return False

    def _lsof_reports_listener(self, port: int) -> bool:
        if shutil.which("lsof") is None:
            return False
        try:
            p = subprocess.run(
                ["lsof", "-i", f":{port}", "-sTCP:LISTEN"],
                capture_output=True,
                text=True,
                check=False,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return p.returncode == 0 and bool(p.stdout.strip())

    def _os_reports_listener(self, port: int) -> bool:
        listening = self._scan_listening_ports()
        if listening is not None:
            return port in listening
        return self._lsof_reports_listener(port)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_available(self, port: int) -> bool:
        if port in self.reserved or self.registry.owner_of(port) is not None:
            return False
        if self._accepts_connections(port):
            logger.debug(f"Port {port} accepts connections")
            return False
        if self._os_reports_listener(port):
            logger.debug(f"Port {port} has an OS listener")
            return False
        return True


class PortAllocator:
    """Sequentially search for free ports starting at a canonical port."""

    def __init__(
        self,
        registry: Registry,
        prober: Optional[PortProber] = None,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.registry = registry
        self.prober = prober or PortProber(registry)
        self.max_attempts = max_attempts

    def find_available(self, start_port: int, var_name: str = "port") -> int:
        """Return the first free port in ``start_port .. start_port + max_attempts``."""
        port = start_port
        tried = 0
        while tried < self.max_attempts and port <= MAX_PORT:
            if self.prober.is_available(port):
                return port
            tried += 1
            port += 1

        last = port - 1
        logger.error(f"❌ No free port for {var_name} in {start_port}-{last}")
        raise NoPortsAvailable(
            f"No available ports found for {var_name}\n"
            f"Searched range: {start_port}-{last} ({tried} attempts)\n\n"
            "This is extremely rare. Please check your system's port usage.",
            {"variable": var_name, "start": start_port, "end": last, "attempts": tried},
        )

    def assign(self, port_vars: Iterable[Tuple[str, int]]) -> Dict[str, PortAssignment]:
        """Assign a port to every ``(name, default)`` pair, in order.

        Ports handed out earlier in the same call are not reused.
        """
        assignments: Dict[str, PortAssignment] = {}
        for name, default in port_vars:
            start = canonicalize(default)
            port = self.find_available(start, name)
            self.prober.reserved.add(port)
            assignments[name] = PortAssignment(name=name, start_port=start, port=port)
            logger.info(f"🔌 {name}: {start} -> {port}")
        return assignments
