"""Runtime configuration for Shipyard.

Paths and tunables come from environment variables so the registry location
can be redirected (tests, CI, multiple users on one machine).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

__all__ = [
    "ShipyardConfig",
    "COMPOSE_FILE",
    "ENV_FILE",
    "ENV_EXAMPLE_FILE",
    "PROJECT_CERT_DIR",
    "DOMAIN_TLD",
    "REGISTRY_FILENAME",
    "LOCK_FILENAME",
    "LOG_FILENAME",
    "MAX_PORT",
]

COMPOSE_FILE = "docker-compose.yml"
ENV_FILE = ".env"
ENV_EXAMPLE_FILE = ".env.example"
PROJECT_CERT_DIR = "certificates"
DOMAIN_TLD = "test"
MAX_PORT = 65535

REGISTRY_FILENAME = "projects.conf"
LOCK_FILENAME = "projects.conf.lock"
LOG_FILENAME = "shipyard.log"

DEFAULT_LOCK_TIMEOUT = 10.0
DEFAULT_COMPOSER_IMAGE = "laravelsail/php84-composer:latest"


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    return float(value)


@dataclass
class ShipyardConfig:
    registry_dir: Path
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    lock_stale_after: Optional[float] = None
    composer_image: str = DEFAULT_COMPOSER_IMAGE

    @property
    def registry_file(self) -> Path:
        return self.registry_dir / REGISTRY_FILENAME

    @property
    def lock_file(self) -> Path:
        return self.registry_dir / LOCK_FILENAME

    @property
    def log_file(self) -> Path:
        return self.registry_dir / LOG_FILENAME

    @classmethod
    def from_env(cls) -> "ShipyardConfig":
        """Build the configuration from ``SHIPYARD_*`` environment variables."""
        home = os.environ.get("SHIPYARD_HOME")
        registry_dir = Path(home).expanduser() if home else Path.home() / ".config" / "shipyard"
        return cls(
            registry_dir=registry_dir,
            lock_timeout=float(os.environ.get("SHIPYARD_LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT)),
            lock_stale_after=_optional_float(os.environ.get("SHIPYARD_LOCK_STALE_AFTER")),
            composer_image=os.environ.get("SHIPYARD_COMPOSER_IMAGE", DEFAULT_COMPOSER_IMAGE),
        )
