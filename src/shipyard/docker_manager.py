"""Docker-side collaborators used by Shipyard.

Daemon checks, Sail volume cleanup, network pruning and the throw-away
composer container go through *docker-py*; the project's own ``vendor/bin/sail``
script is run as a plain subprocess.
"""
from __future__ import annotations

import json
import logging
import os
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import docker
import requests

from .exceptions import (
    DockerNotInstalled,
    DockerNotRunning,
    ErrorHandler,
    ExternalCommandFailed,
)

logger = logging.getLogger("shipyard.docker_manager")

__all__ = [
    "DockerManager",
    "VolumeCleanup",
    "extract_composer_repositories",
    "build_composer_command",
]

CONTAINER_WORKDIR = "/var/www/html"
DOCKER_TIMEOUT = 30


def _run(
    cmd: List[str],
    *,
    cwd: str | Path | None = None,
    capture: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Run a subprocess with some sensible defaults."""
    logger.debug(f"🔨 Running command: {' '.join(cmd)}")
    if cwd:
        logger.debug(f"📁 Working directory: {cwd}")

    error_handler = ErrorHandler(logger)

    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            check=True,
            capture_output=capture,
            text=True,
        )
        logger.debug(f"✅ Command completed successfully: {cmd[0]}")
        return result
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
        error_handler.handle_subprocess_error(cmd, e, "command execution")
        raise  # unreachable, handle_subprocess_error always raises


@dataclass
class VolumeCleanup:
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def extract_composer_repositories(composer_json: str | Path) -> List[str]:
    """Hosts of ``type: composer`` repositories, with the URL scheme removed."""
    path = Path(composer_json)
    if not path.is_file():
        raise ExternalCommandFailed(f"composer.json not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ExternalCommandFailed(f"Invalid JSON in {path}: {exc}") from exc

    repositories = data.get("repositories") or []
    if isinstance(repositories, dict):
        repositories = list(repositories.values())

    hosts: List[str] = []
    for repo in repositories:
        if not isinstance(repo, dict) or repo.get("type") != "composer":
            continue
        url = str(repo.get("url", ""))
        for scheme in ("https://", "http://"):
            if url.startswith(scheme):
                hosts.append(url[len(scheme):])
                break
    return hosts


def build_composer_command(credentials: Dict[str, Tuple[str, str]]) -> List[str]:
    """Command run inside the composer image; configures http-basic auth first."""
    install = ["composer", "install", "--ignore-platform-reqs"]
    if not credentials:
        return install
    steps = [
        shlex.join(["composer", "config", f"http-basic.{repo}", username, password])
        for repo, (username, password) in credentials.items()
    ]
    steps.append(shlex.join(install))
    return ["bash", "-c", " && ".join(steps)]


class DockerManager:
    """Talk to the Docker daemon on behalf of Shipyard."""

    def __init__(self, project_dir: Path | None = None, client: Any = None):
        self.project_dir = Path(project_dir or Path.cwd()).resolve()
        self._client = client
        self.error_handler = ErrorHandler(logger)

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = docker.from_env(timeout=DOCKER_TIMEOUT)
        return self._client

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def ensure_available(self) -> None:
        """Raise unless the docker CLI exists and the daemon answers."""
        if shutil.which("docker") is None:
            raise DockerNotInstalled(
                "Docker is not installed or not in PATH.\n"
                "Please install Docker Desktop from https://www.docker.com/products/docker-desktop"
            )
        try:
            self.client.ping()
        except (docker.errors.DockerException, requests.exceptions.RequestException) as exc:
            logger.debug(f"Docker ping failed: {exc}")
            raise DockerNotRunning(
                "Docker is installed but not running.\nPlease start Docker Desktop and try again.",
                {"original_error": str(exc)},
            ) from exc
        logger.info("🐳 Docker is installed and running")

    # ------------------------------------------------------------------
    # Volumes & networks
    # ------------------------------------------------------------------

    def remove_volumes_by_prefix(self, project_name: str) -> VolumeCleanup:
        """Remove ``<project_name>_sail-*`` volumes. Never raises."""
        prefix = f"{project_name}_sail-"
        result = VolumeCleanup()
        try:
            volumes = [v for v in self.client.volumes.list() if v.name.startswith(prefix)]
        except (docker.errors.DockerException, requests.exceptions.RequestException) as exc:
            logger.warning(f"Could not list volumes for {project_name}: {exc}")
            return result

        for volume in volumes:
            try:
                volume.remove()
                result.removed.append(volume.name)
                logger.info(f"🧹 Removed volume {volume.name}")
            except (docker.errors.DockerException, requests.exceptions.RequestException) as exc:
                result.failed.append(volume.name)
                logger.warning(f"Could not remove volume {volume.name}: {exc}")
        return result

    def count_bridge_networks(self) -> int:
        networks = self.client.networks.list(filters={"driver": "bridge"})
        return sum(1 for n in networks if n.name != "bridge")

    def prune_networks(self) -> int:
        """Remove unused networks and return how many were deleted."""
        result = self.client.networks.prune()
        deleted = result.get("NetworksDeleted") or []
        logger.info(f"🧹 Pruned {len(deleted)} unused network(s)")
        return len(deleted)

    # ------------------------------------------------------------------
    # Composer & Sail
    # ------------------------------------------------------------------

    def composer_install(
        self,
        image: str,
        credentials: Optional[Dict[str, Tuple[str, str]]] = None,
        on_output: Callable[[str], Any] = sys.stdout.write,
    ) -> None:
        """Run ``composer install`` in a throw-away container for the project."""
        command = build_composer_command(credentials or {})
        user = f"{os.getuid()}:{os.getgid()}" if hasattr(os, "getuid") else None
        logger.info(f"📦 Running composer install via {image}")

        try:
            container = self.client.containers.run(
                image,
                command,
                detach=True,
                user=user,
                working_dir=CONTAINER_WORKDIR,
                volumes={str(self.project_dir): {"bind": CONTAINER_WORKDIR, "mode": "rw"}},
            )
        except (docker.errors.DockerException, requests.exceptions.RequestException) as exc:
            self.error_handler.log_and_raise(ExternalCommandFailed, "Composer install failed to start", exc)
            raise  # unreachable

        try:
            for chunk in container.logs(stream=True, follow=True):
                on_output(chunk.decode("utf-8", errors="replace"))
            status = container.wait().get("StatusCode", 1)
        finally:
            try:
                container.remove(force=True)
            except docker.errors.DockerException as exc:
                logger.debug(f"Could not remove composer container: {exc}")

        if status != 0:
            raise ExternalCommandFailed(
                "Composer install failed. Please check your credentials and try again.",
                {"exit_status": status},
            )
        logger.info("✅ Composer dependencies installed")

    def run_sail(self, *args: str) -> None:
        """Run ``./vendor/bin/sail <args>`` in the project, output passed through."""
        sail = self.project_dir / "vendor" / "bin" / "sail"
        if not sail.exists():
            raise ExternalCommandFailed(f"Sail not found at {sail}. Run composer install first.")
        _run([str(sail), *args], cwd=self.project_dir, capture=False)
