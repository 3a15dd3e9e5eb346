from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import COMPOSE_FILE, ENV_EXAMPLE_FILE, ENV_FILE
from .docker_manager import DockerManager
from .exceptions import ShipyardError
from .proxy_manager import detect_tools

__all__ = ["PreflightChecker", "PreflightReport", "NETWORK_WARNING_THRESHOLD"]

logger = logging.getLogger(__name__)

NETWORK_WARNING_THRESHOLD = 20


@dataclass
class PreflightReport:
    ok: bool
    warnings: List[str]
    errors: List[str]
    suggestions: List[str]

    def pretty(self) -> str:
        lines: List[str] = []
        if self.errors:
            lines.append("[red]Errors:[/red]")
            lines += [f"  - {e}" for e in self.errors]
        if self.warnings:
            lines.append("[yellow]Warnings:[/yellow]")
            lines += [f"  - {w}" for w in self.warnings]
        if self.suggestions:
            lines.append("[cyan]Suggestions:[/cyan]")
            lines += [f"  - {s}" for s in self.suggestions]
        if not (self.errors or self.warnings or self.suggestions):
            lines.append("All preflight checks passed.")
        return "\n".join(lines)


class PreflightChecker:
    """Environment checks before running shipyard init."""

    def __init__(self, project_dir: Path, docker_manager: Optional[DockerManager] = None) -> None:
        self.project_dir = Path(project_dir)
        self.docker_manager = docker_manager or DockerManager(self.project_dir)
        logger.info("PreflightChecker initialized")

    def run(self) -> PreflightReport:
        warnings: List[str] = []
        errors: List[str] = []
        suggestions: List[str] = []

        logger.info("Running preflight checks...")

        docker_ok = False
        try:
            self.docker_manager.ensure_available()
            docker_ok = True
        except ShipyardError as exc:
            errors.append(exc.message.splitlines()[0])
            suggestions.append(exc.message.splitlines()[-1])

        if docker_ok:
            try:
                count = self.docker_manager.count_bridge_networks()
            except Exception as exc:  # noqa: BLE001
                logger.debug(f"Could not count docker networks: {exc}")
            else:
                if count > NETWORK_WARNING_THRESHOLD:
                    warnings.append(f"Many Docker networks detected ({count}); address pool may be exhausted.")
                    suggestions.append("Run 'docker network prune -f' or 'shipyard init --prune-networks'.")

        if not (self.project_dir / COMPOSE_FILE).is_file():
            errors.append(f"{COMPOSE_FILE} not found in {self.project_dir}")
            suggestions.append("Run shipyard from the root of a Laravel Sail project.")

        if not (self.project_dir / ENV_FILE).is_file():
            if (self.project_dir / ENV_EXAMPLE_FILE).is_file():
                warnings.append(f"{ENV_FILE} missing; it will be created from {ENV_EXAMPLE_FILE}.")
            else:
                errors.append(f"Neither {ENV_FILE} nor {ENV_EXAMPLE_FILE} exist.")

        if shutil.which("lsof") is None:
            warnings.append("'lsof' not found – port usage checks rely on psutil only.")

        if not detect_tools():
            warnings.append("Neither Valet nor Herd found – local .test domains are unavailable.")

        logger.info("Preflight checks completed.")
        return PreflightReport(ok=not errors, warnings=warnings, errors=errors, suggestions=suggestions)
