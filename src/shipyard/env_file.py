"""Project ``.env`` handling: precondition checks and port injection."""

from __future__ import annotations

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import dotenv_values

from .config import DOMAIN_TLD, ENV_EXAMPLE_FILE
from .exceptions import EnvFileNotFound, EnvHasPorts, EnvWriteFailed

logger = logging.getLogger("shipyard.env_file")

__all__ = ["EnvFile"]

_SAIL_PORT_RE = re.compile(r"^(APP_PORT|VITE_PORT|FORWARD_[A-Z_]*_PORT)$")
_MANAGED_KEYS = ("COMPOSE_PROJECT_NAME", "APP_URL", "ASSET_URL", "VITE_SERVER_HOST")
_HEADER = "# Auto-assigned Docker Ports (via shipyard)"


class EnvFile:
    """A project's ``.env`` file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def ensure_exists(self) -> bool:
        """Create ``.env`` from ``.env.example`` if needed.

        Returns ``True`` when the file was created.
        """
        if self.path.is_file():
            return False
        example = self.path.with_name(ENV_EXAMPLE_FILE)
        if not example.is_file():
            raise EnvFileNotFound(
                ".env file not found and .env.example does not exist.\n"
                "Please create a .env file or .env.example before running this command.",
                {"file": str(self.path)},
            )
        shutil.copyfile(example, self.path)
        logger.info(f"📄 Created {self.path} from {example.name}")
        return True

    def port_variables(self) -> List[str]:
        values = dotenv_values(self.path)
        return [key for key in values if _SAIL_PORT_RE.match(key)]

    def check_no_port_variables(self) -> None:
        found = self.port_variables()
        if found:
            raise EnvHasPorts(
                ".env already contains port definitions: "
                + ", ".join(found)
                + "\nPlease remove all *_PORT variables from .env before running this command.",
                {"variables": found},
            )

    @staticmethod
    def render_header(project_name: str, ports: Dict[str, int], domain: Optional[str] = None) -> List[str]:
        """Lines placed at the top of ``.env``. *domain* excludes the TLD."""
        lines = [_HEADER, f"COMPOSE_PROJECT_NAME={project_name}"]
        if "APP_PORT" in ports:
            if domain:
                lines.append(f"APP_URL=https://{domain}.{DOMAIN_TLD}")
                lines.append(f"VITE_SERVER_HOST={domain}.{DOMAIN_TLD}")
            else:
                lines.append(f"APP_URL=http://localhost:{ports['APP_PORT']}")
                lines.append("VITE_SERVER_HOST=localhost")
            lines.append('ASSET_URL="${APP_URL}"')
        for key in sorted(ports):
            lines.append(f"{key}={ports[key]}")
        return lines

    def write_port_assignments(
        self, project_name: str, ports: Dict[str, int], domain: Optional[str] = None
    ) -> None:
        existing = self.path.read_text(encoding="utf-8").splitlines()
        kept = [line for line in existing if not line.startswith(tuple(f"{k}=" for k in _MANAGED_KEYS))]
        content = "\n".join(self.render_header(project_name, ports, domain) + [""] + kept) + "\n"

        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp.write_text(content, encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            try:
                tmp.unlink()
            except OSError:
                pass
            raise EnvWriteFailed(
                f"Failed to prepend ports to {self.path}", {"original_error": str(exc)}
            ) from exc
        logger.info(f"📝 Wrote {len(ports)} port assignment(s) to {self.path}")
