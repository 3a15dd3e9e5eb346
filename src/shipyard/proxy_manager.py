"""Local domain proxies through Laravel Valet or Herd, plus SSL symlinks.

Both tools share the same command surface (``proxy``, ``unproxy``,
``proxies``) and keep their certificates in a per-tool directory.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

from .config import DOMAIN_TLD, PROJECT_CERT_DIR
from .registry import ProxyService

logger = logging.getLogger("shipyard.proxy_manager")

__all__ = [
    "ProxyManager",
    "detect_tools",
    "validate_domain_name",
    "symlink_certificates",
    "ensure_gitignore",
]

COMMAND_TIMEOUT = 60

_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?$")

_CERT_DIRS = {
    ProxyService.VALET: Path("~/.config/valet/Certificates"),
    ProxyService.HERD: Path("~/Library/Application Support/Herd/config/valet/Certificates"),
}


def validate_domain_name(domain: str) -> bool:
    """Alphanumerics and hyphens, not starting or ending with a hyphen."""
    return bool(domain) and _DOMAIN_RE.match(domain) is not None


def strip_tld(domain: str) -> str:
    suffix = f".{DOMAIN_TLD}"
    return domain[: -len(suffix)] if domain.endswith(suffix) else domain


def detect_tools() -> List[ProxyService]:
    """Proxy tools installed on this machine, Valet first."""
    return [service for service in ProxyService if shutil.which(service.value) is not None]


class ProxyManager:
    """Drive one proxy tool (``valet`` or ``herd``)."""

    def __init__(self, service: ProxyService, cert_dir: Optional[Path] = None) -> None:
        self.service = ProxyService(service)
        self.cert_dir = (cert_dir or _CERT_DIRS[self.service]).expanduser()

    def __repr__(self) -> str:
        return f"ProxyManager({self.service.value!r})"

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        cmd = [self.service.value, *args]
        logger.debug(f"🔨 Running command: {' '.join(cmd)}")
        return subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=COMMAND_TIMEOUT)

    def is_available(self) -> bool:
        return shutil.which(self.service.value) is not None

    def list_proxies(self) -> List[str]:
        """Names (without TLD) from the ``proxies`` table."""
        try:
            p = self._run("proxies")
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning(f"Could not list {self.service.value} proxies: {exc}")
            return []
        names: List[str] = []
        for line in p.stdout.splitlines():
            line = line.strip()
            if not line.startswith("|"):
                continue
            cells = [cell.strip() for cell in line.strip("|").split("|")]
            if not cells or not cells[0] or cells[0].lower() in ("url", "site"):
                continue
            names.append(strip_tld(cells[0]))
        return names

    def has_proxy(self, domain: str) -> bool:
        return strip_tld(domain) in self.list_proxies()

    def register(self, domain: str, port: int, secure: bool = True) -> bool:
        """Proxy ``<domain>.test`` to ``http://localhost:<port>``."""
        target = f"http://localhost:{port}"
        args = ["proxy", strip_tld(domain), target]
        if secure:
            args.append("--secure")
        try:
            p = self._run(*args)
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.error(f"❌ {self.service.value} proxy failed: {exc}")
            return False
        if p.returncode != 0:
            logger.error(f"❌ {self.service.value} proxy failed: {(p.stderr or p.stdout).strip()}")
            return False
        logger.info(f"🌐 Proxied {strip_tld(domain)}.{DOMAIN_TLD} -> {target}")
        return True

    def remove(self, domain: str) -> bool:
        try:
            p = self._run("unproxy", strip_tld(domain))
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning(f"Could not remove proxy {domain}: {exc}")
            return False
        if p.returncode != 0:
            logger.warning(f"Could not remove proxy {domain}: {(p.stderr or p.stdout).strip()}")
            return False
        logger.info(f"🧹 Removed proxy {domain} via {self.service.value}")
        return True

    def find_certificates(self, domain: str) -> Tuple[Path, Path]:
        """Return ``(cert, key)`` for *domain* or raise FileNotFoundError."""
        full_domain = f"{strip_tld(domain)}.{DOMAIN_TLD}"
        cert = self.cert_dir / f"{full_domain}.crt"
        key = self.cert_dir / f"{full_domain}.key"
        for path in (cert, key):
            if not path.is_file():
                raise FileNotFoundError(f"Certificate file not found: {path}")
        return cert, key


def symlink_certificates(cert: Path, key: Path, project_dir: Path) -> Tuple[Path, Path]:
    """Link *cert*/*key* as ``certificates/cert.crt`` and ``cert.key``."""
    target_dir = Path(project_dir) / PROJECT_CERT_DIR
    target_dir.mkdir(exist_ok=True)

    links = (target_dir / "cert.crt", target_dir / "cert.key")
    for link, source in zip(links, (cert, key)):
        if link.is_symlink():
            link.unlink()
        link.symlink_to(source)
        logger.debug(f"🔗 {link} -> {source}")
    return links


def ensure_gitignore(project_dir: Path) -> bool:
    """Append ``/certificates`` to ``.gitignore``. Returns ``True`` if added."""
    gitignore = Path(project_dir) / ".gitignore"
    entry = f"/{PROJECT_CERT_DIR}"
    if gitignore.exists():
        content = gitignore.read_text(encoding="utf-8")
        if any(line.startswith(entry) for line in content.splitlines()):
            return False
        prefix = "" if not content or content.endswith("\n") else "\n"
    else:
        prefix = ""
    with gitignore.open("a", encoding="utf-8") as fp:
        fp.write(f"{prefix}{entry}\n")
    return True
