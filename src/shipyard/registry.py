"""Shared project/port registry.

The registry is a small INI-like text file shared by every project on the
machine::

    # comment
    [users_me_code_shop]
    path=/Users/me/code/shop
    domain=shop.test
    proxy_service=valet
    proxy_secure=true
    APP_PORT=8000
    FORWARD_DB_PORT=3300

It is reloaded in full on every run and rewritten in full on every mutation,
always through a temporary file followed by an atomic rename.  Reading and
writing must happen while holding :class:`shipyard.lock.RegistryLock`.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set

from .config import MAX_PORT
from .exceptions import AlreadyRegistered, CorruptRegistry, PortConflict, RegistryWriteFailed

logger = logging.getLogger("shipyard.registry")

__all__ = [
    "ProxyService",
    "ProjectRecord",
    "Registry",
    "RegistryStore",
    "LineKind",
    "RegistryLine",
    "classify_line",
    "parse_registry",
    "serialize_registry",
    "project_name_for_path",
]

_HEADER = (
    "# Shipyard Project Registry\n"
    "# This file tracks project configurations including ports, domains, and proxy services\n"
    "# Format: INI with [project-name] sections\n"
)

_SECTION_RE = re.compile(r"^\s*\[([^\]]+)\]\s*$")
_KEY_VALUE_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(\S.*?)\s*$")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


def project_name_for_path(path: str | Path) -> str:
    """Derive the registry key for a project directory.

    ``/Users/Me/my-app`` becomes ``users_me_my_app``.
    """
    text = Path(path).as_posix().lstrip("/")
    return _NON_ALNUM_RE.sub("_", text).lower()


class ProxyService(str, Enum):
    """Local domain proxy tools a record can be registered with."""

    VALET = "valet"
    HERD = "herd"


@dataclass
class ProjectRecord:
    name: str
    path: Optional[str] = None
    domain: Optional[str] = None
    proxy_service: Optional[ProxyService] = None
    proxy_secure: Optional[bool] = None
    ports: Dict[str, int] = field(default_factory=dict)
    extra: Dict[str, str] = field(default_factory=dict)

    @property
    def has_proxy(self) -> bool:
        return self.domain is not None and self.proxy_service is not None

    def is_stale(self) -> bool:
        """True when the recorded project directory no longer exists."""
        return bool(self.path) and not Path(self.path).is_dir()


class Registry:
    """In-memory view of the registry, keyed by project name.

    Every port appears in at most one record.
    """

    def __init__(self, records: Iterable[ProjectRecord] = ()) -> None:
        self._records: Dict[str, ProjectRecord] = {}
        for record in records:
            self.add(record)

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __iter__(self) -> Iterator[ProjectRecord]:
        return iter(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Registry):
            return NotImplemented
        return self._records == other._records

    def __repr__(self) -> str:
        return f"Registry({sorted(self._records)!r})"

    def get(self, name: str) -> Optional[ProjectRecord]:
        return self._records.get(name)

    def names(self) -> List[str]:
        return sorted(self._records)

    def all_ports(self) -> Set[int]:
        return {port for record in self._records.values() for port in record.ports.values()}

    def owner_of(self, port: int) -> Optional[str]:
        for record in self._records.values():
            if port in record.ports.values():
                return record.name
        return None

    def add(self, record: ProjectRecord) -> None:
        if record.name in self._records:
            raise AlreadyRegistered(
                f"Project '{record.name}' is already registered in the port registry.",
                {"project": record.name},
            )
        if len(set(record.ports.values())) != len(record.ports):
            raise PortConflict(f"Project '{record.name}' assigns the same port twice")
        taken = self.all_ports()
        clashes = sorted(p for p in record.ports.values() if p in taken)
        if clashes:
            raise PortConflict(
                f"Port(s) {', '.join(map(str, clashes))} already assigned to another project",
                {"project": record.name, "ports": clashes},
            )
        self._records[record.name] = record

    def remove(self, name: str) -> ProjectRecord:
        return self._records.pop(name)

    def stale_records(self) -> List[ProjectRecord]:
        return [record for record in self._records.values() if record.is_stale()]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class LineKind(Enum):
    BLANK = "blank"
    COMMENT = "comment"
    SECTION = "section"
    KEY_VALUE = "key_value"


@dataclass(frozen=True)
class RegistryLine:
    kind: LineKind
    number: int
    text: str
    name: Optional[str] = None
    key: Optional[str] = None
    value: Optional[str] = None


def classify_line(text: str, number: int) -> RegistryLine:
    """Classify one registry line or raise :class:`CorruptRegistry`."""
    if not text.strip():
        return RegistryLine(LineKind.BLANK, number, text)
    if text.lstrip().startswith("#"):
        return RegistryLine(LineKind.COMMENT, number, text)

    match = _SECTION_RE.match(text)
    if match:
        return RegistryLine(LineKind.SECTION, number, text, name=match.group(1).strip())

    match = _KEY_VALUE_RE.match(text)
    if match:
        return RegistryLine(LineKind.KEY_VALUE, number, text, key=match.group(1), value=match.group(2))

    raise CorruptRegistry(
        f'Invalid line {number}: "{text}"',
        {"line": number},
    )


def _parse_bool(value: str, line: RegistryLine) -> bool:
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    raise CorruptRegistry(f"Line {line.number}: {line.key} must be true or false, got '{value}'", {"line": line.number})


def _apply_pair(record: ProjectRecord, line: RegistryLine) -> None:
    key, value = line.key, line.value
    assert key is not None and value is not None

    if key == "path":
        record.path = value
    elif key == "domain":
        record.domain = value
    elif key == "proxy_service":
        try:
            record.proxy_service = ProxyService(value.lower())
        except ValueError:
            raise CorruptRegistry(
                f"Line {line.number}: unknown proxy_service '{value}'", {"line": line.number}
            ) from None
    elif key == "proxy_secure":
        record.proxy_secure = _parse_bool(value, line)
    elif key.endswith("_PORT"):
        if not (value.isascii() and value.isdigit()) or not 1 <= int(value) <= MAX_PORT:
            raise CorruptRegistry(
                f"Line {line.number}: {key} must be a port number (1-{MAX_PORT}), got '{value}'",
                {"line": line.number},
            )
        record.ports[key] = int(value)
    else:
        record.extra[key] = value


def parse_registry(text: str) -> Registry:
    """Build a :class:`Registry` from file contents in a single pass.

    Nothing is returned unless the whole text parses.
    """
    records: List[ProjectRecord] = []
    seen: Set[str] = set()
    current: Optional[ProjectRecord] = None

    for number, raw in enumerate(text.splitlines(), start=1):
        line = classify_line(raw, number)

        if line.kind in (LineKind.BLANK, LineKind.COMMENT):
            continue

        if line.kind is LineKind.SECTION:
            assert line.name is not None
            if line.name in seen:
                raise CorruptRegistry(
                    f"Line {number}: duplicate section [{line.name}]", {"line": number}
                )
            seen.add(line.name)
            current = ProjectRecord(name=line.name)
            records.append(current)
            continue

        if current is None:
            raise CorruptRegistry(f"Line {number}: key outside of section", {"line": number})
        _apply_pair(current, line)

    for record in records:
        if (record.domain is None) != (record.proxy_service is None):
            raise CorruptRegistry(
                f"Project [{record.name}] must define both domain and proxy_service or neither",
                {"project": record.name},
            )

    try:
        return Registry(records)
    except PortConflict as exc:
        raise CorruptRegistry(f"Registry assigns a port twice: {exc.message}", exc.details) from exc


def serialize_registry(registry: Registry) -> str:
    """Render *registry* deterministically (records and port keys sorted)."""
    chunks = [_HEADER]
    for name in registry.names():
        record = registry.get(name)
        assert record is not None
        lines = [f"[{record.name}]"]
        if record.path is not None:
            lines.append(f"path={record.path}")
        if record.domain is not None:
            lines.append(f"domain={record.domain}")
        if record.proxy_service is not None:
            lines.append(f"proxy_service={record.proxy_service.value}")
        if record.proxy_secure is not None:
            lines.append(f"proxy_secure={'true' if record.proxy_secure else 'false'}")
        for key in sorted(record.extra):
            lines.append(f"{key}={record.extra[key]}")
        for key in sorted(record.ports):
            lines.append(f"{key}={record.ports[key]}")
        chunks.append("\n".join(lines) + "\n")
    return "\n".join(chunks)


class RegistryStore:
    """Load and atomically rewrite the registry file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Registry:
        if not self.path.exists():
            logger.debug(f"📄 No registry at {self.path}, starting empty")
            return Registry()

        try:
            registry = parse_registry(self.path.read_text(encoding="utf-8"))
        except UnicodeDecodeError as exc:
            logger.error(f"❌ Registry {self.path} is not valid UTF-8: {exc}")
            raise CorruptRegistry(
                "Registry file is corrupted or malformed.\n\n"
                f"File: {self.path}\nFile is not valid UTF-8 text ({exc.reason} at byte {exc.start})\n\n"
                "Please fix the registry file manually or delete it to start fresh.",
                {"file": str(self.path), "byte": exc.start},
            ) from exc
        except CorruptRegistry as exc:
            logger.error(f"❌ Registry {self.path} is corrupted: {exc.message}")
            raise CorruptRegistry(
                "Registry file is corrupted or malformed.\n\n"
                f"File: {self.path}\n{exc.message}\n\n"
                "Please fix the registry file manually or delete it to start fresh.",
                {"file": str(self.path), **exc.details},
            ) from exc

        logger.debug(f"📄 Loaded {len(registry)} project(s) from {self.path}")
        return registry

    def save(self, registry: Registry) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp.write_text(serialize_registry(registry), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            try:
                tmp.unlink()
            except OSError:
                pass
            logger.error(f"❌ Failed to write registry {self.path}: {exc}")
            raise RegistryWriteFailed(
                f"Failed to write registry file: {self.path}",
                {"file": str(self.path), "original_error": str(exc)},
            ) from exc
        logger.info(f"💾 Saved {len(registry)} project(s) to {self.path}")
