"""Read port variables out of a project's docker-compose file.

Laravel Sail declares host ports as ``${APP_PORT:-80}:80``; we collect every
``*_PORT`` variable that carries a default.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, NamedTuple

import yaml

from .exceptions import ComposeFileNotFound

logger = logging.getLogger("shipyard.compose")

__all__ = ["PortVariable", "extract_port_variables", "find_port_variables"]

_PORT_VAR_RE = re.compile(r"\$\{([A-Z_]*_PORT)(:-?)([^}]+)\}")


class PortVariable(NamedTuple):
    name: str
    default: int


def _strings(node: Any) -> Iterator[str]:
    """Yield every string scalar (mapping keys included) in a YAML document."""
    if isinstance(node, str):
        yield node
    elif isinstance(node, dict):
        for key, value in node.items():
            yield from _strings(key)
            yield from _strings(value)
    elif isinstance(node, (list, tuple)):
        for item in node:
            yield from _strings(item)


def find_port_variables(texts: Iterator[str] | List[str]) -> List[PortVariable]:
    """Return port variables found in *texts*, sorted by name."""
    found: Dict[str, int] = {}
    for text in texts:
        for name, _sep, default in _PORT_VAR_RE.findall(text):
            default = default.strip()
            if not default.isdigit():
                logger.debug(f"Skipping {name}: default '{default}' is not a port")
                continue
            if name in found and found[name] != int(default):
                logger.warning(f"⚠️  {name} has conflicting defaults, keeping {found[name]}")
                continue
            found.setdefault(name, int(default))
    return [PortVariable(name, found[name]) for name in sorted(found)]


def extract_port_variables(compose_file: str | Path) -> List[PortVariable]:
    path = Path(compose_file)
    if not path.is_file():
        raise ComposeFileNotFound(f"docker-compose file not found: {path}", {"file": str(path)})

    text = path.read_text(encoding="utf-8")
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        logger.warning(f"⚠️  Could not parse {path} as YAML ({exc}), scanning raw text")
        return find_port_variables([text])

    variables = find_port_variables(_strings(document))
    logger.info(f"📄 Found {len(variables)} port variable(s) in {path.name}")
    return variables
