"""Release lookup for ``shipyard --update``."""

from __future__ import annotations

import logging
from typing import Optional

import requests

logger = logging.getLogger("shipyard.updates")

__all__ = ["fetch_latest_version", "RELEASES_API"]

RELEASES_API = "https://api.github.com/repos/wotzebra/shipyard/releases/latest"


def fetch_latest_version(timeout: float = 5.0) -> Optional[str]:
    """Latest released version without the ``v`` prefix, or ``None``."""
    try:
        response = requests.get(RELEASES_API, timeout=timeout)
        response.raise_for_status()
        tag = response.json().get("tag_name") or ""
    except (requests.RequestException, ValueError) as exc:
        logger.debug(f"Could not fetch latest release: {exc}")
        return None
    return tag[1:] if tag.startswith("v") else (tag or None)
