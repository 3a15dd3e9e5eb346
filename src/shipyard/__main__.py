"""Shipyard CLI entry point.

This module allows execution with `python -m shipyard` and simply
forwards to the top-level `shipyard.cli` entry function.
"""

from __future__ import annotations

from .cli import main


if __name__ == "__main__":  # pragma: no cover – executed via `python -m`
    main()
