from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .config import LOG_FILENAME

# Libraries that log every HTTP round-trip to the Docker socket
_NOISY_LOGGERS = ("docker", "urllib3")


def _below_error(record: logging.LogRecord) -> bool:
    """Errors reach the user through the CLI's own error line."""
    return record.levelno < logging.ERROR


def setup_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> Optional[Path]:
    """Configure logging for the entire application.

    Returns the log file path, or ``None`` when *log_dir* is not writable.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    log_level = logging.DEBUG if verbose else logging.INFO
    root_logger.setLevel(log_level)

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # rich owns the terminal unless we are debugging
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not verbose:
        stream_handler.addFilter(_below_error)
    root_logger.addHandler(stream_handler)

    log_file: Optional[Path] = None
    if log_dir is not None:
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            log_file = Path(log_dir) / LOG_FILENAME
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as exc:
            root_logger.warning(f"⚠️  File logging disabled: {exc}")
            log_file = None
        else:
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    logger = logging.getLogger("shipyard")
    logger.setLevel(log_level)

    if verbose:
        logger.debug(f"🔍 Verbose logging enabled (log file: {log_file})")
    return log_file
