"""Cross-process lock around registry read-modify-write.

The lock marker is a directory: ``mkdir`` either creates it or fails, and that
is atomic on every filesystem we care about, including network and container
mounts where advisory byte-range locks are unreliable.

A crashed holder leaves the marker behind.  By default it has to be removed by
hand; pass ``stale_after`` (seconds) to treat older markers as abandoned.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
import time
from pathlib import Path
from types import TracebackType
from typing import Optional, Type

from .exceptions import LockTimeout

logger = logging.getLogger("shipyard.lock")

__all__ = ["RegistryLock", "install_signal_handlers"]

DEFAULT_TIMEOUT = 10.0
POLL_INTERVAL = 0.1


class RegistryLock:
    """Mutual exclusion between concurrent ``shipyard`` invocations."""

    def __init__(
        self,
        path: str | Path,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
        stale_after: Optional[float] = None,
    ) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.stale_after = stale_after
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _try_create(self) -> bool:
        try:
            os.mkdir(self.path)
        except FileExistsError:
            return False
        return True

    def _marker_stat(self) -> Optional[os.stat_result]:
        try:
            return os.stat(self.path)
        except FileNotFoundError:
            return None

    def _break_if_stale(self) -> bool:
        """Remove an abandoned marker. ``True`` means retry ``mkdir`` now.

        The marker is renamed aside first and only deleted if it is still the
        directory that was judged stale; a fresh marker that another process
        created in the meantime is put back.
        """
        if self.stale_after is None:
            return False
        judged = self._marker_stat()
        if judged is None:
            return True
        age = time.time() - judged.st_mtime
        if age < self.stale_after:
            return False

        aside = self.path.with_name(f"{self.path.name}.stale.{os.getpid()}.{threading.get_ident()}")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.warning(f"Could not remove stale lock {self.path}: {exc}")
            return False

        moved = os.stat(aside)
        if (moved.st_dev, moved.st_ino, moved.st_mtime_ns) != (judged.st_dev, judged.st_ino, judged.st_mtime_ns):
            logger.debug(f"Lock {self.path} was re-created while breaking it, putting it back")
            if self.path.exists():
                logger.warning(f"Could not restore lock {self.path}, left at {aside}")
            else:
                os.rename(aside, self.path)
            return False

        logger.warning(f"🔓 Removing stale lock {self.path} ({age:.0f}s old)")
        try:
            os.rmdir(aside)
        except OSError as exc:
            logger.warning(f"Could not remove stale lock {aside}: {exc}")
        return True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def acquire(self, timeout: Optional[float] = None) -> None:
        """Block until the lock is held or raise :class:`LockTimeout`."""
        if self._held:
            return
        timeout = self.timeout if timeout is None else timeout
        self.path.parent.mkdir(parents=True, exist_ok=True)

        deadline = time.monotonic() + timeout
        while True:
            if self._try_create():
                self._held = True
                logger.debug(f"🔒 Acquired registry lock {self.path}")
                return
            if self._break_if_stale():
                continue
            if time.monotonic() >= deadline:
                logger.error(f"❌ Timed out after {timeout:g}s waiting for {self.path}")
                raise LockTimeout(
                    f"Failed to acquire lock after {timeout:g}s. "
                    "Another process may be using the port registry.",
                    {"lock": str(self.path)},
                )
            time.sleep(self.poll_interval)

    def release(self) -> None:
        """Drop the lock. Safe to call when it is not held."""
        if not self._held:
            return
        self._held = False
        try:
            os.rmdir(self.path)
        except OSError as exc:
            logger.warning(f"Could not remove lock {self.path}: {exc}")
        else:
            logger.debug(f"🔓 Released registry lock {self.path}")

    def __enter__(self) -> "RegistryLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()


def _raise_interrupt(signum: int, _frame: object) -> None:
    raise KeyboardInterrupt(f"signal {signum}")


def install_signal_handlers() -> None:
    """Turn SIGTERM into KeyboardInterrupt so ``finally`` blocks release the lock."""
    signal.signal(signal.SIGTERM, _raise_interrupt)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, _raise_interrupt)
