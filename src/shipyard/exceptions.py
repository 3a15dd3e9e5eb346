"""
Shipyard custom exceptions and error handling utilities.

Every failure that aborts a run maps to a distinct process exit status so that
callers (and tests) can tell a lock timeout from a corrupted registry without
parsing messages.
"""

from __future__ import annotations

import logging
import traceback
from enum import IntEnum
from typing import Optional, Any, Dict


class ExitCode(IntEnum):
    """Process exit statuses, one per failure kind."""

    SUCCESS = 0
    COMPOSE_NOT_FOUND = 1
    ENV_NOT_FOUND = 2
    ENV_HAS_PORTS = 3
    LOCK_TIMEOUT = 4
    REGISTRY_WRITE_FAILED = 5
    ENV_WRITE_FAILED = 6
    NO_PORTS_AVAILABLE = 7
    ALREADY_REGISTERED = 8
    REGISTRY_CORRUPTED = 9
    DOCKER_NOT_INSTALLED = 10
    DOCKER_NOT_RUNNING = 11
    COMMAND_FAILED = 12
    USER_CANCELLED = 130


class ShipyardError(Exception):
    """Base exception for all Shipyard-related errors."""

    exit_code: ExitCode = ExitCode.COMMAND_FAILED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ComposeFileNotFound(ShipyardError):
    """Raised when the project has no docker-compose file."""

    exit_code = ExitCode.COMPOSE_NOT_FOUND


class EnvFileNotFound(ShipyardError):
    """Raised when neither .env nor .env.example exist."""

    exit_code = ExitCode.ENV_NOT_FOUND


class EnvHasPorts(ShipyardError):
    """Raised when .env already defines port variables."""

    exit_code = ExitCode.ENV_HAS_PORTS


class EnvWriteFailed(ShipyardError):
    exit_code = ExitCode.ENV_WRITE_FAILED


class LockTimeout(ShipyardError):
    """Raised when the registry lock cannot be acquired in time."""

    exit_code = ExitCode.LOCK_TIMEOUT


class RegistryWriteFailed(ShipyardError):
    exit_code = ExitCode.REGISTRY_WRITE_FAILED


class CorruptRegistry(ShipyardError):
    """Raised when the registry file cannot be parsed."""

    exit_code = ExitCode.REGISTRY_CORRUPTED


class AlreadyRegistered(ShipyardError):
    exit_code = ExitCode.ALREADY_REGISTERED


class PortConflict(ShipyardError):
    """Raised when a record would share a port with another record."""

    pass


class NoPortsAvailable(ShipyardError):
    """Raised when port allocation fails."""

    exit_code = ExitCode.NO_PORTS_AVAILABLE


class DockerNotInstalled(ShipyardError):
    exit_code = ExitCode.DOCKER_NOT_INSTALLED


class DockerNotRunning(ShipyardError):
    exit_code = ExitCode.DOCKER_NOT_RUNNING


class ExternalCommandFailed(ShipyardError):
    """Raised when an external tool (composer, sail, valet, herd) fails."""

    exit_code = ExitCode.COMMAND_FAILED


class UserCancelled(ShipyardError):
    exit_code = ExitCode.USER_CANCELLED


class ErrorHandler:
    """Centralized error handling utilities."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def log_and_raise(
        self,
        exception_class: type[ShipyardError],
        message: str,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log an error and raise a Shipyard exception."""
        error_details = details or {}

        if original_error:
            error_details["original_error"] = str(original_error)
            error_details["original_type"] = type(original_error).__name__

        self.logger.error(f"❌ {message}")
        if original_error:
            self.logger.debug(f"Original error: {original_error}")
            self.logger.debug(f"Traceback: {traceback.format_exc()}")

        raise exception_class(message, error_details)

    def handle_subprocess_error(
        self, cmd: list[str], error: Exception, operation: str = "command execution"
    ) -> None:
        """Translate subprocess failures into ExternalCommandFailed."""
        import subprocess

        if isinstance(error, subprocess.CalledProcessError):
            stderr = error.stderr if error.stderr else "No error output"
            details = {
                "command": " ".join(cmd),
                "returncode": error.returncode,
                "stderr": stderr,
            }
            self.log_and_raise(
                ExternalCommandFailed,
                f"Failed {operation}: {' '.join(cmd)}",
                error,
                details,
            )
        elif isinstance(error, subprocess.TimeoutExpired):
            details = {"command": " ".join(cmd), "timeout": error.timeout}
            self.log_and_raise(
                ExternalCommandFailed,
                f"Command timed out after {error.timeout}s: {' '.join(cmd)}",
                error,
                details,
            )
        else:
            self.log_and_raise(
                ExternalCommandFailed,
                f"Unexpected error during {operation}",
                error,
                {"command": " ".join(cmd)},
            )


def format_error_message(error: Exception, include_traceback: bool = False) -> str:
    """Format error messages consistently."""
    if isinstance(error, ShipyardError):
        message = error.message
        if error.details:
            details = ", ".join(
                f"{k}={v}" for k, v in error.details.items() if k != "original_error"
            )
            if details:
                message += f" ({details})"
    else:
        message = f"{type(error).__name__}: {str(error)}"

    if include_traceback:
        message += f"\n{traceback.format_exc()}"

    return message
