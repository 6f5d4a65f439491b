"""
Unified error handling for chartflow.

This module provides the error taxonomy used by the installation workflow,
standardized exit codes, and the single place where errors are turned into
user-facing output.

Exit Codes:
- 0: Success
- 10: Configuration error (including a missing repository branch)
- 11: Provider error (helm, git, kubectl, mkcert failures)
- 12: Validation error
- 127: Unknown/internal error
- 130: Installation cancelled (interrupt, deadline or declined)
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    UNKNOWN_ERROR = 127
    CANCELLED = 130


class ChartflowError(Exception):
    """Base exception for chartflow errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ChartflowError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class ProviderError(ChartflowError):
    """Raised when an external tool or service fails."""

    exit_code = ExitCode.PROVIDER_ERROR


class CommandError(ProviderError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"command '{' '.join(self.command)}' exited with status {returncode}",
            details={"returncode": returncode},
        )


class ValidationError(ChartflowError):
    """Raised for validation failures."""

    exit_code = ExitCode.VALIDATION_ERROR


class ChartError(ChartflowError):
    """A step failure enriched with the operation, component and target cluster."""

    exit_code = ExitCode.PROVIDER_ERROR

    def __init__(
        self,
        operation: str,
        component: str,
        cause: BaseException,
        cluster: str | None = None,
    ):
        self.operation = operation
        self.component = component
        self.cause = cause
        self.cluster = cluster
        if isinstance(cause, ChartflowError):
            self.exit_code = cause.exit_code
        details: dict[str, Any] = {"operation": operation, "component": component}
        if cluster:
            details["cluster"] = cluster
        super().__init__(f"{operation} {component} failed: {cause}", details)


class BranchNotFoundError(ChartflowError):
    """The requested repository branch does not exist. Never retried."""

    exit_code = ExitCode.CONFIG_ERROR

    def __init__(self, repository: str, branch: str):
        self.repository = repository
        self.branch = branch
        super().__init__(
            f"branch '{branch}' not found in repository {repository}",
            details={"repository": repository, "branch": branch},
        )


class InstallationCancelledError(ChartflowError):
    """The installation was cancelled by interrupt, deadline or the user."""

    exit_code = ExitCode.CANCELLED

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__("installation cancelled by user", details={"reason": reason})


class LedgerError(ChartflowError):
    """Raised when the temporary-file ledger cannot track or resolve a file."""


class LedgerRestoreError(LedgerError):
    """One or more tracked files could not be restored."""

    def __init__(self, errors: list[LedgerError]):
        self.errors = list(errors)
        first = self.errors[0].message if self.errors else "restore failed"
        super().__init__(first, details={"failed": len(self.errors)})


class WorkflowStateError(ChartflowError):
    """Raised on an illegal workflow state transition."""


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - ChartflowError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except ChartflowError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return ExitCode.CANCELLED
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: ChartflowError, verbose: bool = False) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if verbose and error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg


def handle_global_error(error: BaseException, verbose: bool = False) -> int:
    """Present an error to the user and return the matching exit code."""
    from chartflow.cli.ux import error as print_error
    from chartflow.cli.ux import info as print_info

    if isinstance(error, InstallationCancelledError):
        print_info("Installation cancelled.")
        return error.exit_code
    if isinstance(error, ChartflowError):
        print_error(format_error_message(error, verbose=verbose))
        if verbose and error.__cause__ is not None:
            print_error(f"caused by: {error.__cause__}")
        return error.exit_code

    print_error(f"Unexpected error: {error}")
    if verbose:
        traceback.print_exception(error, file=sys.stderr)
    return ExitCode.UNKNOWN_ERROR
