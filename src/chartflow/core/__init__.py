"""Core modules for chartflow - centralized definitions and utilities."""

from chartflow.core.errors import (
    BranchNotFoundError,
    ChartError,
    ChartflowError,
    CommandError,
    ConfigurationError,
    ExitCode,
    InstallationCancelledError,
    LedgerError,
    LedgerRestoreError,
    ProviderError,
    ValidationError,
    WorkflowStateError,
    format_error_message,
    handle_global_error,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "ChartflowError",
    "ConfigurationError",
    "ProviderError",
    "CommandError",
    "ValidationError",
    "ChartError",
    "BranchNotFoundError",
    "InstallationCancelledError",
    "LedgerError",
    "LedgerRestoreError",
    "WorkflowStateError",
    "main_with_error_handling",
    "format_error_message",
    "handle_global_error",
]
