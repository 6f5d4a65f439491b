"""Install package - interruptible, retrying chart installation workflow."""

from chartflow.install.cancellation import CancelSignal, SignalBridge
from chartflow.install.ledger import LedgerEntry, TempFileLedger
from chartflow.install.models import (
    AppOfAppsConfig,
    ChartConfiguration,
    ChartInstallConfig,
    InstallationRequest,
    WorkflowOutcome,
    WorkflowResult,
    WorkflowState,
)
from chartflow.install.retry import RetryExecutor, RetryPolicy, installation_retry_policy
from chartflow.install.service import build_workflow, install_charts
from chartflow.install.workflow import InstallationWorkflow

__all__ = [
    "AppOfAppsConfig",
    "CancelSignal",
    "ChartConfiguration",
    "ChartInstallConfig",
    "InstallationRequest",
    "InstallationWorkflow",
    "LedgerEntry",
    "RetryExecutor",
    "RetryPolicy",
    "SignalBridge",
    "TempFileLedger",
    "WorkflowOutcome",
    "WorkflowResult",
    "WorkflowState",
    "build_workflow",
    "install_charts",
    "installation_retry_policy",
]
