"""Data model for the chart installation workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_GITHUB_REPO = "https://github.com/Flamingo-CX/openframe"
DEFAULT_GITHUB_BRANCH = "main"


@dataclass(frozen=True)
class InstallationRequest:
    """Immutable input for one installation run."""

    args: Tuple[str, ...] = ()
    force: bool = False
    dry_run: bool = False
    verbose: bool = False
    github_repo: str = DEFAULT_GITHUB_REPO
    github_branch: str = DEFAULT_GITHUB_BRANCH
    github_username: str = ""
    github_token: str = field(default="", repr=False)
    cert_dir: str = ""

    def __post_init__(self) -> None:
        # Accept any sequence for args but store a tuple
        object.__setattr__(self, "args", tuple(self.args))


@dataclass
class ChartConfiguration:
    """Result of configuration collection, owned by the workflow for one run."""

    base_values_path: Path
    temp_values_path: Optional[Path] = None
    existing_values: Dict[str, Any] = field(default_factory=dict)
    modified_sections: List[str] = field(default_factory=list)
    branch: Optional[str] = None


@dataclass(frozen=True)
class AppOfAppsConfig:
    """Where to fetch the app-of-apps chart and how to install it."""

    github_repo: str
    github_branch: str
    cert_dir: Path
    values_file: Optional[Path] = None
    github_username: str = ""
    github_token: str = field(default="", repr=False)
    namespace: str = "argocd"
    release_name: str = "app-of-apps"
    chart_path: str = "manifests/app-of-apps"


@dataclass(frozen=True)
class ChartInstallConfig:
    """Fully resolved configuration handed to the installer."""

    cluster_name: str
    force: bool = False
    dry_run: bool = False
    verbose: bool = False
    silent: bool = False
    app_of_apps: Optional[AppOfAppsConfig] = None

    @property
    def has_app_of_apps(self) -> bool:
        """Whether an app-of-apps repository is configured."""
        return self.app_of_apps is not None and bool(self.app_of_apps.github_repo)


class WorkflowOutcome(str, Enum):
    """How a workflow run ended."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class WorkflowState(str, Enum):
    """Workflow steps, in execution order, followed by the terminal states."""

    PENDING = "pending"
    CONFIGURING = "configuring"
    SELECTING_TARGET = "selecting_target"
    CONFIRMING = "confirming"
    REFRESHING_CERTS = "refreshing_certs"
    ASSEMBLING = "assembling"
    INSTALLING = "installing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {WorkflowState.SUCCEEDED, WorkflowState.FAILED, WorkflowState.CANCELLED}
)

OUTCOME_STATES = {
    WorkflowOutcome.SUCCESS: WorkflowState.SUCCEEDED,
    WorkflowOutcome.FAILED: WorkflowState.FAILED,
    WorkflowOutcome.CANCELLED: WorkflowState.CANCELLED,
}


@dataclass
class WorkflowResult:
    """Result of one installation workflow run."""

    outcome: WorkflowOutcome
    error: Optional[Exception] = None
    target: Optional[str] = None
    states: List[WorkflowState] = field(default_factory=list)
    non_fatal_errors: List[Exception] = field(default_factory=list)
    ledger_resolution: Optional[str] = None
    attempts: int = 0
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        """Whether the run ended without error."""
        return self.outcome == WorkflowOutcome.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.outcome == WorkflowOutcome.CANCELLED

    @property
    def final_state(self) -> WorkflowState:
        return self.states[-1] if self.states else WorkflowState.PENDING

    def raise_for_outcome(self) -> None:
        """Re-raise the run's error, if any."""
        if self.error is not None:
            raise self.error
